"""
staking/ - Stake and unstake flows.

Modules:
- state_machine: stake lifecycle transitions
- gas: gas limit and price planning
- transactions: submission, receipt polling, hash recovery
- orchestrator: on-chain and off-chain staking
"""

from staking.gas import GasPlan, GasPlanner
from staking.orchestrator import StakeOrchestrator, StakeOutcome, UnstakeOutcome
from staking.state_machine import StakeState, StakeStateMachine
from staking.transactions import TransactionSender

__all__ = [
    "GasPlan",
    "GasPlanner",
    "StakeOrchestrator",
    "StakeOutcome",
    "StakeState",
    "StakeStateMachine",
    "TransactionSender",
    "UnstakeOutcome",
]

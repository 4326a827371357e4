"""
orchestrator/ - Public entry point.

OrchestratorContext wires chains, staking, burn and ledger together and
exposes stake, unstake, switch_chain, analyze_and_burn and recover_missing.
"""

from orchestrator.context import OrchestratorContext

__all__ = ["OrchestratorContext"]

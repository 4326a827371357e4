"""
staking/gas.py - Gas limit and price planning.

Limit:
  1. eth_estimateGas x buffer (1.5 for stake, 1.2 otherwise)
  2. on estimation failure, simulate with a raw eth_call:
     a revert is terminal, anything else falls through
  3. walk the chain's fixed gas ladder, probing each rung with a capped
     estimate; use the first that passes, else the top rung

Price:
  network price x 1.1, else the chain's fixed fallback price
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Any, Optional

from chains.providers import RPCFailoverClient
from core.constants import DEFAULT_GAS_BUFFER, GAS_PRICE_BUFFER
from core.exceptions import ContractRevertError, RPCUnavailableError, TransactionFailedError
from core.logging import get_logger
from core.models import ChainDescriptor
from core.retry import RetryPolicy

logger = get_logger(__name__)


def apply_buffer(value: int, buffer: Decimal) -> int:
    return int((Decimal(value) * buffer).to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class GasPlan:
    gas_limit: int
    gas_price_wei: int
    limit_source: str
    price_source: str

    def apply(self, tx: dict) -> dict:
        return {**tx, "gas": hex(self.gas_limit), "gasPrice": hex(self.gas_price_wei)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "gas_limit": self.gas_limit,
            "gas_price_wei": self.gas_price_wei,
            "limit_source": self.limit_source,
            "price_source": self.price_source,
        }


class GasPlanner:
    def __init__(self, rpc: RPCFailoverClient, policy: Optional[RetryPolicy] = None):
        self.rpc = rpc
        self.policy = policy

    async def plan(self, chain: ChainDescriptor, tx: dict, buffer: Decimal = DEFAULT_GAS_BUFFER) -> GasPlan:
        limit, limit_source = await self.gas_limit(chain, tx, buffer)
        price, price_source = await self.gas_price(chain)
        plan = GasPlan(limit, price, limit_source, price_source)
        logger.debug(
            f"Gas plan for {chain.key}",
            extra={"context": plan.to_dict()},
        )
        return plan

    async def gas_limit(self, chain: ChainDescriptor, tx: dict, buffer: Decimal) -> tuple[int, str]:
        try:
            estimate = await self.rpc.estimate_gas(chain, tx, policy=self.policy)
            return apply_buffer(estimate, buffer), "estimate"
        except (ContractRevertError, RPCUnavailableError) as e:
            logger.warning(
                f"Gas estimation failed on {chain.key}, simulating",
                extra={"context": {"chain_key": chain.key, "error": str(e)}},
            )

        await self.simulate(chain, tx)
        return await self._walk_ladder(chain, tx)

    async def simulate(self, chain: ChainDescriptor, tx: dict) -> None:
        """
        Raw eth_call of the transaction.

        Raises:
            TransactionFailedError: the call reverts
        """
        try:
            await self.rpc.eth_call(chain, tx["to"], tx["data"], from_address=tx.get("from"), policy=self.policy)
        except ContractRevertError as e:
            raise TransactionFailedError(
                f"Transaction would revert on {chain.key}: {e.message}",
                details={"chain_key": chain.key, "to": tx["to"], **e.details},
            ) from e
        except RPCUnavailableError:
            logger.warning(
                f"Simulation unavailable on {chain.key}, using gas ladder",
                extra={"context": {"chain_key": chain.key}},
            )

    async def _walk_ladder(self, chain: ChainDescriptor, tx: dict) -> tuple[int, str]:
        for rung in chain.gas_ladder:
            try:
                await self.rpc.estimate_gas(chain, {**tx, "gas": hex(rung)}, policy=self.policy)
                return rung, "ladder"
            except (ContractRevertError, RPCUnavailableError):
                continue
        return chain.gas_ladder[-1], "ladder_top"

    async def gas_price(self, chain: ChainDescriptor) -> tuple[int, str]:
        try:
            price = await self.rpc.get_gas_price(chain, policy=self.policy)
            return apply_buffer(price, GAS_PRICE_BUFFER), "network"
        except RPCUnavailableError:
            return chain.fallback_gas_price_wei, "fallback"

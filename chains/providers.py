"""
chains/providers.py - Read-only RPC access with ranked failover.

Provides reliable RPC reads with:
- Ranked endpoint failover (always restarting at rank 1)
- Bounded per-endpoint timeout
- A fresh HTTP client per attempt
- Latency tracking (observability only)

Writes never go through here; they go through the wallet provider.
"""

import asyncio
import itertools
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from core.constants import (
    DEFAULT_RPC_TIMEOUT_SECONDS,
    MAX_RPC_TIMEOUT_SECONDS,
    MIN_RPC_TIMEOUT_SECONDS,
    RPC_EXECUTION_REVERTED_CODE,
)
from core.exceptions import ContractRevertError, RPCUnavailableError
from core.logging import get_logger
from core.models import ChainDescriptor
from core.retry import SINGLE_PASS, RetryExhausted, RetryPolicy, retry_with_backoff
from core.time import now_ms
from utils.validators import clamp

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RPCStats:
    """Statistics for an RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


class EndpointFailure(Exception):
    """One endpoint failed to answer; the next one is worth trying."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


def _is_revert(error: dict) -> bool:
    message = str(error.get("message", "")).lower()
    return error.get("code") == RPC_EXECUTION_REVERTED_CODE or "revert" in message


class EndpointSession:
    """
    JSON-RPC session bound to one endpoint for the duration of one attempt.
    """

    def __init__(self, client: httpx.AsyncClient, url: str, ids: Callable[[], int]):
        self._client = client
        self.url = url
        self._ids = ids

    async def request(self, method: str, params: list | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._ids(),
        }
        resp = await self._client.post(self.url, json=payload)
        if resp.status_code >= 400:
            raise EndpointFailure(self.url, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise EndpointFailure(self.url, f"invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise EndpointFailure(self.url, "unexpected response shape")

        error = body.get("error")
        if error:
            if isinstance(error, dict) and _is_revert(error):
                raise ContractRevertError(
                    f"Execution reverted: {error.get('message', '')}",
                    details={"method": method, "data": error.get("data"), "endpoint": self.url},
                )
            reason = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise EndpointFailure(self.url, f"RPC error: {reason}")

        return body.get("result")


class RPCFailoverClient:
    """
    Ranked-failover JSON-RPC reader shared by every chain.

    Each call walks the chain's endpoints in configured order and returns
    the first answer. Statistics are recorded per endpoint but never
    influence ordering. A contract revert is a deterministic answer, not
    an endpoint failure, and propagates at once.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        default_policy: RetryPolicy = SINGLE_PASS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.timeout_seconds = clamp(timeout_seconds, MIN_RPC_TIMEOUT_SECONDS, MAX_RPC_TIMEOUT_SECONDS)
        self.default_policy = default_policy
        self._transport = transport
        self._sleep = sleep
        self._request_ids = itertools.count(1)
        self.stats: dict[str, dict[str, RPCStats]] = {}

    def _stats_for(self, chain: ChainDescriptor, url: str) -> RPCStats:
        per_chain = self.stats.setdefault(chain.key, {})
        if url not in per_chain:
            per_chain[url] = RPCStats(url=url)
        return per_chain[url]

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self._transport,
        )

    async def _attempt(
        self,
        chain: ChainDescriptor,
        url: str,
        operation: Callable[[EndpointSession], Awaitable[T]],
    ) -> T:
        stats = self._stats_for(chain, url)
        stats.total_requests += 1
        start_ms = now_ms()
        try:
            async with self._new_client() as client:
                result = await operation(EndpointSession(client, url, lambda: next(self._request_ids)))
        except ContractRevertError:
            # The endpoint answered; the contract said no.
            stats.successful_requests += 1
            stats.total_latency_ms += now_ms() - start_ms
            raise
        except httpx.TimeoutException as e:
            stats.failed_requests += 1
            stats.last_error = f"Timeout after {now_ms() - start_ms}ms"
            raise EndpointFailure(url, stats.last_error) from e
        except httpx.HTTPError as e:
            stats.failed_requests += 1
            stats.last_error = f"{type(e).__name__}: {e}"
            raise EndpointFailure(url, stats.last_error) from e
        except EndpointFailure as e:
            stats.failed_requests += 1
            stats.last_error = e.reason
            raise

        stats.successful_requests += 1
        stats.total_latency_ms += now_ms() - start_ms
        stats.last_success_ts = now_ms()
        return result

    async def read(
        self,
        chain: ChainDescriptor,
        operation: Callable[[EndpointSession], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        label: str = "read",
    ) -> T:
        """
        Run operation against the first endpoint that answers.

        Args:
            chain: Target chain
            operation: async callable receiving an EndpointSession
            policy: passes/backoff over the endpoint list
            label: name used in logs and error details

        Raises:
            RPCUnavailableError: every endpoint failed on every pass
            ContractRevertError: the call reverted deterministically
        """
        if not chain.rpc_endpoints:
            raise RPCUnavailableError(
                f"No RPC endpoints configured for {chain.key}",
                details={"chain_key": chain.key, "operation": label},
            )

        candidates = [
            (url, lambda url=url: self._attempt(chain, url, operation))
            for url in chain.rpc_endpoints
        ]
        try:
            return await retry_with_backoff(
                candidates,
                policy=policy or self.default_policy,
                should_retry=lambda e: isinstance(e, EndpointFailure),
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            failures = [f.to_dict() for f in e.failures]
            logger.warning(
                f"All RPC endpoints failed for {chain.key}",
                extra={"context": {"chain_key": chain.key, "operation": label, "attempts": len(failures)}},
            )
            raise RPCUnavailableError(
                f"All RPC endpoints failed for {chain.key} ({label})",
                failures=failures,
                details={"chain_key": chain.key, "operation": label},
            ) from e

    async def call(
        self,
        chain: ChainDescriptor,
        method: str,
        params: list | None = None,
        policy: Optional[RetryPolicy] = None,
    ) -> RPCResponse:
        """
        Make a single JSON-RPC call with failover.

        Returns:
            RPCResponse with result and metadata
        """
        async def op(session: EndpointSession) -> RPCResponse:
            start = now_ms()
            result = await session.request(method, params)
            return RPCResponse(result=result, latency_ms=now_ms() - start, endpoint_used=session.url)

        return await self.read(chain, op, policy=policy, label=method)

    async def call_quantity(
        self,
        chain: ChainDescriptor,
        method: str,
        params: list | None = None,
        policy: Optional[RetryPolicy] = None,
    ) -> int:
        """
        Make a JSON-RPC call whose result is a hex quantity.

        The result is decoded inside the attempt, so an endpoint answering
        null or garbage counts as failed and the next one is tried.
        """
        async def op(session: EndpointSession) -> int:
            result = await session.request(method, params)
            try:
                return int(result, 16)
            except (TypeError, ValueError) as e:
                raise EndpointFailure(session.url, f"Malformed {method} result: {result!r}") from e

        return await self.read(chain, op, policy=policy, label=method)

    # -------------------------------------------------------------------------
    # Convenience reads
    # -------------------------------------------------------------------------

    async def eth_call(
        self,
        chain: ChainDescriptor,
        to: str,
        data: str,
        from_address: str | None = None,
        block: str = "latest",
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        tx: dict[str, Any] = {"to": to, "data": data}
        if from_address:
            tx["from"] = from_address
        response = await self.call(chain, "eth_call", [tx, block], policy=policy)
        return response.result or "0x"

    async def get_balance(self, chain: ChainDescriptor, address: str, policy: Optional[RetryPolicy] = None) -> int:
        return await self.call_quantity(chain, "eth_getBalance", [address, "latest"], policy=policy)

    async def get_block_number(self, chain: ChainDescriptor, policy: Optional[RetryPolicy] = None) -> int:
        return await self.call_quantity(chain, "eth_blockNumber", policy=policy)

    async def get_block(
        self,
        chain: ChainDescriptor,
        block: int | str = "latest",
        full_transactions: bool = True,
        policy: Optional[RetryPolicy] = None,
    ) -> Optional[dict]:
        tag = hex(block) if isinstance(block, int) else block
        response = await self.call(chain, "eth_getBlockByNumber", [tag, full_transactions], policy=policy)
        return response.result

    async def get_transaction_receipt(
        self, chain: ChainDescriptor, tx_hash: str, policy: Optional[RetryPolicy] = None
    ) -> Optional[dict]:
        response = await self.call(chain, "eth_getTransactionReceipt", [tx_hash], policy=policy)
        return response.result

    async def get_gas_price(self, chain: ChainDescriptor, policy: Optional[RetryPolicy] = None) -> int:
        return await self.call_quantity(chain, "eth_gasPrice", policy=policy)

    async def estimate_gas(self, chain: ChainDescriptor, tx: dict, policy: Optional[RetryPolicy] = None) -> int:
        return await self.call_quantity(chain, "eth_estimateGas", [tx], policy=policy)

    async def get_chain_id(self, chain: ChainDescriptor, policy: Optional[RetryPolicy] = None) -> int:
        return await self.call_quantity(chain, "eth_chainId", policy=policy)

    def get_stats_summary(self, chain_key: str | None = None) -> dict:
        """Get statistics summary per chain and endpoint."""
        keys = [chain_key] if chain_key else list(self.stats)
        return {
            key: {
                url: {
                    "total_requests": s.total_requests,
                    "success_rate": round(s.success_rate, 3),
                    "avg_latency_ms": s.avg_latency_ms,
                    "last_error": s.last_error,
                }
                for url, s in self.stats.get(key, {}).items()
            }
            for key in keys
        }

"""
chains/context.py - Active chain selection.

ChainContext owns the shared mutable chain state:
- the active ChainDescriptor (persisted across restarts)
- a cache of wallet write handles

Handles are invalidated on chain change, except while an operation is in
flight; then invalidation waits until the last operation exits.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from chains.registry import ChainRegistry
from chains.wallet import ProviderResolver, WalletSigner
from core.exceptions import ChainMismatchError
from core.logging import get_logger
from core.models import ChainDescriptor
from core.time import now_iso

logger = get_logger(__name__)

ChangeCallback = Callable[[ChainDescriptor, ChainDescriptor], Union[None, Awaitable[None]]]


class ChainSelectionStore:
    """Last selected chain key, kept in a small JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Unreadable chain selection file, ignoring",
                extra={"context": {"path": str(self.path), "error": str(e)}},
            )
            return None
        key = data.get("chain_key") if isinstance(data, dict) else None
        return key if isinstance(key, str) else None

    def save(self, chain_key: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"chain_key": chain_key, "updated_at": now_iso()}
        self.path.write_text(json.dumps(payload), encoding="utf-8")


class HandleCache:
    """Wallet write handles keyed by chain key."""

    def __init__(self):
        self._handles: dict[str, WalletSigner] = {}

    def get(self, chain_key: str) -> Optional[WalletSigner]:
        return self._handles.get(chain_key)

    def put(self, chain_key: str, handle: WalletSigner) -> None:
        self._handles[chain_key] = handle

    def clear(self) -> None:
        self._handles.clear()

    def __len__(self) -> int:
        return len(self._handles)


class ChainContext:
    """
    Current chain, wallet switching and change notifications.

    Usage:
        ctx = ChainContext(registry, resolver, ChainSelectionStore("data/selected_chain.json"))
        unsubscribe = ctx.on_change(lambda new, old: ...)
        await ctx.switch_chain("SEPOLIA")
    """

    def __init__(
        self,
        registry: ChainRegistry,
        resolver: ProviderResolver,
        store: Optional[ChainSelectionStore] = None,
    ):
        self.registry = registry
        self.resolver = resolver
        self.store = store
        self.handles = HandleCache()
        self._callbacks: list[ChangeCallback] = []
        self._ops_in_flight = 0
        self._invalidation_pending = False
        self._tasks: set[asyncio.Task] = set()

        persisted = store.load() if store else None
        if persisted and persisted in registry:
            self._current = registry.get(persisted)
        else:
            if persisted:
                logger.warning(
                    f"Persisted chain {persisted} is not supported, using default",
                    extra={"context": {"default_chain": registry.default_key}},
                )
            self._current = registry.default

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def get_current_chain(self) -> ChainDescriptor:
        return self._current

    @property
    def operation_active(self) -> bool:
        return self._ops_in_flight > 0

    def signer(self) -> WalletSigner:
        """Write handle for the current chain (cached)."""
        key = self._current.key
        handle = self.handles.get(key)
        if handle is None:
            handle = WalletSigner(self.resolver.require(), self._current)
            self.handles.put(key, handle)
        return handle

    def _invalidate_handles(self) -> None:
        if self._ops_in_flight:
            self._invalidation_pending = True
            return
        self.handles.clear()

    @asynccontextmanager
    async def operation_in_progress(self) -> AsyncIterator[None]:
        """Hold write handles stable across chain changes. Re-entrant."""
        self._ops_in_flight += 1
        try:
            yield
        finally:
            self._ops_in_flight -= 1
            if self._ops_in_flight == 0 and self._invalidation_pending:
                self._invalidation_pending = False
                self.handles.clear()

    def _set_current(self, chain: ChainDescriptor) -> None:
        previous = self._current
        if self.store:
            self.store.save(chain.key)
        if previous.key == chain.key:
            return
        self._current = chain
        self._invalidate_handles()
        logger.info(
            f"Active chain: {previous.key} -> {chain.key}",
            extra={"context": {"chain_id": chain.chain_id, "deferred_invalidation": self._invalidation_pending}},
        )
        self._notify(chain, previous)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register callback(new_chain, previous_chain). Returns unsubscribe.

        Callbacks run on the next loop tick; coroutine callbacks become tasks.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self, new: ChainDescriptor, previous: ChainDescriptor) -> None:
        if not self._callbacks:
            return
        loop = asyncio.get_running_loop()
        loop.call_soon(self._dispatch, list(self._callbacks), new, previous)

    def _dispatch(self, callbacks: list[ChangeCallback], new: ChainDescriptor, previous: ChainDescriptor) -> None:
        for callback in callbacks:
            try:
                result = callback(new, previous)
            except Exception:
                logger.exception(
                    "Chain change callback failed",
                    extra={"context": {"chain_key": new.key}},
                )
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Chain change callback task failed: {error}",
                exc_info=error,
            )

    # -------------------------------------------------------------------------
    # Wallet interaction
    # -------------------------------------------------------------------------

    async def switch_chain(self, key: str) -> ChainDescriptor:
        """
        Switch the wallet to chain `key`, then make it the active chain.

        Nothing is persisted or announced unless the wallet confirms.
        """
        chain = self.registry.get(key)
        await self.signer().switch_to(chain)
        self._set_current(chain)
        return chain

    async def ensure_wallet_on(self, chain: ChainDescriptor) -> None:
        """Make sure the wallet is connected to `chain`, switching once if needed."""
        signer = self.signer()
        if await signer.get_chain_id() == chain.chain_id:
            return
        await signer.switch_to(chain)
        actual = await signer.get_chain_id()
        if actual != chain.chain_id:
            raise ChainMismatchError(
                f"Wallet is on chain {actual}, expected {chain.chain_id} ({chain.key})",
                details={"expected": chain.chain_id, "actual": actual, "chain_key": chain.key},
            )

    async def sync_with_wallet(self) -> Optional[ChainDescriptor]:
        """Adopt the wallet's current chain when it is supported."""
        chain_id = await self.signer().get_chain_id()
        return self._adopt(chain_id)

    async def handle_wallet_chain_changed(self, chain_id_hex: str) -> Optional[ChainDescriptor]:
        """Process a wallet-initiated chainChanged event."""
        return self._adopt(int(chain_id_hex, 16))

    def _adopt(self, chain_id: int) -> Optional[ChainDescriptor]:
        chain = self.registry.by_chain_id(chain_id)
        if chain is None:
            logger.warning(
                f"Wallet is on unsupported chain {chain_id}, ignoring",
                extra={"context": {"chain_id": chain_id}},
            )
            return None
        self._set_current(chain)
        return chain

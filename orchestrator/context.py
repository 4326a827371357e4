"""
orchestrator/context.py - Composition root and public operations.

OrchestratorContext.build() constructs every collaborator exactly once and
wires them together. The public operations return OpResult; this is
the only layer that turns KilnError into a result value.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import httpx

from burn.orchestrator import BurnOrchestrator
from burn.rules import load_rules, parse_selection
from chains.context import ChainContext, ChainSelectionStore
from chains.contracts import ChainReader
from chains.metadata import MetadataResolver
from chains.providers import RPCFailoverClient
from chains.registry import ChainRegistry
from chains.wallet import ProviderResolver, WalletProvider
from config.settings import KilnSettings, load_settings
from core.constants import ErrorKind
from core.exceptions import KilnError
from core.logging import get_logger, log_error
from core.result import OpResult
from core.retry import PRECHECK_POLICY
from ledger.database import LedgerDatabase
from ledger.reconciler import LedgerReconciler
from ledger.store import LedgerStore
from staking.gas import GasPlanner
from staking.orchestrator import StakeOrchestrator
from staking.transactions import TransactionSender

logger = get_logger(__name__)


@dataclass
class OrchestratorContext:
    """
    Usage:
        ctx = await OrchestratorContext.build(providers=[metamask])
        result = await ctx.stake("42")
        if result.success: ...
        await ctx.close()
    """

    settings: KilnSettings
    registry: ChainRegistry
    chain_context: ChainContext
    rpc: RPCFailoverClient
    reader: ChainReader
    metadata: MetadataResolver
    store: LedgerStore
    staking: StakeOrchestrator
    burns: BurnOrchestrator
    reconciler: LedgerReconciler

    @classmethod
    async def build(
        cls,
        settings: Optional[KilnSettings] = None,
        providers: Iterable[WalletProvider] = (),
        config_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metadata_transport: Optional[httpx.AsyncBaseTransport] = None,
        required_flags: Sequence[str] = ("metamask",),
        excluded_flags: Sequence[str] = ("phantom",),
        sleep=None,
    ) -> "OrchestratorContext":
        """
        Build and initialise all collaborators.

        Args:
            settings: Runtime settings (default: load_settings)
            providers: Injected wallet providers
            config_dir: Directory with chains.yaml and burn_rules.yaml
            env: Environment for ${VAR} endpoints and contract overrides
            transport: httpx transport for RPC (tests use MockTransport)
            metadata_transport: httpx transport for metadata fetches
            sleep: Awaitable sleep used by retries and polling
        """
        settings = settings or load_settings(config_dir, env)
        registry = ChainRegistry.from_config(config_dir, env)
        timing = {"sleep": sleep} if sleep is not None else {}

        resolver = ProviderResolver(providers, required_flags, excluded_flags)
        chain_context = ChainContext(registry, resolver, ChainSelectionStore(settings.selection_path))

        rpc = RPCFailoverClient(settings.rpc_timeout_seconds, transport=transport, **timing)
        reader = ChainReader(rpc, policy=PRECHECK_POLICY)
        metadata = MetadataResolver(
            reader,
            settings.ipfs_gateway,
            timeout_seconds=settings.metadata_timeout_seconds,
            transport=metadata_transport,
        )
        gas = GasPlanner(rpc, policy=PRECHECK_POLICY)
        sender = TransactionSender(
            rpc,
            confirmation_timeout=settings.confirmation_timeout_seconds,
            poll_interval=settings.receipt_poll_seconds,
            recovery_blocks=settings.hash_recovery_blocks,
            **timing,
        )

        store = LedgerStore(LedgerDatabase(settings.database_url))
        await store.init()

        ctx = cls(
            settings=settings,
            registry=registry,
            chain_context=chain_context,
            rpc=rpc,
            reader=reader,
            metadata=metadata,
            store=store,
            staking=StakeOrchestrator(chain_context, reader, gas, sender, store, metadata, **timing),
            burns=BurnOrchestrator(chain_context, reader, gas, sender, store, load_rules(config_dir)),
            reconciler=LedgerReconciler(registry, reader, metadata, store),
        )
        logger.info(
            "Orchestrator ready",
            extra={"context": {
                "chains": registry.keys,
                "active_chain": chain_context.get_current_chain().key,
                "providers": len(resolver.providers),
            }},
        )
        return ctx

    async def close(self) -> None:
        logger.info("Orchestrator closing", extra={"context": {"rpc_stats": self.rpc.get_stats_summary()}})
        await self.store.close()

    async def _run(self, operation: str, coro) -> OpResult:
        try:
            data = await coro
        except KilnError as e:
            if e.kind in (ErrorKind.UNCONFIRMED, ErrorKind.USER_REJECTED):
                logger.warning(
                    f"{operation} not completed: {e.message}",
                    extra={"context": {"error_kind": e.kind.value, **e.details}},
                )
            else:
                log_error(logger, e.kind.value, f"{operation} failed: {e.message}", operation=operation, details=e.details)
            return OpResult.from_error(e)
        return OpResult.ok(data)

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def stake(self, nft_id: Union[str, int]) -> OpResult:
        return await self._run("stake", self.staking.stake(nft_id))

    async def unstake(self, nft_id: Union[str, int]) -> OpResult:
        return await self._run("unstake", self.staking.unstake(nft_id))

    async def switch_chain(self, key: str) -> OpResult:
        return await self._run("switch_chain", self.chain_context.switch_chain(key))

    async def analyze_and_burn(
        self,
        selection: Sequence[Any],
        wallet_address: Optional[str] = None,
    ) -> OpResult:
        async def burn():
            return await self.burns.analyze_and_burn(parse_selection(selection), wallet_address)

        return await self._run("analyze_and_burn", burn())

    async def recover_missing(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]] = None,
    ) -> OpResult:
        return await self._run("recover_missing", self.reconciler.recover_missing(wallet_address, chain_keys))

    async def check_missing(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]] = None,
    ) -> OpResult:
        return await self._run("check_missing", self.reconciler.check_missing(wallet_address, chain_keys))

    async def stake_info(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]] = None,
        detailed: bool = False,
    ) -> OpResult:
        return await self._run("stake_info", self.reconciler.stake_info(wallet_address, chain_keys, detailed))

    async def stake_offchain(self, wallet_address: str, nft_id: str, rarity: Optional[str] = None) -> OpResult:
        return await self._run("stake_offchain", self.staking.stake_offchain(wallet_address, nft_id, rarity))

    async def unstake_offchain(self, wallet_address: str, nft_id: str) -> OpResult:
        return await self._run("unstake_offchain", self.staking.unstake_offchain(wallet_address, nft_id))

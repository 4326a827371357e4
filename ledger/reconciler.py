"""
ledger/reconciler.py - Repair drift between stake contracts and the ledger.

Only ever adds missing on-chain positions. Nothing is deleted or
overwritten. The active-position index decides what is missing: a token
staked on chain with no active ledger row is recovered, even when it was
recovered before and has since been unstaked and staked again. Running
recover_missing twice in a row changes nothing.

check_missing and stake_info are read-only.
"""

from datetime import datetime
from typing import Optional, Sequence

from chains.contracts import ChainReader
from chains.metadata import MetadataResolver
from chains.registry import ChainRegistry
from core.constants import ReconciliationOperation, StakingSource
from core.exceptions import KilnError, RPCUnavailableError, ValidationError
from core.logging import get_logger
from core.models import (
    ChainDescriptor,
    ChainStakeInfo,
    ReconciliationRecord,
    RecoveryReport,
    StakedTokenDetail,
    StakeInfoReport,
    StakePosition,
    daily_reward_for,
)
from core.time import from_unix, now_utc
from ledger.store import LedgerStore
from utils.validators import is_valid_address, onchain_nft_id, same_address

logger = get_logger(__name__)


def _require_wallet(wallet_address: str) -> None:
    if not is_valid_address(wallet_address):
        raise ValidationError(f"Invalid wallet address: {wallet_address!r}", details={"wallet_address": wallet_address})


class LedgerReconciler:
    """
    Usage:
        reconciler = LedgerReconciler(registry, reader, metadata, store)
        report = await reconciler.recover_missing("0xabc...")
        preview = await reconciler.check_missing("0xabc...")
    """

    def __init__(
        self,
        registry: ChainRegistry,
        reader: ChainReader,
        metadata: MetadataResolver,
        store: LedgerStore,
    ):
        self.registry = registry
        self.reader = reader
        self.metadata = metadata
        self.store = store

    def _chains(self, chain_keys: Optional[Sequence[str]]) -> list[ChainDescriptor]:
        if chain_keys is None:
            return self.registry.with_stake_contract()
        chains = [self.registry.get(key) for key in chain_keys]
        return [c for c in chains if c.contracts.stake_contract]

    async def recover_missing(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]] = None,
    ) -> RecoveryReport:
        """Insert ledger positions for tokens staked on chain but unknown to the ledger."""
        return await self._diff(wallet_address, chain_keys, apply=True)

    async def check_missing(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]] = None,
    ) -> RecoveryReport:
        """Same diff as recover_missing, listing missing ids without writing."""
        return await self._diff(wallet_address, chain_keys, apply=False)

    async def stake_info(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]] = None,
        detailed: bool = False,
    ) -> StakeInfoReport:
        """
        Staked token ids and pending rewards per chain, read from the stake contracts.

        With detailed=True each token also gets its metadata rarity, daily
        reward and whether the ledger has an active position for it.
        """
        _require_wallet(wallet_address)
        report = StakeInfoReport(wallet_address=wallet_address)
        for chain in self._chains(chain_keys):
            try:
                info = await self._chain_stake_info(chain, wallet_address, detailed)
            except RPCUnavailableError as e:
                logger.warning(f"Skipping {chain.key}: RPC unavailable", extra={"context": {"wallet": wallet_address}})
                report.skipped_chains[chain.key] = e.message
                continue
            report.chains[chain.key] = info
        return report

    async def _chain_stake_info(self, chain: ChainDescriptor, wallet: str, detailed: bool) -> ChainStakeInfo:
        token_ids, rewards = await self.reader.get_stake_info(chain, wallet)
        info = ChainStakeInfo(chain.key, chain.chain_id, list(token_ids), rewards)
        if not detailed or not token_ids:
            return info

        info.staked_at = await self._staked_at(chain, wallet)
        for token_id in token_ids:
            meta = await self.metadata.resolve(chain, token_id)
            existing = await self.store.get_active_position(onchain_nft_id(token_id))
            info.tokens.append(StakedTokenDetail(
                token_id=token_id,
                rarity=meta.rarity,
                daily_reward=daily_reward_for(meta.rarity),
                name=meta.name,
                image=meta.image,
                in_ledger=existing is not None and same_address(existing.wallet_address, wallet),
            ))
        return info

    async def _staked_at(self, chain: ChainDescriptor, wallet: str) -> Optional[datetime]:
        try:
            staker = await self.reader.get_staker(chain, wallet)
        except KilnError as e:
            logger.debug(f"No staker timestamp on {chain.key}: {e}")
            return None
        return from_unix(staker["time_of_last_update"])

    async def _diff(
        self,
        wallet_address: str,
        chain_keys: Optional[Sequence[str]],
        apply: bool,
    ) -> RecoveryReport:
        _require_wallet(wallet_address)
        report = RecoveryReport(wallet_address=wallet_address, dry_run=not apply)
        for chain in self._chains(chain_keys):
            try:
                await self._reconcile_chain(chain, wallet_address, report, apply)
            except RPCUnavailableError as e:
                logger.warning(
                    f"Skipping {chain.key}: RPC unavailable",
                    extra={"context": {"wallet": wallet_address, "failures": len(e.failures)}},
                )
                report.skipped_chains[chain.key] = e.message
                continue
            report.chains_checked.append(chain.key)

        if report.recovered or report.conflicts:
            logger.info(
                f"Reconciled {wallet_address}: {len(report.recovered)} recovered",
                extra={"context": report.to_dict()},
            )
        return report

    async def _reconcile_chain(
        self,
        chain: ChainDescriptor,
        wallet: str,
        report: RecoveryReport,
        apply: bool,
    ) -> None:
        staked_ids, _ = await self.reader.get_stake_info(chain, wallet)
        if not staked_ids:
            return

        staked_at = await self._staked_at(chain, wallet) if apply else None

        for token_id in staked_ids:
            nft_id = onchain_nft_id(token_id)
            existing = await self.store.get_active_position(nft_id)
            if existing is not None:
                if same_address(existing.wallet_address, wallet):
                    report.already_present.append(nft_id)
                else:
                    logger.warning(
                        f"{nft_id} is active for another wallet in the ledger",
                        extra={"context": {"chain_key": chain.key, "ledger_wallet": existing.wallet_address}},
                    )
                    report.conflicts.append(nft_id)
                continue

            report.missing.append(nft_id)
            if not apply:
                continue

            meta = await self.metadata.resolve(chain, token_id)
            position = StakePosition(
                wallet_address=wallet,
                nft_id=nft_id,
                source=StakingSource.ONCHAIN,
                rarity=meta.rarity,
                daily_reward=daily_reward_for(meta.rarity),
                staked_at=staked_at or now_utc(),
                chain_id=chain.chain_id,
            )
            record = ReconciliationRecord(
                nft_id=nft_id,
                operation=ReconciliationOperation.RECOVER_STAKE.value,
                wallet_address=wallet,
            )
            if await self.store.insert_recovered_position(position, record):
                report.recovered.append(nft_id)
                logger.info(
                    f"Recovered stake {nft_id} on {chain.key}",
                    extra={"context": {"rarity": meta.rarity, "metadata_resolved": meta.resolved}},
                )
            else:
                # lost a race with a concurrent insert
                report.already_present.append(nft_id)

"""
ledger/store.py - Off-chain ledger of stakes, collections, pools and burns.

Write transactions are serialised with an asyncio lock (SQLite allows one
writer). Pool claims additionally use compare-and-set on distributed so
they stay exactly-once across processes sharing the database.

Wallet addresses are stored lowercase.
"""

import asyncio
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from core.constants import BurnType, StakingSource
from core.exceptions import (
    AlreadyBurnedError,
    AlreadyStakedError,
    OwnershipMismatchError,
    PoolExhaustedError,
)
from core.logging import get_logger
from core.models import (
    BurnTransaction,
    CollectionItem,
    PoolEntry,
    ReconciliationRecord,
    StakePosition,
    normalize_rarity,
)
from core.time import ensure_utc, now_utc
from ledger.database import LedgerDatabase
from ledger.db_models import (
    BurnedToken,
    BurnTransactionRow,
    CollectionEntry,
    NFTPoolEntry,
    ReconciliationEntry,
    StakedNFT,
)

logger = get_logger(__name__)

# Retries when another writer wins the same pool row
MAX_CLAIM_ATTEMPTS = 16


def _wallet(address: str) -> str:
    return address.lower()


def _position(row: StakedNFT) -> StakePosition:
    return StakePosition(
        id=row.id,
        wallet_address=row.wallet_address,
        nft_id=row.nft_id,
        source=StakingSource(row.source),
        rarity=row.rarity,
        daily_reward=Decimal(row.daily_reward),
        staked_at=ensure_utc(row.staked_at),
        tx_hash=row.tx_hash,
        chain_id=row.chain_id,
        active=bool(row.active),
        unstaked_at=ensure_utc(row.unstaked_at),
    )


def _collection_item(row: CollectionEntry) -> CollectionItem:
    return CollectionItem(
        nft_id=row.nft_id,
        wallet_address=row.wallet_address,
        rarity=row.rarity,
        cid=row.cid,
        pool_entry_id=row.pool_entry_id,
        acquired_at=ensure_utc(row.acquired_at),
    )


def _pool_entry(row: NFTPoolEntry) -> PoolEntry:
    return PoolEntry(
        id=row.id,
        rarity=row.rarity,
        cid=row.cid,
        metadata_cid=row.metadata_cid,
        image_url=row.image_url,
        distributed=bool(row.distributed),
        distributed_to=row.distributed_to,
        distributed_at=ensure_utc(row.distributed_at),
    )


def _burn_transaction(row: BurnTransactionRow) -> BurnTransaction:
    return BurnTransaction(
        id=row.id,
        wallet_address=row.wallet_address,
        burned_nft_ids=list(row.burned_nft_ids or []),
        result_rarity=row.result_rarity,
        burn_type=BurnType(row.burn_type),
        tx_hash=row.tx_hash,
        tx_hashes=list(row.tx_hashes or []),
        networks=list(row.networks or []),
        result_nft_id=row.result_nft_id,
        pool_entry_id=row.pool_entry_id,
        created_at=ensure_utc(row.created_at),
    )


class LedgerStore:
    """
    Async ledger access.

    Usage:
        store = LedgerStore(LedgerDatabase("sqlite+aiosqlite:///data/kiln.db"))
        await store.init()
        position = await store.get_active_position("onchain_42")
    """

    def __init__(self, db: LedgerDatabase):
        self.db = db
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        await self.db.init_db()

    async def close(self) -> None:
        await self.db.dispose()

    # =========================================================================
    # STAKE POSITIONS
    # =========================================================================

    async def get_active_position(self, nft_id: str) -> Optional[StakePosition]:
        async with self.db.session() as session:
            row = await session.scalar(
                select(StakedNFT).where(StakedNFT.nft_id == nft_id, StakedNFT.active.is_(True))
            )
            return _position(row) if row else None

    async def list_positions(
        self,
        wallet_address: str,
        active_only: bool = True,
        source: Optional[StakingSource] = None,
    ) -> list[StakePosition]:
        stmt = select(StakedNFT).where(StakedNFT.wallet_address == _wallet(wallet_address))
        if active_only:
            stmt = stmt.where(StakedNFT.active.is_(True))
        if source is not None:
            stmt = stmt.where(StakedNFT.source == source.value)
        async with self.db.session() as session:
            rows = (await session.scalars(stmt.order_by(StakedNFT.id))).all()
            return [_position(r) for r in rows]

    async def position_history(self, nft_id: str) -> list[StakePosition]:
        async with self.db.session() as session:
            rows = (await session.scalars(
                select(StakedNFT).where(StakedNFT.nft_id == nft_id).order_by(StakedNFT.id)
            )).all()
            return [_position(r) for r in rows]

    def _position_row(self, position: StakePosition) -> StakedNFT:
        return StakedNFT(
            wallet_address=_wallet(position.wallet_address),
            nft_id=position.nft_id,
            source=position.source.value,
            rarity=position.rarity,
            daily_reward=str(position.daily_reward),
            staked_at=position.staked_at,
            tx_hash=position.tx_hash,
            chain_id=position.chain_id,
            active=True,
        )

    async def insert_position(self, position: StakePosition) -> StakePosition:
        """
        Insert an active position.

        Raises:
            AlreadyStakedError: an active position exists for nft_id
        """
        async with self._write_lock:
            async with self.db.session() as session:
                row = self._position_row(position)
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise AlreadyStakedError(
                        f"{position.nft_id} already has an active stake position",
                        details={"nft_id": position.nft_id},
                    ) from e
                return _position(row)

    async def deactivate_position(self, nft_id: str, wallet_address: Optional[str] = None) -> Optional[StakePosition]:
        """Mark the active position inactive. Returns None when there is none."""
        async with self._write_lock:
            async with self.db.session() as session:
                stmt = select(StakedNFT).where(StakedNFT.nft_id == nft_id, StakedNFT.active.is_(True))
                if wallet_address:
                    stmt = stmt.where(StakedNFT.wallet_address == _wallet(wallet_address))
                row = await session.scalar(stmt)
                if row is None:
                    return None
                row.active = False
                row.unstaked_at = now_utc()
                await session.commit()
                return _position(row)

    # =========================================================================
    # COLLECTION
    # =========================================================================

    async def add_collection_item(self, item: CollectionItem) -> CollectionItem:
        async with self._write_lock:
            async with self.db.session() as session:
                row = CollectionEntry(
                    nft_id=item.nft_id,
                    wallet_address=_wallet(item.wallet_address),
                    rarity=normalize_rarity(item.rarity),
                    cid=item.cid,
                    pool_entry_id=item.pool_entry_id,
                    acquired_at=item.acquired_at or now_utc(),
                )
                session.add(row)
                await session.commit()
                return _collection_item(row)

    async def get_collection(self, wallet_address: str) -> list[CollectionItem]:
        async with self.db.session() as session:
            rows = (await session.scalars(
                select(CollectionEntry)
                .where(CollectionEntry.wallet_address == _wallet(wallet_address))
                .order_by(CollectionEntry.id)
            )).all()
            return [_collection_item(r) for r in rows]

    async def get_collection_item(self, nft_id: str) -> Optional[CollectionItem]:
        async with self.db.session() as session:
            row = await session.scalar(select(CollectionEntry).where(CollectionEntry.nft_id == nft_id))
            return _collection_item(row) if row else None

    async def missing_from_collection(self, wallet_address: str, nft_ids: Sequence[str]) -> list[str]:
        """Ids from nft_ids that the wallet's collection does not hold."""
        if not nft_ids:
            return []
        async with self.db.session() as session:
            held = set((await session.scalars(
                select(CollectionEntry.nft_id).where(
                    CollectionEntry.wallet_address == _wallet(wallet_address),
                    CollectionEntry.nft_id.in_(list(nft_ids)),
                )
            )).all())
        return [n for n in nft_ids if n not in held]

    # =========================================================================
    # POOL
    # =========================================================================

    async def add_pool_entries(self, entries: Iterable[dict]) -> int:
        """Seed pool rows from dicts with rarity, cid and optional extras."""
        async with self._write_lock:
            async with self.db.session() as session:
                rows = [
                    NFTPoolEntry(
                        rarity=normalize_rarity(e["rarity"]),
                        cid=e["cid"],
                        metadata_cid=e.get("metadata_cid"),
                        image_url=e.get("image_url"),
                        distributed=False,
                    )
                    for e in entries
                ]
                session.add_all(rows)
                await session.commit()
                return len(rows)

    async def available_pool_count(self, rarity: str) -> int:
        async with self.db.session() as session:
            count = await session.scalar(
                select(func.count(NFTPoolEntry.id)).where(
                    NFTPoolEntry.rarity == normalize_rarity(rarity),
                    NFTPoolEntry.distributed.is_(False),
                )
            )
            return int(count or 0)

    async def get_pool_entry(self, entry_id: int) -> Optional[PoolEntry]:
        async with self.db.session() as session:
            row = await session.get(NFTPoolEntry, entry_id)
            return _pool_entry(row) if row else None

    async def _claim_pool_entry(self, session, rarity: str, wallet_address: str) -> NFTPoolEntry:
        rarity = normalize_rarity(rarity)
        for _ in range(MAX_CLAIM_ATTEMPTS):
            candidate_id = await session.scalar(
                select(NFTPoolEntry.id)
                .where(NFTPoolEntry.rarity == rarity, NFTPoolEntry.distributed.is_(False))
                .order_by(NFTPoolEntry.id)
                .limit(1)
            )
            if candidate_id is None:
                raise PoolExhaustedError(
                    f"No {rarity} pool entries left",
                    details={"rarity": rarity},
                )
            result = await session.execute(
                update(NFTPoolEntry)
                .where(NFTPoolEntry.id == candidate_id, NFTPoolEntry.distributed.is_(False))
                .values(distributed=True, distributed_to=_wallet(wallet_address), distributed_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return await session.get(NFTPoolEntry, candidate_id)
        raise PoolExhaustedError(
            f"Could not claim a {rarity} pool entry after {MAX_CLAIM_ATTEMPTS} attempts",
            details={"rarity": rarity},
        )

    # =========================================================================
    # BURNS
    # =========================================================================

    async def find_burned(self, keys: Sequence[tuple[str, str]]) -> list[str]:
        """Already-burned nft_ids among (nft_id, chain_key) pairs."""
        if not keys:
            return []
        wanted = {(n, c or "") for n, c in keys}
        async with self.db.session() as session:
            rows = (await session.execute(
                select(BurnedToken.nft_id, BurnedToken.chain_key).where(
                    BurnedToken.nft_id.in_([n for n, _ in wanted])
                )
            )).all()
        return sorted({n for n, c in rows if (n, c) in wanted})

    async def commit_burn(
        self,
        wallet_address: str,
        burned: Sequence[tuple[str, str]],
        offchain_ids: Sequence[str],
        result_rarity: str,
        burn_type: BurnType,
        tx_hashes: Sequence[str] = (),
        networks: Sequence[str] = (),
    ) -> tuple[BurnTransaction, CollectionItem]:
        """
        Allocate the upgrade and record the burn in one transaction.

        Claims a pool entry (compare-and-set), writes the burn log and the
        burned-token rows, removes burned off-chain items from the wallet's
        collection and inserts the upgraded item.

        Args:
            burned: (nft_id, chain_key) for every burned item; chain_key "" off-chain

        Raises:
            PoolExhaustedError: no entry left for result_rarity
            AlreadyBurnedError: an id was burned concurrently
            OwnershipMismatchError: an off-chain id left the collection meanwhile
        """
        wallet = _wallet(wallet_address)
        async with self._write_lock:
            async with self.db.session() as session:
                try:
                    pool_row = await self._claim_pool_entry(session, result_rarity, wallet)

                    burn_row = BurnTransactionRow(
                        wallet_address=wallet,
                        burned_nft_ids=[n for n, _ in burned],
                        result_rarity=normalize_rarity(result_rarity),
                        burn_type=burn_type.value,
                        tx_hash=tx_hashes[0] if tx_hashes else None,
                        tx_hashes=list(tx_hashes),
                        networks=list(networks),
                        pool_entry_id=pool_row.id,
                    )
                    session.add(burn_row)
                    await session.flush()

                    session.add_all([
                        BurnedToken(
                            nft_id=nft_id,
                            chain_key=chain_key or "",
                            burn_transaction_id=burn_row.id,
                            wallet_address=wallet,
                        )
                        for nft_id, chain_key in burned
                    ])
                    await session.flush()

                    if offchain_ids:
                        removed = await session.execute(
                            delete(CollectionEntry)
                            .where(
                                CollectionEntry.wallet_address == wallet,
                                CollectionEntry.nft_id.in_(list(offchain_ids)),
                            )
                            .execution_options(synchronize_session=False)
                        )
                        if removed.rowcount != len(set(offchain_ids)):
                            raise OwnershipMismatchError(
                                "Off-chain burn inputs are no longer in the collection",
                                details={"nft_ids": list(offchain_ids)},
                            )

                    result_item = CollectionEntry(
                        nft_id=f"upgrade_{burn_row.id}",
                        wallet_address=wallet,
                        rarity=pool_row.rarity,
                        cid=pool_row.cid,
                        pool_entry_id=pool_row.id,
                        acquired_at=now_utc(),
                    )
                    session.add(result_item)
                    burn_row.result_nft_id = result_item.nft_id

                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    already = await self.find_burned(burned)
                    raise AlreadyBurnedError(already or [n for n, _ in burned]) from e
                except (PoolExhaustedError, OwnershipMismatchError):
                    await session.rollback()
                    raise

                logger.info(
                    f"Burn committed: {len(burned)} -> {burn_row.result_rarity}",
                    extra={"context": {"burn_id": burn_row.id, "pool_entry_id": pool_row.id, "wallet": wallet}},
                )
                return _burn_transaction(burn_row), _collection_item(result_item)

    async def get_burn_transactions(self, wallet_address: str) -> list[BurnTransaction]:
        async with self.db.session() as session:
            rows = (await session.scalars(
                select(BurnTransactionRow)
                .where(BurnTransactionRow.wallet_address == _wallet(wallet_address))
                .order_by(BurnTransactionRow.id)
            )).all()
            return [_burn_transaction(r) for r in rows]

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def has_reconciliation(self, idempotency_key: str) -> bool:
        async with self.db.session() as session:
            found = await session.scalar(
                select(ReconciliationEntry.id).where(ReconciliationEntry.idempotency_key == idempotency_key)
            )
            return found is not None

    async def insert_recovered_position(self, position: StakePosition, record: ReconciliationRecord) -> bool:
        """
        Insert a recovered position unless one is already active.

        The active-position index is the guard: a token recovered before,
        then unstaked and staked again, is recovered again and its repair
        record is re-applied rather than duplicated.

        Returns False, changing nothing, when the position is already active.
        """
        async with self._write_lock:
            async with self.db.session() as session:
                exists = await session.scalar(
                    select(StakedNFT.id).where(StakedNFT.nft_id == position.nft_id, StakedNFT.active.is_(True))
                )
                if exists is not None:
                    return False
                session.add(self._position_row(position))

                entry = await session.scalar(
                    select(ReconciliationEntry).where(ReconciliationEntry.idempotency_key == record.idempotency_key)
                )
                if entry is None:
                    session.add(ReconciliationEntry(
                        idempotency_key=record.idempotency_key,
                        nft_id=record.nft_id,
                        operation=record.operation,
                        wallet_address=_wallet(record.wallet_address),
                    ))
                else:
                    entry.wallet_address = _wallet(record.wallet_address)
                    entry.applied_count = (entry.applied_count or 1) + 1
                    entry.last_applied_at = now_utc()
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return True

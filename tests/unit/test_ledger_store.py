# PATH: tests/unit/test_ledger_store.py
"""
Tests for the SQLAlchemy-backed ledger store.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from core.constants import BurnType, StakingSource
from core.exceptions import AlreadyBurnedError, AlreadyStakedError, OwnershipMismatchError, PoolExhaustedError
from core.models import CollectionItem, ReconciliationRecord, StakePosition
from ledger.db_models import ReconciliationEntry
from tests.fakes import OTHER_WALLET, WALLET


def position(nft_id="onchain_42", wallet=WALLET, source=StakingSource.ONCHAIN):
    return StakePosition(
        wallet_address=wallet,
        nft_id=nft_id,
        source=source,
        rarity="Common",
        daily_reward=Decimal("0.1"),
        staked_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        tx_hash="0x" + "ab" * 32,
        chain_id=80002,
    )


class TestPositions:

    async def test_insert_and_read(self, store):
        saved = await store.insert_position(position(wallet="0xABCDEF1234567890ABCDEF1234567890ABCDEF12"))
        assert saved.id is not None
        assert saved.wallet_address == "0xabcdef1234567890abcdef1234567890abcdef12"

        loaded = await store.get_active_position("onchain_42")
        assert loaded.daily_reward == Decimal("0.1")
        assert loaded.staked_at.tzinfo is not None

    async def test_one_active_position_per_nft(self, store):
        await store.insert_position(position())
        with pytest.raises(AlreadyStakedError):
            await store.insert_position(position(wallet=OTHER_WALLET))

    async def test_deactivate_keeps_history(self, store):
        await store.insert_position(position())
        deactivated = await store.deactivate_position("onchain_42")
        assert not deactivated.active
        assert deactivated.unstaked_at is not None

        await store.insert_position(position())
        history = await store.position_history("onchain_42")
        assert [p.active for p in history] == [False, True]

    async def test_deactivate_other_wallet_is_noop(self, store):
        await store.insert_position(position())
        assert await store.deactivate_position("onchain_42", OTHER_WALLET) is None
        assert await store.get_active_position("onchain_42") is not None

    async def test_list_positions_filters(self, store):
        await store.insert_position(position())
        await store.insert_position(position("nft_off", source=StakingSource.OFFCHAIN))
        offchain = await store.list_positions(WALLET, source=StakingSource.OFFCHAIN)
        assert [p.nft_id for p in offchain] == ["nft_off"]
        assert len(await store.list_positions(WALLET)) == 2


class TestBurnCommit:

    @pytest.fixture
    async def seeded(self, store):
        await store.add_pool_entries([{"rarity": "platinum", "cid": "Qm1"}])
        for nft_id in ("a", "b"):
            await store.add_collection_item(CollectionItem(nft_id, WALLET, "Common"))
        return store

    async def test_commit(self, seeded):
        burn, result = await seeded.commit_burn(
            WALLET,
            burned=[("a", ""), ("b", ""), ("onchain_1", "CHAIN_A")],
            offchain_ids=["a", "b"],
            result_rarity="Platinum",
            burn_type=BurnType.HYBRID,
            tx_hashes=["0x01"],
            networks=["CHAIN_A"],
        )
        assert burn.result_nft_id == result.nft_id
        assert result.rarity == "Platinum"
        assert result.cid == "Qm1"
        assert [i.nft_id for i in await seeded.get_collection(WALLET)] == [result.nft_id]

        entry = await seeded.get_pool_entry(result.pool_entry_id)
        assert entry.distributed
        assert entry.distributed_to == WALLET
        assert await seeded.find_burned([("onchain_1", "CHAIN_A"), ("onchain_1", "CHAIN_B")]) == ["onchain_1"]

    async def test_concurrent_commits_claim_once(self, seeded):
        async def burn(ids):
            return await seeded.commit_burn(
                WALLET, burned=[(n, "") for n in ids], offchain_ids=ids,
                result_rarity="Platinum", burn_type=BurnType.OFFCHAIN,
            )

        await seeded.add_collection_item(CollectionItem("c", WALLET, "Common"))
        results = await asyncio.gather(burn(["a", "b"]), burn(["c"]), return_exceptions=True)

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert isinstance(failures[0], PoolExhaustedError)
        assert await seeded.available_pool_count("Platinum") == 0

    async def test_same_ids_burn_once(self, seeded):
        await seeded.add_pool_entries([{"rarity": "Platinum", "cid": "Qm2"}])

        async def burn():
            return await seeded.commit_burn(
                WALLET, burned=[("onchain_1", "CHAIN_A")], offchain_ids=[],
                result_rarity="Platinum", burn_type=BurnType.ONCHAIN,
            )

        results = await asyncio.gather(burn(), burn(), return_exceptions=True)
        assert sum(1 for r in results if isinstance(r, AlreadyBurnedError)) == 1
        assert await seeded.available_pool_count("Platinum") == 1
        assert len(await seeded.get_burn_transactions(WALLET)) == 1

    async def test_missing_offchain_input_rolls_back(self, seeded):
        with pytest.raises(OwnershipMismatchError):
            await seeded.commit_burn(
                WALLET, burned=[("a", ""), ("zzz", "")], offchain_ids=["a", "zzz"],
                result_rarity="Platinum", burn_type=BurnType.OFFCHAIN,
            )
        assert await seeded.available_pool_count("Platinum") == 1
        assert await seeded.find_burned([("a", "")]) == []
        assert len(await seeded.get_collection(WALLET)) == 2

    async def test_missing_from_collection(self, seeded):
        assert await seeded.missing_from_collection(WALLET, ["a", "x"]) == ["x"]
        assert await seeded.missing_from_collection(OTHER_WALLET, ["a"]) == ["a"]


class TestReconciliationRecords:

    async def test_insert_recovered_is_idempotent(self, store):
        record = ReconciliationRecord("onchain_42", "recover_stake", WALLET)
        assert await store.insert_recovered_position(position(), record)
        assert await store.has_reconciliation(record.idempotency_key)
        assert not await store.insert_recovered_position(position(), record)
        assert len(await store.position_history("onchain_42")) == 1

    async def test_recovered_again_after_deactivation(self, store):
        record = ReconciliationRecord("onchain_42", "recover_stake", WALLET)
        assert await store.insert_recovered_position(position(), record)
        await store.deactivate_position("onchain_42")

        assert await store.insert_recovered_position(position(), record)
        assert (await store.get_active_position("onchain_42")) is not None
        assert len(await store.position_history("onchain_42")) == 2
        async with store.db.session() as session:
            entry = await session.scalar(
                select(ReconciliationEntry).where(ReconciliationEntry.idempotency_key == record.idempotency_key)
            )
        assert entry.applied_count == 2

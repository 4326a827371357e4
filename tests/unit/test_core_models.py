# PATH: tests/unit/test_core_models.py
"""
Tests for core data models, errors and OpResult.
"""

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from core.constants import BurnStrategy, BurnType, ErrorKind, StakingSource, TxStatus
from core.exceptions import (
    AlreadyBurnedError,
    InsufficientBalanceError,
    KilnError,
    PartialBurnError,
    RPCUnavailableError,
    UnconfirmedError,
    UserRejectedError,
)
from core.models import (
    BurnAnalysis,
    BurnGroup,
    BurnRule,
    ReconciliationRecord,
    StakePosition,
    TxReceipt,
    daily_reward_for,
    normalize_rarity,
)
from core.result import OpResult


class TestRarity(unittest.TestCase):
    """Tests for rarity normalisation and reward rates."""

    def test_canonical_case_insensitive(self):
        self.assertEqual(normalize_rarity("common"), "Common")
        self.assertEqual(normalize_rarity("  GOLD "), "Gold")

    def test_aliases(self):
        self.assertEqual(normalize_rarity("Epic"), "Legendary")
        self.assertEqual(normalize_rarity("ultra   rare"), "Legendary")
        self.assertEqual(normalize_rarity("Super Rare"), "Rare")

    def test_unknown_preserved(self):
        self.assertEqual(normalize_rarity("MYTHIC"), "Mythic")
        self.assertEqual(normalize_rarity(None), "")

    def test_rewards(self):
        self.assertEqual(daily_reward_for("common"), Decimal("0.1"))
        self.assertEqual(daily_reward_for("Gold"), Decimal("30.0"))
        # unknown rarities earn the Rare rate
        self.assertEqual(daily_reward_for("mythic"), Decimal("0.4"))


class TestStakePosition(unittest.TestCase):

    def _position(self, source):
        return StakePosition(
            wallet_address="0x" + "1" * 40,
            nft_id="onchain_42" if source == StakingSource.ONCHAIN else "nft_abc",
            source=source,
            rarity="Common",
            daily_reward=Decimal("0.1"),
            staked_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    def test_token_id_only_for_onchain(self):
        self.assertEqual(self._position(StakingSource.ONCHAIN).token_id, 42)
        self.assertIsNone(self._position(StakingSource.OFFCHAIN).token_id)

    def test_to_dict(self):
        data = self._position(StakingSource.ONCHAIN).to_dict()
        self.assertEqual(data["source"], "onchain")
        self.assertEqual(data["daily_reward"], "0.1")
        self.assertIsNone(data["unstaked_at"])


class TestTxReceipt(unittest.TestCase):

    def test_from_rpc_confirmed(self):
        receipt = TxReceipt.from_rpc("0xabc", {"status": "0x1", "blockNumber": "0x10", "gasUsed": "0x5208"})
        self.assertTrue(receipt.confirmed)
        self.assertEqual(receipt.block_number, 16)
        self.assertEqual(receipt.gas_used, 21000)
        self.assertEqual(receipt.tx_hash, "0xabc")

    def test_from_rpc_reverted(self):
        receipt = TxReceipt.from_rpc("0xabc", {"status": "0x0"})
        self.assertEqual(receipt.status, TxStatus.REVERTED)
        self.assertFalse(receipt.confirmed)


class TestBurnModels(unittest.TestCase):

    RULE = BurnRule("Common", 5, "Platinum", tier=1)

    def test_rule_matches_normalised(self):
        self.assertTrue(self.RULE.matches("common", 5))
        self.assertFalse(self.RULE.matches("Common", 4))

    def test_burn_type_mapping(self):
        group = BurnGroup("Common")
        expected = {
            BurnStrategy.PURE_OFFCHAIN: BurnType.OFFCHAIN,
            BurnStrategy.PURE_ONCHAIN: BurnType.ONCHAIN,
            BurnStrategy.MIXED: BurnType.HYBRID,
        }
        for strategy, burn_type in expected.items():
            analysis = BurnAnalysis((group,), self.RULE, strategy)
            self.assertEqual(analysis.burn_type, burn_type)

    def test_reconciliation_key(self):
        record = ReconciliationRecord("onchain_42", "recover_stake", "0x" + "1" * 40)
        self.assertEqual(record.idempotency_key, "onchain_42:recover_stake")


class TestErrors(unittest.TestCase):
    """Every error carries exactly one ErrorKind."""

    def test_kinds(self):
        self.assertEqual(UserRejectedError("x").kind, ErrorKind.USER_REJECTED)
        self.assertEqual(RPCUnavailableError("x").kind, ErrorKind.RPC_UNAVAILABLE)
        self.assertEqual(KilnError("x").kind, ErrorKind.UNKNOWN)
        self.assertEqual(KilnError("x", kind=ErrorKind.CHAIN_MISMATCH).kind, ErrorKind.CHAIN_MISMATCH)

    def test_str_includes_kind(self):
        self.assertEqual(str(UserRejectedError("nope")), "[USER_REJECTED] nope")

    def test_already_burned_sorted(self):
        error = AlreadyBurnedError(["b", "a"])
        self.assertEqual(error.details["nft_ids"], ["a", "b"])

    def test_insufficient_balance_names_chains(self):
        error = InsufficientBalanceError(["CHAIN_B"], details={"required_wei": 1})
        self.assertEqual(error.details["chains"], ["CHAIN_B"])
        self.assertIn("CHAIN_B", error.message)

    def test_partial_burn_details(self):
        error = PartialBurnError("stopped", ["a"], ["b"], ["c"], cause=UserRejectedError("no"))
        self.assertEqual(error.details["cause_kind"], "USER_REJECTED")
        self.assertEqual(error.details["not_attempted"], ["c"])


class TestOpResult(unittest.TestCase):

    def test_ok(self):
        result = OpResult.ok({"a": 1})
        self.assertTrue(result.success)
        self.assertEqual(result.to_dict(), {"success": True, "data": {"a": 1}})

    def test_from_error(self):
        result = OpResult.from_error(UserRejectedError("no", details={"method": "eth_sendTransaction"}))
        self.assertFalse(result.success)
        self.assertEqual(result.to_dict()["error_kind"], "USER_REJECTED")
        self.assertEqual(result.details["method"], "eth_sendTransaction")

    def test_unconfirmed_is_pending(self):
        result = OpResult.from_error(UnconfirmedError("timeout", tx_hash="0xabc"))
        self.assertFalse(result.success)
        self.assertTrue(result.is_pending)
        self.assertEqual(result.details["tx_hash"], "0xabc")


if __name__ == "__main__":
    unittest.main()

# PATH: tests/unit/test_validators.py
"""
Tests for validation utilities.
"""

import unittest

from utils.validators import (
    clamp,
    is_onchain_nft_id,
    is_valid_address,
    is_valid_tx_hash,
    onchain_nft_id,
    parse_token_id,
    same_address,
)


class TestIsValidAddress(unittest.TestCase):
    """Tests for is_valid_address."""

    def test_valid_address(self):
        """Valid address returns True."""
        self.assertTrue(is_valid_address("0x1234567890abcdef1234567890abcdef12345678"))
        self.assertTrue(is_valid_address("0xABCDEF1234567890ABCDEF1234567890ABCDEF12"))

    def test_invalid_address_no_prefix(self):
        self.assertFalse(is_valid_address("1234567890abcdef1234567890abcdef12345678"))

    def test_invalid_address_wrong_length(self):
        self.assertFalse(is_valid_address("0x1234"))
        self.assertFalse(is_valid_address("0x" + "a" * 50))

    def test_non_string_input(self):
        self.assertFalse(is_valid_address(None))
        self.assertFalse(is_valid_address(123))

    def test_same_address_ignores_case(self):
        self.assertTrue(same_address("0xABCDEF1234567890ABCDEF1234567890ABCDEF12",
                                     "0xabcdef1234567890abcdef1234567890abcdef12"))
        self.assertFalse(same_address(None, None))


class TestTxHash(unittest.TestCase):

    def test_valid(self):
        self.assertTrue(is_valid_tx_hash("0x" + "ab" * 32))

    def test_invalid(self):
        self.assertFalse(is_valid_tx_hash("0x1234"))
        self.assertFalse(is_valid_tx_hash({"hash": "0x" + "ab" * 32}))


class TestTokenIds(unittest.TestCase):
    """Tests for token id parsing and ledger ids."""

    def test_encodings(self):
        self.assertEqual(parse_token_id(42), 42)
        self.assertEqual(parse_token_id("42"), 42)
        self.assertEqual(parse_token_id(" 0x2a "), 42)
        self.assertEqual(parse_token_id("onchain_42"), 42)

    def test_rejects_garbage(self):
        self.assertIsNone(parse_token_id(None))
        self.assertIsNone(parse_token_id(True))
        self.assertIsNone(parse_token_id(-1))
        self.assertIsNone(parse_token_id("forty-two"))

    def test_onchain_nft_id(self):
        self.assertEqual(onchain_nft_id("0x2a"), "onchain_42")
        self.assertEqual(onchain_nft_id("onchain_7"), "onchain_7")
        with self.assertRaises(ValueError):
            onchain_nft_id("nope")

    def test_is_onchain_nft_id(self):
        self.assertTrue(is_onchain_nft_id("onchain_1"))
        self.assertFalse(is_onchain_nft_id("nft_abc"))


class TestClamp(unittest.TestCase):

    def test_clamp(self):
        self.assertEqual(clamp(5, 0, 10), 5)
        self.assertEqual(clamp(-5, 0, 10), 0)
        self.assertEqual(clamp(15, 0, 10), 10)


if __name__ == "__main__":
    unittest.main()

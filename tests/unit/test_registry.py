# PATH: tests/unit/test_registry.py
"""
Tests for chain configuration and ChainRegistry.
"""

import unittest
from pathlib import Path

from chains.registry import ChainRegistry, parse_chain, resolve_endpoints
from core.exceptions import ConfigurationError, ValidationError

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class TestResolveEndpoints(unittest.TestCase):

    def test_placeholder_resolved(self):
        urls = resolve_endpoints(["https://x.test/v2/${API_KEY}"], {"API_KEY": "k"})
        self.assertEqual(urls, ("https://x.test/v2/k",))

    def test_unresolved_placeholder_dropped(self):
        urls = resolve_endpoints(["https://a.test", "https://x.test/v2/${API_KEY}", "https://b.test"], {})
        self.assertEqual(urls, ("https://a.test", "https://b.test"))

    def test_empty_value_counts_as_unresolved(self):
        self.assertEqual(resolve_endpoints(["https://x.test/${K}"], {"K": ""}), ())


class TestParseChain(unittest.TestCase):

    BASE = {
        "chain_id": 80002,
        "name": "Polygon Amoy Testnet",
        "native_currency": {"name": "MATIC", "symbol": "MATIC", "decimals": 18},
        "rpc_endpoints": ["https://rpc.test"],
        "contracts": {"nft_contract": "0x" + "a" * 40},
        "gas": {"ladder": [300000, 500000], "fallback_gas_price_gwei": 30, "min_balance_native": "0.01"},
    }

    def test_fields(self):
        chain = parse_chain("POLYGON_AMOY", self.BASE, {})
        self.assertEqual(chain.chain_id_hex, "0x13882")
        self.assertEqual(chain.gas_ladder, (300000, 500000))
        self.assertEqual(chain.fallback_gas_price_wei, 30 * 10**9)
        self.assertEqual(chain.min_gas_balance_wei, 10**16)
        self.assertIsNone(chain.contracts.stake_contract)
        self.assertEqual(chain.network, "polygon-amoy")

    def test_env_contract_override(self):
        stake = "0x" + "b" * 40
        chain = parse_chain("POLYGON_AMOY", self.BASE, {"KILN_POLYGON_AMOY_STAKE_CONTRACT": stake})
        self.assertEqual(chain.contracts.stake_contract, stake)

    def test_invalid_contract_rejected(self):
        data = {**self.BASE, "contracts": {"nft_contract": "0x123"}}
        with self.assertRaises(ConfigurationError):
            parse_chain("X", data, {})

    def test_descending_ladder_rejected(self):
        data = {**self.BASE, "gas": {"ladder": [500000, 300000]}}
        with self.assertRaises(ConfigurationError):
            parse_chain("X", data, {})

    def test_missing_chain_id(self):
        with self.assertRaises(ConfigurationError):
            parse_chain("X", {"name": "x"}, {})

    def test_add_chain_params(self):
        params = parse_chain("POLYGON_AMOY", self.BASE, {}).add_chain_params()
        self.assertEqual(params["chainId"], "0x13882")
        self.assertEqual(params["rpcUrls"], ["https://rpc.test"])
        self.assertEqual(params["nativeCurrency"]["symbol"], "MATIC")


class TestChainRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = ChainRegistry.from_config(CONFIG_DIR, env={})

    def test_shipped_config_loads(self):
        self.assertEqual(self.registry.default_key, "POLYGON_AMOY")
        self.assertIn("SEPOLIA", self.registry)
        self.assertGreaterEqual(len(self.registry), 7)

    def test_lookup_by_chain_id(self):
        self.assertEqual(self.registry.by_chain_id(11155111).key, "SEPOLIA")
        self.assertIsNone(self.registry.by_chain_id(1))

    def test_unknown_key(self):
        with self.assertRaises(ValidationError):
            self.registry.get("NOPE")

    def test_alchemy_endpoint_dropped_without_key(self):
        amoy = self.registry.get("POLYGON_AMOY")
        self.assertFalse(any("${" in url for url in amoy.rpc_endpoints))
        self.assertFalse(any("alchemy" in url for url in amoy.rpc_endpoints))

    def test_alchemy_endpoint_kept_with_key(self):
        registry = ChainRegistry.from_config(CONFIG_DIR, env={"ALCHEMY_API_KEY": "secret"})
        amoy = registry.get("POLYGON_AMOY")
        self.assertTrue(amoy.rpc_endpoints[-1].endswith("/secret"))

    def test_with_stake_contract(self):
        keys = [c.key for c in self.registry.with_stake_contract()]
        self.assertIn("POLYGON_AMOY", keys)

    def test_duplicate_chain_rejected(self):
        amoy = self.registry.get("POLYGON_AMOY")
        with self.assertRaises(ConfigurationError):
            ChainRegistry([amoy, amoy])

    def test_unknown_default_rejected(self):
        with self.assertRaises(ConfigurationError):
            ChainRegistry([self.registry.get("SEPOLIA")], "POLYGON_AMOY")


if __name__ == "__main__":
    unittest.main()

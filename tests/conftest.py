# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for Kiln tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from burn.orchestrator import BurnOrchestrator  # noqa: E402
from burn.rules import load_rules  # noqa: E402
from chains.context import ChainContext, ChainSelectionStore  # noqa: E402
from chains.contracts import ChainReader  # noqa: E402
from chains.metadata import MetadataResolver  # noqa: E402
from chains.providers import RPCFailoverClient  # noqa: E402
from chains.registry import ChainRegistry  # noqa: E402
from chains.wallet import ProviderResolver  # noqa: E402
from core.retry import PRECHECK_POLICY, RetryPolicy  # noqa: E402
from ledger.database import LedgerDatabase  # noqa: E402
from ledger.reconciler import LedgerReconciler  # noqa: E402
from ledger.store import LedgerStore  # noqa: E402
from staking.gas import GasPlanner  # noqa: E402
from staking.orchestrator import StakeOrchestrator  # noqa: E402
from staking.transactions import TransactionSender  # noqa: E402
from tests.fakes import ONE_ETH, WALLET, FakeNetwork, FakeWallet, make_chain, no_sleep  # noqa: E402

CHAIN_A_ID = 1001
CHAIN_B_ID = 1002


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def chain_a():
    return make_chain("CHAIN_A", CHAIN_A_ID, ["a1.rpc.test", "a2.rpc.test", "a3.rpc.test"], index=1)


@pytest.fixture
def chain_b():
    return make_chain("CHAIN_B", CHAIN_B_ID, ["b1.rpc.test", "b2.rpc.test"], index=2)


@pytest.fixture
def network(chain_a, chain_b):
    net = FakeNetwork()
    for descriptor in (chain_a, chain_b):
        net.add(descriptor).fund(WALLET, ONE_ETH)
    return net


@pytest.fixture
def fake_a(network):
    return network.chain(CHAIN_A_ID)


@pytest.fixture
def fake_b(network):
    return network.chain(CHAIN_B_ID)


@pytest.fixture
def registry(chain_a, chain_b):
    return ChainRegistry([chain_a, chain_b], "CHAIN_A")


@pytest.fixture
def wallet(network):
    return FakeWallet(network, CHAIN_A_ID)


@pytest.fixture
def rpc(network):
    return RPCFailoverClient(transport=network.transport, sleep=no_sleep)


@pytest.fixture
def reader(rpc):
    return ChainReader(rpc, policy=PRECHECK_POLICY)


@pytest.fixture
def context(registry, wallet, tmp_path):
    return ChainContext(
        registry,
        ProviderResolver([wallet]),
        ChainSelectionStore(tmp_path / "selected_chain.json"),
    )


@pytest.fixture
def metadata(reader):
    return MetadataResolver(reader, "https://gateway.test/ipfs/")


@pytest.fixture
def gas(rpc):
    return GasPlanner(rpc, policy=PRECHECK_POLICY)


@pytest.fixture
def sender(rpc):
    return TransactionSender(rpc, confirmation_timeout=10, poll_interval=2, sleep=no_sleep)


@pytest.fixture
async def store(tmp_path):
    ledger = LedgerStore(LedgerDatabase(f"sqlite+aiosqlite:///{tmp_path / 'kiln.db'}"))
    await ledger.init()
    yield ledger
    await ledger.close()


@pytest.fixture
def stake_orchestrator(context, reader, gas, sender, store, metadata):
    return StakeOrchestrator(
        context, reader, gas, sender, store, metadata,
        approval_policy=RetryPolicy(attempts=3, base_delay=0.1),
        sleep=no_sleep,
    )


@pytest.fixture
def burn_orchestrator(context, reader, gas, sender, store):
    return BurnOrchestrator(context, reader, gas, sender, store, load_rules())


@pytest.fixture
def reconciler(registry, reader, metadata, store):
    return LedgerReconciler(registry, reader, metadata, store)

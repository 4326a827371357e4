# PATH: tests/unit/test_orchestrator_context.py
"""
Tests for the composition root and the OpResult surface.
"""

import pytest

from config.settings import KilnSettings
from core.constants import ErrorKind
from core.models import CollectionItem
from orchestrator import OrchestratorContext
from tests.fakes import WALLET, FakeNetwork, FakeWallet, no_sleep, write_config_dir


@pytest.fixture
def config_dir(tmp_path, chain_a, chain_b):
    return write_config_dir(tmp_path / "config", [chain_a, chain_b], "CHAIN_A")


@pytest.fixture
def settings(tmp_path):
    return KilnSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        selection_file=str(tmp_path / "selected_chain.json"),
        ipfs_gateway="https://gateway.test/ipfs/",
        confirmation_timeout_seconds=10,
    )


async def build(settings, config_dir, network, providers):
    return await OrchestratorContext.build(
        settings=settings,
        providers=providers,
        config_dir=config_dir,
        env={},
        transport=network.transport,
        sleep=no_sleep,
    )


@pytest.fixture
async def kiln(settings, config_dir, network, wallet):
    ctx = await build(settings, config_dir, network, [wallet])
    yield ctx
    await ctx.close()


class TestBuild:

    async def test_wiring(self, kiln):
        assert kiln.registry.keys == ["CHAIN_A", "CHAIN_B"]
        assert kiln.chain_context.get_current_chain().key == "CHAIN_A"
        assert len(kiln.burns.rules) == 5
        assert kiln.staking.store is kiln.store is kiln.burns.store

    async def test_phantom_impostor_ignored(self, settings, config_dir, network):
        impostor = FakeWallet(network, 1001, flags=("metamask", "phantom"))
        real = FakeWallet(network, 1001)
        ctx = await build(settings, config_dir, network, [impostor, real])
        try:
            assert ctx.chain_context.signer().provider is real
        finally:
            await ctx.close()


class TestOperations:

    async def test_stake_then_duplicate(self, kiln, wallet, fake_a):
        fake_a.mint(42, WALLET)

        first = await kiln.stake("42")
        assert first.success
        assert first.to_dict()["data"]["position"]["nft_id"] == "onchain_42"

        sent = len(wallet.sent)
        second = await kiln.stake("42")
        assert not second.success
        assert second.error_kind == ErrorKind.ALREADY_STAKED
        assert len(wallet.sent) == sent

    async def test_user_rejection_is_a_result(self, kiln, wallet, fake_a):
        fake_a.mint(42, WALLET)
        wallet.reject_methods.add("eth_sendTransaction")

        result = await kiln.stake(42)
        assert result.error_kind == ErrorKind.USER_REJECTED
        assert result.to_dict()["success"] is False

    async def test_no_provider(self, settings, config_dir, network, fake_a):
        fake_a.mint(42, WALLET)
        ctx = await build(settings, config_dir, network, [])
        try:
            result = await ctx.stake(42)
        finally:
            await ctx.close()
        assert result.error_kind == ErrorKind.PROVIDER_UNAVAILABLE

    async def test_switch_chain(self, kiln, wallet):
        result = await kiln.switch_chain("CHAIN_B")
        assert result.success
        assert result.data.key == "CHAIN_B"
        assert wallet.chain_id == 1002

        unknown = await kiln.switch_chain("NOPE")
        assert unknown.error_kind == ErrorKind.VALIDATION_ERROR

    async def test_burn_payload_validation(self, kiln):
        result = await kiln.analyze_and_burn([{"nft_id": "a", "rarity": "Common", "source": "offchain"}], WALLET)
        assert result.error_kind == ErrorKind.VALIDATION_ERROR
        assert result.details["required_counts"] == [5]

    async def test_offchain_burn_from_payload(self, kiln):
        await kiln.store.add_pool_entries([{"rarity": "Platinum", "cid": "QmP"}])
        for nft_id in "abcde":
            await kiln.store.add_collection_item(CollectionItem(nft_id, WALLET, "Common"))

        selection = [{"nft_id": n, "rarity": "common", "source": "offchain"} for n in "abcde"]
        result = await kiln.analyze_and_burn(selection, WALLET)
        assert result.success
        assert result.to_dict()["data"]["burn"]["burn_type"] == "offchain"

    async def test_recover_missing(self, kiln, fake_a):
        fake_a.mint(9, WALLET)
        fake_a.stake_directly(WALLET, 9)

        result = await kiln.recover_missing(WALLET)
        assert result.success
        assert result.data.recovered == ["onchain_9"]

    async def test_check_missing(self, kiln, fake_a):
        fake_a.stake_directly(WALLET, 9)

        result = await kiln.check_missing(WALLET)
        assert result.success
        assert result.to_dict()["data"]["missing"] == ["onchain_9"]
        assert await kiln.store.get_active_position("onchain_9") is None

    async def test_stake_info(self, kiln, fake_a):
        fake_a.stake_directly(WALLET, 9)
        fake_a.rewards[WALLET.lower()] = 12345

        result = await kiln.stake_info(WALLET)
        assert result.success
        chain = result.to_dict()["data"]["chains"]["CHAIN_A"]
        assert chain["nft_ids"] == ["onchain_9"]
        assert chain["pending_rewards"] == "12345"

    async def test_stake_info_invalid_wallet(self, kiln):
        result = await kiln.stake_info("nope")
        assert not result.success
        assert result.error_kind == ErrorKind.VALIDATION_ERROR

    async def test_offchain_stake_cycle(self, kiln):
        await kiln.store.add_collection_item(CollectionItem("nft_x", WALLET, "Gold"))

        staked = await kiln.stake_offchain(WALLET, "nft_x")
        assert staked.success
        assert staked.data.rarity == "Gold"

        unstaked = await kiln.unstake_offchain(WALLET, "nft_x")
        assert unstaked.success
        assert unstaked.data.active is False

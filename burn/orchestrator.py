"""
burn/orchestrator.py - Burn-to-upgrade execution.

Flow for analyze_and_burn:
  analyse -> duplicate-burn check -> collection check -> pool precheck
  -> per-chain gas + ownership prechecks (all chains, before any transfer)
  -> chain-by-chain transfers to the burn address
  -> one atomic ledger commit (pool claim, burn log, collection update)

A burn split across chains has no compensating rollback. When a transfer
fails after others landed, the caller gets PARTIAL_BURN and nothing is
committed to the ledger.
"""

from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional, Sequence

from burn.rules import analyze_selection
from chains import abi
from chains.context import ChainContext
from chains.contracts import ChainReader, nft_contract_of
from chains.wallet import WalletSigner
from core.constants import BURN_ADDRESS, DEFAULT_GAS_BUFFER, StakingSource
from core.exceptions import (
    AlreadyBurnedError,
    InsufficientBalanceError,
    KilnError,
    OwnershipMismatchError,
    PartialBurnError,
    PoolExhaustedError,
    RPCUnavailableError,
    ValidationError,
)
from core.logging import get_logger
from core.models import (
    BurnAnalysis,
    BurnItem,
    BurnRule,
    BurnTransaction,
    ChainDescriptor,
    CollectionItem,
)
from ledger.store import LedgerStore
from staking.gas import GasPlanner
from staking.transactions import TransactionSender
from utils.validators import same_address

logger = get_logger(__name__)


@dataclass
class BurnOutcome:
    analysis: BurnAnalysis
    burn: BurnTransaction
    result: CollectionItem
    unverified_chains: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis": self.analysis.to_dict(),
            "burn": self.burn.to_dict(),
            "result": self.result.to_dict(),
            "unverified_chains": list(self.unverified_chains),
        }


def chains_in_order(items: Sequence[BurnItem]) -> dict[str, list[BurnItem]]:
    """On-chain items grouped by chain, in first-appearance order."""
    grouped: dict[str, list[BurnItem]] = {}
    for item in items:
        if item.source == StakingSource.ONCHAIN:
            grouped.setdefault(item.chain_key, []).append(item)
    return grouped


class BurnOrchestrator:
    """
    Validate, execute and record burns.

    Usage:
        burner = BurnOrchestrator(context, reader, gas, sender, store, rules)
        outcome = await burner.analyze_and_burn(selection)
    """

    def __init__(
        self,
        context: ChainContext,
        reader: ChainReader,
        gas: GasPlanner,
        sender: TransactionSender,
        store: LedgerStore,
        rules: Sequence[BurnRule],
    ):
        self.context = context
        self.reader = reader
        self.gas = gas
        self.sender = sender
        self.store = store
        self.rules = tuple(rules)

    def analyze(self, selection: Sequence[BurnItem]) -> BurnAnalysis:
        return analyze_selection(selection, self.rules)

    async def analyze_and_burn(
        self,
        selection: Sequence[BurnItem],
        wallet_address: Optional[str] = None,
    ) -> BurnOutcome:
        """
        Burn the selection and allocate the upgraded NFT.

        Raises:
            ValidationError: selection matches no rule, or contains staked items
            AlreadyBurnedError: an id was consumed by an earlier burn
            OwnershipMismatchError: an input is not held by the wallet
            PoolExhaustedError: no result artifact left
            InsufficientBalanceError: some chain lacks gas money (details["chains"])
            PartialBurnError: transfers stopped after some tokens were burned
        """
        analysis = self.analyze(selection)
        items = analysis.items
        rule = analysis.rule
        await self._reject_staked(items)

        burned_before = await self.store.find_burned([(i.nft_id, self._chain_key(i)) for i in items])
        if burned_before:
            raise AlreadyBurnedError(burned_before)

        by_chain = chains_in_order(items)
        offchain_ids = [i.nft_id for i in items if i.source == StakingSource.OFFCHAIN]
        wallet = await self._resolve_wallet(wallet_address, needs_signer=bool(by_chain))

        missing = await self.store.missing_from_collection(wallet, offchain_ids)
        if missing:
            raise OwnershipMismatchError(
                f"Not in this wallet's collection: {', '.join(missing)}",
                details={"nft_ids": missing, "wallet": wallet},
            )

        if await self.store.available_pool_count(rule.result_rarity) < 1:
            raise PoolExhaustedError(
                f"No {rule.result_rarity} pool entries left",
                details={"rarity": rule.result_rarity},
            )

        chains = {key: self.context.registry.get(key) for key in by_chain}
        unverified = await self._precheck_balances(wallet, list(chains.values()))
        await self._precheck_ownership(wallet, chains, by_chain)

        tx_hashes: list[str] = []
        if by_chain:
            tx_hashes = await self._execute(wallet, chains, by_chain)

        try:
            burn, result = await self.store.commit_burn(
                wallet,
                burned=[(i.nft_id, self._chain_key(i)) for i in items],
                offchain_ids=offchain_ids,
                result_rarity=rule.result_rarity,
                burn_type=analysis.burn_type,
                tx_hashes=tx_hashes,
                networks=list(by_chain),
            )
        except KilnError as e:
            if tx_hashes:
                # tokens are gone on chain but the ledger has no record of it
                logger.error(
                    f"Ledger commit failed after on-chain burns: {e.message}",
                    extra={"context": {"wallet": wallet, "tx_hashes": tx_hashes, "error_kind": e.kind.value}},
                )
            raise

        logger.info(
            f"Burned {len(items)} {analysis.group.rarity} -> {rule.result_rarity}",
            extra={"context": {
                "burn_id": burn.id,
                "strategy": analysis.strategy.value,
                "networks": list(by_chain),
                "result_nft_id": result.nft_id,
            }},
        )
        return BurnOutcome(analysis, burn, result, unverified)

    # =========================================================================
    # PRECHECKS
    # =========================================================================

    @staticmethod
    def _chain_key(item: BurnItem) -> str:
        if item.source == StakingSource.ONCHAIN:
            return item.chain_key or ""
        return ""

    async def _reject_staked(self, items: Sequence[BurnItem]) -> None:
        staked = [i.nft_id for i in items if i.staked]
        for item in items:
            if item.nft_id not in staked and await self.store.get_active_position(item.nft_id):
                staked.append(item.nft_id)
        if staked:
            raise ValidationError(
                f"Staked NFTs cannot be burned, unstake first: {', '.join(sorted(staked))}",
                details={"nft_ids": sorted(staked)},
            )

    async def _resolve_wallet(self, wallet_address: Optional[str], needs_signer: bool) -> str:
        if not needs_signer:
            if not wallet_address:
                raise ValidationError("wallet_address is required for off-chain burns")
            return wallet_address

        account = await self.context.signer().get_account()
        if wallet_address and not same_address(wallet_address, account):
            raise OwnershipMismatchError(
                "Connected wallet differs from the burning wallet",
                details={"wallet": wallet_address, "account": account},
            )
        return account

    async def _precheck_balances(self, wallet: str, chains: Sequence[ChainDescriptor]) -> list[str]:
        """
        Check native gas balance on every chain. Returns unverifiable chain keys.

        Raises:
            InsufficientBalanceError: naming every chain below its minimum
        """
        short: list[str] = []
        balances: dict[str, int] = {}
        unverified: list[str] = []
        for chain in chains:
            try:
                balance = await self.reader.native_balance(chain, wallet)
            except RPCUnavailableError as e:
                logger.warning(
                    f"Gas balance on {chain.key} is unverifiable, continuing",
                    extra={"context": {"chain_key": chain.key, "error": e.message}},
                )
                unverified.append(chain.key)
                continue
            balances[chain.key] = balance
            if balance < chain.min_gas_balance_wei:
                short.append(chain.key)

        if short:
            raise InsufficientBalanceError(
                short,
                details={
                    "balances_wei": {k: balances[k] for k in short},
                    "required_wei": {c.key: c.min_gas_balance_wei for c in chains if c.key in short},
                },
            )
        return unverified

    async def _precheck_ownership(
        self,
        wallet: str,
        chains: dict[str, ChainDescriptor],
        by_chain: dict[str, list[BurnItem]],
    ) -> None:
        foreign: list[str] = []
        for key, chain_items in by_chain.items():
            for item in chain_items:
                try:
                    owner = await self.reader.owner_of(chains[key], item.token_id)
                except RPCUnavailableError:
                    # Re-verified right before the transfer
                    continue
                if not same_address(owner, wallet):
                    foreign.append(item.nft_id)
        if foreign:
            raise OwnershipMismatchError(
                f"Not owned by this wallet: {', '.join(foreign)}",
                details={"nft_ids": foreign, "wallet": wallet},
            )

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _execute(
        self,
        wallet: str,
        chains: dict[str, ChainDescriptor],
        by_chain: dict[str, list[BurnItem]],
    ) -> list[str]:
        ordered = [item for chain_items in by_chain.values() for item in chain_items]
        burned: list[str] = []
        tx_hashes: list[str] = []

        async with self.context.operation_in_progress():
            for key, chain_items in by_chain.items():
                chain = chains[key]
                try:
                    if self.context.get_current_chain().key != key:
                        await self.context.switch_chain(key)
                    await self.context.ensure_wallet_on(chain)
                    signer = self.context.signer()
                except KilnError as e:
                    self._stop(e, ordered, burned, failed=None)

                for item in chain_items:
                    try:
                        tx_hash = await self._burn_one(signer, chain, wallet, item)
                    except KilnError as e:
                        self._stop(e, ordered, burned, failed=item.nft_id)
                    burned.append(item.nft_id)
                    if tx_hash:
                        tx_hashes.append(tx_hash)
        return tx_hashes

    async def _burn_one(self, signer: WalletSigner, chain: ChainDescriptor, wallet: str, item: BurnItem) -> str:
        owner = await self.reader.owner_of(chain, item.token_id)
        if not same_address(owner, wallet):
            raise OwnershipMismatchError(
                f"{item.nft_id} is no longer owned by this wallet",
                details={"nft_id": item.nft_id, "owner": owner, "chain_key": chain.key},
            )

        tx = {
            "from": wallet,
            "to": nft_contract_of(chain),
            "data": abi.encode_transfer_from(wallet, BURN_ADDRESS, item.token_id),
        }
        plan = await self.gas.plan(chain, tx, DEFAULT_GAS_BUFFER)
        receipt = await self.sender.send(
            signer,
            chain,
            plan.apply(tx),
            "burn",
            custody_check=lambda: self._owned_by_burn_address(chain, item.token_id),
        )
        return receipt.tx_hash

    async def _owned_by_burn_address(self, chain: ChainDescriptor, token_id: int) -> bool:
        return same_address(await self.reader.owner_of(chain, token_id), BURN_ADDRESS)

    @staticmethod
    def _stop(error: KilnError, ordered: Sequence[BurnItem], burned: list[str], failed: Optional[str]) -> NoReturn:
        """Raise the original error if nothing burned yet, else PARTIAL_BURN."""
        if not burned:
            raise error
        done = set(burned)
        failed_ids = [failed] if failed else []
        not_attempted = [i.nft_id for i in ordered if i.nft_id not in done and i.nft_id not in failed_ids]
        logger.error(
            f"Burn stopped after {len(burned)} of {len(ordered)} transfers: {error.message}",
            extra={"context": {"burned": burned, "failed": failed_ids, "error_kind": error.kind.value}},
        )
        raise PartialBurnError(
            f"Burn incomplete: {len(burned)} burned, {len(not_attempted)} not attempted",
            burned=burned,
            failed=failed_ids,
            not_attempted=not_attempted,
            cause=error,
        ) from error

"""
staking/orchestrator.py - Stake and unstake flows.

stake(nft_id):
  ledger idempotency -> account + chain -> owner pre-check -> approval
  -> stake tx (gas plan, raw receipt) -> metadata -> ledger insert

unstake(nft_id):
  on-chain membership check -> withdraw tx -> ledger deactivate

Per-(wallet, nft_id) ordering comes from re-verifying live state right
before each write; there is no client-side lock.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from chains import abi
from chains.context import ChainContext
from chains.contracts import ChainReader, nft_contract_of, stake_contract_of
from chains.metadata import MetadataResolver
from chains.wallet import WalletSigner
from core.constants import DEFAULT_GAS_BUFFER, STAKE_GAS_BUFFER, StakingSource
from core.exceptions import (
    AlreadyStakedError,
    ApprovalRequiredError,
    KilnError,
    OwnershipMismatchError,
    RPCUnavailableError,
    TransactionFailedError,
    UnconfirmedError,
    ValidationError,
)
from core.logging import get_logger
from core.models import ChainDescriptor, StakePosition, TxReceipt, daily_reward_for, normalize_rarity
from core.retry import RetryExhausted, RetryPolicy, retry_with_backoff
from core.time import now_utc
from ledger.store import LedgerStore
from staking.gas import GasPlanner
from staking.state_machine import StakeState, StakeStateMachine
from staking.transactions import TransactionSender
from utils.validators import onchain_nft_id, parse_token_id, same_address

logger = get_logger(__name__)

# Approval visibility lags block propagation on public RPC nodes
DEFAULT_APPROVAL_POLICY = RetryPolicy(attempts=5, base_delay=1.0, max_delay=4.0)


def token_in(staked_ids: Iterable[Union[int, str]], token_id: int) -> bool:
    """Membership that tolerates string and numeric id encodings."""
    return any(parse_token_id(candidate) == token_id for candidate in staked_ids)


@dataclass
class StakeOutcome:
    position: StakePosition
    receipt: TxReceipt
    approval_receipt: Optional[TxReceipt]
    machine: StakeStateMachine

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position.to_dict(),
            "tx_hash": self.receipt.tx_hash or None,
            "approval_tx_hash": self.approval_receipt.tx_hash if self.approval_receipt else None,
            "state": self.machine.state.value,
        }


@dataclass
class UnstakeOutcome:
    nft_id: str
    receipt: Optional[TxReceipt]
    position: Optional[StakePosition]
    machine: Optional[StakeStateMachine]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nft_id": self.nft_id,
            "tx_hash": self.receipt.tx_hash if self.receipt else None,
            "position": self.position.to_dict() if self.position else None,
            "state": self.machine.state.value if self.machine else None,
        }


class StakeOrchestrator:
    """
    On-chain and off-chain staking.

    Usage:
        orchestrator = StakeOrchestrator(context, reader, gas, sender, store, metadata)
        outcome = await orchestrator.stake("42")
    """

    def __init__(
        self,
        context: ChainContext,
        reader: ChainReader,
        gas: GasPlanner,
        sender: TransactionSender,
        store: LedgerStore,
        metadata: MetadataResolver,
        approval_policy: RetryPolicy = DEFAULT_APPROVAL_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.context = context
        self.reader = reader
        self.gas = gas
        self.sender = sender
        self.store = store
        self.metadata = metadata
        self.approval_policy = approval_policy
        self._sleep = sleep

    # =========================================================================
    # ON-CHAIN
    # =========================================================================

    async def stake(self, nft_id: Union[str, int]) -> StakeOutcome:
        token_id = self._token_id(nft_id)
        ledger_id = onchain_nft_id(token_id)

        existing = await self.store.get_active_position(ledger_id)
        if existing is not None:
            raise AlreadyStakedError(
                f"{ledger_id} is already staked",
                details={
                    "nft_id": ledger_id,
                    "source": existing.source.value,
                    "tx_hash": existing.tx_hash,
                    "chain_id": existing.chain_id,
                },
            )

        chain = self.context.get_current_chain()
        stake_address = stake_contract_of(chain)
        nft_contract_of(chain)
        machine = StakeStateMachine(ledger_id)
        log = logger.bind(chain_key=chain.key, nft_id=ledger_id)

        async with self.context.operation_in_progress():
            signer = self.context.signer()
            account = await signer.get_account()
            await self.context.ensure_wallet_on(chain)

            owner = await self.reader.owner_of(chain, token_id)
            if same_address(owner, stake_address):
                raise AlreadyStakedError(
                    f"Token {token_id} is already held by the stake contract",
                    details={"nft_id": ledger_id, "chain_key": chain.key},
                )
            if not same_address(owner, account):
                raise OwnershipMismatchError(
                    f"Token {token_id} is owned by another wallet",
                    details={"nft_id": ledger_id, "owner": owner, "wallet": account, "chain_key": chain.key},
                )

            try:
                approval_receipt = await self._ensure_approval(chain, signer, account, token_id, machine)
                receipt = await self._submit_stake(chain, signer, account, token_id, machine)
            except UnconfirmedError:
                log.warning(
                    "Stake unconfirmed, leaving it to reconciliation",
                    extra={"context": {"state": machine.state.value}},
                )
                raise
            except KilnError as e:
                machine.fail(e.message, {"error_kind": e.kind.value})
                raise

        meta = await self.metadata.resolve(chain, token_id)
        position = StakePosition(
            wallet_address=account,
            nft_id=ledger_id,
            source=StakingSource.ONCHAIN,
            rarity=meta.rarity,
            daily_reward=daily_reward_for(meta.rarity),
            staked_at=now_utc(),
            tx_hash=receipt.tx_hash or None,
            chain_id=chain.chain_id,
        )
        try:
            position = await self.store.insert_position(position)
        except AlreadyStakedError:
            # Reconciliation got there first; the on-chain stake stands
            concurrent = await self.store.get_active_position(ledger_id)
            if concurrent is None:
                raise
            position = concurrent

        log.info(
            f"Staked token {token_id}",
            extra={"context": {"rarity": position.rarity, "tx_hash": receipt.tx_hash}},
        )
        return StakeOutcome(position, receipt, approval_receipt, machine)

    async def _ensure_approval(
        self,
        chain: ChainDescriptor,
        signer: WalletSigner,
        account: str,
        token_id: int,
        machine: StakeStateMachine,
    ) -> Optional[TxReceipt]:
        if await self.reader.is_stake_approved(chain, account, token_id):
            machine.transition_to(StakeState.APPROVAL_GRANTED, reason="already approved")
            return None

        machine.transition_to(StakeState.APPROVAL_PENDING)
        stake_address = stake_contract_of(chain)
        tx = {
            "from": account,
            "to": nft_contract_of(chain),
            "data": abi.encode_set_approval_for_all(stake_address, True),
        }
        plan = await self.gas.plan(chain, tx, DEFAULT_GAS_BUFFER)

        receipt: Optional[TxReceipt] = None
        try:
            receipt = await self.sender.send(signer, chain, plan.apply(tx), "approve")
        except TransactionFailedError as e:
            raise ApprovalRequiredError(
                f"Approval transaction failed on {chain.key}",
                details={"chain_key": chain.key, **e.details},
            ) from e
        except UnconfirmedError as e:
            logger.warning(
                "Approval unconfirmed, checking on-chain state",
                extra={"context": {"chain_key": chain.key, "tx_hash": e.tx_hash}},
            )

        if await self._verify_approval(chain, account, stake_address):
            machine.transition_to(StakeState.APPROVAL_GRANTED, reason="verified")
        elif receipt is not None and receipt.confirmed:
            logger.warning(
                "Approval mined but not yet visible, proceeding",
                extra={"context": {"chain_key": chain.key, "tx_hash": receipt.tx_hash}},
            )
            machine.transition_to(StakeState.APPROVAL_GRANTED, reason="optimistic")
        else:
            raise ApprovalRequiredError(
                f"Stake contract approval could not be confirmed on {chain.key}",
                details={"chain_key": chain.key},
            )
        return receipt

    async def _verify_approval(self, chain: ChainDescriptor, account: str, stake_address: str) -> bool:
        try:
            return await retry_with_backoff(
                [("isApprovedForAll", lambda: self.reader.is_approved_for_all(chain, account, stake_address))],
                policy=self.approval_policy,
                should_retry=lambda e: isinstance(e, RPCUnavailableError),
                accept=bool,
                sleep=self._sleep,
            )
        except RetryExhausted:
            return False

    async def _submit_stake(
        self,
        chain: ChainDescriptor,
        signer: WalletSigner,
        account: str,
        token_id: int,
        machine: StakeStateMachine,
    ) -> TxReceipt:
        stake_address = stake_contract_of(chain)
        tx = {"from": account, "to": stake_address, "data": abi.encode_stake([token_id])}
        plan = await self.gas.plan(chain, tx, STAKE_GAS_BUFFER)
        machine.transition_to(StakeState.STAKE_PENDING, metadata=plan.to_dict())

        receipt = await self.sender.send(
            signer,
            chain,
            plan.apply(tx),
            "stake",
            custody_check=lambda: self._owned_by(chain, token_id, stake_address),
        )
        machine.transition_to(StakeState.STAKED, metadata={"tx_hash": receipt.tx_hash})
        return receipt

    async def unstake(self, nft_id: Union[str, int]) -> UnstakeOutcome:
        token_id = self._token_id(nft_id)
        ledger_id = onchain_nft_id(token_id)
        chain = self.context.get_current_chain()
        stake_address = stake_contract_of(chain)
        machine = StakeStateMachine(ledger_id, state=StakeState.STAKED)

        async with self.context.operation_in_progress():
            signer = self.context.signer()
            account = await signer.get_account()
            await self.context.ensure_wallet_on(chain)

            staked_ids, _ = await self.reader.get_stake_info(chain, account)
            if not token_in(staked_ids, token_id):
                raise OwnershipMismatchError(
                    f"Token {token_id} is not staked by this wallet on {chain.key}",
                    details={"nft_id": ledger_id, "wallet": account, "chain_key": chain.key},
                )

            tx = {"from": account, "to": stake_address, "data": abi.encode_withdraw([token_id])}
            plan = await self.gas.plan(chain, tx, DEFAULT_GAS_BUFFER)
            machine.transition_to(StakeState.UNSTAKE_PENDING, metadata=plan.to_dict())
            try:
                receipt = await self.sender.send(
                    signer,
                    chain,
                    plan.apply(tx),
                    "unstake",
                    custody_check=lambda: self._owned_by(chain, token_id, account),
                )
            except UnconfirmedError:
                raise
            except KilnError as e:
                machine.fail(e.message, {"error_kind": e.kind.value})
                raise
            machine.transition_to(StakeState.UNSTAKED, metadata={"tx_hash": receipt.tx_hash})

        position = await self.store.deactivate_position(ledger_id)
        if position is None:
            logger.warning(
                f"Unstaked token {token_id} had no ledger record",
                extra={"context": {"nft_id": ledger_id, "chain_key": chain.key}},
            )
        return UnstakeOutcome(ledger_id, receipt, position, machine)

    async def _owned_by(self, chain: ChainDescriptor, token_id: int, address: str) -> bool:
        return same_address(await self.reader.owner_of(chain, token_id), address)

    @staticmethod
    def _token_id(nft_id: Union[str, int]) -> int:
        token_id = parse_token_id(nft_id)
        if token_id is None:
            raise ValidationError(f"Invalid token id: {nft_id!r}", details={"nft_id": str(nft_id)})
        return token_id

    # =========================================================================
    # OFF-CHAIN
    # =========================================================================

    async def stake_offchain(self, wallet_address: str, nft_id: str, rarity: Optional[str] = None) -> StakePosition:
        """Stake an NFT held in the wallet's ledger collection."""
        item = await self.store.get_collection_item(nft_id)
        if item is None or not same_address(item.wallet_address, wallet_address):
            raise OwnershipMismatchError(
                f"{nft_id} is not in this wallet's collection",
                details={"nft_id": nft_id, "wallet": wallet_address},
            )
        if rarity is not None and normalize_rarity(rarity) != normalize_rarity(item.rarity):
            raise ValidationError(
                f"Rarity mismatch for {nft_id}: {rarity} vs {item.rarity}",
                details={"nft_id": nft_id},
            )
        existing = await self.store.get_active_position(nft_id)
        if existing is not None:
            raise AlreadyStakedError(
                f"{nft_id} is already staked",
                details={"nft_id": nft_id, "source": existing.source.value},
            )

        return await self.store.insert_position(StakePosition(
            wallet_address=wallet_address,
            nft_id=nft_id,
            source=StakingSource.OFFCHAIN,
            rarity=item.rarity,
            daily_reward=daily_reward_for(item.rarity),
            staked_at=now_utc(),
        ))

    async def unstake_offchain(self, wallet_address: str, nft_id: str) -> StakePosition:
        existing = await self.store.get_active_position(nft_id)
        if existing is None or not same_address(existing.wallet_address, wallet_address):
            raise OwnershipMismatchError(
                f"{nft_id} has no active stake for this wallet",
                details={"nft_id": nft_id, "wallet": wallet_address},
            )
        if existing.source != StakingSource.OFFCHAIN:
            raise ValidationError(
                f"{nft_id} is staked on chain; use unstake",
                details={"nft_id": nft_id},
            )
        position = await self.store.deactivate_position(nft_id, wallet_address)
        if position is None:
            raise OwnershipMismatchError(f"{nft_id} was unstaked concurrently", details={"nft_id": nft_id})
        return position

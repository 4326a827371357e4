"""
staking/transactions.py - Submission and raw-receipt confirmation.

Confirmation never decodes events. The receipt is fetched raw by hash over
RPCFailoverClient and only its status is read.

When a submission response carries no usable hash the hash is recovered
by scanning the latest few blocks for the same transaction (sender, target,
calldata and nonce when known). A custody check (token moved where expected)
is an equally sufficient signal, and when one is given a recovered receipt
only counts once custody has moved as well.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from chains.providers import RPCFailoverClient
from chains.wallet import WalletSigner
from core.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_HASH_RECOVERY_BLOCKS,
    DEFAULT_RECEIPT_POLL_SECONDS,
    ErrorKind,
    TxStatus,
)
from core.exceptions import (
    KilnError,
    ReceiptAnomalyError,
    RPCUnavailableError,
    TransactionFailedError,
    UnconfirmedError,
)
from core.logging import get_logger, log_transaction
from core.models import ChainDescriptor, TxReceipt
from core.retry import RetryExhausted, RetryPolicy, retry_with_backoff
from utils.validators import is_valid_tx_hash, same_address

logger = get_logger(__name__)

CustodyCheck = Callable[[], Awaitable[bool]]


def extract_tx_hash(response: Any) -> str:
    """
    Pull the transaction hash out of a submission response.

    Raises:
        ReceiptAnomalyError: the response carries no usable hash
    """
    if is_valid_tx_hash(response):
        return response
    if isinstance(response, dict):
        for key in ("hash", "transactionHash", "tx_hash"):
            if is_valid_tx_hash(response.get(key)):
                return response[key]
    raise ReceiptAnomalyError(
        "Submission response carries no transaction hash",
        details={"response_type": type(response).__name__},
    )


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value, 16) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return None


def is_same_submission(candidate: dict, submitted: dict) -> bool:
    """
    True when a mined transaction is the one that was submitted.

    Sender, target and calldata must all match; the nonce is compared too
    when both sides carry one.
    """
    if not same_address(candidate.get("from"), submitted.get("from")):
        return False
    if not same_address(candidate.get("to"), submitted.get("to")):
        return False
    data = (submitted.get("data") or submitted.get("input") or "0x").lower()
    if (candidate.get("input") or candidate.get("data") or "0x").lower() != data:
        return False
    nonce, mined_nonce = _as_int(submitted.get("nonce")), _as_int(candidate.get("nonce"))
    return nonce is None or mined_nonce is None or nonce == mined_nonce


class _NotYet(Exception):
    pass


class TransactionSender:
    """
    Submit a transaction through the wallet and wait for its raw receipt.

    Usage:
        sender = TransactionSender(rpc)
        receipt = await sender.send(signer, chain, tx, "stake", custody_check)
    """

    def __init__(
        self,
        rpc: RPCFailoverClient,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_SECONDS,
        recovery_blocks: int = DEFAULT_HASH_RECOVERY_BLOCKS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rpc = rpc
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.recovery_blocks = recovery_blocks
        self._sleep = sleep

    @property
    def _polling(self) -> RetryPolicy:
        return RetryPolicy.polling(self.poll_interval, self.confirmation_timeout)

    async def send(
        self,
        signer: WalletSigner,
        chain: ChainDescriptor,
        tx: dict,
        action: str,
        custody_check: Optional[CustodyCheck] = None,
    ) -> TxReceipt:
        """
        Submit tx and wait for confirmation.

        Raises:
            UserRejectedError: the wallet owner declined
            TransactionFailedError: mined with status 0
            UnconfirmedError: not confirmed within the window
        """
        response = await signer.send_transaction(tx)

        try:
            tx_hash = extract_tx_hash(response)
        except ReceiptAnomalyError as anomaly:
            logger.warning(
                f"{action}: {anomaly.message}, recovering",
                extra={"context": {"chain_key": chain.key, "error_kind": anomaly.kind.value, **anomaly.details}},
            )
            return await self._recover(chain, tx, action, custody_check)

        log_transaction(logger, action, "SUBMITTED", chain.key, tx_hash)
        raw = await self.wait_for_receipt(chain, tx_hash)

        if raw is None:
            if custody_check is not None and await self._custody_moved(custody_check):
                log_transaction(logger, action, "CONFIRMED_BY_CUSTODY", chain.key, tx_hash)
                return TxReceipt(tx_hash=tx_hash, status=TxStatus.CONFIRMED, recovered=True)
            log_transaction(logger, action, TxStatus.UNCONFIRMED.value, chain.key, tx_hash)
            raise UnconfirmedError(
                f"{action} not confirmed within {self.confirmation_timeout:.0f}s",
                tx_hash=tx_hash,
                details={"chain_key": chain.key, "action": action},
            )

        receipt = TxReceipt.from_rpc(tx_hash, raw)
        log_transaction(logger, action, receipt.status.value, chain.key, receipt.tx_hash, block_number=receipt.block_number)
        if not receipt.confirmed:
            raise TransactionFailedError(
                f"{action} reverted on {chain.key}",
                details={"chain_key": chain.key, "tx_hash": receipt.tx_hash, "action": action},
            )
        return receipt

    async def wait_for_receipt(self, chain: ChainDescriptor, tx_hash: str) -> Optional[dict]:
        """Poll for the raw receipt; None when the window elapses."""
        try:
            return await retry_with_backoff(
                [("receipt", lambda: self.rpc.get_transaction_receipt(chain, tx_hash))],
                policy=self._polling,
                should_retry=lambda e: isinstance(e, RPCUnavailableError),
                accept=lambda r: r is not None,
                sleep=self._sleep,
            )
        except RetryExhausted:
            return None

    async def recover_hash(self, chain: ChainDescriptor, submitted: dict) -> Optional[str]:
        """Newest transaction in the latest blocks matching the submitted one."""
        latest = await self.rpc.get_block_number(chain)
        for number in range(latest, max(latest - self.recovery_blocks, -1), -1):
            block = await self.rpc.get_block(chain, number, full_transactions=True)
            for tx in reversed((block or {}).get("transactions") or []):
                if not isinstance(tx, dict):
                    continue
                if is_same_submission(tx, submitted):
                    return tx.get("hash")
        return None

    async def _custody_moved(self, custody_check: CustodyCheck) -> bool:
        try:
            return await custody_check()
        except KilnError as e:
            logger.debug(f"Custody check failed: {e}")
            return False

    async def _recover(
        self,
        chain: ChainDescriptor,
        tx: dict,
        action: str,
        custody_check: Optional[CustodyCheck],
    ) -> TxReceipt:
        async def attempt() -> TxReceipt:
            tx_hash = await self.recover_hash(chain, tx)
            if tx_hash:
                raw = await self.rpc.get_transaction_receipt(chain, tx_hash)
                if raw is not None:
                    receipt = TxReceipt.from_rpc(tx_hash, raw)
                    if receipt.confirmed and custody_check is not None and not await self._custody_moved(custody_check):
                        raise _NotYet()
                    return TxReceipt(
                        tx_hash=receipt.tx_hash,
                        status=receipt.status,
                        block_number=receipt.block_number,
                        gas_used=receipt.gas_used,
                        recovered=True,
                    )
            if custody_check is not None and await self._custody_moved(custody_check):
                return TxReceipt(tx_hash=tx_hash or "", status=TxStatus.CONFIRMED, recovered=True)
            raise _NotYet()

        try:
            receipt = await retry_with_backoff(
                [("recover", attempt)],
                policy=self._polling,
                should_retry=lambda e: isinstance(e, (_NotYet, RPCUnavailableError)),
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            raise UnconfirmedError(
                f"{action} submitted without hash and not found within {self.confirmation_timeout:.0f}s",
                details={"chain_key": chain.key, "action": action, "error_kind": ErrorKind.RECEIPT_ANOMALY.value},
            ) from e

        log_transaction(logger, action, f"RECOVERED_{receipt.status.value}", chain.key, receipt.tx_hash or None)
        if not receipt.confirmed:
            raise TransactionFailedError(
                f"{action} reverted on {chain.key}",
                details={"chain_key": chain.key, "tx_hash": receipt.tx_hash, "action": action},
            )
        return receipt

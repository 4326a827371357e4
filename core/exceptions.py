# PATH: core/exceptions.py
"""
Typed exceptions for Kiln.

Every error carries an ErrorKind so the public layer can turn it into a
discriminated result without string matching. Internal layers raise;
only orchestrator.context converts to OpResult.
"""

from typing import Optional, Sequence

from core.constants import ErrorKind


class KilnError(Exception):
    """Base exception for Kiln."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details or {}

    def __str__(self):
        return f"[{self.kind.value}] {self.message}"


class UserRejectedError(KilnError):
    """The wallet owner declined the signature or request."""
    kind = ErrorKind.USER_REJECTED


class OwnershipMismatchError(KilnError):
    """Token is owned by someone else or not held where expected."""
    kind = ErrorKind.OWNERSHIP_MISMATCH


class AlreadyStakedError(KilnError):
    """Token already has an active stake position or is in stake custody."""
    kind = ErrorKind.ALREADY_STAKED


class AlreadyBurnedError(KilnError):
    """One or more ids in a burn selection were consumed by an earlier burn."""
    kind = ErrorKind.ALREADY_BURNED

    def __init__(self, nft_ids: Sequence[str]):
        ids = sorted(nft_ids)
        super().__init__(
            f"Already burned: {', '.join(ids)}",
            details={"nft_ids": ids},
        )
        self.nft_ids = ids


class ApprovalRequiredError(KilnError):
    """Stake contract approval is missing and could not be granted."""
    kind = ErrorKind.APPROVAL_REQUIRED


class InsufficientBalanceError(KilnError):
    """Native gas balance is conclusively too low on one or more chains."""
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, chains: Sequence[str], details: Optional[dict] = None):
        self.chains = list(chains)
        super().__init__(
            f"Insufficient gas balance on: {', '.join(self.chains)}",
            details={"chains": self.chains, **(details or {})},
        )


class InfraError(KilnError):
    """Infrastructure-related errors (RPC, timeouts)."""
    kind = ErrorKind.RPC_UNAVAILABLE


class RPCUnavailableError(InfraError):
    """Every RPC endpoint for a chain failed."""

    def __init__(self, message: str, failures: Optional[list] = None, details: Optional[dict] = None):
        self.failures = list(failures or [])
        super().__init__(
            message,
            details={"failures": self.failures, **(details or {})},
        )


class ContractRevertError(KilnError):
    """A read or simulation reverted; retrying another endpoint is pointless."""
    kind = ErrorKind.CONTRACT_REVERT


class ChainMismatchError(KilnError):
    """Wallet is connected to a different chain than the operation needs."""
    kind = ErrorKind.CHAIN_MISMATCH


class ChainSwitchError(KilnError):
    """Wallet refused or failed to switch networks."""
    kind = ErrorKind.CHAIN_SWITCH_FAILED


class ProviderUnavailableError(KilnError):
    """No single write-capable wallet provider could be resolved."""
    kind = ErrorKind.PROVIDER_UNAVAILABLE


class ValidationError(KilnError):
    """Bad input, e.g. a burn selection that matches no rule."""
    kind = ErrorKind.VALIDATION_ERROR


class ReceiptAnomalyError(KilnError):
    """Submission returned no usable hash; recovered internally."""
    kind = ErrorKind.RECEIPT_ANOMALY


class UnconfirmedError(KilnError):
    """Confirmation window elapsed; the transaction may still land."""
    kind = ErrorKind.UNCONFIRMED

    def __init__(self, message: str, tx_hash: Optional[str] = None, details: Optional[dict] = None):
        self.tx_hash = tx_hash
        super().__init__(message, details={"tx_hash": tx_hash, **(details or {})})


class TransactionFailedError(KilnError):
    """Transaction was mined but reverted, or would revert."""
    kind = ErrorKind.TRANSACTION_FAILED


class PartialBurnError(KilnError):
    """A multi-transaction burn stopped part way through."""
    kind = ErrorKind.PARTIAL_BURN

    def __init__(
        self,
        message: str,
        burned: Sequence[str],
        failed: Sequence[str],
        not_attempted: Sequence[str],
        cause: Optional[KilnError] = None,
    ):
        self.burned = list(burned)
        self.failed = list(failed)
        self.not_attempted = list(not_attempted)
        self.cause = cause
        super().__init__(
            message,
            details={
                "burned": self.burned,
                "failed": self.failed,
                "not_attempted": self.not_attempted,
                "cause_kind": cause.kind.value if cause else None,
            },
        )


class PoolExhaustedError(KilnError):
    """No undistributed pool entry left for the requested rarity."""
    kind = ErrorKind.POOL_EXHAUSTED


class ConfigurationError(KilnError):
    """Chain or contract configuration is missing."""
    kind = ErrorKind.CONFIGURATION_ERROR

# PATH: core/constants.py
"""
Constants for Kiln.

Contains enums, defaults, and configuration constants shared by the
chain layer, the orchestrators and the ledger.
"""

from decimal import Decimal
from enum import Enum
from typing import Final

# =============================================================================
# CHAIN / CONTRACT CONSTANTS
# =============================================================================

# Unrecoverable address used as the destination of upgrade burns
BURN_ADDRESS: Final[str] = "0x000000000000000000000000000000000000dEaD"

ZERO_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000000"

# Prefix that marks a ledger nft_id as backed by an on-chain token
ONCHAIN_NFT_PREFIX: Final[str] = "onchain_"

# EIP-1193 / MetaMask provider error codes
WALLET_USER_REJECTED_CODE: Final[int] = 4001
WALLET_UNRECOGNIZED_CHAIN_CODE: Final[int] = 4902
WALLET_REQUEST_PENDING_CODE: Final[int] = -32002
WALLET_INTERNAL_ERROR_CODE: Final[int] = -32603
WALLET_LIMIT_EXCEEDED_CODE: Final[int] = -32005

# JSON-RPC error code used by nodes for reverted eth_call / eth_estimateGas
RPC_EXECUTION_REVERTED_CODE: Final[int] = 3

# =============================================================================
# TIMING DEFAULTS
# =============================================================================

# Per-endpoint read timeout, clamped into [MIN, MAX]
DEFAULT_RPC_TIMEOUT_SECONDS: Final[float] = 4.0
MIN_RPC_TIMEOUT_SECONDS: Final[float] = 2.0
MAX_RPC_TIMEOUT_SECONDS: Final[float] = 5.0

DEFAULT_CONFIRMATION_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_RECEIPT_POLL_SECONDS: Final[float] = 2.0

# Blocks scanned backwards when a submission returns no tx hash
DEFAULT_HASH_RECOVERY_BLOCKS: Final[int] = 3

# =============================================================================
# GAS DEFAULTS
# =============================================================================

STAKE_GAS_BUFFER: Final[Decimal] = Decimal("1.5")
DEFAULT_GAS_BUFFER: Final[Decimal] = Decimal("1.2")
GAS_PRICE_BUFFER: Final[Decimal] = Decimal("1.1")

DEFAULT_GAS_LADDER: Final[tuple[int, ...]] = (300_000, 500_000, 800_000)
DEFAULT_FALLBACK_GAS_PRICE_WEI: Final[int] = 3_000_000_000  # 3 gwei

# 0.001 native units
DEFAULT_MIN_GAS_BALANCE_WEI: Final[int] = 10**15


class StakingSource(str, Enum):
    """Where the authoritative record of a stake position lives."""
    ONCHAIN = "onchain"
    OFFCHAIN = "offchain"


class BurnStrategy(str, Enum):
    """Burn execution strategy, derived from the source tags of a selection."""
    PURE_OFFCHAIN = "pure_offchain"
    PURE_ONCHAIN = "pure_onchain"
    MIXED = "mixed"


class BurnType(str, Enum):
    """Burn type as written to the burn log."""
    OFFCHAIN = "offchain"
    ONCHAIN = "onchain"
    HYBRID = "hybrid"


class TxStatus(str, Enum):
    """Outcome of a submitted transaction."""
    CONFIRMED = "CONFIRMED"
    REVERTED = "REVERTED"
    UNCONFIRMED = "UNCONFIRMED"


class ReconciliationOperation(str, Enum):
    """Repair operations tracked by idempotency key."""
    RECOVER_STAKE = "recover_stake"


class ErrorKind(str, Enum):
    """
    Error taxonomy surfaced to callers.

    Every KilnError carries exactly one of these; the public OpResult
    exposes it as error_kind.
    """
    USER_REJECTED = "USER_REJECTED"
    OWNERSHIP_MISMATCH = "OWNERSHIP_MISMATCH"
    ALREADY_STAKED = "ALREADY_STAKED"
    ALREADY_BURNED = "ALREADY_BURNED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    RPC_UNAVAILABLE = "RPC_UNAVAILABLE"
    CHAIN_MISMATCH = "CHAIN_MISMATCH"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RECEIPT_ANOMALY = "RECEIPT_ANOMALY"
    UNCONFIRMED = "UNCONFIRMED"

    CHAIN_SWITCH_FAILED = "CHAIN_SWITCH_FAILED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    CONTRACT_REVERT = "CONTRACT_REVERT"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    PARTIAL_BURN = "PARTIAL_BURN"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN = "UNKNOWN"


# =============================================================================
# RARITY
# =============================================================================

CANONICAL_RARITIES: Final[tuple[str, ...]] = (
    "Common",
    "Rare",
    "Legendary",
    "Platinum",
    "Silver",
    "Gold",
)

# Variants seen in token metadata
RARITY_ALIASES: Final[dict[str, str]] = {
    "common": "Common",
    "rare": "Rare",
    "legendary": "Legendary",
    "legend": "Legendary",
    "platinum": "Platinum",
    "silver": "Silver",
    "gold": "Gold",
    "epic": "Legendary",
    "ultra rare": "Legendary",
    "super rare": "Rare",
}

# Longest first so "ultra rare" wins over "rare"
RARITY_KEYWORDS: Final[tuple[str, ...]] = (
    "ultra rare",
    "super rare",
    "legendary",
    "platinum",
    "common",
    "silver",
    "gold",
    "epic",
    "rare",
)

DAILY_REWARD_BY_RARITY: Final[dict[str, Decimal]] = {
    "Common": Decimal("0.1"),
    "Rare": Decimal("0.4"),
    "Legendary": Decimal("1.0"),
    "Platinum": Decimal("2.5"),
    "Silver": Decimal("8.0"),
    "Gold": Decimal("30.0"),
}

# Unknown rarities earn the Rare rate
UNKNOWN_RARITY_DAILY_REWARD: Final[Decimal] = Decimal("0.4")

DEFAULT_RARITY: Final[str] = "Common"

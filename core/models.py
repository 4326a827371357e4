# PATH: core/models.py
"""
Core data models for Kiln.

RARITY CONTRACT
===============
Rarities are normalised case-insensitively to one of
  Common, Rare, Legendary, Platinum, Silver, Gold
with aliases:
  epic, ultra rare -> Legendary
  super rare       -> Rare
Unknown values are capitalised and preserved, and earn the Rare rate.

NFT_ID CONTRACT
===============
On-chain tokens are tracked in the ledger as "onchain_<tokenId>" (decimal).
Off-chain ids are opaque strings owned by the ledger collection.
===============
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from core.constants import (
    DAILY_REWARD_BY_RARITY,
    DEFAULT_FALLBACK_GAS_PRICE_WEI,
    DEFAULT_GAS_LADDER,
    DEFAULT_MIN_GAS_BALANCE_WEI,
    RARITY_ALIASES,
    UNKNOWN_RARITY_DAILY_REWARD,
    BurnStrategy,
    BurnType,
    StakingSource,
    TxStatus,
)
from utils.validators import onchain_nft_id, parse_token_id


# ============================================================================
# RARITY
# ============================================================================

def normalize_rarity(value: Any) -> str:
    """
    Normalise a rarity label.

    >>> normalize_rarity("ULTRA RARE")
    'Legendary'
    >>> normalize_rarity("mythic")
    'Mythic'
    """
    text = " ".join(str(value or "").strip().split())
    if not text:
        return ""
    alias = RARITY_ALIASES.get(text.lower())
    if alias:
        return alias
    return text[0].upper() + text[1:].lower()


def daily_reward_for(rarity: str) -> Decimal:
    """Daily reward for a rarity; unknown rarities get the Rare rate."""
    return DAILY_REWARD_BY_RARITY.get(normalize_rarity(rarity), UNKNOWN_RARITY_DAILY_REWARD)


# ============================================================================
# CHAIN CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class NativeCurrency:
    name: str
    symbol: str
    decimals: int = 18

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "symbol": self.symbol, "decimals": self.decimals}


@dataclass(frozen=True)
class ChainContracts:
    """Contract addresses deployed on one chain. Either may be absent."""
    nft_contract: Optional[str] = None
    stake_contract: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"nft_contract": self.nft_contract, "stake_contract": self.stake_contract}


@dataclass(frozen=True)
class ChainDescriptor:
    """Immutable description of a supported EVM chain."""
    key: str
    chain_id: int
    name: str
    network: str
    rpc_endpoints: Tuple[str, ...]
    contracts: ChainContracts
    native_currency: NativeCurrency
    block_explorer_urls: Tuple[str, ...] = ()
    is_testnet: bool = True
    gas_ladder: Tuple[int, ...] = DEFAULT_GAS_LADDER
    fallback_gas_price_wei: int = DEFAULT_FALLBACK_GAS_PRICE_WEI
    min_gas_balance_wei: int = DEFAULT_MIN_GAS_BALANCE_WEI

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def add_chain_params(self) -> Dict[str, Any]:
        """Parameters for wallet_addEthereumChain."""
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.name,
            "nativeCurrency": self.native_currency.to_dict(),
            "rpcUrls": list(self.rpc_endpoints[:1]),
            "blockExplorerUrls": list(self.block_explorer_urls),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "chain_id": self.chain_id,
            "name": self.name,
            "network": self.network,
            "rpc_endpoints": list(self.rpc_endpoints),
            "contracts": self.contracts.to_dict(),
            "native_currency": self.native_currency.to_dict(),
            "block_explorer_urls": list(self.block_explorer_urls),
            "is_testnet": self.is_testnet,
        }


# ============================================================================
# STAKING
# ============================================================================

@dataclass
class StakePosition:
    """Ledger record of a staked NFT. Identity is (wallet_address, nft_id)."""
    wallet_address: str
    nft_id: str
    source: StakingSource
    rarity: str
    daily_reward: Decimal
    staked_at: datetime
    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    active: bool = True
    unstaked_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def token_id(self) -> Optional[int]:
        if self.source != StakingSource.ONCHAIN:
            return None
        return parse_token_id(self.nft_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "nft_id": self.nft_id,
            "source": self.source.value,
            "rarity": self.rarity,
            "daily_reward": str(self.daily_reward),
            "staked_at": self.staked_at.isoformat(),
            "tx_hash": self.tx_hash,
            "chain_id": self.chain_id,
            "active": self.active,
            "unstaked_at": self.unstaked_at.isoformat() if self.unstaked_at else None,
        }


@dataclass(frozen=True)
class TxReceipt:
    """The fields of a raw receipt Kiln relies on. No log decoding."""
    tx_hash: str
    status: TxStatus
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    recovered: bool = False

    @property
    def confirmed(self) -> bool:
        return self.status == TxStatus.CONFIRMED

    @classmethod
    def from_rpc(cls, tx_hash: str, raw: Dict[str, Any]) -> "TxReceipt":
        status_hex = raw.get("status")
        status = TxStatus.CONFIRMED if status_hex in ("0x1", 1, "1") else TxStatus.REVERTED
        block = raw.get("blockNumber")
        gas = raw.get("gasUsed")
        return cls(
            tx_hash=raw.get("transactionHash") or tx_hash,
            status=status,
            block_number=int(block, 16) if isinstance(block, str) else block,
            gas_used=int(gas, 16) if isinstance(gas, str) else gas,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "block_number": self.block_number,
            "gas_used": self.gas_used,
            "recovered": self.recovered,
        }


# ============================================================================
# BURN
# ============================================================================

@dataclass(frozen=True)
class BurnRule:
    """N items of required_rarity burn into one result_rarity item."""
    required_rarity: str
    required_count: int
    result_rarity: str
    tier: Optional[int] = None
    result_name: Optional[str] = None

    def matches(self, rarity: str, count: int) -> bool:
        return normalize_rarity(self.required_rarity) == normalize_rarity(rarity) and self.required_count == count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "required_rarity": self.required_rarity,
            "required_count": self.required_count,
            "result_rarity": self.result_rarity,
            "tier": self.tier,
            "result_name": self.result_name,
        }


@dataclass(frozen=True)
class BurnItem:
    """One element of a burn selection."""
    nft_id: str
    rarity: str
    source: StakingSource
    chain_key: Optional[str] = None
    token_id: Optional[int] = None
    staked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nft_id": self.nft_id,
            "rarity": self.rarity,
            "source": self.source.value,
            "chain_key": self.chain_key,
            "token_id": self.token_id,
            "staked": self.staked,
        }


@dataclass
class BurnGroup:
    """Selection items of a single rarity, split by source."""
    rarity: str
    onchain_items: List[BurnItem] = field(default_factory=list)
    offchain_items: List[BurnItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.onchain_items) + len(self.offchain_items)

    @property
    def items(self) -> List[BurnItem]:
        return [*self.onchain_items, *self.offchain_items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rarity": self.rarity,
            "onchain": len(self.onchain_items),
            "offchain": len(self.offchain_items),
            "total": self.total,
        }


@dataclass(frozen=True)
class BurnAnalysis:
    """Validated burn plan. Produced by burn.rules.analyze_selection."""
    groups: Tuple[BurnGroup, ...]
    rule: BurnRule
    strategy: BurnStrategy

    @property
    def group(self) -> BurnGroup:
        return self.groups[0]

    @property
    def burn_type(self) -> BurnType:
        return {
            BurnStrategy.PURE_OFFCHAIN: BurnType.OFFCHAIN,
            BurnStrategy.PURE_ONCHAIN: BurnType.ONCHAIN,
            BurnStrategy.MIXED: BurnType.HYBRID,
        }[self.strategy]

    @property
    def items(self) -> List[BurnItem]:
        return [item for g in self.groups for item in g.items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "rule": self.rule.to_dict(),
            "strategy": self.strategy.value,
            "burn_type": self.burn_type.value,
        }


@dataclass
class PoolEntry:
    """Pre-seeded burn result artifact, distributed at most once."""
    id: int
    rarity: str
    cid: str
    metadata_cid: Optional[str] = None
    image_url: Optional[str] = None
    distributed: bool = False
    distributed_to: Optional[str] = None
    distributed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rarity": self.rarity,
            "cid": self.cid,
            "metadata_cid": self.metadata_cid,
            "image_url": self.image_url,
            "distributed": self.distributed,
            "distributed_to": self.distributed_to,
        }


@dataclass
class CollectionItem:
    """Off-chain NFT held in a wallet's ledger collection."""
    nft_id: str
    wallet_address: str
    rarity: str
    cid: Optional[str] = None
    pool_entry_id: Optional[int] = None
    acquired_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nft_id": self.nft_id,
            "wallet_address": self.wallet_address,
            "rarity": self.rarity,
            "cid": self.cid,
            "pool_entry_id": self.pool_entry_id,
        }


@dataclass
class BurnTransaction:
    """Durable audit record of one completed burn."""
    wallet_address: str
    burned_nft_ids: List[str]
    result_rarity: str
    burn_type: BurnType
    tx_hash: Optional[str] = None
    tx_hashes: List[str] = field(default_factory=list)
    networks: List[str] = field(default_factory=list)
    result_nft_id: Optional[str] = None
    pool_entry_id: Optional[int] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "burned_nft_ids": list(self.burned_nft_ids),
            "result_rarity": self.result_rarity,
            "burn_type": self.burn_type.value,
            "tx_hash": self.tx_hash,
            "tx_hashes": list(self.tx_hashes),
            "networks": list(self.networks),
            "result_nft_id": self.result_nft_id,
            "pool_entry_id": self.pool_entry_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ============================================================================
# RECONCILIATION
# ============================================================================

@dataclass(frozen=True)
class ReconciliationRecord:
    nft_id: str
    operation: str
    wallet_address: str

    @property
    def idempotency_key(self) -> str:
        return f"{self.nft_id}:{self.operation}"


@dataclass
class RecoveryReport:
    """Outcome of one recover_missing or check_missing run."""
    wallet_address: str
    recovered: List[str] = field(default_factory=list)
    already_present: List[str] = field(default_factory=list)
    skipped_chains: Dict[str, str] = field(default_factory=dict)
    conflicts: List[str] = field(default_factory=list)
    chains_checked: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "recovered": list(self.recovered),
            "already_present": list(self.already_present),
            "skipped_chains": dict(self.skipped_chains),
            "conflicts": list(self.conflicts),
            "chains_checked": list(self.chains_checked),
            "missing": list(self.missing),
            "dry_run": self.dry_run,
        }


@dataclass
class StakedTokenDetail:
    token_id: int
    rarity: str
    daily_reward: Decimal
    name: Optional[str] = None
    image: Optional[str] = None
    in_ledger: bool = False

    @property
    def nft_id(self) -> str:
        return onchain_nft_id(self.token_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "nft_id": self.nft_id,
            "rarity": self.rarity,
            "daily_reward": str(self.daily_reward),
            "name": self.name,
            "image": self.image,
            "in_ledger": self.in_ledger,
        }


@dataclass
class ChainStakeInfo:
    """Staked tokens and unclaimed rewards for one wallet on one chain."""
    chain_key: str
    chain_id: int
    token_ids: List[int] = field(default_factory=list)
    pending_rewards: int = 0
    staked_at: Optional[datetime] = None
    tokens: List[StakedTokenDetail] = field(default_factory=list)

    @property
    def nft_ids(self) -> List[str]:
        return [onchain_nft_id(t) for t in self.token_ids]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_key": self.chain_key,
            "chain_id": self.chain_id,
            "token_ids": list(self.token_ids),
            "nft_ids": self.nft_ids,
            "pending_rewards": str(self.pending_rewards),
            "staked_at": self.staked_at.isoformat() if self.staked_at else None,
            "tokens": [t.to_dict() for t in self.tokens],
        }


@dataclass
class StakeInfoReport:
    wallet_address: str
    chains: Dict[str, ChainStakeInfo] = field(default_factory=dict)
    skipped_chains: Dict[str, str] = field(default_factory=dict)

    @property
    def total_staked(self) -> int:
        return sum(len(c.token_ids) for c in self.chains.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "chains": {key: info.to_dict() for key, info in self.chains.items()},
            "skipped_chains": dict(self.skipped_chains),
            "total_staked": self.total_staked,
        }

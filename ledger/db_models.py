"""
SQLAlchemy ORM models for the Kiln ledger.

Tables:
    staked_nfts             - stake positions, history kept (active flag)
    nft_pools               - pre-seeded burn results, distributed once
    nft_collection          - off-chain NFTs held per wallet
    burn_transactions       - one audit row per completed burn
    burned_tokens           - every burned id, unique per chain
    reconciliation_records  - idempotency keys of ledger repairs
"""

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text,
)

from core.time import now_utc
from ledger.database import Base


class StakedNFT(Base):
    """Stake positions. At most one active row per nft_id."""
    __tablename__ = "staked_nfts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(42), nullable=False, index=True)
    nft_id = Column(String(128), nullable=False, index=True)
    source = Column(String(16), nullable=False)  # "onchain" | "offchain"
    rarity = Column(String(32), nullable=False)
    daily_reward = Column(String(32), nullable=False)  # Decimal as text
    staked_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    tx_hash = Column(String(66), nullable=True)
    chain_id = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    unstaked_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_staked_nfts_active_nft_id",
            "nft_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
    )


class NFTPoolEntry(Base):
    """Pre-seeded burn result artifacts."""
    __tablename__ = "nft_pools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rarity = Column(String(32), nullable=False, index=True)
    cid = Column(String(128), nullable=False)
    metadata_cid = Column(String(128), nullable=True)
    image_url = Column(String(512), nullable=True)
    distributed = Column(Boolean, nullable=False, default=False)
    distributed_to = Column(String(42), nullable=True)
    distributed_at = Column(DateTime(timezone=True), nullable=True)


class CollectionEntry(Base):
    """Off-chain NFTs held in a wallet's collection."""
    __tablename__ = "nft_collection"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nft_id = Column(String(128), unique=True, nullable=False)
    wallet_address = Column(String(42), nullable=False, index=True)
    rarity = Column(String(32), nullable=False)
    cid = Column(String(128), nullable=True)
    pool_entry_id = Column(Integer, ForeignKey("nft_pools.id"), nullable=True)
    acquired_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)


class BurnTransactionRow(Base):
    """Durable audit record of a completed burn."""
    __tablename__ = "burn_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(42), nullable=False, index=True)
    burned_nft_ids = Column(JSON, nullable=False)
    result_rarity = Column(String(32), nullable=False)
    burn_type = Column(String(16), nullable=False)  # "offchain" | "onchain" | "hybrid"
    tx_hash = Column(String(66), nullable=True)
    tx_hashes = Column(JSON, nullable=False, default=list)
    networks = Column(JSON, nullable=False, default=list)
    result_nft_id = Column(String(128), nullable=True)
    pool_entry_id = Column(Integer, ForeignKey("nft_pools.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)


class BurnedToken(Base):
    """Burned ids, for duplicate-burn detection. chain_key is "" off-chain."""
    __tablename__ = "burned_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nft_id = Column(String(128), nullable=False, index=True)
    chain_key = Column(String(32), nullable=False, default="")
    burn_transaction_id = Column(Integer, ForeignKey("burn_transactions.id"), nullable=False)
    wallet_address = Column(String(42), nullable=False)
    burned_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    __table_args__ = (
        UniqueConstraint("nft_id", "chain_key", name="uq_burned_tokens_nft_chain"),
    )


class ReconciliationEntry(Base):
    """Ledger repairs, keyed by nft_id:operation."""
    __tablename__ = "reconciliation_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    idempotency_key = Column(String(192), unique=True, nullable=False)
    nft_id = Column(String(128), nullable=False)
    operation = Column(String(32), nullable=False)
    wallet_address = Column(String(42), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    last_applied_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    applied_count = Column(Integer, nullable=False, default=1)

"""
chains/ - Blockchain interaction layer.

Modules:
- registry: supported chain descriptors from config
- providers: read-only RPC access with ranked failover
- wallet: wallet provider resolution and write handle
- context: active chain, switching, change notifications
- abi: minimal ABI codec for the calls Kiln makes
- contracts: typed NFT / stake contract reads
- metadata: tokenURI metadata and rarity resolution
"""

from chains.context import ChainContext, ChainSelectionStore, HandleCache
from chains.contracts import ChainReader
from chains.metadata import MetadataResolver, TokenMetadata
from chains.providers import RPCFailoverClient, RPCResponse, RPCStats
from chains.registry import ChainRegistry
from chains.wallet import (
    AmbiguousProviders,
    NoProvider,
    ProviderResolver,
    SingleProvider,
    WalletProvider,
    WalletRequestError,
    WalletSigner,
)

__all__ = [
    "AmbiguousProviders",
    "ChainContext",
    "ChainReader",
    "ChainRegistry",
    "ChainSelectionStore",
    "HandleCache",
    "MetadataResolver",
    "NoProvider",
    "ProviderResolver",
    "RPCFailoverClient",
    "RPCResponse",
    "RPCStats",
    "SingleProvider",
    "TokenMetadata",
    "WalletProvider",
    "WalletRequestError",
    "WalletSigner",
]

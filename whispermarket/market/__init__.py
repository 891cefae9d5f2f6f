"""
Whisper Market Registry & Transactions

Components:
  - Market Registry (on-chain index, TTL cache)
  - Transaction-log Discovery (fallback enumeration, init → market id)
  - Market State (reserves, price, status)
  - Off-chain Metadata (store protocol, placeholders)
  - Market Transactions (intent building and wallet submission)
"""

from .cache import TTLCache
from .registry import MarketRegistry, MarketRegistryEntry
from .discovery import MarketDiscovery
from .state import MarketState, MarketStateStore, MarketStatus, PriceSource
from .metadata import (
    InMemoryMetadataStore,
    MarketMetadata,
    MetadataStore,
    generate_metadata_hash,
    generate_salt,
    placeholder_metadata,
    resolve_metadata,
)
from .transactions import MarketTransactions, classify_transaction_error

__all__ = [
    "TTLCache",
    "MarketRegistry",
    "MarketRegistryEntry",
    "MarketDiscovery",
    "MarketState",
    "MarketStateStore",
    "MarketStatus",
    "PriceSource",
    "InMemoryMetadataStore",
    "MarketMetadata",
    "MetadataStore",
    "generate_metadata_hash",
    "generate_salt",
    "placeholder_metadata",
    "resolve_metadata",
    "MarketTransactions",
    "classify_transaction_error",
]

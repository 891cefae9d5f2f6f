"""
Off-chain market metadata.

Titles, descriptions and categories live outside the chain. The store is a
collaborator behind ``MetadataStore``; a missing or failing store never
blocks market listing, a placeholder is used instead. Also builds the
``metadata_hash`` and ``salt`` field inputs of ``init``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol

from ..constants import FIELD_MODULUS
from ..records.positions import normalize_market_id

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"
METADATA_TIMEOUT = 5.0
SHORT_ID_CHARS = 8


@dataclass
class MarketMetadata:
    market_id: str
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    metadata_hash: Optional[str] = None
    placeholder: bool = False


class MetadataStore(Protocol):
    async def get(self, market_id: str) -> Optional[MarketMetadata]:
        ...

    async def get_many(self, market_ids: Iterable[str]) -> Dict[str, MarketMetadata]:
        ...


@dataclass
class InMemoryMetadataStore:
    """Dict-backed store, keyed by normalized market id."""
    entries: Dict[str, MarketMetadata] = field(default_factory=dict)

    async def get(self, market_id: str) -> Optional[MarketMetadata]:
        return self.entries.get(normalize_market_id(market_id))

    async def get_many(self, market_ids: Iterable[str]) -> Dict[str, MarketMetadata]:
        found = {}
        for market_id in market_ids:
            key = normalize_market_id(market_id)
            if key in self.entries:
                found[key] = self.entries[key]
        return found

    async def put(self, metadata: MarketMetadata) -> None:
        metadata.market_id = normalize_market_id(metadata.market_id)
        self.entries[metadata.market_id] = metadata


def placeholder_metadata(market_id: Any) -> MarketMetadata:
    key = normalize_market_id(market_id)
    short = key[:SHORT_ID_CHARS] + ("..." if len(key) > SHORT_ID_CHARS else "")
    return MarketMetadata(market_id=key, title=f"Market {short}", placeholder=True)


async def resolve_metadata(
    store: Optional[MetadataStore],
    market_ids: Iterable[Any],
    timeout: float = METADATA_TIMEOUT,
) -> Dict[str, MarketMetadata]:
    """Metadata for every id; store misses and failures get a placeholder."""
    keys = [normalize_market_id(m) for m in market_ids]
    found: Dict[str, MarketMetadata] = {}
    if store is not None and keys:
        try:
            found = await asyncio.wait_for(store.get_many(keys), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Metadata store timed out after {timeout}s; using placeholders")
        except Exception as e:
            # Collaborator failures must not break listing
            logger.warning(f"Metadata store failed ({type(e).__name__}: {e}); using placeholders")
    resolved = {}
    for key in keys:
        metadata = found.get(key) or placeholder_metadata(key)
        if not metadata.category:
            metadata.category = DEFAULT_CATEGORY
        resolved[key] = metadata
    return resolved


def generate_metadata_hash(title: str, description: str, nonce: Optional[int] = None) -> str:
    """
    Bare field digits committing to the title and description.

    ``nonce`` defaults to the current time in milliseconds so that
    resubmitting the same text yields a fresh market id.
    """
    if nonce is None:
        nonce = int(time.time() * 1000)
    digest = hashlib.blake2b(f"{title}:{description}:{nonce}".encode("utf-8"), digest_size=32).digest()
    return str(int.from_bytes(digest, "big") % FIELD_MODULUS)


def generate_salt() -> str:
    """Random bare field digits for ``market_id = hash(creator, metadata_hash, salt)``."""
    return str(secrets.randbelow(FIELD_MODULUS))

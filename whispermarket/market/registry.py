"""
Market registry.

Enumerates markets from the on-chain index (``total_markets`` count plus
``market_index`` per position) and reads registry details for each market.
When the index yields nothing, enumeration falls back to transaction-log
discovery. Ids and entries are cached in one TTL store owned by the
registry instance.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from ..constants import (
    MAPPING_LAST_PRICE_UPDATE,
    MAPPING_MARKET_CREATOR,
    MAPPING_MARKET_METADATA_HASH,
    MAPPING_MARKET_STATUS,
    REGISTRY_CACHE_TTL,
)
from ..exceptions import WhisperMarketException
from ..logger import get_logger
from ..records.positions import normalize_market_id
from ..rpc.chain import ChainReader, parse_mapping_int, soft_result
from .cache import TTLCache
from .state import MarketStatus

if TYPE_CHECKING:
    from .discovery import MarketDiscovery

logger = get_logger(__name__)

_IDS_KEY = ("ids",)


@dataclass
class MarketRegistryEntry:
    market_id: str
    status: int
    metadata_hash: Optional[str] = None
    creator: Optional[str] = None
    last_price_update: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == MarketStatus.OPEN


class MarketRegistry:
    """Registry enumeration and details behind a TTL cache."""

    def __init__(
        self,
        reader: ChainReader,
        discovery: Optional["MarketDiscovery"] = None,
        ttl: float = REGISTRY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reader = reader
        self.discovery = discovery
        self._cache = TTLCache(ttl, clock)

    # -----------------------------------------------------------------
    #  Enumeration
    # -----------------------------------------------------------------

    async def _indexed_market_ids(self) -> List[str]:
        try:
            count = await self.reader.total_markets()
        except WhisperMarketException as e:
            logger.warning(f"Could not read market count: {e}")
            return []
        if count <= 0:
            return []

        results = await asyncio.gather(
            *(self.reader.market_id_at(i) for i in range(count)),
            return_exceptions=True,
        )
        ids: List[str] = []
        for index, result in enumerate(results):
            market_id = soft_result(result)
            if not market_id:
                logger.debug(f"Registry index {index} is empty")
                continue
            if market_id not in ids:
                ids.append(market_id)
        logger.info(f"Registry lists {len(ids)}/{count} market id(s)")
        return ids

    async def market_ids(self, use_cache: bool = True) -> List[str]:
        """All known market ids, index first, transaction log as fallback."""
        if use_cache:
            cached = self._cache.get(_IDS_KEY)
            if cached is not None:
                return list(cached)

        ids = await self._indexed_market_ids()
        if not ids and self.discovery is not None:
            logger.info("Registry index empty, falling back to transaction-log discovery")
            ids = await self.discovery.discover_market_ids()

        self._cache.set(_IDS_KEY, list(ids))
        return ids

    # -----------------------------------------------------------------
    #  Details
    # -----------------------------------------------------------------

    async def get_entry(self, market_id: Any, use_cache: bool = True) -> Optional[MarketRegistryEntry]:
        """Registry details, or None when the market has no status entry."""
        key = normalize_market_id(market_id)
        cache_key = ("entry", key)
        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        results = await asyncio.gather(
            self.reader.read_market_value(MAPPING_MARKET_STATUS, key),
            self.reader.read_market_value(MAPPING_MARKET_METADATA_HASH, key),
            self.reader.read_market_value(MAPPING_MARKET_CREATOR, key),
            self.reader.read_market_value(MAPPING_LAST_PRICE_UPDATE, key),
            return_exceptions=True,
        )
        status, metadata_hash, creator, last_price_update = (soft_result(r) for r in results)
        if status is None:
            return None

        try:
            parsed_status = parse_mapping_int(status)
            parsed_price_update = parse_mapping_int(last_price_update)
        except WhisperMarketException as e:
            logger.warning(f"Market {key} has malformed registry values: {e}")
            return None

        entry = MarketRegistryEntry(
            market_id=key,
            status=parsed_status,
            metadata_hash=metadata_hash,
            creator=creator,
            last_price_update=parsed_price_update,
        )
        self._cache.set(cache_key, entry)
        return entry

    async def get_markets(
        self,
        limit: Optional[int] = None,
        offset: int = 0,
        use_cache: bool = True,
    ) -> List[MarketRegistryEntry]:
        """Entries for one page of market ids; ids without a status are skipped."""
        ids = await self.market_ids(use_cache=use_cache)
        page = ids[offset:] if limit is None else ids[offset:offset + limit]
        entries = await asyncio.gather(*(self.get_entry(i, use_cache=use_cache) for i in page))
        return [entry for entry in entries if entry is not None]

    async def get_active_markets(
        self,
        limit: Optional[int] = None,
        offset: int = 0,
        use_cache: bool = True,
    ) -> List[MarketRegistryEntry]:
        """Open markets only; pagination applies after filtering."""
        entries = await self.get_markets(use_cache=use_cache)
        active = [entry for entry in entries if entry.is_active]
        return active[offset:] if limit is None else active[offset:offset + limit]

    # -----------------------------------------------------------------
    #  Cache control
    # -----------------------------------------------------------------

    def invalidate(self, market_id: Optional[Any] = None) -> None:
        """
        Forget cached registry data.

        With a market id only that entry (and the id list) is dropped.
        """
        if market_id is None:
            self._cache.invalidate()
            return
        self._cache.invalidate(("entry", normalize_market_id(market_id)))
        self._cache.invalidate(_IDS_KEY)

    def clear(self) -> None:
        self._cache.clear()

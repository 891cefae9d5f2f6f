"""
Market state.

Reads a market's reserves, pool, fee, status and outcome concurrently,
resolves the YES price, and caches the result in a short-TTL store that
callers invalidate after submitting a transaction against the market.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Optional

from ..constants import (
    BPS_SCALE,
    MAPPING_COLLATERAL_POOL,
    MAPPING_FEE_BPS,
    MAPPING_LAST_PRICE_UPDATE,
    MAPPING_MARKET_STATUS,
    MAPPING_NO_RESERVE,
    MAPPING_OUTCOME,
    MAPPING_YES_RESERVE,
    MARKET_STATE_CACHE_TTL,
)
from ..exceptions import MarketNotFoundError
from ..exchange.amm import price_yes_bps
from ..logger import get_logger
from ..records.positions import normalize_market_id
from ..rpc.chain import ChainReader, soft_result
from .cache import TTLCache

logger = get_logger(__name__)


class MarketStatus(IntEnum):
    OPEN = 0
    RESOLVED = 1
    PAUSED = 2


class PriceSource(str, Enum):
    STORED = "stored"
    DERIVED = "derived"


@dataclass
class MarketState:
    market_id: str
    status: int
    yes_reserve: int
    no_reserve: int
    collateral_pool: int
    fee_bps: int
    price_yes: int
    price_source: PriceSource
    outcome: Optional[bool] = None

    @property
    def is_paused(self) -> bool:
        return self.status == MarketStatus.PAUSED

    @property
    def is_resolved(self) -> bool:
        return self.status == MarketStatus.RESOLVED

    @property
    def is_open(self) -> bool:
        return self.status == MarketStatus.OPEN

    @property
    def price_no(self) -> int:
        return BPS_SCALE - self.price_yes


def parse_outcome(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().strip('"').lower() in ("true", "1")


def resolve_price(stored: Optional[int], yes_reserve: int, no_reserve: int) -> tuple:
    """
    YES price in bps and where it came from.

    A stored price wins when it is a valid bps value; otherwise the price is
    derived from reserves. The two are not assumed to agree.
    """
    if stored is not None and 0 <= stored <= BPS_SCALE:
        return stored, PriceSource.STORED
    return price_yes_bps(yes_reserve, no_reserve), PriceSource.DERIVED


class MarketStateStore:
    """Per-market state reads behind a TTL cache."""

    def __init__(
        self,
        reader: ChainReader,
        ttl: float = MARKET_STATE_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reader = reader
        self._cache = TTLCache(ttl, clock)

    async def get_market_state(self, market_id: Any, use_cache: bool = True) -> MarketState:
        """
        Current state of ``market_id``.

        Raises:
            MarketNotFoundError: the market has no status entry.
        """
        key = normalize_market_id(market_id)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        results = await asyncio.gather(
            self.reader.read_market_int(MAPPING_MARKET_STATUS, key),
            self.reader.read_market_int(MAPPING_YES_RESERVE, key),
            self.reader.read_market_int(MAPPING_NO_RESERVE, key),
            self.reader.read_market_int(MAPPING_COLLATERAL_POOL, key),
            self.reader.read_market_int(MAPPING_FEE_BPS, key),
            self.reader.read_market_value(MAPPING_OUTCOME, key),
            self.reader.read_market_int(MAPPING_LAST_PRICE_UPDATE, key),
            return_exceptions=True,
        )
        status, yes_reserve, no_reserve, pool, fee_bps, outcome, stored_price = (soft_result(r) for r in results)

        if status is None:
            raise MarketNotFoundError(f"Market {key} not found (no status entry)")
        if status not in tuple(MarketStatus):
            logger.warning(f"Market {key} reports unknown status {status}")

        yes_reserve = yes_reserve or 0
        no_reserve = no_reserve or 0
        price, source = resolve_price(stored_price, yes_reserve, no_reserve)
        state = MarketState(
            market_id=key,
            status=status,
            yes_reserve=yes_reserve,
            no_reserve=no_reserve,
            collateral_pool=pool or 0,
            fee_bps=fee_bps or 0,
            price_yes=price,
            price_source=source,
            outcome=parse_outcome(outcome),
        )
        self._cache.set(key, state)
        return state

    async def get_price_yes(self, market_id: Any) -> int:
        return (await self.get_market_state(market_id)).price_yes

    def invalidate(self, market_id: Optional[Any] = None) -> None:
        """Drop one market's cached state, or all of it."""
        self._cache.invalidate(normalize_market_id(market_id) if market_id is not None else None)

    def clear(self) -> None:
        self._cache.clear()

"""
Binary-outcome constant-product AMM arithmetic.

Mirrors the prediction market program's finalize math exactly:
  - YES price in basis points from the two share reserves
  - collateral → shares swap: mint a complete set, charge the fee on the
    opposite side, swap the remainder into the requested side
  - integer-only, truncating (u128) arithmetic, never floating point

Security features:
  - u128 range checks on every input and intermediate product
  - Slippage floor helper for min_out parameters
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ..constants import BPS_SCALE, U128_MAX
from ..exceptions import ValidationError, ZeroReservesError

logger = logging.getLogger(__name__)

# Price reported for an empty pool
NEUTRAL_PRICE_BPS = BPS_SCALE // 2


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OutcomeSide(str, Enum):
    YES = "yes"
    NO = "no"

    @classmethod
    def parse(cls, value) -> "OutcomeSide":
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.YES if value else cls.NO
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown outcome side: {value!r}") from None


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SwapQuote:
    """Result of swapping ``collateral_in`` into one outcome side."""
    side: OutcomeSide
    collateral_in: int
    minted: int
    fee: int
    after_fee: int
    swapped_out: int
    total_out: int
    yes_reserve_after: int
    no_reserve_after: int

    @property
    def price_after_bps(self) -> int:
        return price_yes_bps(self.yes_reserve_after, self.no_reserve_after)


def _check_u128(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U128_MAX:
        raise ValidationError(f"{name} out of u128 range: {value}")
    return value


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def price_yes_bps(yes_reserve: int, no_reserve: int) -> int:
    """floor(no * 10000 / (yes + no)); 5000 for an empty pool."""
    _check_u128("yes_reserve", yes_reserve)
    _check_u128("no_reserve", no_reserve)
    total = yes_reserve + no_reserve
    if total == 0:
        return NEUTRAL_PRICE_BPS
    return (no_reserve * BPS_SCALE) // total


def price_no_bps(yes_reserve: int, no_reserve: int) -> int:
    return BPS_SCALE - price_yes_bps(yes_reserve, no_reserve)


def bps_to_cents(price_bps: int) -> Decimal:
    return Decimal(price_bps) / Decimal(100)


def format_price_cents(price_bps: int) -> str:
    """``6500`` → ``"65¢"``; fractional cents keep up to two decimals."""
    cents = bps_to_cents(price_bps)
    if cents == cents.to_integral_value():
        return f"{int(cents)}¢"
    return f"{cents.normalize()}¢"


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------

def quote_swap(
    collateral_in: int,
    yes_reserve: int,
    no_reserve: int,
    fee_bps: int,
    side,
) -> SwapQuote:
    """
    Swap ``collateral_in`` into ``side`` shares.

    Raises:
        ZeroReservesError: either reserve is zero.
        ValidationError: inputs out of range.
    """
    side = OutcomeSide.parse(side)
    _check_u128("collateral_in", collateral_in)
    _check_u128("yes_reserve", yes_reserve)
    _check_u128("no_reserve", no_reserve)
    _check_u128("fee_bps", fee_bps)
    if fee_bps > BPS_SCALE:
        raise ValidationError(f"fee_bps must be <= {BPS_SCALE}, got {fee_bps}")
    if yes_reserve == 0 or no_reserve == 0:
        raise ZeroReservesError(
            f"Cannot swap against empty reserves (yes={yes_reserve}, no={no_reserve})"
        )

    minted = collateral_in
    fee = (minted * fee_bps) // BPS_SCALE
    after_fee = minted - fee

    if side == OutcomeSide.YES:
        reserve_side, reserve_other = yes_reserve, no_reserve
    else:
        reserve_side, reserve_other = no_reserve, yes_reserve

    product = after_fee * reserve_side
    _check_u128("after_fee * reserve", product)
    swapped_out = product // (reserve_other + after_fee)
    total_out = minted + swapped_out

    new_side = reserve_side - swapped_out
    new_other = reserve_other + after_fee
    if side == OutcomeSide.YES:
        yes_after, no_after = new_side, new_other
    else:
        yes_after, no_after = new_other, new_side

    return SwapQuote(
        side=side,
        collateral_in=collateral_in,
        minted=minted,
        fee=fee,
        after_fee=after_fee,
        swapped_out=swapped_out,
        total_out=total_out,
        yes_reserve_after=yes_after,
        no_reserve_after=no_after,
    )


def calculate_swap_output(collateral_in: int, yes_reserve: int, no_reserve: int, fee_bps: int, side) -> int:
    """Total ``side`` shares received for ``collateral_in``."""
    return quote_swap(collateral_in, yes_reserve, no_reserve, fee_bps, side).total_out


def min_output_with_slippage(expected: int, slippage_bps: int) -> int:
    """Lowest acceptable output for a ``slippage_bps`` tolerance."""
    _check_u128("expected", expected)
    if not 0 <= slippage_bps <= BPS_SCALE:
        raise ValidationError(f"slippage_bps must be within 0..{BPS_SCALE}, got {slippage_bps}")
    return (expected * (BPS_SCALE - slippage_bps)) // BPS_SCALE

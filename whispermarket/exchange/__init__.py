"""
Whisper Market Exchange

Binary-outcome AMM arithmetic matching the program's finalize logic.
"""

from .amm import (
    NEUTRAL_PRICE_BPS,
    OutcomeSide,
    SwapQuote,
    bps_to_cents,
    calculate_swap_output,
    format_price_cents,
    min_output_with_slippage,
    price_no_bps,
    price_yes_bps,
    quote_swap,
)

__all__ = [
    "NEUTRAL_PRICE_BPS",
    "OutcomeSide",
    "SwapQuote",
    "bps_to_cents",
    "calculate_swap_output",
    "format_price_cents",
    "min_output_with_slippage",
    "price_no_bps",
    "price_yes_bps",
    "quote_swap",
]

"""
On-chain program surface.

Function signatures of the prediction market program and of credits.aleo
(ordered input slot types, from which record slot indices follow), the
per-function fee table, and credit unit conversions.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, Tuple

from .constants import (
    MICROCREDITS_PER_CREDIT,
    PROGRAM_FEE_CREDITS,
    TRANSFER_FEE_CREDITS,
)
from .exceptions import ValidationError


class SlotType(str, Enum):
    """Literal type of one transition input."""
    U8 = "u8"
    U64 = "u64"
    U128 = "u128"
    FIELD = "field"
    BOOL = "bool"
    ADDRESS = "address"
    RECORD = "record"


@dataclass(frozen=True)
class TransitionSignature:
    function_name: str
    slots: Tuple[SlotType, ...]

    @property
    def record_indices(self) -> Tuple[int, ...]:
        return tuple(i for i, slot in enumerate(self.slots) if slot == SlotType.RECORD)

    @property
    def arity(self) -> int:
        return len(self.slots)


def _sig(name: str, *slots: SlotType) -> TransitionSignature:
    return TransitionSignature(name, tuple(slots))


S = SlotType

MARKET_FUNCTIONS: Dict[str, TransitionSignature] = {
    sig.function_name: sig
    for sig in (
        # liquidity, bond, fee_bps, metadata_hash, salt, credits
        _sig("init", S.U64, S.U64, S.U64, S.FIELD, S.FIELD, S.RECORD),
        # market_id, credits, amount, status_hint
        _sig("open_position_private", S.FIELD, S.RECORD, S.U64, S.U8),
        # market_id, credits, amount, position, status_hint
        _sig("deposit_private", S.FIELD, S.RECORD, S.U64, S.RECORD, S.U8),
        # market_id, position, collateral_in, min_out, yes_reserve, no_reserve, fee_bps, status_hint
        _sig("swap_collateral_for_yes_private", S.FIELD, S.RECORD, S.U64, S.U128, S.U128, S.U128, S.U64, S.U8),
        _sig("swap_collateral_for_no_private", S.FIELD, S.RECORD, S.U64, S.U128, S.U128, S.U128, S.U64, S.U8),
        # market_id, position, amount, min_collateral_out
        _sig("merge_tokens_private", S.FIELD, S.RECORD, S.U128, S.U64),
        _sig("withdraw_private", S.FIELD, S.RECORD, S.U64),
        _sig("redeem_private", S.FIELD, S.RECORD, S.BOOL),
        _sig("resolve", S.FIELD, S.BOOL),
        _sig("pause", S.FIELD),
        _sig("unpause", S.FIELD),
    )
}

CREDITS_FUNCTIONS: Dict[str, TransitionSignature] = {
    sig.function_name: sig
    for sig in (
        _sig("transfer_public", S.ADDRESS, S.U64),
        _sig("transfer_private", S.RECORD, S.ADDRESS, S.U64),
        _sig("join", S.RECORD, S.RECORD),
    )
}

del S


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

FUNCTION_FEES_CREDITS: Dict[str, Decimal] = {
    "transfer_public": TRANSFER_FEE_CREDITS,
    "transfer_private": TRANSFER_FEE_CREDITS,
    **{name: PROGRAM_FEE_CREDITS for name in ("join", *MARKET_FUNCTIONS)},
}


def credits_to_microcredits(amount) -> int:
    """Whole microcredits for a credit amount (truncating)."""
    value = Decimal(str(amount)) * MICROCREDITS_PER_CREDIT
    if value < 0:
        raise ValidationError(f"Negative credit amount: {amount}")
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def microcredits_to_credits(amount: int) -> Decimal:
    return Decimal(amount) / Decimal(MICROCREDITS_PER_CREDIT)


def format_credits(amount: int) -> str:
    """``1500000`` → ``"1.500000"``."""
    return f"{microcredits_to_credits(amount):.6f}"


def fee_for_function(function_name: str) -> int:
    """
    Execution fee in microcredits.

    Raises:
        ValidationError: unknown function.
    """
    try:
        return credits_to_microcredits(FUNCTION_FEES_CREDITS[function_name])
    except KeyError:
        raise ValidationError(f"No fee configured for function: {function_name}") from None


def signature_for(program_function: str, credits: bool = False) -> TransitionSignature:
    table = CREDITS_FUNCTIONS if credits else MARKET_FUNCTIONS
    try:
        return table[program_function]
    except KeyError:
        raise ValidationError(f"Unknown transition: {program_function}") from None

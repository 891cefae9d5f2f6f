"""
Credit record selection.

Coin selection over the unspent credit records a wallet returns:
  - value extraction from plaintext strings and decrypted objects
  - an opaque sentinel value for ciphertext-held records of unknown value
  - identity (never value) based distinctness for spend + fee pairs
  - deterministic single-record and spend/fee selection with shortfall
    reporting
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..exceptions import DoubleSpendException, InsufficientBalanceError
from .sanitizer import is_ciphertext, is_record_spent, record_fingerprint

logger = logging.getLogger(__name__)

# Value assigned to records we can hold but not read
OPAQUE_RECORD_VALUE = 1

CIPHERTEXT_KEYS = ("recordCiphertext", "ciphertext", "record", "value")
IDENTITY_KEYS = ("id", "commitment", "serial_number", "tag")

_MICROCREDITS_RE = re.compile(r'microcredits["\s:]+([0-9]+)')
_NONCE_RE = re.compile(r"_nonce\s*:\s*([0-9]+group)")
_LEADING_DIGITS_RE = re.compile(r"^\s*\"?([0-9]+)")


class SelectionPolicy(str, Enum):
    """Which sufficient record to take when several qualify."""
    FIRST_SUFFICIENT = "first_sufficient"
    SMALLEST_SUFFICIENT = "smallest_sufficient"


@dataclass(frozen=True)
class CreditCandidate:
    """An unspent credit record with its known (or sentinel) value."""
    record: Any
    value: int
    record_id: str
    opaque: bool = False


@dataclass(frozen=True)
class SpendSelection:
    spend: CreditCandidate
    fee: CreditCandidate

    @property
    def record_ids(self) -> Tuple[str, str]:
        return self.spend.record_id, self.fee.record_id


# ---------------------------------------------------------------------------
# Identity and value
# ---------------------------------------------------------------------------

def record_identity(record: Any) -> str:
    """
    Stable identity of a record.

    Explicit ids (id, commitment, ...) win; otherwise the record nonce from
    the plaintext, otherwise a content fingerprint. Two records with equal
    values never share an identity unless their contents are identical.
    """
    if isinstance(record, Mapping):
        for key in IDENTITY_KEYS:
            value = record.get(key)
            if value:
                return str(value)
        ciphertext = record.get("recordCiphertext")
        if isinstance(ciphertext, str) and ciphertext:
            return f"ct:{record_fingerprint(ciphertext)}"
        nonce = _record_nonce(record)
        if nonce:
            return f"nonce:{nonce}"
    elif isinstance(record, str):
        match = _NONCE_RE.search(record)
        if match:
            return f"nonce:{match.group(1)}"
    return f"fp:{record_fingerprint(record)}"


def _record_nonce(record: Mapping[str, Any]) -> Optional[str]:
    data = record.get("data")
    for source in (record, data if isinstance(data, Mapping) else {}):
        nonce = source.get("_nonce")
        if nonce:
            return str(nonce).replace(".public", "").replace(".private", "")
    for key in ("recordPlaintext", "record_plaintext", "plaintext", "record", "data"):
        text = record.get(key)
        if isinstance(text, str):
            match = _NONCE_RE.search(text)
            if match:
                return match.group(1)
    return None


def are_records_distinct(a: Any, b: Any) -> bool:
    return record_identity(a) != record_identity(b)


def _parse_amount(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        match = _LEADING_DIGITS_RE.match(value)
        if match:
            return int(match.group(1))
    return 0


def has_ciphertext(record: Any) -> bool:
    if isinstance(record, str):
        return is_ciphertext(record)
    if isinstance(record, Mapping):
        return any(is_ciphertext(record.get(key)) for key in CIPHERTEXT_KEYS)
    return False


def extract_record_value(record: Any) -> int:
    """
    Microcredits held by ``record``.

    Ciphertext-held records return ``OPAQUE_RECORD_VALUE``; unreadable
    records return 0.
    """
    if has_ciphertext(record):
        return OPAQUE_RECORD_VALUE
    if isinstance(record, str):
        match = _MICROCREDITS_RE.search(record)
        return int(match.group(1)) if match else 0
    if not isinstance(record, Mapping):
        return 0

    data = record.get("data")
    if isinstance(data, Mapping):
        for key in ("microcredits", "Microcredits"):
            if key in data:
                return _parse_amount(data[key])
    for key in ("microcredits", "amount"):
        if key in record:
            return _parse_amount(record[key])
    for key in ("recordPlaintext", "plaintext", "data"):
        text = record.get(key)
        if isinstance(text, str):
            match = _MICROCREDITS_RE.search(text)
            if match:
                return int(match.group(1))
    if isinstance(data, str):
        try:
            return extract_record_value(json.loads(data))
        except ValueError:
            return 0
    return 0


def filter_unspent_records(records: Iterable[Any]) -> List[CreditCandidate]:
    """Unspent records with a positive (or opaque) value, in input order."""
    candidates: List[CreditCandidate] = []
    for record in records:
        if record is None or is_record_spent(record):
            continue
        opaque = has_ciphertext(record)
        value = OPAQUE_RECORD_VALUE if opaque else extract_record_value(record)
        if value <= 0:
            continue
        candidates.append(
            CreditCandidate(record=record, value=value, record_id=record_identity(record), opaque=opaque)
        )
    logger.debug(f"{len(candidates)} unspent credit record(s) usable for selection")
    return candidates


def total_known_balance(candidates: Sequence[CreditCandidate]) -> int:
    return sum(c.value for c in candidates if not c.opaque)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def _ordered(candidates: Sequence[CreditCandidate], policy: SelectionPolicy) -> List[CreditCandidate]:
    if policy == SelectionPolicy.SMALLEST_SUFFICIENT:
        # sorted() is stable, so equal values keep wallet order
        return sorted(candidates, key=lambda c: c.value)
    return list(candidates)


def pick_record_for_amount(
    candidates: Sequence[CreditCandidate],
    needed: int,
    policy: SelectionPolicy = SelectionPolicy.FIRST_SUFFICIENT,
    exclude: Sequence[str] = (),
) -> Optional[CreditCandidate]:
    """
    Deterministically pick one record covering ``needed``.

    Returns None when nothing qualifies. When every candidate is opaque the
    first one is returned and validation is left to wallet signing.
    """
    pool = [c for c in candidates if c.record_id not in exclude]
    if not pool:
        return None
    if all(c.opaque for c in pool):
        logger.debug("All candidate records are opaque; deferring amount check to the wallet")
        return pool[0]
    for candidate in _ordered(pool, policy):
        if not candidate.opaque and candidate.value >= needed:
            return candidate
    return None


def select_record_for_amount(
    records: Iterable[Any],
    needed: int,
    policy: SelectionPolicy = SelectionPolicy.FIRST_SUFFICIENT,
) -> CreditCandidate:
    """Like :func:`pick_record_for_amount` but over raw records, raising on failure."""
    candidates = filter_unspent_records(records)
    chosen = pick_record_for_amount(candidates, needed, policy)
    if chosen is None:
        available = max((c.value for c in candidates if not c.opaque), default=0)
        raise InsufficientBalanceError(needed, available)
    return chosen


def select_spend_and_fee(
    records: Iterable[Any],
    spend_amount: int,
    fee_amount: int,
    policy: SelectionPolicy = SelectionPolicy.FIRST_SUFFICIENT,
) -> SpendSelection:
    """
    Pick two records of distinct identity: one for the spend, one for the fee.

    Raises:
        InsufficientBalanceError: no record covers the spend, or none of the
            remaining records covers the fee.
        DoubleSpendException: only the spend record could pay the fee.
    """
    candidates = filter_unspent_records(records)
    known_total = total_known_balance(candidates)

    spend = pick_record_for_amount(candidates, spend_amount, policy)
    if spend is None:
        largest = max((c.value for c in candidates if not c.opaque), default=0)
        raise InsufficientBalanceError(spend_amount, largest)

    fee = pick_record_for_amount(candidates, fee_amount, policy, exclude=(spend.record_id,))
    if fee is None:
        others = [c for c in candidates if c.record_id != spend.record_id]
        covers_both = spend.opaque or spend.value >= spend_amount + fee_amount
        if not others and covers_both:
            raise DoubleSpendException(
                f"Only record {spend.record_id} is available for both the spend and the fee; "
                f"split it into a separate fee record first",
                record_id=spend.record_id,
            )
        raise InsufficientBalanceError(
            spend_amount + fee_amount,
            known_total,
            message=(
                f"Insufficient balance for a separate fee record: need {spend_amount} microcredits "
                f"to spend plus a distinct record of {fee_amount} microcredits for the fee; "
                f"{len(candidates)} record(s) hold {known_total} microcredits in total"
            ),
        )

    if not are_records_distinct(spend.record, fee.record):
        raise DoubleSpendException(
            f"Spend and fee selection resolved to the same record {spend.record_id}",
            record_id=spend.record_id,
        )
    logger.debug(f"Selected spend record {spend.record_id} and fee record {fee.record_id}")
    return SpendSelection(spend=spend, fee=fee)

"""
Position record matching and aggregation.

Position records are private per-market holdings (YES/NO shares plus
collateral). This module:
  - normalizes market identifiers to their bare digit form and compares them
    with a two-tier relation (exact normalized, then numeric core)
  - parses position fields out of plaintext or decrypted objects
  - aggregates unspent records per market
  - chooses records for redemption and for deposit/swap spending
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..exceptions import NoMatchingRecordError, ValidationError
from .sanitizer import PLAINTEXT_KEYS, is_record_spent, record_fingerprint, struct_to_plaintext

logger = logging.getLogger(__name__)

POSITION_PLAINTEXT_KEYS = PLAINTEXT_KEYS + ("decryptedRecord", "decrypted")
POSITION_FIELDS = ("yes_shares", "no_shares", "collateral_available", "collateral_committed")

_MARKET_ID_SUFFIX_RE = re.compile(r"(\.private|\.public|\.field|field)$", re.IGNORECASE)
_NUMERIC_CORE_RE = re.compile(r"\d+")
_MARKET_ID_PATTERNS = (
    re.compile(r"market_id\s*:\s*\"?([0-9]+field)"),
    re.compile(r"market_id\s*:\s*\"?([0-9]+)"),
    re.compile(r"market_id\s*:\s*\"?([^,\s}\"]+)"),
)


# ---------------------------------------------------------------------------
# Market identifiers
# ---------------------------------------------------------------------------

def normalize_market_id(value: Any) -> str:
    """
    Canonical bare form of a market id.

    ``"5field"``, ``"5.field"``, ``"5.private"``, ``'"5"'`` all become ``"5"``.
    Idempotent.
    """
    if value is None:
        return ""
    text = str(value).strip()
    while len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1].strip()
    previous = None
    while previous != text:
        previous = text
        text = _MARKET_ID_SUFFIX_RE.sub("", text).strip()
    return text


def market_id_numeric_core(value: Any) -> str:
    """Leading digit run of a market id, or ``""``."""
    match = _NUMERIC_CORE_RE.search(normalize_market_id(value))
    return match.group(0) if match else ""


def market_ids_match(a: Any, b: Any) -> bool:
    """Exact normalized equality, falling back to numeric-core equality."""
    left, right = normalize_market_id(a), normalize_market_id(b)
    if not left or not right:
        return False
    if left == right:
        return True
    core = market_id_numeric_core(left)
    return bool(core) and core == market_id_numeric_core(right)


def to_market_id_field(market_id: Any) -> str:
    """Field literal used as a mapping key or transition input."""
    normalized = normalize_market_id(market_id)
    if not normalized:
        raise ValidationError(f"Invalid market id: {market_id!r}")
    return f"{normalized}field"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

@dataclass
class Position:
    """Decoded contents of a position record (or an aggregate of several)."""
    market_id: str
    yes_shares: int = 0
    no_shares: int = 0
    collateral_available: int = 0
    collateral_committed: int = 0
    payout_claimed: bool = False

    def winning_shares(self, outcome: bool) -> int:
        return self.yes_shares if outcome else self.no_shares


@dataclass
class AggregatedPosition:
    """Per-market sum of unspent position records."""
    position: Position
    best_record: Any
    records: List[Any] = field(default_factory=list)


def position_plaintext(record: Any) -> Optional[str]:
    """Plaintext view of a position record, if one is available."""
    if isinstance(record, str):
        return record
    if not isinstance(record, Mapping):
        return None
    for key in POSITION_PLAINTEXT_KEYS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, Mapping) and "market_id" in value:
            return struct_to_plaintext(value)
    if "market_id" in record:
        return struct_to_plaintext(record)
    return None


def extract_value_from_plaintext(plaintext: str, key: str) -> Optional[str]:
    match = re.search(rf"{re.escape(key)}\s*:\s*([^,\n}}\]]+)", plaintext)
    return match.group(1).strip() if match else None


def parse_u128(value: Optional[str]) -> int:
    if not value:
        return 0
    text = value.strip().strip('"').replace(".private", "").replace(".public", "").replace("u128", "")
    match = _NUMERIC_CORE_RE.search(text)
    return int(match.group(0)) if match else 0


def parse_bool_literal(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().strip('"').replace(".private", "").replace(".public", "").lower() == "true"


def extract_market_id_from_plaintext(plaintext: str) -> Optional[str]:
    for pattern in _MARKET_ID_PATTERNS:
        match = pattern.search(plaintext)
        if match:
            normalized = normalize_market_id(match.group(1))
            if normalized:
                return normalized
    return None


def record_market_id(record: Any) -> Optional[str]:
    """Market id carried by a position record, normalized."""
    if isinstance(record, Mapping):
        for source in (record, record.get("data")):
            if isinstance(source, Mapping) and source.get("market_id") is not None:
                return normalize_market_id(source["market_id"]) or None
    plaintext = position_plaintext(record)
    return extract_market_id_from_plaintext(plaintext) if plaintext else None


def parse_position_record(record: Any) -> Position:
    """
    Decode a position record.

    Raises:
        ValidationError: record carries no market id.
    """
    plaintext = position_plaintext(record)
    market_id = record_market_id(record)
    if plaintext is None or not market_id:
        raise ValidationError("Record is not a decrypted position record")
    return Position(
        market_id=market_id,
        yes_shares=parse_u128(extract_value_from_plaintext(plaintext, "yes_shares")),
        no_shares=parse_u128(extract_value_from_plaintext(plaintext, "no_shares")),
        collateral_available=parse_u128(extract_value_from_plaintext(plaintext, "collateral_available")),
        collateral_committed=parse_u128(extract_value_from_plaintext(plaintext, "collateral_committed")),
        payout_claimed=parse_bool_literal(extract_value_from_plaintext(plaintext, "payout_claimed")),
    )


def _try_parse(record: Any) -> Optional[Position]:
    try:
        return parse_position_record(record)
    except ValidationError:
        return None


def dedupe_records(records: Iterable[Any]) -> List[Any]:
    """Drop records with identical content, keeping first occurrence."""
    seen = set()
    unique = []
    for record in records:
        fingerprint = record_fingerprint(record)
        if fingerprint in seen:
            continue
        seen.add(fingerprint)
        unique.append(record)
    return unique


def normalize_records_response(response: Any) -> List[Any]:
    """Wallets answer with a list, ``{"records": [...]}``, a single record or nothing."""
    if response is None:
        return []
    if isinstance(response, list):
        return response
    if isinstance(response, Mapping) and isinstance(response.get("records"), list):
        return response["records"]
    return [response]


# ---------------------------------------------------------------------------
# Matching and selection
# ---------------------------------------------------------------------------

def matching_position_records(records: Iterable[Any], market_id: Any) -> List[tuple]:
    """``(record, Position)`` pairs for unspent records of ``market_id``."""
    matches = []
    for record in records:
        if is_record_spent(record):
            continue
        position = _try_parse(record)
        if position is not None and market_ids_match(position.market_id, market_id):
            matches.append((record, position))
    return matches


def find_position_record_for_market(
    records: Iterable[Any],
    market_id: Any,
    min_collateral: Optional[int] = None,
) -> Optional[Any]:
    """
    Position record to spend for ``market_id``.

    Prefers the largest ``collateral_available`` that covers
    ``min_collateral``, else the overall largest. Ties keep input order.
    """
    matches = matching_position_records(records, market_id)
    if not matches:
        return None

    def largest(pairs):
        best = pairs[0]
        for pair in pairs[1:]:
            if pair[1].collateral_available > best[1].collateral_available:
                best = pair
        return best

    if min_collateral is not None:
        sufficient = [pair for pair in matches if pair[1].collateral_available >= min_collateral]
        if sufficient:
            return largest(sufficient)[0]
    return largest(matches)[0]


def select_position_record(records: Iterable[Any], market_id: Any, min_collateral: Optional[int] = None) -> Any:
    record = find_position_record_for_market(records, market_id, min_collateral)
    if record is None:
        raise NoMatchingRecordError(f"No position record found for market {normalize_market_id(market_id)}")
    return record


def aggregate_positions(records: Iterable[Any]) -> Dict[str, AggregatedPosition]:
    """
    Sum unspent position records per canonical market id.

    ``payout_claimed`` is true only when every record of the market is
    claimed. ``best_record`` is the unclaimed record with the most available
    collateral (any record when all are claimed).
    """
    grouped: Dict[str, List[tuple]] = {}
    for record in records:
        if is_record_spent(record):
            continue
        position = _try_parse(record)
        if position is None:
            continue
        key = market_id_numeric_core(position.market_id) or position.market_id
        grouped.setdefault(key, []).append((record, position))

    aggregated: Dict[str, AggregatedPosition] = {}
    for pairs in grouped.values():
        market_id = pairs[0][1].market_id
        total = Position(market_id=market_id, payout_claimed=all(p.payout_claimed for _, p in pairs))
        for _, position in pairs:
            total.yes_shares += position.yes_shares
            total.no_shares += position.no_shares
            total.collateral_available += position.collateral_available
            total.collateral_committed += position.collateral_committed

        unclaimed = [pair for pair in pairs if not pair[1].payout_claimed] or pairs
        best = unclaimed[0]
        for pair in unclaimed[1:]:
            if pair[1].collateral_available > best[1].collateral_available:
                best = pair
        aggregated[market_id] = AggregatedPosition(
            position=total,
            best_record=best[0],
            records=[record for record, _ in pairs],
        )
    return aggregated


def pick_record_to_redeem(records: Iterable[Any], market_id: Any, outcome: bool) -> Optional[Any]:
    """
    Unspent, unclaimed record of ``market_id`` with the most winning shares.

    Records holding zero winning shares are never chosen.
    """
    best = None
    best_shares = 0
    for record, position in matching_position_records(records, market_id):
        if position.payout_claimed:
            continue
        shares = position.winning_shares(outcome)
        if shares > best_shares:
            best, best_shares = record, shares
    return best


def select_record_to_redeem(records: Iterable[Any], market_id: Any, outcome: bool) -> Any:
    record = pick_record_to_redeem(records, market_id, outcome)
    if record is None:
        side = "YES" if outcome else "NO"
        raise NoMatchingRecordError(
            f"No unclaimed position with {side} shares for market {normalize_market_id(market_id)}"
        )
    return record

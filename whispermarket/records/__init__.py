"""
Whisper Market Records

Wallet record handling:
  - Record Normalizer (plaintext extraction, ciphertext rejection)
  - Record Selector (credit coin selection, spend + fee pairs)
  - Position Matcher/Aggregator (market id matching, per-market sums)
"""

from .sanitizer import (
    is_ciphertext,
    is_record_spent,
    normalize_record_input,
    record_fingerprint,
    redact_for_log,
    sanitize_for_intent_wallet,
    struct_to_plaintext,
)
from .credits import (
    OPAQUE_RECORD_VALUE,
    CreditCandidate,
    SelectionPolicy,
    SpendSelection,
    are_records_distinct,
    extract_record_value,
    filter_unspent_records,
    pick_record_for_amount,
    record_identity,
    select_record_for_amount,
    select_spend_and_fee,
    total_known_balance,
)
from .positions import (
    AggregatedPosition,
    Position,
    aggregate_positions,
    dedupe_records,
    find_position_record_for_market,
    market_ids_match,
    normalize_market_id,
    parse_position_record,
    pick_record_to_redeem,
    select_position_record,
    select_record_to_redeem,
    to_market_id_field,
)

__all__ = [
    # Normalizer
    "is_ciphertext",
    "is_record_spent",
    "normalize_record_input",
    "record_fingerprint",
    "redact_for_log",
    "sanitize_for_intent_wallet",
    "struct_to_plaintext",
    # Selector
    "OPAQUE_RECORD_VALUE",
    "CreditCandidate",
    "SelectionPolicy",
    "SpendSelection",
    "are_records_distinct",
    "extract_record_value",
    "filter_unspent_records",
    "pick_record_for_amount",
    "record_identity",
    "select_record_for_amount",
    "select_spend_and_fee",
    "total_known_balance",
    # Positions
    "AggregatedPosition",
    "Position",
    "aggregate_positions",
    "dedupe_records",
    "find_position_record_for_market",
    "market_ids_match",
    "normalize_market_id",
    "parse_position_record",
    "pick_record_to_redeem",
    "select_position_record",
    "select_record_to_redeem",
    "to_market_id_field",
]

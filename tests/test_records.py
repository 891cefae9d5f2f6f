"""
Test suite for wallet record handling

Covers:
  - Record Normalizer (plaintext shapes, ciphertext rejection, redaction)
  - Record Selector (value extraction, single and spend+fee selection)
  - Market id normalization and two-tier matching
  - Position parsing, aggregation and redemption choice
"""

import pytest

# ---------------------------------------------------------------------------
# Normalizer imports
# ---------------------------------------------------------------------------
from whispermarket.records.sanitizer import (
    is_ciphertext,
    is_record_spent,
    normalize_record_input,
    record_fingerprint,
    redact_for_log,
    sanitize_for_intent_wallet,
    struct_to_plaintext,
)

# ---------------------------------------------------------------------------
# Selector imports
# ---------------------------------------------------------------------------
from whispermarket.records.credits import (
    OPAQUE_RECORD_VALUE,
    SelectionPolicy,
    are_records_distinct,
    extract_record_value,
    filter_unspent_records,
    pick_record_for_amount,
    record_identity,
    select_record_for_amount,
    select_spend_and_fee,
    total_known_balance,
)

# ---------------------------------------------------------------------------
# Position imports
# ---------------------------------------------------------------------------
from whispermarket.records.positions import (
    aggregate_positions,
    dedupe_records,
    find_position_record_for_market,
    market_ids_match,
    normalize_market_id,
    normalize_records_response,
    parse_position_record,
    pick_record_to_redeem,
    select_position_record,
    select_record_to_redeem,
    to_market_id_field,
)

from whispermarket.exceptions import (
    DoubleSpendException,
    InsufficientBalanceError,
    NoMatchingRecordError,
    NotDecryptedError,
    ValidationError,
)

from conftest import ADDR, MARKET_ID, credit_plaintext, credit_record, position_plaintext, position_record

CIPHERTEXT = "record1" + "a" * 120


# ============================================================================
#  RECORD NORMALIZER
# ============================================================================

class TestNormalizeRecordInput:
    """Every accepted shape reduces to one struct string."""

    def test_plain_string_passes_through(self):
        text = credit_plaintext(100, 7)
        assert normalize_record_input(text) == text

    def test_quoted_and_escaped_string(self):
        raw = '"{ owner: aleo1abc.private,\\n  microcredits: 5u64.private }"'
        assert normalize_record_input(raw) == "{ owner: aleo1abc.private, microcredits: 5u64.private }"

    def test_object_with_plaintext_key(self):
        record = {"plaintext": credit_plaintext(10, 1), "spent": False}
        assert normalize_record_input(record) == credit_plaintext(10, 1)

    def test_plaintext_key_priority(self):
        record = {"recordPlaintext": "{ a: 1u8 }", "plaintext": "{ b: 2u8 }"}
        assert normalize_record_input(record) == "{ a: 1u8 }"

    def test_data_struct_merges_owner_and_nonce(self):
        record = {
            "owner": f"{ADDR}.private",
            "_nonce": "55group.public",
            "data": {"microcredits": "10u64.private"},
        }
        text = normalize_record_input(record)
        assert text.startswith(f"{{ owner: {ADDR}.private, microcredits: 10u64.private")
        assert "_nonce: 55group.public" in text

    def test_decrypted_struct_object(self):
        record = {"owner": f"{ADDR}.private", "microcredits": "3u64.private", "flag": True}
        assert normalize_record_input(record) == (
            f"{{ owner: {ADDR}.private, microcredits: 3u64.private, flag: true }}"
        )

    def test_none_rejected(self):
        with pytest.raises(ValidationError, match="null"):
            normalize_record_input(None)

    def test_ciphertext_string_rejected(self):
        with pytest.raises(NotDecryptedError):
            normalize_record_input(CIPHERTEXT)

    def test_object_holding_only_ciphertext_rejected(self):
        with pytest.raises(NotDecryptedError):
            normalize_record_input({"record": CIPHERTEXT})

    def test_object_without_plaintext_rejected(self):
        with pytest.raises(NotDecryptedError, match="decrypt"):
            normalize_record_input({"id": "r1", "spent": False})

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported"):
            normalize_record_input(42)

    def test_not_decrypted_is_validation_error(self):
        assert issubclass(NotDecryptedError, ValidationError)


class TestSanitizerHelpers:

    def test_is_ciphertext(self):
        assert is_ciphertext(CIPHERTEXT)
        assert not is_ciphertext("record1short")
        assert not is_ciphertext(credit_plaintext(1, 1))
        assert not is_ciphertext(None)

    def test_is_record_spent_variants(self):
        assert is_record_spent({"spent": True})
        assert is_record_spent({"spent": 1})
        assert is_record_spent({"spent": "true"})
        assert not is_record_spent({"spent": "false"})
        assert not is_record_spent({})
        assert not is_record_spent("{ a: 1u8 }")

    def test_struct_to_plaintext_nested_and_none(self):
        fields = {"a": "1u8", "b": None, "c": {"d": False}}
        assert struct_to_plaintext(fields) == "{ a: 1u8, c: { d: false } }"

    def test_redact_for_log(self):
        text = "x" * 100
        assert redact_for_log(text, 10) == '[100 chars] "xxxxxxxxxx..."'
        assert redact_for_log("") == "(empty)"
        assert redact_for_log('"quoted"') == '[8 chars] "quoted"'

    def test_sanitize_for_intent_wallet(self):
        assert sanitize_for_intent_wallet("{ a: 1u8,\x07\n   b: 2u8 }") == "{ a: 1u8, b: 2u8 }"

    def test_fingerprint_stable_across_key_order(self):
        assert record_fingerprint({"a": 1, "b": 2}) == record_fingerprint({"b": 2, "a": 1})
        assert record_fingerprint("  x ") == record_fingerprint("x")


# ============================================================================
#  RECORD SELECTOR
# ============================================================================

class TestExtractRecordValue:

    def test_plaintext_string(self):
        assert extract_record_value(credit_plaintext(1_500_000, 1)) == 1_500_000

    def test_data_microcredits(self):
        assert extract_record_value({"data": {"microcredits": "250u64.private"}}) == 250

    def test_top_level_amount(self):
        assert extract_record_value({"amount": 77}) == 77

    def test_plaintext_field(self):
        assert extract_record_value(credit_record(900, 3)) == 900

    def test_json_data_string(self):
        assert extract_record_value({"data": '{"microcredits": "42u64"}'}) == 42

    def test_ciphertext_is_opaque(self):
        assert extract_record_value({"recordCiphertext": CIPHERTEXT}) == OPAQUE_RECORD_VALUE

    def test_unreadable_is_zero(self):
        assert extract_record_value({"foo": "bar"}) == 0
        assert extract_record_value(None) == 0


class TestRecordIdentity:

    def test_explicit_id_wins(self):
        assert record_identity({"id": "r-1", "recordPlaintext": credit_plaintext(1, 9)}) == "r-1"

    def test_nonce_from_plaintext(self):
        assert record_identity(credit_record(5, 9)) == "nonce:9group"
        assert record_identity(credit_plaintext(5, 9)) == "nonce:9group"

    def test_equal_values_are_distinct_records(self):
        assert are_records_distinct(credit_record(100, 1), credit_record(100, 2))

    def test_same_record_not_distinct(self):
        assert not are_records_distinct(credit_record(100, 1), credit_record(100, 1))

    def test_fingerprint_fallback(self):
        assert record_identity({"foo": 1}).startswith("fp:")


class TestFilterUnspent:

    def test_skips_spent_and_empty(self):
        records = [credit_record(10, 1, spent=True), credit_record(0, 2), credit_record(30, 3), None]
        candidates = filter_unspent_records(records)
        assert [c.value for c in candidates] == [30]

    def test_opaque_records_kept(self):
        candidates = filter_unspent_records([{"recordCiphertext": CIPHERTEXT}])
        assert candidates[0].opaque
        assert candidates[0].value == OPAQUE_RECORD_VALUE

    def test_total_known_balance_ignores_opaque(self):
        candidates = filter_unspent_records([credit_record(10, 1), {"recordCiphertext": CIPHERTEXT}])
        assert total_known_balance(candidates) == 10


class TestSingleSelection:

    def test_first_sufficient_keeps_wallet_order(self):
        records = [credit_record(50, 1), credit_record(500, 2), credit_record(200, 3)]
        chosen = select_record_for_amount(records, 150)
        assert chosen.value == 500

    def test_smallest_sufficient(self):
        records = [credit_record(50, 1), credit_record(500, 2), credit_record(200, 3)]
        chosen = select_record_for_amount(records, 150, SelectionPolicy.SMALLEST_SUFFICIENT)
        assert chosen.value == 200

    def test_smallest_sufficient_tie_keeps_order(self):
        records = [credit_record(200, 1), credit_record(200, 2)]
        chosen = select_record_for_amount(records, 100, SelectionPolicy.SMALLEST_SUFFICIENT)
        assert chosen.record_id == "nonce:1group"

    def test_deterministic(self):
        records = [credit_record(300, i) for i in range(5)]
        ids = {select_record_for_amount(records, 100).record_id for _ in range(10)}
        assert ids == {"nonce:0group"}

    def test_all_opaque_returns_first(self):
        records = [{"id": "a", "recordCiphertext": CIPHERTEXT}, {"id": "b", "recordCiphertext": CIPHERTEXT}]
        candidates = filter_unspent_records(records)
        assert pick_record_for_amount(candidates, 10**9).record_id == "a"

    def test_insufficient_reports_shortfall(self):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            select_record_for_amount([credit_record(400_000, 1)], 1_000_000)
        err = exc_info.value
        assert err.needed == 1_000_000
        assert err.available == 400_000
        assert err.shortfall == 600_000
        assert "1.000000 credits" in str(err)
        assert "600000 microcredits" in str(err)


class TestSpendAndFeeSelection:

    def test_distinct_records(self):
        records = [credit_record(2_000_000, 1), credit_record(100_000, 2)]
        selection = select_spend_and_fee(records, 1_000_000, 50_000)
        assert selection.spend.value == 2_000_000
        assert selection.fee.value == 100_000
        assert selection.record_ids == ("nonce:1group", "nonce:2group")

    def test_equal_values_never_share_identity(self):
        records = [credit_record(100, i) for i in range(4)]
        selection = select_spend_and_fee(records, 100, 100)
        assert selection.spend.record_id != selection.fee.record_id

    def test_single_record_is_double_spend(self):
        with pytest.raises(DoubleSpendException) as exc_info:
            select_spend_and_fee([credit_record(5_000_000, 1)], 1_000_000, 50_000)
        assert exc_info.value.record_id == "nonce:1group"

    def test_no_fee_record_is_insufficient(self):
        records = [credit_record(1_000_000, 1), credit_record(10, 2)]
        with pytest.raises(InsufficientBalanceError, match="separate fee record"):
            select_spend_and_fee(records, 1_000_000, 50_000)

    def test_no_spend_record(self):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            select_spend_and_fee([credit_record(10, 1), credit_record(20, 2)], 1_000, 5)
        assert exc_info.value.available == 20


# ============================================================================
#  MARKET IDS
# ============================================================================

class TestMarketIds:

    @pytest.mark.parametrize("raw", ["5field", "5.private", '"5"', "5.field", "5", " 5field.private "])
    def test_normalization(self, raw):
        assert normalize_market_id(raw) == "5"

    def test_idempotent(self):
        once = normalize_market_id('"123field.public"')
        assert normalize_market_id(once) == once == "123"

    def test_none_is_empty(self):
        assert normalize_market_id(None) == ""

    def test_exact_match(self):
        assert market_ids_match("123field", '"123"')

    def test_numeric_core_match(self):
        assert market_ids_match("123field.private", "123u64")

    def test_mismatch(self):
        assert not market_ids_match("123", "124")
        assert not market_ids_match("", "")

    def test_to_field(self):
        assert to_market_id_field("77.private") == "77field"
        with pytest.raises(ValidationError):
            to_market_id_field("")


# ============================================================================
#  POSITIONS
# ============================================================================

class TestParsePosition:

    def test_plaintext_fields(self):
        position = parse_position_record(position_record(yes_shares=5, no_shares=2, collateral_available=100))
        assert position.market_id == MARKET_ID
        assert position.yes_shares == 5
        assert position.no_shares == 2
        assert position.collateral_available == 100
        assert position.payout_claimed is False

    def test_claimed_flag(self):
        assert parse_position_record(position_plaintext(payout_claimed=True)).payout_claimed

    def test_not_a_position(self):
        with pytest.raises(ValidationError):
            parse_position_record(credit_record(10, 1))

    def test_records_response_shapes(self):
        record = position_record()
        assert normalize_records_response(None) == []
        assert normalize_records_response([record]) == [record]
        assert normalize_records_response({"records": [record]}) == [record]
        assert normalize_records_response(record) == [record]

    def test_dedupe(self):
        record = position_record(nonce=4)
        assert dedupe_records([record, dict(record), position_record(nonce=5)]) == [record, position_record(nonce=5)]


class TestAggregatePositions:

    def test_sums_per_market(self):
        records = [
            position_record(yes_shares=5, collateral_available=100, nonce=1),
            position_record(yes_shares=7, collateral_available=200, payout_claimed=True, nonce=2),
        ]
        aggregated = aggregate_positions(records)
        assert list(aggregated) == [MARKET_ID]
        total = aggregated[MARKET_ID]
        assert total.position.yes_shares == 12
        assert total.position.collateral_available == 300
        assert total.position.payout_claimed is False
        assert total.best_record is records[0]
        assert len(total.records) == 2

    def test_all_claimed(self):
        records = [position_record(payout_claimed=True, nonce=i) for i in range(2)]
        assert aggregate_positions(records)[MARKET_ID].position.payout_claimed

    def test_spent_records_excluded(self):
        records = [position_record(yes_shares=5, nonce=1), position_record(yes_shares=9, spent=True, nonce=2)]
        assert aggregate_positions(records)[MARKET_ID].position.yes_shares == 5

    def test_separate_markets(self):
        records = [position_record(market_id="111", nonce=1), position_record(market_id="222", nonce=2)]
        assert set(aggregate_positions(records)) == {"111", "222"}


class TestPositionSelection:

    def test_largest_sufficient_collateral(self):
        records = [
            position_record(collateral_available=50, nonce=1),
            position_record(collateral_available=300, nonce=2),
            position_record(collateral_available=200, nonce=3),
        ]
        assert find_position_record_for_market(records, MARKET_ID, 100) is records[1]

    def test_falls_back_to_largest(self):
        records = [position_record(collateral_available=50, nonce=1), position_record(collateral_available=80, nonce=2)]
        assert find_position_record_for_market(records, MARKET_ID, 1_000) is records[1]

    def test_other_market_not_matched(self):
        with pytest.raises(NoMatchingRecordError):
            select_position_record([position_record(market_id="999")], MARKET_ID)

    def test_redeem_picks_most_winning_shares(self):
        records = [position_record(yes_shares=3, nonce=1), position_record(yes_shares=9, nonce=2)]
        assert pick_record_to_redeem(records, MARKET_ID, True) is records[1]

    def test_redeem_never_picks_zero_winning(self):
        records = [position_record(yes_shares=0, no_shares=50, collateral_available=999)]
        assert pick_record_to_redeem(records, MARKET_ID, True) is None
        with pytest.raises(NoMatchingRecordError, match="YES"):
            select_record_to_redeem(records, MARKET_ID, True)

    def test_redeem_skips_claimed(self):
        records = [
            position_record(no_shares=10, payout_claimed=True, nonce=1),
            position_record(no_shares=4, nonce=2),
        ]
        assert pick_record_to_redeem(records, MARKET_ID, False) is records[1]

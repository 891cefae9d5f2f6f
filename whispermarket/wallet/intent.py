"""
Transaction intent construction.

Builds the request handed to a wallet's ``execute_transaction``:

  - EXPLICIT mode: record slots carry normalized decrypted plaintext chosen
    by the client.
  - INTENT mode: record slots carry a typed placeholder and are flagged in
    ``record_indices``; the wallet substitutes a real record when signing.

Record slots sit at the indices fixed by the transition signature in both
modes. Also home to transaction id extraction from wallet results.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..constants import CREDITS_RECORD_TYPE, TRANSACTION_ID_PREFIX
from ..exceptions import (
    DoubleSpendException,
    InvalidRecordSlotError,
    MissingTransactionIdError,
    ValidationError,
)
from ..program import SlotType, TransitionSignature
from ..records.credits import record_identity
from ..records.sanitizer import normalize_record_input, redact_for_log, sanitize_for_intent_wallet

logger = logging.getLogger(__name__)

# Literal suffixes that mark a string as already typed
TYPED_LITERAL_RE = re.compile(
    r"(u8|u16|u32|u64|u128|i8|i16|i32|i64|i128|field|group|scalar|\.private|\.public)$"
)
ADDRESS_RE = re.compile(r"^aleo1[a-z0-9]{58}$")
_DIGITS_RE = re.compile(r"^[0-9]+$")

# Where wallets put the transaction id, in priority order
TRANSACTION_ID_KEYS = ("transactionId", "id", "txId", "transaction_id")
NESTED_RESULT_KEYS = ("data", "result")
TRANSACTION_ID_SCAN_DEPTH = 8


class BuildMode(str, Enum):
    EXPLICIT = "explicit"
    INTENT = "intent"


@dataclass(frozen=True)
class RecordPlaceholder:
    """Stand-in for a record the wallet selects at signing time."""
    record_type: str = CREDITS_RECORD_TYPE

    def __str__(self) -> str:
        return self.record_type


CREDITS_RECORD_PLACEHOLDER = RecordPlaceholder()


@dataclass
class TransactionIntent:
    """A fully serialized transition invocation."""
    program_id: str
    function_name: str
    inputs: List[str]
    fee: int
    fee_private: bool
    record_indices: Tuple[int, ...] = ()
    mode: BuildMode = BuildMode.EXPLICIT
    record_ids: Dict[int, str] = field(default_factory=dict)

    def to_request(self) -> Dict[str, Any]:
        """Wire shape expected by wallet adapters."""
        return {
            "program": self.program_id,
            "function": self.function_name,
            "inputs": list(self.inputs),
            "fee": self.fee,
            "privateFee": self.fee_private,
            "recordIndices": list(self.record_indices),
        }


# ---------------------------------------------------------------------------
# Primitive literals
# ---------------------------------------------------------------------------

def normalize_primitive(value: Any, slot_type: Optional[SlotType] = None) -> str:
    """
    Serialize a non-record input to a typed literal.

    bool → ``true``/``false``; bare integers and digit strings get the
    ``slot_type`` suffix (``u64`` by default); already-typed strings and
    addresses pass through unchanged.

    Raises:
        ValidationError: negative numbers, or strings with no recognizable type.
    """
    if isinstance(value, bool):
        return "true" if value else "false"

    suffix = (slot_type or SlotType.U64).value
    if slot_type in (SlotType.BOOL, SlotType.ADDRESS, SlotType.RECORD):
        suffix = SlotType.U64.value

    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"Unsigned literal cannot be negative: {value}")
        return f"{value}{suffix}"

    if isinstance(value, str):
        text = value.strip()
        if _DIGITS_RE.match(text):
            return f"{text}{suffix}"
        if text in ("true", "false") or TYPED_LITERAL_RE.search(text):
            return text
        if ADDRESS_RE.match(text) or text.startswith("{"):
            return text
        raise ValidationError(f"Cannot infer literal type for input {text!r}")

    raise ValidationError(f"Unsupported input type: {type(value).__name__}")


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def _serialize_record_slot(index: int, value: Any, mode: BuildMode, for_intent_wallet: bool) -> Tuple[str, Optional[str]]:
    if isinstance(value, RecordPlaceholder):
        if mode != BuildMode.INTENT:
            raise ValidationError(f"Record placeholder at slot {index} requires intent mode")
        return str(value), None

    plaintext = normalize_record_input(value)
    if for_intent_wallet:
        plaintext = sanitize_for_intent_wallet(plaintext)
    if not plaintext:
        raise InvalidRecordSlotError(index)
    return plaintext, record_identity(plaintext)


def build_transaction_intent(
    program_id: str,
    signature: TransitionSignature,
    args: Sequence[Any],
    fee: int,
    fee_private: bool = True,
    mode: BuildMode = BuildMode.EXPLICIT,
    for_intent_wallet: bool = False,
) -> TransactionIntent:
    """
    Serialize ``args`` against ``signature``.

    Raises:
        ValidationError: arity mismatch or an unserializable input.
        InvalidRecordSlotError: a record slot normalized to empty.
        DoubleSpendException: the same record fills two record slots.
    """
    if len(args) != signature.arity:
        raise ValidationError(
            f"{signature.function_name} takes {signature.arity} inputs, got {len(args)}"
        )
    if fee < 0:
        raise ValidationError(f"Fee cannot be negative: {fee}")

    inputs: List[str] = []
    record_ids: Dict[int, str] = {}
    for index, (slot, value) in enumerate(zip(signature.slots, args)):
        if slot == SlotType.RECORD:
            if value is None:
                raise InvalidRecordSlotError(index)
            literal, identity = _serialize_record_slot(index, value, mode, for_intent_wallet)
            if identity is not None:
                for other_index, other_identity in record_ids.items():
                    if other_identity == identity:
                        raise DoubleSpendException(
                            f"Record {identity} is offered for slots {other_index} and {index}",
                            record_id=identity,
                        )
                record_ids[index] = identity
            inputs.append(literal)
        else:
            inputs.append(normalize_primitive(value, slot))

    intent = TransactionIntent(
        program_id=program_id,
        function_name=signature.function_name,
        inputs=inputs,
        fee=fee,
        fee_private=fee_private,
        record_indices=signature.record_indices,
        mode=mode,
        record_ids=record_ids,
    )
    logger.debug(
        f"Built {mode.value} intent {program_id}/{signature.function_name} "
        f"with {len(inputs)} inputs, records at {list(intent.record_indices)}: "
        + ", ".join(redact_for_log(inputs[i]) for i in intent.record_indices)
    )
    return intent


# ---------------------------------------------------------------------------
# Transaction id extraction
# ---------------------------------------------------------------------------

def _candidates(result: Mapping[str, Any]) -> List[str]:
    found = []
    sources = [result] + [result.get(k) for k in NESTED_RESULT_KEYS if isinstance(result.get(k), Mapping)]
    for source in sources:
        for key in TRANSACTION_ID_KEYS:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                found.append(value.strip())
    return found


def _scan_for_prefixed(value: Any, depth: int) -> Optional[str]:
    if depth < 0:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text if text.startswith(TRANSACTION_ID_PREFIX) and len(text) > len(TRANSACTION_ID_PREFIX) else None
    if isinstance(value, Mapping):
        children = value.values()
    elif isinstance(value, (list, tuple)):
        children = value
    else:
        return None
    for child in children:
        found = _scan_for_prefixed(child, depth - 1)
        if found:
            return found
    return None


def extract_transaction_id(result: Any) -> Optional[str]:
    """
    Transaction id from a wallet result of unknown shape.

    Known keys (top level, then under ``data``/``result``) are checked first,
    preferring values with the transaction id prefix; then a bounded-depth
    scan for any prefixed string; then the first known-key value. A bare
    string result is an id only when it carries the prefix.
    """
    if result is None:
        return None
    if isinstance(result, str):
        # Bare strings count only when prefixed
        return _scan_for_prefixed(result, 0)
    if not isinstance(result, Mapping):
        return None

    candidates = _candidates(result)
    for candidate in candidates:
        if candidate.startswith(TRANSACTION_ID_PREFIX):
            return candidate
    scanned = _scan_for_prefixed(result, TRANSACTION_ID_SCAN_DEPTH)
    if scanned:
        return scanned
    return candidates[0] if candidates else None


def require_transaction_id(result: Any) -> str:
    tx_id = extract_transaction_id(result)
    if not tx_id:
        raise MissingTransactionIdError(
            f"Wallet result carried no transaction id (checked {', '.join(TRANSACTION_ID_KEYS)})"
        )
    return tx_id

"""
Record normalization.

Wallets hand back records in several shapes: a raw plaintext string, a
quoted/escaped string, or an object carrying the plaintext under one of a
handful of keys (or exposing the decrypted fields directly). Everything here
reduces those shapes to one canonical struct string of the form
``{ owner: aleo1..., microcredits: 100u64.private, _nonce: ...group.public }``.

Ciphertext is never accepted: transition inputs need the structured fields.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any, Mapping, Optional

from ..constants import LOG_REDACT_PREVIEW_CHARS
from ..exceptions import NotDecryptedError, ValidationError

logger = logging.getLogger(__name__)

# Keys under which wallets expose decrypted plaintext, in lookup order
PLAINTEXT_KEYS = ("recordPlaintext", "record_plaintext", "plaintext", "record", "value", "data")
# Keys whose presence means the object itself is the decrypted struct
STRUCT_FIELD_KEYS = ("owner", "microcredits", "_nonce", "data")

CIPHERTEXT_PREFIX = "record"
CIPHERTEXT_MIN_LENGTH = 50

_WHITESPACE_RE = re.compile(r"\s+")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def is_ciphertext(value: Any) -> bool:
    """True for strings that look like an encrypted record blob."""
    if not isinstance(value, str):
        return False
    text = value.strip()
    return text.startswith(CIPHERTEXT_PREFIX) and len(text) > CIPHERTEXT_MIN_LENGTH


def is_record_spent(record: Any) -> bool:
    """Wallets report ``spent`` as a bool, 0/1 or a string."""
    if not isinstance(record, Mapping):
        return False
    spent = record.get("spent")
    if isinstance(spent, str):
        return spent.strip().lower() == "true"
    return spent is True or spent == 1


def redact_for_log(value: Optional[str], max_chars: int = LOG_REDACT_PREVIEW_CHARS) -> str:
    """Short, quote-free preview of a record string for log lines."""
    if not value:
        return "(empty)"
    text = str(value)
    preview = text[:max_chars].replace('"', "").replace("'", "")
    suffix = "..." if len(text) > max_chars else ""
    return f'[{len(text)} chars] "{preview}{suffix}"'


def record_fingerprint(record: Any) -> str:
    """Content hash of a record in whatever shape it was returned."""
    if isinstance(record, str):
        payload = record.strip()
    else:
        payload = json.dumps(record, sort_keys=True, default=str)
    return hashlib.blake2b(payload.encode("utf-8"), digest_size=16).hexdigest()


def _sanitize_string(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1]
    text = text.replace("\\n", "\n")
    return _WHITESPACE_RE.sub(" ", text).strip()


def struct_to_plaintext(fields: Mapping[str, Any]) -> str:
    """Serialize a decrypted field mapping to struct syntax, recursively."""
    parts = []
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            rendered = struct_to_plaintext(value)
        elif isinstance(value, bool):
            rendered = "true" if value else "false"
        else:
            rendered = str(value)
        parts.append(f"{key}: {rendered}")
    return "{ " + ", ".join(parts) + " }"


def _extract_plaintext(record: Mapping[str, Any]) -> Optional[Any]:
    for key in PLAINTEXT_KEYS:
        value = record.get(key)
        if value is None:
            continue
        if key == "data" and isinstance(value, Mapping):
            # Owner and nonce sit beside the payload in some wallet shapes
            fields = {"owner": record.get("owner")}
            fields.update(value)
            fields.setdefault("_nonce", record.get("_nonce"))
            return struct_to_plaintext(fields)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, Mapping):
            return value
    if any(key in record for key in STRUCT_FIELD_KEYS):
        return struct_to_plaintext(record)
    return None


def normalize_record_input(record: Any) -> str:
    """
    Reduce ``record`` to a canonical decrypted struct string.

    Raises:
        ValidationError: record is None or of an unsupported type.
        NotDecryptedError: record is ciphertext or has no plaintext.
    """
    if record is None:
        raise ValidationError("Record is null/undefined")

    if isinstance(record, str):
        text = _sanitize_string(record)
        if not text:
            raise ValidationError("Record string is empty")
        if is_ciphertext(text):
            raise NotDecryptedError(
                "Record is ciphertext; a decrypted record is required to build the transition"
            )
        return text

    if isinstance(record, Mapping):
        plaintext = _extract_plaintext(record)
        if plaintext is None:
            raise NotDecryptedError(
                "Record object has no plaintext; request records with decrypt enabled"
            )
        return normalize_record_input(plaintext)

    raise ValidationError(f"Unsupported record type: {type(record).__name__}")


def sanitize_for_intent_wallet(plaintext: str) -> str:
    """
    Flatten a normalized record for wallets that take records inside an
    intent payload: single-line, no control characters.
    """
    text = _CONTROL_CHARS_RE.sub("", plaintext)
    return _WHITESPACE_RE.sub(" ", text).strip()

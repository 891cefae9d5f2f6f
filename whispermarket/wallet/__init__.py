"""
Whisper Market Wallet Integration

Capability probing of connected wallets and transaction intent construction.
"""

from .adapter import (
    ADAPTER_PROBE_PATHS,
    WalletAdapter,
    WalletHandle,
    is_intent_only_wallet,
    probe_wallet,
    require_wallet,
)
from .intent import (
    CREDITS_RECORD_PLACEHOLDER,
    BuildMode,
    RecordPlaceholder,
    TransactionIntent,
    build_transaction_intent,
    extract_transaction_id,
    normalize_primitive,
    require_transaction_id,
)

__all__ = [
    "ADAPTER_PROBE_PATHS",
    "WalletAdapter",
    "WalletHandle",
    "is_intent_only_wallet",
    "probe_wallet",
    "require_wallet",
    "CREDITS_RECORD_PLACEHOLDER",
    "BuildMode",
    "RecordPlaceholder",
    "TransactionIntent",
    "build_transaction_intent",
    "extract_transaction_id",
    "normalize_primitive",
    "require_transaction_id",
]

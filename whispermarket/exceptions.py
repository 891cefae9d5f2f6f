"""
Whisper Market Exceptions

Custom exception classes for the prediction market client.
"""

from enum import Enum
from typing import Optional, Tuple


class WhisperMarketException(Exception):
    """Base exception for the client."""
    pass


class ValidationError(WhisperMarketException):
    """Input failed validation before any chain interaction."""
    pass


class NotDecryptedError(ValidationError):
    """Record is ciphertext or exposes no decrypted plaintext."""
    pass


class InvalidRecordSlotError(ValidationError):
    """A record-typed input slot normalized to an empty value."""

    def __init__(self, index: int, message: Optional[str] = None):
        self.index = index
        super().__init__(message or f"Record input at slot {index} is empty after normalization")


class ZeroReservesError(ValidationError):
    """AMM reserves are zero; swap output is undefined."""
    pass


class InsufficientBalanceError(WhisperMarketException):
    """No spendable record (or record pair) covers the required amount."""

    def __init__(self, needed: int, available: int, message: Optional[str] = None):
        self.needed = needed
        self.available = available
        if message is None:
            shortfall = max(needed - available, 0)
            message = (
                f"Insufficient balance: need {needed / 1_000_000:.6f} credits ({needed} microcredits), "
                f"available {available / 1_000_000:.6f} credits ({available} microcredits), "
                f"short by {shortfall} microcredits"
            )
        super().__init__(message)

    @property
    def shortfall(self) -> int:
        return max(self.needed - self.available, 0)


class NoMatchingRecordError(WhisperMarketException):
    """No position record matches the requested market or constraint."""
    pass


class DoubleSpendException(WhisperMarketException):
    """The same record would be offered for two input slots."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        self.record_id = record_id
        super().__init__(message)


class MissingTransactionIdError(WhisperMarketException):
    """Wallet result carried no recognizable transaction id."""
    pass


class MappingNotFoundError(WhisperMarketException):
    """Mapping key is absent on chain."""
    pass


class MarketNotFoundError(MappingNotFoundError):
    """Market has no status entry and therefore does not exist."""
    pass


class NetworkError(WhisperMarketException):
    """Network communication error."""
    pass


class NetworkTimeoutError(NetworkError):
    """Request exceeded its timeout."""
    pass


class ChainRequestError(NetworkError):
    """Explorer or RPC endpoint answered with an error."""
    pass


class WalletCapabilityError(WhisperMarketException):
    """Wallet exposes no transaction execution capability."""
    pass


class ConfigurationError(WhisperMarketException):
    """Configuration error."""
    pass


class TransactionFailureCategory(str, Enum):
    PROOF = "proof"
    BROADCAST = "broadcast"
    RECORD_SELECTION = "record_selection"
    INPUT_PARSING = "input_parsing"
    DOUBLE_SPEND = "double_spend"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


class TransactionFailedError(WhisperMarketException):
    """Transition submission failed; ``category`` says where."""

    def __init__(
        self,
        message: str,
        category: TransactionFailureCategory = TransactionFailureCategory.UNKNOWN,
        transaction_id: Optional[str] = None,
        record_ids: Tuple[str, ...] = (),
    ):
        self.category = category
        self.transaction_id = transaction_id
        self.record_ids = tuple(record_ids)
        super().__init__(message)

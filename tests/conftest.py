"""
Shared builders for Whisper Market tests.

Record plaintexts follow the wallet's decrypted struct syntax; the fake
wallet and clock let transaction and cache tests run without a network.
"""

from typing import Any, Dict, List, Optional

import pytest

ADDR = "aleo1" + "q" * 58
OTHER_ADDR = "aleo1" + "z" * 58
MARKET_ID = "1234567890123456"


def credit_plaintext(amount: int, nonce: int) -> str:
    return (
        f"{{ owner: {ADDR}.private, microcredits: {amount}u64.private, "
        f"_nonce: {nonce}group.public }}"
    )


def credit_record(amount: int, nonce: int, spent: bool = False) -> Dict[str, Any]:
    return {"recordPlaintext": credit_plaintext(amount, nonce), "spent": spent}


def position_plaintext(
    market_id: str = MARKET_ID,
    yes_shares: int = 0,
    no_shares: int = 0,
    collateral_available: int = 0,
    payout_claimed: bool = False,
    nonce: int = 1,
) -> str:
    return (
        f"{{ owner: {ADDR}.private, market_id: {market_id}field.private, "
        f"yes_shares: {yes_shares}u128.private, no_shares: {no_shares}u128.private, "
        f"collateral_available: {collateral_available}u64.private, "
        f"collateral_committed: 0u64.private, "
        f"payout_claimed: {'true' if payout_claimed else 'false'}.private, "
        f"_nonce: {nonce}group.public }}"
    )


def position_record(spent: bool = False, **fields) -> Dict[str, Any]:
    return {"recordPlaintext": position_plaintext(**fields), "spent": spent}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallet:
    """Wallet exposing ``execute_transaction`` and ``request_records``."""

    def __init__(
        self,
        records: Optional[Dict[str, List[Any]]] = None,
        result: Any = None,
        error: Optional[Exception] = None,
    ):
        self.records = records or {}
        self.result = result if result is not None else {"transactionId": "at1" + "x" * 58}
        self.error = error
        self.requests: List[Dict[str, Any]] = []
        self.record_requests: List[tuple] = []

    async def execute_transaction(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result

    async def request_records(self, program_id, decrypt=True):
        self.record_requests.append((program_id, decrypt))
        return self.records.get(program_id, [])


class IntentOnlyWallet:
    """Wallet that can only sign intents."""

    intent_only = True

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []

    async def execute_transaction(self, request):
        self.requests.append(request)
        return {"data": {"transactionId": "at1" + "y" * 58}}


@pytest.fixture
def clock():
    return FakeClock()

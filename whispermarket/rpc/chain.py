"""
Chain reads.

Components:
  - ChainReader: typed reads of the prediction market program's mappings
    through the rate-limited ``MappingClient``
  - ChainRpcClient: JSON-RPC 2.0 client for the explorer endpoint
    (transaction listings, single transactions, status, chain height)
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..constants import (
    FINALIZE_POLL_ATTEMPTS,
    FINALIZE_POLL_INTERVAL,
    MAPPING_MARKET_INDEX,
    MAPPING_TIMEOUT,
    MAPPING_TOTAL_MARKETS,
    TOTAL_MARKETS_KEY,
)
from ..exceptions import (
    ChainRequestError,
    NetworkError,
    NetworkTimeoutError,
    TransactionFailedError,
    TransactionFailureCategory,
    ValidationError,
    WhisperMarketException,
)
from ..logger import get_logger
from ..records.positions import normalize_market_id, to_market_id_field
from .mapping_client import MappingClient

logger = get_logger(__name__)

_INT_RE = re.compile(r"^-?[0-9]+$")

FINALIZED_STATUSES = ("finalized", "accepted", "confirmed")
FAILED_STATUSES = ("rejected", "aborted", "failed")


def soft_result(result: Any) -> Any:
    """
    One result of ``asyncio.gather(..., return_exceptions=True)``.

    Domain failures become None so a single failed read leaves a hole;
    anything else propagates.
    """
    if isinstance(result, WhisperMarketException):
        logger.debug(f"Read failed softly: {result}")
        return None
    if isinstance(result, BaseException):
        raise result
    return result


def parse_mapping_int(value: Optional[str]) -> Optional[int]:
    """Integer from a cleaned mapping value; None passes through."""
    if value is None:
        return None
    text = value.strip()
    if not _INT_RE.match(text):
        raise ValidationError(f"Mapping value is not an integer: {value!r}")
    return int(text)


class ChainReader:
    """Typed mapping reads for one program."""

    def __init__(self, mapping_client: MappingClient, program_id: str):
        self.mapping_client = mapping_client
        self.program_id = program_id

    async def read(self, mapping_name: str, key: str) -> Optional[str]:
        return await self.mapping_client.get_value(self.program_id, mapping_name, key)

    async def read_market_value(self, mapping_name: str, market_id: Any) -> Optional[str]:
        return await self.read(mapping_name, to_market_id_field(market_id))

    async def read_market_int(self, mapping_name: str, market_id: Any) -> Optional[int]:
        return parse_mapping_int(await self.read_market_value(mapping_name, market_id))

    async def total_markets(self) -> int:
        """Registry size; an absent counter means no markets."""
        value = await self.read(MAPPING_TOTAL_MARKETS, TOTAL_MARKETS_KEY)
        return parse_mapping_int(value) or 0

    async def market_id_at(self, index: int) -> Optional[str]:
        value = await self.read(MAPPING_MARKET_INDEX, f"{index}u64")
        return normalize_market_id(value) or None


class ChainRpcClient:
    """
    JSON-RPC client for the explorer.

    Transport failures raise ``NetworkError`` (``NetworkTimeoutError`` on
    timeout); error envelopes raise ``ChainRequestError``. Callers on read
    paths decide whether to degrade.
    """

    _rpc_id_counter = 0

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = MAPPING_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.timeout = timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @classmethod
    def _next_id(cls) -> int:
        cls._rpc_id_counter += 1
        return cls._rpc_id_counter

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": self._next_id()}
        if params is not None:
            payload["params"] = params

        start_time = time.time()
        try:
            response = await self._client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            elapsed = time.time() - start_time
            logger.debug(f"RPC {method} → {self.url} [{response.status_code}] ({elapsed:.3f}s)")
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            logger.warning(f"RPC {method} → {self.url} TIMEOUT ({time.time() - start_time:.3f}s)")
            raise NetworkTimeoutError(f"RPC {method} timed out") from exc
        except httpx.RequestError as exc:
            logger.warning(f"RPC {method} → {self.url} NETWORK_ERROR ({time.time() - start_time:.3f}s)")
            raise NetworkError(f"RPC {method} failed: {exc}") from exc
        except (json.JSONDecodeError, httpx.HTTPStatusError) as exc:
            logger.warning(f"RPC {method} → {self.url} ERROR ({time.time() - start_time:.3f}s): {exc}")
            raise ChainRequestError(f"RPC {method} failed: {exc}") from exc

        if isinstance(body, dict) and body.get("error") is not None:
            err = body["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise ChainRequestError(f"RPC {method} error: {message}")
        return body.get("result") if isinstance(body, dict) else body

    # -----------------------------------------------------------------
    #  Explorer methods
    # -----------------------------------------------------------------

    async def transactions_for_program(
        self,
        program_id: str,
        function_name: str,
        page: int = 0,
        max_transactions: int = 100,
    ) -> List[Dict[str, Any]]:
        result = await self.call(
            "aleoTransactionsForProgram",
            {
                "programId": program_id,
                "functionName": function_name,
                "page": page,
                "maxTransactions": max_transactions,
            },
        )
        if isinstance(result, list):
            return result
        if isinstance(result, dict):
            for key in ("transactions", "items", "data"):
                if isinstance(result.get(key), list):
                    return result[key]
        return []

    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        result = await self.call("getTransaction", {"id": transaction_id})
        return result if isinstance(result, dict) else None

    async def get_transaction_status(self, transaction_id: str) -> Optional[str]:
        result = await self.call("getTransactionStatus", {"id": transaction_id})
        if isinstance(result, dict):
            result = result.get("status")
        return str(result).lower() if result is not None else None

    async def latest_height(self) -> int:
        result = await self.call("latestHeight")
        return int(result)

    async def wait_for_finalization(
        self,
        transaction_id: str,
        attempts: int = FINALIZE_POLL_ATTEMPTS,
        interval: float = FINALIZE_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        """
        Poll the status until finalized.

        Returns False when ``attempts`` run out.

        Raises:
            TransactionFailedError: the chain reports the transaction rejected.
        """
        for attempt in range(attempts):
            try:
                status = await self.get_transaction_status(transaction_id)
            except NetworkError as e:
                logger.debug(f"Status poll {attempt + 1}/{attempts} for {transaction_id} failed: {e}")
                status = None
            if status in FINALIZED_STATUSES:
                logger.info(f"Transaction {transaction_id} finalized")
                return True
            if status in FAILED_STATUSES:
                raise TransactionFailedError(
                    f"Transaction {transaction_id} was {status}",
                    category=TransactionFailureCategory.REJECTED,
                    transaction_id=transaction_id,
                )
            if attempt < attempts - 1:
                await sleep(interval)
        logger.warning(f"Transaction {transaction_id} not finalized after {attempts} polls")
        return False

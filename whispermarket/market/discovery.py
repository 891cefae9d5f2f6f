"""
Transaction-log market discovery.

Used when the on-chain registry index is empty, and to resolve the market id
created by a just-submitted ``init`` transaction. Market ids are private
inputs, so they are recovered from the finalize operations the transaction
applied to the market mappings.

Indexers lag behind the chain, so both entry points retry with linear
backoff (``retry_delay * attempt``).
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence

from ..constants import (
    DISCOVERY_MAX_PAGES,
    DISCOVERY_PAGE_SIZE,
    DISCOVERY_PROBE_LIMIT,
    DISCOVERY_RETRIES,
    DISCOVERY_RETRY_DELAY,
    MAPPING_COLLATERAL_POOL,
    MAPPING_MARKET_CREATOR,
    MAPPING_MARKET_METADATA_HASH,
    MAPPING_MARKET_STATUS,
    MAPPING_NO_RESERVE,
    MAPPING_YES_RESERVE,
)
from ..exceptions import WhisperMarketException
from ..logger import get_logger
from ..records.positions import normalize_market_id
from ..rpc.chain import ChainReader, ChainRpcClient

logger = get_logger(__name__)

# Where finalize operations sit in the different transaction shapes
FINALIZE_PATHS = (
    ("finalize",),
    ("transaction", "finalize"),
    ("execution", "finalize"),
    ("transaction", "execution", "finalize"),
    ("transaction", "finalize_operations"),
    ("execution", "finalize_operations"),
)
MAPPING_UPDATE_OPS = frozenset(
    {"update_key_value", "set_key_value", "UpdateKeyValue", "SetKeyValue", "mapping_update"}
)
MARKET_MAPPINGS = (
    MAPPING_MARKET_STATUS,
    MAPPING_MARKET_CREATOR,
    MAPPING_MARKET_METADATA_HASH,
    MAPPING_COLLATERAL_POOL,
    MAPPING_YES_RESERVE,
    MAPPING_NO_RESERVE,
)
TRANSACTION_ID_FIELDS = ("id", "transaction_id", "transactionId")
# Field ids shorter than this are amounts or hints, not market ids
MIN_MARKET_ID_DIGITS = 11
INIT_FUNCTION = "init"

_FIELD_LITERAL_RE = re.compile(r"(\d+)\s*\.?\s*field", re.IGNORECASE)


def _dig(obj: Any, path: Sequence[str]) -> Any:
    for name in path:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(name)
    return obj


def _first(mapping: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def transaction_id_of(tx: Mapping[str, Any]) -> Optional[str]:
    value = _first(tx, TRANSACTION_ID_FIELDS) or _dig(tx, ("transaction", "id"))
    return str(value) if value else None


def finalize_operations(tx: Any) -> List[Mapping[str, Any]]:
    for path in FINALIZE_PATHS:
        ops = _dig(tx, path)
        if isinstance(ops, list) and ops:
            return [op for op in ops if isinstance(op, Mapping)]
    return []


def market_ids_from_finalize(ops: Iterable[Mapping[str, Any]], mappings: Sequence[str] = (MAPPING_MARKET_STATUS,)) -> List[str]:
    """Normalized keys of mapping updates touching any of ``mappings``."""
    ids: List[str] = []
    for op in ops:
        op_type = _first(op, ("type", "Type", "op_type", "opType"))
        mapping_id = _first(op, ("mapping_id", "mappingId", "mapping", "mapping_name"))
        key = _first(op, ("key_id", "keyId", "key", "key_id_field", "key_field"))
        if isinstance(key, Mapping):
            key = _first(key, ("id", "value"))
        is_update = op_type in MAPPING_UPDATE_OPS or (op_type is None and mapping_id and key)
        if not is_update or not isinstance(mapping_id, str) or not key:
            continue
        if not any(name in mapping_id for name in mappings):
            continue
        market_id = normalize_market_id(key)
        if market_id and market_id not in ("undefined", "null") and market_id not in ids:
            ids.append(market_id)
    return ids


def _init_transitions(tx: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    execution = tx.get("execution") or _dig(tx, ("transaction", "execution"))
    if not isinstance(execution, Mapping):
        return []
    transitions = execution.get("transitions") or execution.get("transition") or []
    if isinstance(transitions, Mapping):
        transitions = [transitions]
    return [
        t for t in transitions
        if isinstance(t, Mapping) and INIT_FUNCTION in (t.get("function"), t.get("functionName"))
    ]


def candidate_ids_from_transitions(tx: Mapping[str, Any]) -> List[str]:
    """Long field literals among ``init`` transition inputs and outputs."""
    candidates: List[str] = []
    for transition in _init_transitions(tx):
        values = []
        for key in ("inputs", "input", "outputs", "output"):
            items = transition.get(key) or []
            values.extend(items if isinstance(items, list) else [items])
        for value in values:
            if isinstance(value, Mapping):
                value = value.get("value")
            if not isinstance(value, str):
                continue
            match = _FIELD_LITERAL_RE.search(value)
            if match and len(match.group(1)) >= MIN_MARKET_ID_DIGITS and match.group(1) not in candidates:
                candidates.append(match.group(1))
    return candidates


class MarketDiscovery:
    """Market ids from the explorer's transaction listings."""

    def __init__(
        self,
        rpc: ChainRpcClient,
        reader: ChainReader,
        program_id: str,
        *,
        max_pages: int = DISCOVERY_MAX_PAGES,
        page_size: int = DISCOVERY_PAGE_SIZE,
        retries: int = DISCOVERY_RETRIES,
        retry_delay: float = DISCOVERY_RETRY_DELAY,
        probe_limit: int = DISCOVERY_PROBE_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rpc = rpc
        self.reader = reader
        self.program_id = program_id
        self.max_pages = max_pages
        self.page_size = page_size
        self.retries = retries
        self.retry_delay = retry_delay
        self.probe_limit = probe_limit
        self._sleep = sleep

    async def _backoff(self, attempt: int) -> None:
        if attempt > 0:
            await self._sleep(self.retry_delay * attempt)

    async def _init_transactions(self, page: int) -> List[Mapping[str, Any]]:
        try:
            return await self.rpc.transactions_for_program(
                self.program_id, INIT_FUNCTION, page, self.page_size
            )
        except WhisperMarketException as e:
            logger.warning(f"Listing {self.program_id} init transactions (page {page}) failed: {e}")
            return []

    async def _market_exists(self, market_id: str) -> bool:
        try:
            return await self.reader.read_market_value(MAPPING_MARKET_STATUS, market_id) is not None
        except WhisperMarketException:
            return False

    # -----------------------------------------------------------------
    #  Listing scan
    # -----------------------------------------------------------------

    async def _scan(self) -> List[str]:
        with_finalize: List[Mapping[str, Any]] = []
        bare_ids: List[str] = []
        for page in range(self.max_pages):
            txs = await self._init_transactions(page)
            if not txs:
                break
            for tx in txs:
                if finalize_operations(tx):
                    with_finalize.append(tx)
                elif (tx_id := transaction_id_of(tx)) is not None:
                    bare_ids.append(tx_id)
            if len(txs) < self.page_size:
                break

        if bare_ids:
            probed = await asyncio.gather(
                *(self._get_transaction(tx_id) for tx_id in bare_ids[:self.probe_limit])
            )
            with_finalize.extend(tx for tx in probed if tx is not None)

        ids: List[str] = []
        for tx in with_finalize:
            for market_id in market_ids_from_finalize(finalize_operations(tx)):
                if market_id not in ids:
                    ids.append(market_id)
        return ids

    async def discover_market_ids(self) -> List[str]:
        """Market ids created by ``init`` transactions, retried while the indexer catches up."""
        for attempt in range(self.retries):
            await self._backoff(attempt)
            ids = await self._scan()
            if ids:
                logger.info(f"Discovered {len(ids)} market(s) from {self.program_id} transactions")
                return ids
            logger.debug(f"Discovery attempt {attempt + 1}/{self.retries} found no markets")
        return []

    # -----------------------------------------------------------------
    #  Single transaction
    # -----------------------------------------------------------------

    async def _get_transaction(self, transaction_id: str) -> Optional[Mapping[str, Any]]:
        try:
            tx = await self.rpc.get_transaction(transaction_id)
            if tx:
                return tx
        except WhisperMarketException as e:
            logger.debug(f"getTransaction {transaction_id} unavailable: {e}")

        # Some endpoints only serve listings
        for page in range(min(3, self.max_pages)):
            txs = await self._init_transactions(page)
            if not txs:
                break
            for tx in txs:
                if transaction_id_of(tx) == transaction_id:
                    return tx
        return None

    async def extract_market_id_from_transaction(self, transaction_id: str) -> Optional[str]:
        """
        Market id created by ``transaction_id``.

        Finalize operations on market mappings win; otherwise long field
        literals of the ``init`` transition are checked against the status
        mapping.
        """
        for attempt in range(self.retries):
            await self._backoff(attempt)
            tx = await self._get_transaction(transaction_id)
            if tx is None:
                logger.debug(f"Transaction {transaction_id} not indexed yet (attempt {attempt + 1})")
                continue

            ids = market_ids_from_finalize(finalize_operations(tx), MARKET_MAPPINGS)
            if ids:
                logger.info(f"Transaction {transaction_id} created market {ids[0]}")
                return ids[0]

            for candidate in candidate_ids_from_transitions(tx):
                if await self._market_exists(candidate):
                    logger.info(f"Transaction {transaction_id} created market {candidate}")
                    return candidate
        logger.warning(f"Could not resolve a market id for transaction {transaction_id}")
        return None

    async def discover_markets_by_ids(self, candidates: Iterable[Any]) -> List[str]:
        """The subset of ``candidates`` that exist on chain, normalized."""
        normalized = []
        for candidate in candidates:
            market_id = normalize_market_id(candidate)
            if market_id and market_id not in normalized:
                normalized.append(market_id)
        exists = await asyncio.gather(*(self._market_exists(m) for m in normalized))
        return [market_id for market_id, ok in zip(normalized, exists) if ok]

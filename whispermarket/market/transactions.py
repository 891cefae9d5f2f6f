"""
Market transactions.

Turns high-level operations (open a position, swap, redeem, move credits)
into transaction intents and submits them through the connected wallet.

Components:
  - Record resolution: credit records via spend+fee selection, position
    records via market matching across every program alias
  - Intent building: explicit mode with decrypted plaintext and a private
    fee, or intent mode with placeholders and a public fee
  - Submission: optional timeout, failure classification, transaction id
    extraction and cache invalidation
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..constants import CREDITS_PROGRAM_ID, DEFAULT_PROGRAM_ID, DEFAULT_SLIPPAGE_BPS, MAX_MARKET_FEE_BPS
from ..exceptions import (
    DoubleSpendException,
    InsufficientBalanceError,
    NetworkTimeoutError,
    TransactionFailedError,
    TransactionFailureCategory,
    ValidationError,
    WhisperMarketException,
)
from ..exchange.amm import OutcomeSide, calculate_swap_output, min_output_with_slippage
from ..logger import get_logger
from ..program import fee_for_function, format_credits, signature_for
from ..records.credits import (
    SelectionPolicy,
    filter_unspent_records,
    pick_record_for_amount,
    record_identity,
    select_spend_and_fee,
    total_known_balance,
)
from ..records.positions import (
    AggregatedPosition,
    aggregate_positions,
    dedupe_records,
    market_ids_match,
    normalize_market_id,
    normalize_records_response,
    parse_position_record,
    select_position_record,
    select_record_to_redeem,
    to_market_id_field,
)
from ..wallet.adapter import RequestRecords, WalletHandle, require_wallet
from ..wallet.intent import (
    ADDRESS_RE,
    CREDITS_RECORD_PLACEHOLDER,
    BuildMode,
    RecordPlaceholder,
    TransactionIntent,
    build_transaction_intent,
    require_transaction_id,
)
from .metadata import generate_salt

if TYPE_CHECKING:
    from ..config import ClientConfig
    from .registry import MarketRegistry
    from .state import MarketState, MarketStateStore

logger = get_logger(__name__)

# (keywords, category) in match order; double-spend is handled first
_FAILURE_PATTERNS: Tuple[Tuple[Tuple[str, ...], TransactionFailureCategory], ...] = (
    (("prove", "proof"), TransactionFailureCategory.PROOF),
    (("broadcast", "rpc"), TransactionFailureCategory.BROADCAST),
    (("parse input", "credits.record"), TransactionFailureCategory.INPUT_PARSING),
    (("record", "spent"), TransactionFailureCategory.RECORD_SELECTION),
)
_DOUBLE_SPEND_KEYWORDS = ("double", "already spent", "consumed")

POSITION_RECORD_NAME = "Position"
MIN_TRANSFER_AMOUNT = 1


def classify_transaction_error(error: BaseException, record_ids: Sequence[str] = ()) -> WhisperMarketException:
    """
    Map a wallet failure to a domain exception by its text.

    ``record_ids`` are the spend (and fee) record identities involved, in
    that order.
    """
    text = str(error)
    lowered = text.lower()
    ids = tuple(record_ids)

    if any(word in lowered for word in _DOUBLE_SPEND_KEYWORDS):
        spend_id = ids[0] if ids else "unknown"
        fee_id = ids[1] if len(ids) > 1 else "wallet-selected"
        return DoubleSpendException(
            f"Double spend detected (spend record {spend_id}, fee record {fee_id}): {text}",
            record_id=ids[0] if ids else None,
        )

    for keywords, category in _FAILURE_PATTERNS:
        if any(word in lowered for word in keywords):
            return TransactionFailedError(f"Transaction failed ({category.value}): {text}", category=category, record_ids=ids)
    return TransactionFailedError(f"Transaction failed: {text}", record_ids=ids)


def _require_amount(name: str, amount: int, minimum: int = MIN_TRANSFER_AMOUNT) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{name} must be an integer number of microcredits")
    if amount < minimum:
        raise ValidationError(f"{name} must be at least {minimum} microcredits, got {amount}")
    return amount


def _require_address(address: str) -> str:
    text = (address or "").strip()
    if not ADDRESS_RE.match(text):
        raise ValidationError(f"Invalid address: {address!r}")
    return text


class MarketTransactions:
    """Builds and submits transitions of the market program and credits.aleo."""

    def __init__(
        self,
        wallet: Any,
        *,
        program_id: str = DEFAULT_PROGRAM_ID,
        position_programs: Optional[Sequence[str]] = None,
        credits_program_id: str = CREDITS_PROGRAM_ID,
        request_records: Optional[RequestRecords] = None,
        selection_policy: SelectionPolicy = SelectionPolicy.FIRST_SUFFICIENT,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        submit_timeout: float = 0.0,
        registry: Optional["MarketRegistry"] = None,
        market_state: Optional["MarketStateStore"] = None,
    ):
        self.wallet = wallet
        self.program_id = program_id
        self.position_programs = list(position_programs or [program_id])
        self.credits_program_id = credits_program_id
        self.selection_policy = SelectionPolicy(selection_policy)
        self.slippage_bps = slippage_bps
        self.submit_timeout = submit_timeout
        self.registry = registry
        self.market_state = market_state
        self._request_records = request_records
        self._handle: Optional[WalletHandle] = None

    @classmethod
    def from_config(cls, config: "ClientConfig", wallet: Any, **kwargs) -> "MarketTransactions":
        return cls(
            wallet,
            program_id=config.program.program_id,
            position_programs=config.program.position_programs,
            credits_program_id=config.program.credits_program_id,
            selection_policy=SelectionPolicy(config.transactions.selection_policy),
            slippage_bps=config.transactions.slippage_bps,
            submit_timeout=config.transactions.submit_timeout,
            **kwargs,
        )

    # -----------------------------------------------------------------
    #  Wallet
    # -----------------------------------------------------------------

    @property
    def handle(self) -> WalletHandle:
        if self._handle is None:
            self._handle = require_wallet(self.wallet, self._request_records)
        return self._handle

    @property
    def mode(self) -> BuildMode:
        return BuildMode.INTENT if self.handle.intent_only else BuildMode.EXPLICIT

    async def _fetch(self, program_id: str) -> List[Any]:
        return normalize_records_response(await self.handle.fetch_records(program_id, True))

    async def fetch_credit_records(self) -> List[Any]:
        return await self._fetch(self.credits_program_id)

    async def fetch_position_records(self) -> List[Any]:
        """Position records under every program alias, de-duplicated."""
        collected: List[Any] = []
        for program_id in self.position_programs:
            try:
                collected.extend(await self._fetch(program_id))
            except Exception as e:
                # Legacy aliases may be unknown to the wallet
                logger.debug(f"No position records under {program_id}: {e}")
        return dedupe_records(collected)

    async def get_private_balance(self) -> int:
        """Sum of readable unspent credit records, in microcredits."""
        return total_known_balance(filter_unspent_records(await self.fetch_credit_records()))

    async def get_user_positions(self) -> Dict[str, AggregatedPosition]:
        return aggregate_positions(await self.fetch_position_records())

    async def get_user_position(self, market_id: Any) -> Optional[AggregatedPosition]:
        for key, aggregated in (await self.get_user_positions()).items():
            if market_ids_match(key, market_id):
                return aggregated
        return None

    # -----------------------------------------------------------------
    #  Record slots
    # -----------------------------------------------------------------

    async def _credit_slot(self, amount: int, fee: int, record: Any = None) -> Tuple[Any, Tuple[str, ...]]:
        """Record (or placeholder) for a credit slot and the identities involved."""
        if record is not None:
            return record, (record_identity(record),)

        if self.mode == BuildMode.INTENT:
            if self.handle.request_records is None:
                return CREDITS_RECORD_PLACEHOLDER, ()
            candidates = filter_unspent_records(await self.fetch_credit_records())
            if not candidates:
                return CREDITS_RECORD_PLACEHOLDER, ()
            # Public fee: one record only has to cover the spend
            chosen = pick_record_for_amount(candidates, amount, self.selection_policy)
            if chosen is None:
                largest = max((c.value for c in candidates if not c.opaque), default=0)
                raise InsufficientBalanceError(amount, largest)
            if chosen.opaque:
                # Only the wallet can read it; let it pick at signing time
                return CREDITS_RECORD_PLACEHOLDER, ()
            return chosen.record, (chosen.record_id,)

        records = await self.fetch_credit_records()
        selection = select_spend_and_fee(records, amount, fee, self.selection_policy)
        logger.info(
            f"Using credit record {selection.spend.record_id} ({format_credits(selection.spend.value)} credits), "
            f"fee record {selection.fee.record_id}"
        )
        return selection.spend.record, selection.record_ids

    async def _position_slot(self, market_id: Any, record: Any = None, min_collateral: Optional[int] = None) -> Any:
        if record is not None:
            return record
        if self.mode == BuildMode.INTENT and self.handle.request_records is None:
            return RecordPlaceholder(f"{self.program_id}/{POSITION_RECORD_NAME}.record")
        return select_position_record(await self.fetch_position_records(), market_id, min_collateral)

    async def _state(self, market_id: Any, state: Optional["MarketState"]) -> "MarketState":
        if state is not None:
            return state
        if self.market_state is None:
            raise ValidationError("Market state is required: pass state= or configure a state store")
        return await self.market_state.get_market_state(market_id, use_cache=False)

    # -----------------------------------------------------------------
    #  Build and submit
    # -----------------------------------------------------------------

    def build(self, function_name: str, args: Sequence[Any], credits: bool = False) -> TransactionIntent:
        mode = self.mode
        return build_transaction_intent(
            self.credits_program_id if credits else self.program_id,
            signature_for(function_name, credits=credits),
            args,
            fee=fee_for_function(function_name),
            fee_private=mode == BuildMode.EXPLICIT,
            mode=mode,
            for_intent_wallet=mode == BuildMode.INTENT,
        )

    async def submit(
        self,
        intent: TransactionIntent,
        record_ids: Sequence[str] = (),
        market_id: Optional[Any] = None,
    ) -> str:
        """
        Hand ``intent`` to the wallet and return the transaction id.

        Raises:
            NetworkTimeoutError: the wallet did not answer in ``submit_timeout``.
            DoubleSpendException, TransactionFailedError: classified wallet failures.
            MissingTransactionIdError: the wallet result carried no id.
        """
        ids = tuple(record_ids) or tuple(intent.record_ids.values())
        logger.info(
            f"Submitting {intent.program_id}/{intent.function_name} "
            f"({intent.mode.value}, fee {format_credits(intent.fee)} credits, "
            f"{'private' if intent.fee_private else 'public'} fee)"
        )
        request = intent.to_request()
        try:
            if self.submit_timeout and self.submit_timeout > 0:
                result = await asyncio.wait_for(self.handle.execute(request), self.submit_timeout)
            else:
                result = await self.handle.execute(request)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise NetworkTimeoutError(f"{intent.function_name} submission timed out") from exc
        except WhisperMarketException:
            raise
        except Exception as exc:
            classified = classify_transaction_error(exc, ids)
            logger.error(f"{intent.function_name} failed: {classified}")
            raise classified from exc

        transaction_id = require_transaction_id(result)
        logger.info(f"{intent.function_name} submitted: {transaction_id}")
        self._invalidate(intent.function_name, market_id)
        return transaction_id

    def _invalidate(self, function_name: str, market_id: Optional[Any]) -> None:
        if self.registry is not None:
            self.registry.invalidate(None if function_name == "init" else market_id)
        if self.market_state is not None and market_id is not None:
            self.market_state.invalidate(market_id)

    # -----------------------------------------------------------------
    #  Market lifecycle
    # -----------------------------------------------------------------

    async def init_market(
        self,
        initial_liquidity: int,
        bond_amount: int,
        fee_bps: int,
        metadata_hash: str,
        salt: Optional[str] = None,
        credit_record: Any = None,
    ) -> str:
        _require_amount("initial_liquidity", initial_liquidity)
        _require_amount("bond_amount", bond_amount, minimum=0)
        if not 0 <= fee_bps <= MAX_MARKET_FEE_BPS:
            raise ValidationError(f"fee_bps must be within 0..{MAX_MARKET_FEE_BPS}, got {fee_bps}")

        needed = initial_liquidity + bond_amount
        record, ids = await self._credit_slot(needed, fee_for_function("init"), credit_record)
        intent = self.build("init", [
            initial_liquidity,
            bond_amount,
            fee_bps,
            f"{normalize_market_id(metadata_hash)}field",
            f"{normalize_market_id(salt or generate_salt())}field",
            record,
        ])
        return await self.submit(intent, ids)

    async def resolve_market(self, market_id: Any, outcome: bool) -> str:
        intent = self.build("resolve", [to_market_id_field(market_id), bool(outcome)])
        return await self.submit(intent, market_id=market_id)

    async def pause_market(self, market_id: Any) -> str:
        return await self.submit(self.build("pause", [to_market_id_field(market_id)]), market_id=market_id)

    async def unpause_market(self, market_id: Any) -> str:
        return await self.submit(self.build("unpause", [to_market_id_field(market_id)]), market_id=market_id)

    # -----------------------------------------------------------------
    #  Positions
    # -----------------------------------------------------------------

    async def open_position(self, market_id: Any, amount: int, status_hint: int = 0, credit_record: Any = None) -> str:
        _require_amount("amount", amount)
        record, ids = await self._credit_slot(amount, fee_for_function("open_position_private"), credit_record)
        intent = self.build("open_position_private", [to_market_id_field(market_id), record, amount, status_hint])
        return await self.submit(intent, ids, market_id)

    async def deposit(
        self,
        market_id: Any,
        amount: int,
        status_hint: int = 0,
        credit_record: Any = None,
        position_record: Any = None,
    ) -> str:
        _require_amount("amount", amount)
        position = await self._position_slot(market_id, position_record)
        record, ids = await self._credit_slot(amount, fee_for_function("deposit_private"), credit_record)
        intent = self.build(
            "deposit_private",
            [to_market_id_field(market_id), record, amount, position, status_hint],
        )
        return await self.submit(intent, ids, market_id)

    async def swap_collateral(
        self,
        market_id: Any,
        side: Any,
        collateral_in: int,
        min_out: Optional[int] = None,
        state: Optional["MarketState"] = None,
        position_record: Any = None,
    ) -> str:
        """
        Swap available collateral into YES or NO shares.

        Reserves and fee come from ``state`` (fetched fresh when omitted);
        ``min_out`` defaults to the quoted output less ``slippage_bps``.
        """
        side = OutcomeSide.parse(side)
        _require_amount("collateral_in", collateral_in)
        state = await self._state(market_id, state)
        if not state.is_open:
            raise ValidationError(f"Market {state.market_id} is not open (status {state.status})")

        if min_out is None:
            expected = calculate_swap_output(collateral_in, state.yes_reserve, state.no_reserve, state.fee_bps, side)
            min_out = min_output_with_slippage(expected, self.slippage_bps)

        position = await self._position_slot(market_id, position_record, min_collateral=collateral_in)
        if not isinstance(position, RecordPlaceholder):
            available = parse_position_record(position).collateral_available
            if available < collateral_in:
                raise InsufficientBalanceError(collateral_in, available)

        function_name = f"swap_collateral_for_{side.value}_private"
        intent = self.build(function_name, [
            to_market_id_field(market_id),
            position,
            collateral_in,
            min_out,
            state.yes_reserve,
            state.no_reserve,
            state.fee_bps,
            int(state.status),
        ])
        return await self.submit(intent, market_id=market_id)

    async def merge_tokens(self, market_id: Any, amount: int, min_collateral_out: int, position_record: Any = None) -> str:
        _require_amount("amount", amount)
        position = await self._position_slot(market_id, position_record)
        intent = self.build(
            "merge_tokens_private",
            [to_market_id_field(market_id), position, amount, min_collateral_out],
        )
        return await self.submit(intent, market_id=market_id)

    async def withdraw(self, market_id: Any, amount: int, position_record: Any = None) -> str:
        _require_amount("amount", amount)
        position = await self._position_slot(market_id, position_record, min_collateral=amount)
        if not isinstance(position, RecordPlaceholder):
            available = parse_position_record(position).collateral_available
            if available < amount:
                raise InsufficientBalanceError(amount, available)
        intent = self.build("withdraw_private", [to_market_id_field(market_id), position, amount])
        return await self.submit(intent, market_id=market_id)

    async def redeem(self, market_id: Any, outcome: Optional[bool] = None, position_record: Any = None) -> str:
        """Claim the payout of a resolved market; ``outcome`` defaults to the on-chain one."""
        if outcome is None:
            state = await self._state(market_id, None)
            if not state.is_resolved or state.outcome is None:
                raise ValidationError(f"Market {state.market_id} is not resolved")
            outcome = state.outcome

        if position_record is not None:
            position = position_record
        elif self.mode == BuildMode.INTENT and self.handle.request_records is None:
            position = RecordPlaceholder(f"{self.program_id}/{POSITION_RECORD_NAME}.record")
        else:
            position = select_record_to_redeem(await self.fetch_position_records(), market_id, outcome)

        intent = self.build("redeem_private", [to_market_id_field(market_id), position, bool(outcome)])
        return await self.submit(intent, market_id=market_id)

    # -----------------------------------------------------------------
    #  Credits
    # -----------------------------------------------------------------

    async def transfer_public(self, recipient: str, amount: int) -> str:
        _require_amount("amount", amount)
        intent = self.build(
            "transfer_public",
            [f"{_require_address(recipient)}.public", f"{amount}u64.public"],
            credits=True,
        )
        return await self.submit(intent)

    async def transfer_private(self, recipient: str, amount: int, record: Any = None) -> str:
        _require_amount("amount", amount)
        address = _require_address(recipient)
        spend, ids = await self._credit_slot(amount, fee_for_function("transfer_private"), record)
        intent = self.build(
            "transfer_private",
            [spend, f"{address}.private", f"{amount}u64.private"],
            credits=True,
        )
        return await self.submit(intent, ids)

    async def split_record_for_fee(self, owner_address: str, amount: int, record: Any = None) -> str:
        """
        Private self-transfer of ``amount`` so a separate fee-sized record exists.

        The source record must be supplied or readable; this is the way out
        of a single-record wallet, so it cannot wait on spend+fee selection.
        """
        _require_amount("amount", amount)
        address = _require_address(owner_address)
        if record is None:
            candidates = filter_unspent_records(await self.fetch_credit_records())
            chosen = pick_record_for_amount(candidates, amount + fee_for_function("transfer_private"), self.selection_policy)
            if chosen is None:
                largest = max((c.value for c in candidates if not c.opaque), default=0)
                raise InsufficientBalanceError(amount, largest)
            record = chosen.record
        intent = self.build(
            "transfer_private",
            [record, f"{address}.private", f"{amount}u64.private"],
            credits=True,
        )
        return await self.submit(intent)

    async def join_records(self, first: Any, second: Any) -> str:
        return await self.submit(self.build("join", [first, second], credits=True))

    async def combine_records(self, records: Optional[Sequence[Any]] = None) -> List[str]:
        """
        Join unspent credit records pairwise.

        Each record is consumed at most once, so one call halves the record
        count; call again after the joins finalize to keep folding.
        """
        if records is None:
            records = [c.record for c in filter_unspent_records(await self.fetch_credit_records())]
        if len(records) < 2:
            raise ValidationError("Need at least 2 records to combine")

        transaction_ids = []
        for first, second in zip(records[0::2], records[1::2]):
            transaction_ids.append(await self.join_records(first, second))
        logger.info(f"Combined {len(transaction_ids) * 2} record(s) in {len(transaction_ids)} join(s)")
        return transaction_ids

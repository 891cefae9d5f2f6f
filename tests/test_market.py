"""
Test suite for market discovery and state

Covers:
  - TTL cache expiry and invalidation
  - Registry enumeration, caching and pagination
  - Transaction-log discovery fallback and market id extraction
  - Market state reads, price resolution and outcome parsing
  - Off-chain metadata placeholders and init field inputs
"""

import asyncio
import json

import httpx
import pytest

from whispermarket.constants import FIELD_MODULUS
from whispermarket.exceptions import MarketNotFoundError
from whispermarket.market.cache import TTLCache
from whispermarket.market.discovery import (
    MarketDiscovery,
    candidate_ids_from_transitions,
    finalize_operations,
    market_ids_from_finalize,
    transaction_id_of,
)
from whispermarket.market.metadata import (
    InMemoryMetadataStore,
    MarketMetadata,
    generate_metadata_hash,
    generate_salt,
    placeholder_metadata,
    resolve_metadata,
)
from whispermarket.market.registry import MarketRegistry
from whispermarket.market.state import MarketStateStore, MarketStatus, PriceSource, parse_outcome, resolve_price
from whispermarket.rpc.chain import ChainReader, ChainRpcClient
from whispermarket.rpc.mapping_client import MappingClient

from conftest import MARKET_ID

PROGRAM = "prediction_market_testing.aleo"
OTHER_MARKET = "2222222222222222"
THIRD_MARKET = "3333333333333333"


def mapping_reader(values) -> ChainReader:
    """ChainReader over ``{(mapping, key): value}``; missing keys 404."""
    def handler(request):
        parts = request.url.path.split("/")
        value = values.get((parts[-2], parts[-1]))
        if value is None:
            return httpx.Response(404)
        return httpx.Response(200, text=json.dumps(value))

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChainReader(MappingClient("https://explorer.test", http, tick_interval=0), PROGRAM)


def rpc_stub(methods) -> ChainRpcClient:
    """JSON-RPC client answering ``methods[name](params)``."""
    def handler(request):
        body = json.loads(request.content)
        result = methods[body["method"]](body.get("params") or {})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return ChainRpcClient("https://rpc.test", httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def registry_values(*statuses):
    markets = [MARKET_ID, OTHER_MARKET, THIRD_MARKET][:len(statuses)]
    values = {("total_markets", "0u64"): f"{len(markets)}u64"}
    for index, (market_id, status) in enumerate(zip(markets, statuses)):
        values[("market_index", f"{index}u64")] = f"{market_id}field"
        values[("market_status", f"{market_id}field")] = f"{status}u8"
    return values


def status_op(market_id, mapping="market_status"):
    return {"type": "update_key_value", "mapping_id": mapping, "key_id": f"{market_id}field"}


async def no_sleep(seconds):
    pass


# ============================================================================
#  TTL CACHE
# ============================================================================

class TestTTLCache:

    def test_expiry(self, clock):
        cache = TTLCache(10, clock)
        cache.set("a", 1)
        clock.advance(9.9)
        assert cache.get("a") == 1
        clock.advance(0.1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_replace_on_write(self, clock):
        cache = TTLCache(10, clock)
        cache.set("a", 1)
        clock.advance(8)
        cache.set("a", 2)
        clock.advance(8)
        assert cache.get("a") == 2

    def test_invalidate(self, clock):
        cache = TTLCache(10, clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2
        cache.invalidate()
        assert len(cache) == 0


# ============================================================================
#  REGISTRY
# ============================================================================

@pytest.mark.asyncio
class TestMarketRegistry:

    async def test_market_ids_from_index(self):
        registry = MarketRegistry(mapping_reader(registry_values(0, 1)))
        assert await registry.market_ids() == [MARKET_ID, OTHER_MARKET]

    async def test_ttl_avoids_refetch(self, clock):
        reader = mapping_reader(registry_values(0, 0))
        registry = MarketRegistry(reader, ttl=30, clock=clock)

        await registry.market_ids()
        requests = reader.mapping_client.request_count
        assert requests == 3

        await registry.market_ids()
        assert reader.mapping_client.request_count == requests

        clock.advance(31)
        await registry.market_ids()
        assert reader.mapping_client.request_count == 2 * requests

        registry.invalidate()
        await registry.market_ids()
        assert reader.mapping_client.request_count == 3 * requests

    async def test_index_holes_are_skipped(self):
        values = registry_values(0, 0)
        del values[("market_index", "0u64")]
        registry = MarketRegistry(mapping_reader(values))
        assert await registry.market_ids() == [OTHER_MARKET]

    async def test_entry_details(self):
        values = registry_values(0)
        values[("market_creator", f"{MARKET_ID}field")] = "aleo1" + "c" * 58
        values[("last_price_update", f"{MARKET_ID}field")] = "6500u64"
        registry = MarketRegistry(mapping_reader(values))

        entry = await registry.get_entry(f"{MARKET_ID}.field")
        assert entry.market_id == MARKET_ID
        assert entry.is_active
        assert entry.creator == "aleo1" + "c" * 58
        assert entry.last_price_update == 6500
        assert entry.metadata_hash is None

    async def test_entry_without_status(self):
        registry = MarketRegistry(mapping_reader({}))
        assert await registry.get_entry(MARKET_ID) is None

    async def test_active_markets_paginate_after_filter(self):
        registry = MarketRegistry(mapping_reader(registry_values(0, 1, 0)))
        active = await registry.get_active_markets()
        assert [e.market_id for e in active] == [MARKET_ID, THIRD_MARKET]

        page = await registry.get_active_markets(limit=1, offset=1)
        assert [e.market_id for e in page] == [THIRD_MARKET]

    async def test_get_markets_page(self):
        registry = MarketRegistry(mapping_reader(registry_values(0, 1, 2)))
        page = await registry.get_markets(limit=2, offset=1)
        assert [(e.market_id, e.status) for e in page] == [
            (OTHER_MARKET, MarketStatus.RESOLVED),
            (THIRD_MARKET, MarketStatus.PAUSED),
        ]

    async def test_falls_back_to_discovery(self):
        reader = mapping_reader({("market_status", f"{MARKET_ID}field"): "0u8"})
        rpc = rpc_stub({
            "aleoTransactionsForProgram": lambda params: [
                {"id": "at1aaa", "finalize": [status_op(MARKET_ID)]},
            ],
        })
        discovery = MarketDiscovery(rpc, reader, PROGRAM, retries=1, sleep=no_sleep)
        registry = MarketRegistry(reader, discovery)

        assert await registry.market_ids() == [MARKET_ID]
        markets = await registry.get_markets()
        assert [e.market_id for e in markets] == [MARKET_ID]


# ============================================================================
#  DISCOVERY
# ============================================================================

class TestFinalizeParsing:

    def test_finalize_paths(self):
        ops = [status_op(MARKET_ID)]
        assert finalize_operations({"finalize": ops}) == ops
        assert finalize_operations({"transaction": {"execution": {"finalize": ops}}}) == ops
        assert finalize_operations({"id": "at1x"}) == []

    def test_market_ids_from_finalize(self):
        ops = [
            status_op(MARKET_ID),
            status_op(MARKET_ID),
            status_op(OTHER_MARKET, mapping="market_yes_reserve"),
            {"type": "remove_key_value", "mapping_id": "market_status", "key_id": "9field"},
        ]
        assert market_ids_from_finalize(ops) == [MARKET_ID]
        assert market_ids_from_finalize(ops, ("market_status", "market_yes_reserve")) == [MARKET_ID, OTHER_MARKET]

    def test_transaction_id_of(self):
        assert transaction_id_of({"transactionId": "at1b"}) == "at1b"
        assert transaction_id_of({"transaction": {"id": "at1c"}}) == "at1c"
        assert transaction_id_of({}) is None

    def test_candidates_from_init_transition(self):
        tx = {"execution": {"transitions": [
            {"function": "init", "inputs": [{"value": "1000000u64"}, {"value": f"{MARKET_ID}field"}, "42field"]},
            {"function": "transfer_private", "inputs": [{"value": f"{OTHER_MARKET}field"}]},
        ]}}
        assert candidate_ids_from_transitions(tx) == [MARKET_ID]


@pytest.mark.asyncio
class TestMarketDiscovery:

    async def test_scan_probes_bare_listings(self):
        rpc = rpc_stub({
            "aleoTransactionsForProgram": lambda params: [{"id": "at1bare"}] if params["page"] == 0 else [],
            "getTransaction": lambda params: {"id": params["id"], "finalize": [status_op(OTHER_MARKET)]},
        })
        discovery = MarketDiscovery(rpc, mapping_reader({}), PROGRAM, retries=1, page_size=1, sleep=no_sleep)
        assert await discovery.discover_market_ids() == [OTHER_MARKET]

    async def test_retries_with_linear_backoff(self):
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        rpc = rpc_stub({"aleoTransactionsForProgram": lambda params: []})
        discovery = MarketDiscovery(rpc, mapping_reader({}), PROGRAM, retries=3, retry_delay=2.0, sleep=record_sleep)
        assert await discovery.discover_market_ids() == []
        assert sleeps == [2.0, 4.0]

    async def test_extract_from_finalize(self):
        rpc = rpc_stub({
            "getTransaction": lambda params: {
                "id": params["id"],
                "finalize": [status_op(MARKET_ID, mapping="market_collateral_pool")],
            },
        })
        discovery = MarketDiscovery(rpc, mapping_reader({}), PROGRAM, retries=1, sleep=no_sleep)
        assert await discovery.extract_market_id_from_transaction("at1new") == MARKET_ID

    async def test_extract_from_transition_candidates(self):
        tx = {"id": "at1new", "execution": {"transitions": [
            {"function": "init", "outputs": [{"value": f"{OTHER_MARKET}field"}, {"value": f"{MARKET_ID}field"}]},
        ]}}
        rpc = rpc_stub({"getTransaction": lambda params: tx})
        reader = mapping_reader({("market_status", f"{MARKET_ID}field"): "0u8"})
        discovery = MarketDiscovery(rpc, reader, PROGRAM, retries=1, sleep=no_sleep)
        assert await discovery.extract_market_id_from_transaction("at1new") == MARKET_ID

    async def test_extract_unindexed(self):
        rpc = rpc_stub({
            "getTransaction": lambda params: None,
            "aleoTransactionsForProgram": lambda params: [],
        })
        discovery = MarketDiscovery(rpc, mapping_reader({}), PROGRAM, retries=2, sleep=no_sleep)
        assert await discovery.extract_market_id_from_transaction("at1missing") is None

    async def test_discover_markets_by_ids(self):
        reader = mapping_reader({("market_status", f"{MARKET_ID}field"): "0u8"})
        discovery = MarketDiscovery(rpc_stub({}), reader, PROGRAM, sleep=no_sleep)
        found = await discovery.discover_markets_by_ids([f"{MARKET_ID}field", MARKET_ID, OTHER_MARKET])
        assert found == [MARKET_ID]


# ============================================================================
#  MARKET STATE
# ============================================================================

def state_values(market_id=MARKET_ID, **fields):
    mapping_names = {
        "status": "market_status",
        "yes": "market_yes_reserve",
        "no": "market_no_reserve",
        "pool": "market_collateral_pool",
        "fee": "market_fee_bps",
        "outcome": "market_outcome",
        "price": "last_price_update",
    }
    return {(mapping_names[name], f"{market_id}field"): value for name, value in fields.items()}


@pytest.mark.asyncio
class TestMarketState:

    async def test_derived_price(self):
        store = MarketStateStore(mapping_reader(state_values(
            status="0u8", yes="100u128", no="300u128", pool="400u64", fee="30u64",
        )))
        state = await store.get_market_state(f"{MARKET_ID}field")
        assert state.is_open
        assert state.price_yes == 7500
        assert state.price_no == 2500
        assert state.price_source == PriceSource.DERIVED
        assert state.collateral_pool == 400
        assert state.fee_bps == 30
        assert state.outcome is None

    async def test_stored_price_wins(self):
        store = MarketStateStore(mapping_reader(state_values(
            status="0u8", yes="100u128", no="300u128", price="6500u64",
        )))
        state = await store.get_market_state(MARKET_ID)
        assert state.price_yes == 6500
        assert state.price_source == PriceSource.STORED

    async def test_resolved_outcome(self):
        store = MarketStateStore(mapping_reader(state_values(status="1u8", outcome="true")))
        state = await store.get_market_state(MARKET_ID)
        assert state.is_resolved
        assert state.outcome is True
        assert state.price_yes == 5000

    async def test_not_found(self):
        store = MarketStateStore(mapping_reader({}))
        with pytest.raises(MarketNotFoundError, match=MARKET_ID):
            await store.get_market_state(MARKET_ID)

    async def test_cached_until_invalidated(self, clock):
        reader = mapping_reader(state_values(status="0u8"))
        store = MarketStateStore(reader, ttl=45, clock=clock)
        await store.get_market_state(MARKET_ID)
        requests = reader.mapping_client.request_count
        await store.get_market_state(f"{MARKET_ID}field")
        assert reader.mapping_client.request_count == requests

        store.invalidate(MARKET_ID)
        await store.get_market_state(MARKET_ID)
        assert reader.mapping_client.request_count == 2 * requests

    def test_resolve_price(self):
        assert resolve_price(None, 1, 1) == (5000, PriceSource.DERIVED)
        assert resolve_price(12_000, 1, 3) == (7500, PriceSource.DERIVED)
        assert resolve_price(0, 1, 3) == (0, PriceSource.STORED)

    @pytest.mark.parametrize("raw, expected", [
        (None, None),
        ("true", True),
        ('"false"', False),
        ("1", True),
        ("0", False),
    ])
    def test_parse_outcome(self, raw, expected):
        assert parse_outcome(raw) is expected


# ============================================================================
#  METADATA
# ============================================================================

class _FailingStore:

    async def get(self, market_id):
        raise RuntimeError("store down")

    async def get_many(self, market_ids):
        raise RuntimeError("store down")


class _SlowStore:

    async def get(self, market_id):
        await asyncio.sleep(1)

    async def get_many(self, market_ids):
        await asyncio.sleep(1)
        return {}


@pytest.mark.asyncio
class TestMetadata:

    async def test_store_hit_and_placeholder(self):
        store = InMemoryMetadataStore()
        await store.put(MarketMetadata(market_id=f"{MARKET_ID}field", title="Rain tomorrow?", category=""))
        resolved = await resolve_metadata(store, [MARKET_ID, "5field"])

        assert resolved[MARKET_ID].title == "Rain tomorrow?"
        assert resolved[MARKET_ID].category == "General"
        assert resolved["5"].placeholder
        assert resolved["5"].title == "Market 5"

    async def test_no_store(self):
        resolved = await resolve_metadata(None, [MARKET_ID])
        assert resolved[MARKET_ID].title == "Market 12345678..."

    async def test_store_failure_uses_placeholders(self):
        resolved = await resolve_metadata(_FailingStore(), [MARKET_ID])
        assert resolved[MARKET_ID].placeholder

    async def test_store_timeout_uses_placeholders(self):
        resolved = await resolve_metadata(_SlowStore(), [MARKET_ID], timeout=0.01)
        assert resolved[MARKET_ID].placeholder

    def test_placeholder_normalizes(self):
        assert placeholder_metadata('"5.private"').market_id == "5"

    def test_metadata_hash(self):
        first = generate_metadata_hash("Rain?", "Will it rain", nonce=1)
        assert first == generate_metadata_hash("Rain?", "Will it rain", nonce=1)
        assert first != generate_metadata_hash("Rain?", "Will it rain", nonce=2)
        assert first.isdigit()
        assert int(first) < FIELD_MODULUS

    def test_salt(self):
        salt = generate_salt()
        assert salt.isdigit()
        assert int(salt) < FIELD_MODULUS

"""
Whisper Market client facade.

Wires configuration into the read services (mapping client, chain reader,
registry, discovery, market state) and, when a wallet is supplied, the
transaction layer. One ``httpx.AsyncClient`` per remote service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import httpx

from .config import ClientConfig, load_config
from .exceptions import WalletCapabilityError
from .logger import get_logger
from .market.discovery import MarketDiscovery
from .market.metadata import MarketMetadata, MetadataStore, resolve_metadata
from .market.registry import MarketRegistry, MarketRegistryEntry
from .market.state import MarketStateStore
from .market.transactions import MarketTransactions
from .rpc.chain import ChainReader, ChainRpcClient
from .rpc.mapping_client import MappingClient

logger = get_logger(__name__)


@dataclass
class MarketListing:
    """A registry entry joined with its off-chain metadata."""
    entry: MarketRegistryEntry
    metadata: MarketMetadata

    @property
    def market_id(self) -> str:
        return self.entry.market_id


class WhisperMarketClient:
    """
    Entry point for reading markets and submitting transactions.

    Usage:
        async with WhisperMarketClient(load_config(), wallet=wallet) as client:
            markets = await client.list_markets(active_only=True)
            tx_id = await client.transactions.open_position(markets[0].market_id, 1_000_000)
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        wallet: Any = None,
        metadata_store: Optional[MetadataStore] = None,
        mapping_http: Optional[httpx.AsyncClient] = None,
        rpc_http: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or load_config()
        self.config.validate()
        self.metadata_store = metadata_store

        self.mapping_client = MappingClient(
            self.config.network.mapping_api_url,
            mapping_http,
            max_concurrent=self.config.mapping_client.max_concurrent,
            tick_interval=self.config.mapping_client.tick_interval,
            timeout=self.config.mapping_client.timeout,
        )
        self.rpc = ChainRpcClient(self.config.network.rpc_url, rpc_http, timeout=self.config.mapping_client.timeout)
        self.reader = ChainReader(self.mapping_client, self.config.program.program_id)

        discovery = self.config.discovery
        self.discovery = MarketDiscovery(
            self.rpc,
            self.reader,
            self.config.program.program_id,
            max_pages=discovery.max_pages,
            page_size=discovery.page_size,
            retries=discovery.retries,
            retry_delay=discovery.retry_delay,
            probe_limit=discovery.probe_limit,
        )
        self.registry = MarketRegistry(self.reader, self.discovery, ttl=self.config.cache.registry_ttl)
        self.market_state = MarketStateStore(self.reader, ttl=self.config.cache.market_state_ttl)

        self._transactions: Optional[MarketTransactions] = None
        if wallet is not None:
            self._transactions = MarketTransactions.from_config(
                self.config,
                wallet,
                registry=self.registry,
                market_state=self.market_state,
            )

    async def __aenter__(self) -> "WhisperMarketClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.mapping_client.aclose()
        await self.rpc.aclose()

    @property
    def transactions(self) -> MarketTransactions:
        if self._transactions is None:
            raise WalletCapabilityError("No wallet connected; transactions are unavailable")
        return self._transactions

    async def list_markets(
        self,
        limit: Optional[int] = None,
        offset: int = 0,
        active_only: bool = False,
    ) -> List[MarketListing]:
        if active_only:
            entries = await self.registry.get_active_markets(limit=limit, offset=offset)
        else:
            entries = await self.registry.get_markets(limit=limit, offset=offset)
        metadata = await resolve_metadata(self.metadata_store, [e.market_id for e in entries])
        return [MarketListing(entry=e, metadata=metadata[e.market_id]) for e in entries]

    async def create_market(
        self,
        initial_liquidity: int,
        bond_amount: int,
        fee_bps: int,
        metadata_hash: str,
        salt: Optional[str] = None,
    ) -> Tuple[str, Optional[str]]:
        """Submit ``init`` and resolve the new market id from the transaction, when indexed."""
        transaction_id = await self.transactions.init_market(
            initial_liquidity, bond_amount, fee_bps, metadata_hash, salt
        )
        market_id = await self.discovery.extract_market_id_from_transaction(transaction_id)
        if market_id is not None:
            self.registry.invalidate()
        return transaction_id, market_id

    async def wait_for_finalization(self, transaction_id: str) -> bool:
        return await self.rpc.wait_for_finalization(
            transaction_id,
            attempts=self.config.transactions.finalize_attempts,
            interval=self.config.transactions.finalize_interval,
        )

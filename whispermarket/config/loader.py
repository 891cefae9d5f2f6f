"""
Whisper Market TOML Configuration Loader

Loads every section of whisper.toml with environment variable overrides.
Each section is a dataclass with ``from_dict`` and ``apply_env``.

Environment variable mapping:
    [network] mapping_api_url        → WHISPER_MAPPING_API_URL
    [network] rpc_url                → WHISPER_RPC_URL
    [program] program_id             → WHISPER_PROGRAM_ID
    [mapping_client] max_concurrent  → WHISPER_MAX_CONCURRENT
    [cache] registry_ttl             → WHISPER_REGISTRY_TTL
    ...
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .. import constants
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SELECTION_POLICIES = ("first_sufficient", "smallest_sufficient")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class NetworkConfig:
    """[network] section."""
    mapping_api_url: str = str(constants.WHISPER_MAPPING_API_URL)
    rpc_url: str = str(constants.WHISPER_RPC_URL)
    network_name: str = str(constants.WHISPER_NETWORK)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkConfig":
        return cls(
            mapping_api_url=data.get("mapping_api_url", str(constants.WHISPER_MAPPING_API_URL)),
            rpc_url=data.get("rpc_url", str(constants.WHISPER_RPC_URL)),
            network_name=data.get("network_name", str(constants.WHISPER_NETWORK)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("WHISPER_MAPPING_API_URL"):
            self.mapping_api_url = v
        if v := os.environ.get("WHISPER_RPC_URL"):
            self.rpc_url = v
        if v := os.environ.get("WHISPER_NETWORK"):
            self.network_name = v


@dataclass
class ProgramConfig:
    """[program] section."""
    program_id: str = str(constants.WHISPER_PROGRAM_ID)
    position_program_aliases: List[str] = field(default_factory=list)
    credits_program_id: str = constants.CREDITS_PROGRAM_ID

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgramConfig":
        return cls(
            program_id=data.get("program_id", str(constants.WHISPER_PROGRAM_ID)),
            position_program_aliases=list(data.get("position_program_aliases", [])),
            credits_program_id=data.get("credits_program_id", constants.CREDITS_PROGRAM_ID),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("WHISPER_PROGRAM_ID"):
            self.program_id = v
        if v := os.environ.get("WHISPER_POSITION_PROGRAM_ALIASES"):
            self.position_program_aliases = [p.strip() for p in v.split(",") if p.strip()]

    @property
    def position_programs(self) -> List[str]:
        """Program id first, then aliases, without duplicates."""
        aliases = self.position_program_aliases or list(constants.LEGACY_POSITION_PROGRAM_ALIASES)
        ordered: List[str] = []
        for program in [self.program_id, *aliases]:
            if program and program not in ordered:
                ordered.append(program)
        return ordered


@dataclass
class MappingClientConfig:
    """[mapping_client] section."""
    max_concurrent: int = constants.MAPPING_MAX_CONCURRENT
    tick_interval: float = constants.MAPPING_TICK_INTERVAL
    timeout: float = constants.MAPPING_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingClientConfig":
        return cls(
            max_concurrent=data.get("max_concurrent", constants.MAPPING_MAX_CONCURRENT),
            tick_interval=data.get("tick_interval", constants.MAPPING_TICK_INTERVAL),
            timeout=data.get("timeout", constants.MAPPING_TIMEOUT),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("WHISPER_MAX_CONCURRENT"):
            self.max_concurrent = int(v)
        if v := os.environ.get("WHISPER_TICK_INTERVAL"):
            self.tick_interval = float(v)
        if v := os.environ.get("WHISPER_MAPPING_TIMEOUT"):
            self.timeout = float(v)


@dataclass
class CacheConfig:
    """[cache] section. TTLs in seconds."""
    registry_ttl: float = constants.REGISTRY_CACHE_TTL
    market_state_ttl: float = constants.MARKET_STATE_CACHE_TTL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheConfig":
        return cls(
            registry_ttl=data.get("registry_ttl", constants.REGISTRY_CACHE_TTL),
            market_state_ttl=data.get("market_state_ttl", constants.MARKET_STATE_CACHE_TTL),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("WHISPER_REGISTRY_TTL"):
            self.registry_ttl = float(v)
        if v := os.environ.get("WHISPER_MARKET_STATE_TTL"):
            self.market_state_ttl = float(v)


@dataclass
class DiscoverySettings:
    """[discovery] section."""
    max_pages: int = constants.DISCOVERY_MAX_PAGES
    page_size: int = constants.DISCOVERY_PAGE_SIZE
    retries: int = constants.DISCOVERY_RETRIES
    retry_delay: float = constants.DISCOVERY_RETRY_DELAY
    probe_limit: int = constants.DISCOVERY_PROBE_LIMIT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscoverySettings":
        return cls(
            max_pages=data.get("max_pages", constants.DISCOVERY_MAX_PAGES),
            page_size=data.get("page_size", constants.DISCOVERY_PAGE_SIZE),
            retries=data.get("retries", constants.DISCOVERY_RETRIES),
            retry_delay=data.get("retry_delay", constants.DISCOVERY_RETRY_DELAY),
            probe_limit=data.get("probe_limit", constants.DISCOVERY_PROBE_LIMIT),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("WHISPER_DISCOVERY_RETRIES"):
            self.retries = int(v)
        if v := os.environ.get("WHISPER_DISCOVERY_MAX_PAGES"):
            self.max_pages = int(v)


@dataclass
class TransactionSettings:
    """[transactions] section."""
    selection_policy: str = "first_sufficient"
    slippage_bps: int = constants.DEFAULT_SLIPPAGE_BPS
    finalize_attempts: int = constants.FINALIZE_POLL_ATTEMPTS
    finalize_interval: float = constants.FINALIZE_POLL_INTERVAL
    submit_timeout: float = 0.0         # 0 disables

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionSettings":
        return cls(
            selection_policy=data.get("selection_policy", "first_sufficient"),
            slippage_bps=data.get("slippage_bps", constants.DEFAULT_SLIPPAGE_BPS),
            finalize_attempts=data.get("finalize_attempts", constants.FINALIZE_POLL_ATTEMPTS),
            finalize_interval=data.get("finalize_interval", constants.FINALIZE_POLL_INTERVAL),
            submit_timeout=data.get("submit_timeout", 0.0),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("WHISPER_SELECTION_POLICY"):
            self.selection_policy = v
        if v := os.environ.get("WHISPER_SLIPPAGE_BPS"):
            self.slippage_bps = int(v)
        if v := os.environ.get("WHISPER_SUBMIT_TIMEOUT"):
            self.submit_timeout = float(v)


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass
class ClientConfig:
    """
    Unified client configuration.

    Loads every section of whisper.toml and applies environment variable
    overrides.
    """
    network: NetworkConfig = field(default_factory=NetworkConfig)
    program: ProgramConfig = field(default_factory=ProgramConfig)
    mapping_client: MappingClientConfig = field(default_factory=MappingClientConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    transactions: TransactionSettings = field(default_factory=TransactionSettings)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create ClientConfig from a parsed TOML dict."""
        return cls(
            network=NetworkConfig.from_dict(data.get("network", {})),
            program=ProgramConfig.from_dict(data.get("program", {})),
            mapping_client=MappingClientConfig.from_dict(data.get("mapping_client", {})),
            cache=CacheConfig.from_dict(data.get("cache", {})),
            discovery=DiscoverySettings.from_dict(data.get("discovery", {})),
            transactions=TransactionSettings.from_dict(data.get("transactions", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "ClientConfig":
        """
        Load configuration from a TOML file.

        A missing file is not an error: defaults plus environment overrides
        are returned.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.network.apply_env()
        self.program.apply_env()
        self.mapping_client.apply_env()
        self.cache.apply_env()
        self.discovery.apply_env()
        self.transactions.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if not self.network.mapping_api_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid mapping_api_url: {self.network.mapping_api_url}")
        if not self.network.rpc_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid rpc_url: {self.network.rpc_url}")
        if not self.program.program_id.endswith(".aleo"):
            raise ConfigurationError(f"Invalid program_id: {self.program.program_id}")
        if self.mapping_client.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be >= 1")
        if self.mapping_client.tick_interval < 0:
            raise ConfigurationError("tick_interval must be >= 0")
        if self.mapping_client.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")
        if self.cache.registry_ttl < 0 or self.cache.market_state_ttl < 0:
            raise ConfigurationError("cache TTLs must be >= 0")
        if self.discovery.max_pages < 1 or self.discovery.page_size < 1:
            raise ConfigurationError("discovery max_pages and page_size must be >= 1")
        if self.discovery.retries < 1:
            raise ConfigurationError("discovery retries must be >= 1")
        if not 0 <= self.transactions.slippage_bps <= constants.BPS_SCALE:
            raise ConfigurationError(f"slippage_bps out of range: {self.transactions.slippage_bps}")
        if self.transactions.selection_policy not in SELECTION_POLICIES:
            raise ConfigurationError(f"Unknown selection_policy: {self.transactions.selection_policy}")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics)."""
        return {
            "network": {
                "mapping_api_url": self.network.mapping_api_url,
                "rpc_url": self.network.rpc_url,
                "network_name": self.network.network_name,
            },
            "program": {
                "program_id": self.program.program_id,
                "position_programs": self.program.position_programs,
                "credits_program_id": self.program.credits_program_id,
            },
            "mapping_client": {
                "max_concurrent": self.mapping_client.max_concurrent,
                "tick_interval": self.mapping_client.tick_interval,
                "timeout": self.mapping_client.timeout,
            },
            "cache": {
                "registry_ttl": self.cache.registry_ttl,
                "market_state_ttl": self.cache.market_state_ttl,
            },
            "discovery": {
                "max_pages": self.discovery.max_pages,
                "page_size": self.discovery.page_size,
                "retries": self.discovery.retries,
                "retry_delay": self.discovery.retry_delay,
                "probe_limit": self.discovery.probe_limit,
            },
            "transactions": {
                "selection_policy": self.transactions.selection_policy,
                "slippage_bps": self.transactions.slippage_bps,
                "finalize_attempts": self.transactions.finalize_attempts,
                "finalize_interval": self.transactions.finalize_interval,
                "submit_timeout": self.transactions.submit_timeout,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> ClientConfig:
    """
    Load client configuration.

    Resolution order:
        1. Explicit *path* argument
        2. WHISPER_CONFIG env var
        3. ./whisper.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("WHISPER_CONFIG", "whisper.toml")

    return ClientConfig.from_file(path)

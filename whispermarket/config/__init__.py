"""
Whisper Market Configuration

Loads all sections of whisper.toml.
Environment variables override TOML values.
"""

from .loader import (
    ClientConfig,
    NetworkConfig,
    ProgramConfig,
    MappingClientConfig,
    CacheConfig,
    DiscoverySettings,
    TransactionSettings,
    SELECTION_POLICIES,
    load_config,
)

__all__ = [
    "ClientConfig",
    "NetworkConfig",
    "ProgramConfig",
    "MappingClientConfig",
    "CacheConfig",
    "DiscoverySettings",
    "TransactionSettings",
    "SELECTION_POLICIES",
    "load_config",
]

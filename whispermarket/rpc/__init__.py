"""
Whisper Market RPC Module

Chain access over HTTP:
- Rate-limited, coalescing mapping reads
- Typed mapping reads for the market program
- JSON-RPC explorer client (transaction listings and status)
"""

from .mapping_client import MappingClient, clean_mapping_value
from .chain import ChainReader, ChainRpcClient, parse_mapping_int, soft_result

__all__ = [
    "MappingClient",
    "clean_mapping_value",
    "ChainReader",
    "ChainRpcClient",
    "parse_mapping_int",
    "soft_result",
]

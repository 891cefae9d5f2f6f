"""
Whisper Market Client Package

Privacy-preserving prediction market client for an Aleo-style record chain.

Core imports are lazily loaded so the read-only helpers stay cheap to import.
For direct module access, import from submodules:

    from whispermarket.records import select_spend_and_fee
    from whispermarket.exchange import quote_swap
    from whispermarket.exceptions import DoubleSpendException
"""

__version__ = "0.1.0"


# Lazy imports to avoid pulling httpx and rich at package import
def __getattr__(name):
    """Lazy module loading for the facade and its config."""
    if name == 'WhisperMarketClient':
        from .client import WhisperMarketClient
        return WhisperMarketClient
    elif name == 'load_config':
        from .config import load_config
        return load_config
    elif name == 'DoubleSpendException':
        from .exceptions import DoubleSpendException
        return DoubleSpendException
    raise AttributeError(f"module 'whispermarket' has no attribute {name!r}")

__all__ = ['WhisperMarketClient', 'load_config', 'DoubleSpendException']

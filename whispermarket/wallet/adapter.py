"""
Wallet capability probing.

Wallet objects arrive in several nestings (an adapter wrapping a wallet, a
wallet exposing its adapter, or a flat object). Rather than sniffing shapes
at every call site, the probe order lives in ``ADAPTER_PROBE_PATHS`` and
``probe_wallet`` returns the first target exposing ``execute_transaction``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Tuple, runtime_checkable

from ..exceptions import WalletCapabilityError

logger = logging.getLogger(__name__)

# Attribute paths tried in order; () is the wallet object itself
ADAPTER_PROBE_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("adapter",),
    ("adapter", "wallet"),
    ("wallet",),
    ("wallet", "adapter"),
    (),
)

EXECUTE_ATTR = "execute_transaction"
REQUEST_RECORDS_ATTR = "request_records"
INTENT_ONLY_ATTR = "intent_only"

RequestRecords = Callable[..., Awaitable[Any]]


@runtime_checkable
class WalletAdapter(Protocol):
    """Narrow surface the client needs from a wallet."""

    async def execute_transaction(self, request: Mapping[str, Any]) -> Any:
        ...


@dataclass
class WalletHandle:
    """Resolved capabilities of a connected wallet."""
    target: Any
    execute: Callable[[Mapping[str, Any]], Awaitable[Any]]
    request_records: Optional[RequestRecords]
    intent_only: bool
    path: Tuple[str, ...]

    async def fetch_records(self, program_id: str, decrypt: bool = True) -> Any:
        if self.request_records is None:
            raise WalletCapabilityError("Wallet does not expose request_records")
        return await self.request_records(program_id, decrypt)


def _child(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _resolve_path(wallet: Any, path: Tuple[str, ...]) -> Any:
    target = wallet
    for name in path:
        target = _child(target, name)
        if target is None:
            return None
    return target


def _callable_attr(obj: Any, name: str) -> Optional[Callable]:
    attr = _child(obj, name)
    return attr if callable(attr) else None


def _flag(obj: Any) -> bool:
    return _child(obj, INTENT_ONLY_ATTR) is True


def resolve_request_records(wallet: Any, explicit: Optional[RequestRecords] = None) -> Optional[RequestRecords]:
    """An explicitly supplied fetcher wins; otherwise probe the wallet."""
    if explicit is not None:
        return explicit
    for path in ADAPTER_PROBE_PATHS:
        fn = _callable_attr(_resolve_path(wallet, path), REQUEST_RECORDS_ATTR)
        if fn is not None:
            return fn
    return None


def probe_wallet(wallet: Any, request_records: Optional[RequestRecords] = None) -> Optional[WalletHandle]:
    """First probe target exposing ``execute_transaction``, or None."""
    for path in ADAPTER_PROBE_PATHS:
        target = _resolve_path(wallet, path)
        execute = _callable_attr(target, EXECUTE_ATTR)
        if execute is None:
            continue
        fetcher = resolve_request_records(wallet, request_records)
        intent_only = _flag(wallet) or _flag(target) or fetcher is None
        logger.debug(
            f"Wallet adapter resolved at {'.'.join(path) or '<direct>'} "
            f"(intent_only={intent_only})"
        )
        return WalletHandle(
            target=target,
            execute=execute,
            request_records=fetcher,
            intent_only=intent_only,
            path=path,
        )
    return None


def require_wallet(wallet: Any, request_records: Optional[RequestRecords] = None) -> WalletHandle:
    handle = probe_wallet(wallet, request_records)
    if handle is None:
        raise WalletCapabilityError(
            "Wallet adapter does not support transaction execution; make sure the wallet is connected"
        )
    return handle


def is_intent_only_wallet(wallet: Any) -> bool:
    handle = probe_wallet(wallet)
    return handle is None or handle.intent_only


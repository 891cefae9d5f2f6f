"""
Rate-limited mapping reader.

Every on-chain mapping read goes through one ``MappingClient``:
  - at most ``max_concurrent`` requests in flight
  - at least ``tick_interval`` seconds between two dispatches
  - identical concurrent reads of (program, mapping, key) share one request
  - 404, timeouts and network failures resolve to ``None``
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from ..constants import MAPPING_MAX_CONCURRENT, MAPPING_TICK_INTERVAL, MAPPING_TIMEOUT
from ..exceptions import ChainRequestError
from ..logger import get_logger

logger = get_logger(__name__)

_VALUE_SUFFIX_RE = re.compile(r"(\.private|\.public|u\d+|i\d+|field|group|scalar)$")
_VISIBILITY_SUFFIX_RE = re.compile(r"(\.private|\.public)$")

MappingKey = Tuple[str, str, str]


def clean_mapping_value(raw: Optional[str]) -> Optional[str]:
    """Strip quotes plus trailing type and visibility suffixes from a mapping value."""
    if raw is None:
        return None
    text = raw.strip().strip('"').strip()
    # Addresses are bech32 and may legitimately end in "u8" or similar
    pattern = _VISIBILITY_SUFFIX_RE if text.startswith("aleo1") else _VALUE_SUFFIX_RE
    previous = None
    while previous != text:
        previous = text
        text = pattern.sub("", text).strip()
    return text or None


def parse_mapping_body(body: str) -> Optional[str]:
    """Explorer bodies are JSON (``"5u64"`` or ``null``) or plain text."""
    text = body.strip()
    if not text or text == "null":
        return None
    try:
        decoded = json.loads(text)
    except ValueError:
        return text
    if decoded is None:
        return None
    return decoded if isinstance(decoded, str) else json.dumps(decoded)


class MappingClient:
    """Throttled, coalescing reader for ``GET {base}/program/{pid}/mapping/{name}/{key}``."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        *,
        max_concurrent: int = MAPPING_MAX_CONCURRENT,
        tick_interval: float = MAPPING_TICK_INTERVAL,
        timeout: float = MAPPING_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.tick_interval = tick_interval
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._dispatch_lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None
        self._clock = clock
        self._sleep = sleep
        self._in_flight: Dict[MappingKey, asyncio.Future] = {}
        self.request_count = 0

    async def __aenter__(self) -> "MappingClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def mapping_url(self, program_id: str, mapping_name: str, key: str) -> str:
        return (
            f"{self.base_url}/program/{quote(program_id, safe='')}"
            f"/mapping/{quote(mapping_name, safe='')}/{quote(key, safe='')}"
        )

    async def get_mapping_value(self, program_id: str, mapping_name: str, key: str) -> Optional[str]:
        """
        Raw mapping value, or None when the key is absent or the read failed softly.

        Raises:
            ChainRequestError: the explorer answered with a non-404 error status.
        """
        mapping_key: MappingKey = (program_id, mapping_name, str(key))
        task = self._in_flight.get(mapping_key)
        if task is None:
            task = asyncio.ensure_future(self._dispatch(mapping_key))
            self._in_flight[mapping_key] = task
            task.add_done_callback(lambda done, k=mapping_key: self._forget(k, done))
        return await asyncio.shield(task)

    async def get_value(self, program_id: str, mapping_name: str, key: str) -> Optional[str]:
        """Mapping value with quotes and literal suffixes removed."""
        return clean_mapping_value(await self.get_mapping_value(program_id, mapping_name, key))

    def _forget(self, mapping_key: MappingKey, done: asyncio.Future) -> None:
        if self._in_flight.get(mapping_key) is done:
            del self._in_flight[mapping_key]
        if not done.cancelled() and done.exception() is not None:
            logger.debug(f"Mapping read {mapping_key} failed: {done.exception()}")

    async def _wait_for_slot(self) -> None:
        async with self._dispatch_lock:
            if self._last_dispatch is not None:
                wait = self._last_dispatch + self.tick_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_dispatch = self._clock()

    async def _dispatch(self, mapping_key: MappingKey) -> Optional[str]:
        async with self._semaphore:
            await self._wait_for_slot()
            return await self._fetch(*mapping_key)

    async def _fetch(self, program_id: str, mapping_name: str, key: str) -> Optional[str]:
        url = self.mapping_url(program_id, mapping_name, key)
        self.request_count += 1
        start_time = time.time()
        try:
            response = await self._client.get(
                url, headers={"Accept": "application/json, text/plain, */*"}, timeout=self.timeout
            )
        except httpx.TimeoutException:
            logger.warning(f'<-- "GET {url}" TIMEOUT ({time.time() - start_time:.3f}s)')
            return None
        except httpx.RequestError as e:
            logger.warning(f'<-- "GET {url}" NETWORK_ERROR ({time.time() - start_time:.3f}s): {e}')
            return None

        elapsed = time.time() - start_time
        logger.debug(f'<-- "GET {url}" {response.status_code} ({elapsed:.3f}s)')
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ChainRequestError(
                f"Mapping read {program_id}/{mapping_name}/{key} failed "
                f"({response.status_code}): {response.text[:200]}"
            )
        return parse_mapping_body(response.text)

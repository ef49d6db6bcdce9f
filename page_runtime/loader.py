"""Asset loader with load-once and in-order guarantees.

Every distinct URL gets exactly one ``AssetLoadRecord`` for the lifetime of
the page. The record moves ``unrequested -> pending -> loaded|failed`` and is
only ever written by ``AssetLoader``. Concurrent requesters of a pending URL
attach to the same in-flight task instead of issuing a second request.
"""
from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import urljoin

import aiohttp

from .const import DEFAULT_HASH_ALGORITHM, DEFAULT_REQUEST_TIMEOUT_SECONDS
from .errors import AssetLoadError, AssetTimeoutError
from .manifest import AssetDescriptor, AssetKind

_LOGGER = logging.getLogger(__name__)


class AssetStatus(StrEnum):
    UNREQUESTED = "unrequested"
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(slots=True)
class AssetLoadRecord:
    """Load state of one URL."""

    url: str
    kind: AssetKind
    status: AssetStatus = AssetStatus.UNREQUESTED
    error: str | None = None
    requested_at: float = 0.0
    settled_at: float = 0.0
    task: asyncio.Task | None = field(default=None, repr=False)

    def as_dict(self) -> dict[str, Any]:
        duration = None
        if self.settled_at and self.requested_at:
            duration = round((self.settled_at - self.requested_at) * 1000, 1)
        return {
            "url": self.url,
            "kind": self.kind.value,
            "status": self.status.value,
            "error": self.error,
            "load_time_ms": duration,
        }


class AssetInjector(Protocol):
    """Brings one asset into the page.

    Returning means the platform reported "load"; raising means "error".
    """

    async def inject(self, asset: AssetDescriptor) -> None:
        ...


StatusListener = Callable[[str, AssetStatus], None]


def _consume_exception(task: asyncio.Task) -> None:
    # Failures are reported through the record; a load nobody awaits any
    # more (watchdog expired) must not warn about an unretrieved exception.
    if not task.cancelled():
        task.exception()


class AssetLoader:
    """Loads ordered asset lists, each URL at most once per page."""

    def __init__(self, injector: AssetInjector) -> None:
        self._injector = injector
        self._records: dict[str, AssetLoadRecord] = {}
        self._listeners: list[StatusListener] = []

    def status(self, url: str) -> AssetStatus:
        record = self._records.get(url)
        return record.status if record else AssetStatus.UNREQUESTED

    def records(self) -> list[AssetLoadRecord]:
        return list(self._records.values())

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a callback for record transitions; returns an unsubscribe."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def async_load(
        self,
        assets: Iterable[AssetDescriptor],
        *,
        timeout: float | None = None,
    ) -> None:
        """Load ``assets`` in order; each completes before the next starts.

        With ``timeout`` set, the whole call is bounded by a watchdog. Expiry
        raises ``AssetTimeoutError`` but does not abort in-flight requests;
        their records still settle later.
        """
        assets = list(assets)
        if timeout is None:
            await self._load_in_order(assets, [])
            return

        current: list[str] = []
        try:
            await asyncio.wait_for(self._load_in_order(assets, current), timeout)
        except asyncio.TimeoutError as err:
            url = current[-1] if current else ""
            raise AssetTimeoutError(url, f"timed out after {timeout}s") from err

    async def _load_in_order(self, assets: list[AssetDescriptor], current: list[str]) -> None:
        for asset in assets:
            current.append(asset.url)
            await self._load_one(asset)

    async def _load_one(self, asset: AssetDescriptor) -> None:
        record = self._records.get(asset.url)
        if record is None:
            record = AssetLoadRecord(url=asset.url, kind=asset.kind)
            self._records[asset.url] = record

        if record.status is AssetStatus.LOADED:
            _LOGGER.debug("Asset %s already loaded, skipping", asset.url)
            return

        if record.status is AssetStatus.FAILED:
            raise AssetLoadError(asset.url, record.error or "previously failed")

        task = record.task
        if record.status is AssetStatus.PENDING and task is not None:
            _LOGGER.debug("Asset %s in flight, attaching", asset.url)
        else:
            record.requested_at = time.monotonic()
            self._transition(record, AssetStatus.PENDING)
            task = record.task = asyncio.ensure_future(self._inject(record, asset))
            task.add_done_callback(_consume_exception)

        await asyncio.shield(task)

    async def _inject(self, record: AssetLoadRecord, asset: AssetDescriptor) -> None:
        try:
            await self._injector.inject(asset)
        except Exception as err:
            record.error = getattr(err, "reason", "") or str(err) or type(err).__name__
            record.settled_at = time.monotonic()
            self._transition(record, AssetStatus.FAILED)
            if isinstance(err, AssetLoadError):
                raise
            raise AssetLoadError(asset.url, record.error) from err

        record.settled_at = time.monotonic()
        self._transition(record, AssetStatus.LOADED)

    def _transition(self, record: AssetLoadRecord, status: AssetStatus) -> None:
        record.status = status
        _LOGGER.debug("Asset %s -> %s", record.url, status.value)
        for listener in list(self._listeners):
            try:
                listener(record.url, status)
            except Exception:
                _LOGGER.exception("Asset status listener failed for %s", record.url)

    def as_dict(self) -> dict[str, Any]:
        counts = {status.value: 0 for status in AssetStatus if status is not AssetStatus.UNREQUESTED}
        for record in self._records.values():
            if record.status is not AssetStatus.UNREQUESTED:
                counts[record.status.value] += 1
        return {
            "counts": counts,
            "assets": [record.as_dict() for record in self._records.values()],
        }


AssetHook = Callable[[AssetDescriptor, bytes], Awaitable[None] | None]


class HttpAssetInjector:
    """Fetch assets over HTTP with aiohttp.

    ``on_asset`` receives each fetched body and stands in for the platform
    executing the script or applying the stylesheet.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        base_url: str | None = None,
        verify_hashes: bool = False,
        hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        on_asset: AssetHook | None = None,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self.base_url = base_url
        self.verify_hashes = verify_hashes
        self.hash_algorithm = hash_algorithm
        self.request_timeout = request_timeout
        self.on_asset = on_asset
        self.injected: list[AssetDescriptor] = []

    def _url_for(self, asset: AssetDescriptor) -> str:
        if self.base_url:
            return urljoin(self.base_url, asset.url)
        return asset.url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def inject(self, asset: AssetDescriptor) -> None:
        url = self._url_for(asset)
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with session.get(url, timeout=timeout) as resp:
                if resp.status >= 400:
                    raise AssetLoadError(asset.url, f"HTTP {resp.status}")
                body = await resp.read()
        except aiohttp.ClientError as err:
            raise AssetLoadError(asset.url, str(err) or type(err).__name__) from err
        except asyncio.TimeoutError as err:
            raise AssetLoadError(asset.url, "request timed out") from err

        if self.verify_hashes and asset.content_hash:
            digest = hashlib.new(self.hash_algorithm, body).hexdigest()
            if not digest.startswith(asset.content_hash.lower()):
                raise AssetLoadError(asset.url, "content hash mismatch")

        if self.on_asset is not None:
            result = self.on_asset(asset, body)
            if inspect.isawaitable(result):
                await result

        self.injected.append(asset)
        _LOGGER.debug("Injected %s %s (%d bytes)", asset.kind.value, asset.url, len(body))

    async def async_close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

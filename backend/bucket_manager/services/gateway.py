"""
Async gateway over an ObjectStore.

Every call runs the blocking store operation in a worker thread and is bounded by a
timeout. Nothing is retried here: callers decide whether to re-issue an operation.
"""
from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import IO, Callable, TypeVar

from bucket_manager.errors import NotConfigured, RemoteError, StoreError
from bucket_manager.models import BucketStats, ListingPage, SignedUrl, StoreConfig, StoreIdentity
from bucket_manager.storage.base import ObjectStore

log = logging.getLogger("bucket_manager.gateway")

DOWNLOAD_URL_EXPIRY_SECONDS = 3600

T = TypeVar("T")
ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class _Session:
    config: StoreConfig
    store: ObjectStore


class _ProgressRelay:
    """
    Turns the store's byte callback (worker thread) into percent updates on the event loop.
    Values never decrease and stay below 100 until the put has succeeded.
    """

    def __init__(self, total: int | None, on_progress: ProgressCallback, loop: asyncio.AbstractEventLoop):
        self.total = total
        self.on_progress = on_progress
        self.loop = loop
        self.sent = 0
        self.last = 0.0
        self.closed = False
        self._lock = threading.Lock()

    def __call__(self, nbytes: int) -> None:
        if not self.total:
            return
        with self._lock:
            self.sent += nbytes
            percent = min(99.0, round(self.sent * 100.0 / self.total, 1))
            if percent <= self.last:
                return
            self.last = percent
        self.loop.call_soon_threadsafe(self._deliver, percent)

    def _deliver(self, percent: float) -> None:
        if not self.closed:
            self.on_progress(percent)

    def finish(self) -> None:
        self.closed = True
        self.on_progress(100.0)


def _content_length(content: IO[bytes]) -> int | None:
    try:
        pos = content.tell()
        end = content.seek(0, os.SEEK_END)
        content.seek(pos)
        return end - pos
    except (AttributeError, OSError, ValueError):
        return None


class ObjectStoreGateway:
    def __init__(
        self,
        config: StoreConfig | None = None,
        store: ObjectStore | None = None,
        *,
        request_timeout_s: float = 30.0,
        upload_timeout_s: float = 600.0,
        page_size: int = 1000,
    ):
        self.request_timeout_s = request_timeout_s
        self.upload_timeout_s = upload_timeout_s
        self.page_size = page_size
        self._session: _Session | None = None
        if config is not None and store is not None:
            self.configure(config, store)

    def configure(self, config: StoreConfig, store: ObjectStore) -> None:
        # Replaces the whole session; calls already in flight keep the one they started with.
        self._session = _Session(config=config, store=store)
        log.info("gateway_configured bucket=%s region=%s", config.identity.bucket_name, config.identity.region)

    @property
    def identity(self) -> StoreIdentity | None:
        return self._session.config.identity if self._session else None

    @property
    def delimiter(self) -> str:
        return self._require().config.delimiter

    def _require(self) -> _Session:
        if self._session is None:
            raise NotConfigured()
        return self._session

    async def _run(self, op: str, call: Callable[[], T], timeout: float | None = None) -> T:
        timeout = self.request_timeout_s if timeout is None else timeout
        t0 = time.perf_counter()

        async def _call() -> T:
            # errors from the call itself (socket timeouts included) never reach wait_for's handler
            try:
                return await asyncio.to_thread(call)
            except StoreError:
                raise
            except Exception as e:
                log.warning("store_error op=%s error=%s", op, e)
                raise RemoteError(f"Failed to {op}: {e}") from e

        try:
            result = await asyncio.wait_for(_call(), timeout=timeout)
        except asyncio.TimeoutError as e:
            log.warning("store_timeout op=%s timeout_s=%s", op, timeout)
            raise RemoteError(f"Failed to {op}: timed out after {timeout:g}s") from e
        log.debug("store_call op=%s ms=%s", op, int((time.perf_counter() - t0) * 1000))
        return result

    async def list_page(self, prefix: str = "", token: str | None = None, max_keys: int | None = None) -> ListingPage:
        session = self._require()
        limit = max_keys or self.page_size
        return await self._run(
            "list objects",
            lambda: session.store.list_page(prefix, session.config.delimiter, token, limit),
        )

    async def list(self, prefix: str = "") -> ListingPage:
        """All common prefixes and keys directly under prefix, following continuation tokens."""
        prefixes: list[str] = []
        objects = []
        token: str | None = None
        while True:
            page = await self.list_page(prefix, token)
            prefixes.extend(page.common_prefixes)
            objects.extend(page.objects)
            if not page.is_truncated:
                break
            token = page.next_token
        return ListingPage(prefix=prefix, common_prefixes=tuple(prefixes), objects=tuple(objects), fetched_at=page.fetched_at)

    async def put(
        self,
        key: str,
        content: IO[bytes],
        content_type: str = "application/octet-stream",
        on_progress: ProgressCallback | None = None,
        size: int | None = None,
    ) -> None:
        session = self._require()
        total = size if size is not None else _content_length(content)
        relay = None
        if on_progress is not None:
            relay = _ProgressRelay(total, on_progress, asyncio.get_running_loop())
        t0 = time.perf_counter()
        try:
            await self._run(
                "upload file",
                lambda: session.store.put(key, content, content_type, relay),
                timeout=self.upload_timeout_s,
            )
        finally:
            if relay is not None:
                relay.closed = True
        if relay is not None:
            relay.finish()
        log.info("upload_done key=%s bytes=%s ms=%s", key, total, int((time.perf_counter() - t0) * 1000))

    async def delete(self, key: str) -> None:
        session = self._require()
        await self._run("delete object", lambda: session.store.delete(key))
        log.info("object_deleted key=%s", key)

    async def signed_download_url(self, key: str) -> SignedUrl:
        session = self._require()

        def _issue() -> str:
            session.store.head(key)
            return session.store.presign_get(key, DOWNLOAD_URL_EXPIRY_SECONDS)

        url = await self._run("generate download URL", _issue)
        return SignedUrl(url=url, expires_in=DOWNLOAD_URL_EXPIRY_SECONDS)

    async def stats(self, prefix: str = "") -> BucketStats:
        session = self._require()

        def _count() -> BucketStats:
            files = 0
            total = 0
            for record in session.store.iter_objects(prefix):
                if record.key.endswith(session.config.delimiter):
                    continue
                files += 1
                total += record.size
            return BucketStats(total_files=files, total_bytes=total)

        return await self._run("compute bucket stats", _count)


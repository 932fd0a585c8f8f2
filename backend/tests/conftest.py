from __future__ import annotations

import itertools
import threading
from typing import IO, Callable

import pytest

from bucket_manager.errors import RemoteError
from bucket_manager.models import StoreConfig, StoreIdentity
from bucket_manager.services.gateway import ObjectStoreGateway
from bucket_manager.storage.memory import MemoryStore


class FlakyStore(MemoryStore):
    """MemoryStore that fails selected puts halfway through and records upload concurrency."""

    def __init__(self, fail_keys: set[str] | None = None, chunk_size: int = 10):
        super().__init__(bucket="b2", chunk_size=chunk_size)
        self.fail_keys = set(fail_keys or ())
        self.put_order: list[str] = []
        self.list_calls = 0
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def list_page(self, prefix, delimiter, token, max_keys):
        self.list_calls += 1
        return super().list_page(prefix, delimiter, token, max_keys)

    def put(self, key: str, fileobj: IO[bytes], content_type: str, on_bytes: Callable[[int], None] | None = None) -> None:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.put_order.append(key)
        try:
            if key in self.fail_keys:
                half = fileobj.read(50)
                for i in range(0, len(half), self.chunk_size):
                    if on_bytes:
                        on_bytes(len(half[i : i + self.chunk_size]))
                raise RemoteError("Failed to upload file: connection reset by peer")
            super().put(key, fileobj, content_type, on_bytes)
        finally:
            with self._guard:
                self.active -= 1

    def read(self, key: str) -> bytes:
        with self._lock:
            return self._objects[key].data


@pytest.fixture
def identity() -> StoreIdentity:
    return StoreIdentity(bucket_name="b2", region="eu-central-1")


@pytest.fixture
def config(identity) -> StoreConfig:
    return StoreConfig(identity=identity)


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def gateway(config, store) -> ObjectStoreGateway:
    return ObjectStoreGateway(config, store, request_timeout_s=5, upload_timeout_s=5, page_size=1000)


@pytest.fixture
def ids() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"t{next(counter)}"

from __future__ import annotations

import datetime as dt
import threading
from dataclasses import dataclass
from typing import IO, Callable, Iterator
from urllib.parse import quote

from bucket_manager.errors import RemoteError
from bucket_manager.models import ListingPage, ObjectRecord

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StoredObject:
    data: bytes
    content_type: str
    last_modified: dt.datetime


class MemoryStore:
    """
    Process-local bucket with S3 listing semantics (prefix, delimiter, continuation tokens).
    Used for local development (STORAGE_BACKEND=memory) and tests.
    """

    def __init__(self, bucket: str = "local", chunk_size: int = CHUNK_SIZE):
        self.bucket = bucket
        self.chunk_size = chunk_size
        self._objects: dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def list_page(self, prefix: str, delimiter: str | None, token: str | None, max_keys: int) -> ListingPage:
        with self._lock:
            keys = sorted(k for k in self._objects if k.startswith(prefix))
            objects = dict(self._objects)

        # (sort key, common prefix or None, key or None)
        items: list[tuple[str, str | None, str | None]] = []
        seen_prefixes: set[str] = set()
        for key in keys:
            rest = key[len(prefix):]
            if delimiter and delimiter in rest:
                cp = prefix + rest[: rest.index(delimiter) + 1]
                if cp not in seen_prefixes:
                    seen_prefixes.add(cp)
                    items.append((cp, cp, None))
                continue
            items.append((key, None, key))

        if token:
            items = [item for item in items if item[0] > token]
        page, rest_items = items[:max_keys], items[max_keys:]
        next_token = page[-1][0] if rest_items and page else None
        return ListingPage(
            prefix=prefix,
            common_prefixes=tuple(cp for _, cp, _ in page if cp),
            objects=tuple(
                ObjectRecord(key=k, size=len(objects[k].data), last_modified=objects[k].last_modified)
                for _, _, k in page
                if k
            ),
            next_token=next_token,
        )

    def iter_objects(self, prefix: str) -> Iterator[ObjectRecord]:
        with self._lock:
            items = sorted((k, o) for k, o in self._objects.items() if k.startswith(prefix))
        for key, obj in items:
            yield ObjectRecord(key=key, size=len(obj.data), last_modified=obj.last_modified)

    def head(self, key: str) -> ObjectRecord:
        with self._lock:
            obj = self._objects.get(key)
        if obj is None:
            raise RemoteError(f"Failed to find object: {key} does not exist", status=404, code="NoSuchKey")
        return ObjectRecord(key=key, size=len(obj.data), last_modified=obj.last_modified)

    def put(self, key: str, fileobj: IO[bytes], content_type: str, on_bytes: Callable[[int], None] | None = None) -> None:
        chunks: list[bytes] = []
        while True:
            chunk = fileobj.read(self.chunk_size)
            if not chunk:
                break
            chunks.append(chunk)
            if on_bytes:
                on_bytes(len(chunk))
        obj = StoredObject(data=b"".join(chunks), content_type=content_type, last_modified=dt.datetime.now(dt.timezone.utc))
        with self._lock:
            self._objects[key] = obj

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def presign_get(self, key: str, expires_in: int) -> str:
        expires = int(dt.datetime.now(dt.timezone.utc).timestamp()) + int(expires_in)
        return f"memory://{self.bucket}/{quote(key)}?expires={expires}"

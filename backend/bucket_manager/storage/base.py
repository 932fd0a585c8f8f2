from __future__ import annotations

from typing import IO, Callable, Iterator, Protocol

from bucket_manager.models import ListingPage, ObjectRecord


class ObjectStore(Protocol):
    """Blocking adapter over one bucket. The gateway runs every call in a worker thread."""

    def list_page(self, prefix: str, delimiter: str | None, token: str | None, max_keys: int) -> ListingPage: ...
    def iter_objects(self, prefix: str) -> Iterator[ObjectRecord]: ...
    def head(self, key: str) -> ObjectRecord: ...
    def put(self, key: str, fileobj: IO[bytes], content_type: str, on_bytes: Callable[[int], None] | None = None) -> None: ...
    def delete(self, key: str) -> None: ...
    def presign_get(self, key: str, expires_in: int) -> str: ...

from __future__ import annotations

import io
import time

import pytest

from bucket_manager.errors import NotConfigured, RemoteError
from bucket_manager.services.gateway import DOWNLOAD_URL_EXPIRY_SECONDS, ObjectStoreGateway
from bucket_manager.storage.memory import MemoryStore


class SlowStore(MemoryStore):
    def list_page(self, prefix, delimiter, token, max_keys):
        time.sleep(0.5)
        return super().list_page(prefix, delimiter, token, max_keys)


class BrokenStore(MemoryStore):
    def delete(self, key):
        raise ConnectionError("socket closed")

    def head(self, key):
        raise TimeoutError("read operation timed out")


async def _seed(gateway: ObjectStoreGateway, *keys: str) -> None:
    for key in keys:
        await gateway.put(key, io.BytesIO(b"x" * 10))


@pytest.mark.asyncio
async def test_unconfigured_gateway_raises_not_configured():
    gateway = ObjectStoreGateway()
    assert gateway.identity is None
    with pytest.raises(NotConfigured):
        await gateway.list("")
    with pytest.raises(NotConfigured):
        await gateway.put("k", io.BytesIO(b""))
    with pytest.raises(NotConfigured):
        await gateway.delete("k")
    with pytest.raises(NotConfigured):
        await gateway.signed_download_url("k")


@pytest.mark.asyncio
async def test_list_returns_prefixes_and_keys(gateway):
    await _seed(gateway, "docs/readme.txt", "docs/photos/a.jpg", "docs/photos/b.jpg", "top.txt")
    page = await gateway.list("docs/")
    assert page.common_prefixes == ("docs/photos/",)
    assert [o.key for o in page.objects] == ["docs/readme.txt"]
    assert page.objects[0].size == 10


@pytest.mark.asyncio
async def test_list_follows_continuation_tokens(config, store):
    gateway = ObjectStoreGateway(config, store, page_size=2)
    await _seed(gateway, *(f"f{i}.txt" for i in range(5)), "dir/x")
    page = await gateway.list("")
    assert store.list_calls == 3
    assert page.common_prefixes == ("dir/",)
    assert len(page.objects) == 5
    assert page.next_token is None


@pytest.mark.asyncio
async def test_put_reports_monotonic_progress_ending_at_100(gateway, store):
    seen: list[float] = []
    await gateway.put("data.bin", io.BytesIO(b"a" * 100), "application/octet-stream", on_progress=seen.append)
    assert seen == sorted(seen)
    assert seen[0] == 10.0
    assert seen[-1] == 100.0
    assert 100.0 not in seen[:-1]
    assert store.read("data.bin") == b"a" * 100


@pytest.mark.asyncio
async def test_put_without_known_size_only_reports_completion(gateway):
    class Stream:
        def __init__(self):
            self.buf = io.BytesIO(b"b" * 30)

        def read(self, n=-1):
            return self.buf.read(n)

    seen: list[float] = []
    await gateway.put("stream.bin", Stream(), on_progress=seen.append)
    assert seen == [100.0]


@pytest.mark.asyncio
async def test_failed_put_raises_remote_error_without_reaching_100(gateway, store):
    store.fail_keys.add("bad.bin")
    seen: list[float] = []
    with pytest.raises(RemoteError, match="connection reset"):
        await gateway.put("bad.bin", io.BytesIO(b"c" * 100), on_progress=seen.append)
    assert seen and max(seen) < 100.0


@pytest.mark.asyncio
async def test_put_to_same_key_overwrites(gateway, store):
    await gateway.put("k.txt", io.BytesIO(b"one"))
    await gateway.put("k.txt", io.BytesIO(b"two"))
    assert store.read("k.txt") == b"two"


@pytest.mark.asyncio
async def test_delete_is_idempotent(gateway):
    await _seed(gateway, "gone.txt")
    await gateway.delete("gone.txt")
    await gateway.delete("gone.txt")
    page = await gateway.list("")
    assert page.objects == ()


@pytest.mark.asyncio
async def test_unexpected_store_failure_becomes_remote_error(config):
    gateway = ObjectStoreGateway(config, BrokenStore())
    with pytest.raises(RemoteError, match="socket closed"):
        await gateway.delete("k")


@pytest.mark.asyncio
async def test_socket_timeout_in_store_is_not_reported_as_gateway_timeout(config):
    gateway = ObjectStoreGateway(config, BrokenStore(), request_timeout_s=5)
    with pytest.raises(RemoteError) as exc:
        await gateway.signed_download_url("k")
    assert "read operation timed out" in exc.value.message
    assert "timed out after" not in exc.value.message


@pytest.mark.asyncio
async def test_slow_call_times_out(config):
    gateway = ObjectStoreGateway(config, SlowStore(), request_timeout_s=0.05)
    with pytest.raises(RemoteError, match="timed out"):
        await gateway.list("")


@pytest.mark.asyncio
async def test_signed_url_for_existing_key(gateway):
    await _seed(gateway, "docs/a b.txt")
    signed = await gateway.signed_download_url("docs/a b.txt")
    assert signed.expires_in == DOWNLOAD_URL_EXPIRY_SECONDS == 3600
    assert "docs/a%20b.txt" in signed.url


@pytest.mark.asyncio
async def test_signed_url_for_missing_key_fails(gateway):
    with pytest.raises(RemoteError) as exc:
        await gateway.signed_download_url("nope.txt")
    assert exc.value.status == 404


@pytest.mark.asyncio
async def test_stats_counts_files_recursively(gateway):
    await _seed(gateway, "a.txt", "docs/b.txt", "docs/deep/c.txt")
    await gateway.put("docs/", io.BytesIO(b""))
    stats = await gateway.stats()
    assert stats.total_files == 3
    assert stats.total_bytes == 30
    assert (await gateway.stats("docs/")).total_files == 2

from __future__ import annotations

from bucket_manager.config import Settings
from bucket_manager.models import StoreConfig
from bucket_manager.storage.base import ObjectStore
from bucket_manager.storage.memory import MemoryStore
from bucket_manager.storage.s3 import S3Store


def open_store(config: StoreConfig, settings: Settings) -> ObjectStore:
    if settings.storage_backend == "memory":
        return MemoryStore(bucket=config.identity.bucket_name)
    return S3Store(config, connect_timeout_s=settings.connect_timeout_s, read_timeout_s=settings.request_timeout_s)


__all__ = ["MemoryStore", "ObjectStore", "S3Store", "open_store"]

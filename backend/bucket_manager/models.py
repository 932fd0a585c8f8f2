"""
Value types shared by the gateway, the projector and the upload queue.

Identity and configuration are frozen once built; upload tasks are the only
mutable records and never leave the orchestrator (callers get snapshots).
"""
from __future__ import annotations

import datetime as dt
import io
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path as FsPath
from typing import IO, TYPE_CHECKING, Protocol

from bucket_manager.errors import ValidationError

if TYPE_CHECKING:
    from bucket_manager.config import Settings


DEFAULT_DELIMITER = "/"

# A logical directory: ordered segments, () is the bucket root.
Path = tuple[str, ...]


class EntryKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class Entry:
    id: str
    name: str
    kind: EntryKind
    size: int | None = None
    last_modified: dt.datetime | None = None

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER


@dataclass(frozen=True)
class ObjectRecord:
    key: str
    size: int = 0
    last_modified: dt.datetime | None = None


@dataclass(frozen=True)
class ListingPage:
    """Raw listing of one prefix: common prefixes plus the keys directly under it."""

    prefix: str
    common_prefixes: tuple[str, ...] = ()
    objects: tuple[ObjectRecord, ...] = ()
    next_token: str | None = None
    fetched_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    @property
    def is_truncated(self) -> bool:
        return self.next_token is not None


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_in: int


@dataclass(frozen=True)
class BucketStats:
    total_files: int = 0
    total_bytes: int = 0


@dataclass(frozen=True)
class StoreIdentity:
    bucket_name: str
    region: str


@dataclass(frozen=True)
class StoreConfig:
    identity: StoreIdentity
    use_iam_role: bool = True
    access_key_id: str | None = None
    secret_access_key: str | None = None
    endpoint_url: str | None = None
    delimiter: str = DEFAULT_DELIMITER

    def __post_init__(self) -> None:
        if not self.identity.bucket_name.strip():
            raise ValidationError("bucketName is required")
        if not self.identity.region.strip():
            raise ValidationError("region is required")
        if not self.use_iam_role and not (self.access_key_id and self.secret_access_key):
            raise ValidationError("accessKeyId and secretAccessKey are required when not using an IAM role")
        if len(self.delimiter) != 1:
            raise ValidationError("delimiter must be a single character")

    @classmethod
    def from_settings(cls, settings: Settings) -> StoreConfig:
        if not settings.s3_bucket_name:
            raise ValidationError("S3_BUCKET_NAME is required")
        return cls(
            identity=StoreIdentity(bucket_name=settings.s3_bucket_name, region=settings.aws_default_region),
            use_iam_role=settings.use_iam_role,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            endpoint_url=settings.s3_endpoint_url,
        )

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return f"StoreConfig(identity={self.identity!r}, use_iam_role={self.use_iam_role}, endpoint_url={self.endpoint_url!r})"


class UploadSource(Protocol):
    """A local file the orchestrator can (re)open for every upload attempt."""

    name: str

    def open(self) -> IO[bytes]: ...

    def size(self) -> int | None: ...


@dataclass(frozen=True)
class FileSource:
    path: FsPath

    @property
    def name(self) -> str:
        return self.path.name

    def open(self) -> IO[bytes]:
        return open(self.path, "rb")

    def size(self) -> int | None:
        try:
            return self.path.stat().st_size
        except OSError:
            return None


@dataclass(frozen=True)
class BytesSource:
    name: str
    data: bytes = field(repr=False)

    def open(self) -> IO[bytes]:
        return io.BytesIO(self.data)

    def size(self) -> int | None:
        return len(self.data)


@dataclass(frozen=True)
class SpentSource:
    """Name-only stand-in kept by a task once its payload has been uploaded and released."""

    name: str

    def open(self) -> IO[bytes]:
        raise OSError(f"{self.name} was already uploaded; its content is no longer held")

    def size(self) -> int | None:
        return None


class UploadState(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.COMPLETED, UploadState.FAILED)


@dataclass
class UploadTask:
    id: str
    source: UploadSource
    target_key: str
    content_type: str = "application/octet-stream"
    size: int | None = None
    progress: float = 0.0
    state: UploadState = UploadState.PENDING
    error: str | None = None
    attempts: int = 0

    def snapshot(self) -> UploadTaskSnapshot:
        return UploadTaskSnapshot(
            id=self.id,
            filename=self.source.name,
            target_key=self.target_key,
            content_type=self.content_type,
            size=self.size,
            progress=self.progress,
            state=self.state,
            error=self.error,
            attempts=self.attempts,
        )


@dataclass(frozen=True)
class UploadTaskSnapshot:
    id: str
    filename: str
    target_key: str
    content_type: str
    size: int | None
    progress: float
    state: UploadState
    error: str | None = None
    attempts: int = 0

from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bucket_manager.models import BucketStats, Entry, UploadTaskSnapshot


class ApiModel(BaseModel):
    # JSON is camelCase (bucketName, lastModified); Python stays snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EntryOut(ApiModel):
    id: str
    name: str
    type: Literal["file", "folder"]
    size: int | None = None
    last_modified: dt.datetime | None = None

    @classmethod
    def from_entry(cls, e: Entry) -> EntryOut:
        return cls(id=e.id, name=e.name, type=e.kind.value, size=e.size, last_modified=e.last_modified)


class UploadResponse(ApiModel):
    message: str = "File uploaded successfully"
    key: str


class MessageResponse(ApiModel):
    message: str


class ClearUploadsResponse(ApiModel):
    message: str
    removed: int


class DownloadUrlResponse(ApiModel):
    url: str
    expires_in: int


class ConnectionTestRequest(ApiModel):
    bucket_name: str = Field(min_length=1, max_length=255)
    region: str = Field(min_length=1, max_length=64)


class HealthResponse(ApiModel):
    status: str = "ok"
    timestamp: dt.datetime


class StatsResponse(ApiModel):
    total_files: int
    total_bytes: int

    @classmethod
    def from_stats(cls, s: BucketStats) -> StatsResponse:
        return cls(total_files=s.total_files, total_bytes=s.total_bytes)


class UploadTaskOut(ApiModel):
    id: str
    filename: str
    key: str
    content_type: str
    size: int | None = None
    progress: float
    status: Literal["pending", "uploading", "completed", "failed"]
    error: str | None = None
    attempts: int = 0

    @classmethod
    def from_snapshot(cls, s: UploadTaskSnapshot) -> UploadTaskOut:
        return cls(
            id=s.id,
            filename=s.filename,
            key=s.target_key,
            content_type=s.content_type,
            size=s.size,
            progress=round(s.progress, 1),
            status=s.state.value,
            error=s.error,
            attempts=s.attempts,
        )


class Breadcrumb(ApiModel):
    name: str
    prefix: str


class BrowseResponse(ApiModel):
    prefix: str
    parent: str | None = None
    breadcrumbs: list[Breadcrumb]
    entries: list[EntryOut]

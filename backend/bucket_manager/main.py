from __future__ import annotations

import datetime as dt
import logging
import mimetypes
from pathlib import PurePosixPath

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from bucket_manager.config import Settings, get_settings
from bucket_manager.deps import get_gateway, get_orchestrator, get_validator
from bucket_manager.errors import StoreError, ValidationError
from bucket_manager.middleware.logging_filter import install_logging
from bucket_manager.middleware.request_id import RequestIdMiddleware
from bucket_manager.models import BytesSource, StoreConfig, StoreIdentity
from bucket_manager.schemas import (
    BrowseResponse,
    Breadcrumb,
    ClearUploadsResponse,
    ConnectionTestRequest,
    DownloadUrlResponse,
    EntryOut,
    HealthResponse,
    MessageResponse,
    StatsResponse,
    UploadResponse,
    UploadTaskOut,
)
from bucket_manager.services import navigator
from bucket_manager.services.connectivity import ConnectivityValidator
from bucket_manager.services.gateway import ObjectStoreGateway
from bucket_manager.services.projector import filter_entries, project
from bucket_manager.services.uploads import InvalidTransition, UploadOrchestrator
from bucket_manager.storage import open_store

log = logging.getLogger("bucket_manager")


def build_gateway(settings: Settings) -> ObjectStoreGateway:
    gateway = ObjectStoreGateway(
        request_timeout_s=settings.request_timeout_s,
        upload_timeout_s=settings.upload_timeout_s,
        page_size=settings.list_page_size,
    )
    try:
        config = StoreConfig.from_settings(settings)
    except ValidationError as e:
        # Keep serving: every store operation answers NotConfigured until configured.
        log.warning("store_not_configured reason=%s", e.message)
        return gateway
    gateway.configure(config, open_store(config, settings))
    return gateway


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _upload_key(prefix: str, filename: str, delimiter: str) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name
    if not name:
        raise ValidationError("File name is required")
    return navigator.to_prefix(navigator.from_prefix(prefix, delimiter), delimiter) + name


async def _read_limited(file: UploadFile, limit: int) -> bytes:
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(status_code=413, detail=f"File exceeds the {limit} byte upload limit")
    return data


def create_app(settings: Settings | None = None, gateway: ObjectStoreGateway | None = None) -> FastAPI:
    settings = settings or get_settings()
    install_logging(settings.log_level)
    gateway = gateway or build_gateway(settings)

    app = FastAPI(title="Bucket Manager API", version="0.1.0")
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.validator = ConnectivityValidator(gateway)
    app.state.uploads = UploadOrchestrator(gateway)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition):
        return _error(409, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        return _error(400, f"Invalid request: {', '.join(f for f in fields if f) or 'malformed body'}")

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(status="ok", timestamp=dt.datetime.now(dt.timezone.utc))

    @app.get("/api/objects", response_model=list[EntryOut], response_model_exclude_none=True)
    async def list_objects(
        prefix: str = "",
        search: str | None = None,
        gateway: ObjectStoreGateway = Depends(get_gateway),
    ):
        page = await gateway.list(prefix)
        entries = filter_entries(project(prefix, page, gateway.delimiter), search)
        return [EntryOut.from_entry(e) for e in entries]

    @app.get("/api/browse", response_model=BrowseResponse, response_model_exclude_none=True)
    async def browse(
        prefix: str = "",
        search: str | None = None,
        gateway: ObjectStoreGateway = Depends(get_gateway),
    ):
        delimiter = gateway.delimiter
        path = navigator.from_prefix(prefix, delimiter)
        current = navigator.to_prefix(path, delimiter)
        page = await gateway.list(current)
        entries = filter_entries(project(current, page, delimiter), search)
        return BrowseResponse(
            prefix=current,
            parent=navigator.to_prefix(navigator.ascend(path), delimiter) if path else None,
            breadcrumbs=[Breadcrumb(name=label, prefix=navigator.to_prefix(p, delimiter)) for label, p in navigator.breadcrumbs(path)],
            entries=[EntryOut.from_entry(e) for e in entries],
        )

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_file(
        file: UploadFile | None = File(None),
        key: str | None = Form(None),
        gateway: ObjectStoreGateway = Depends(get_gateway),
    ):
        if file is None:
            raise ValidationError("No file provided")
        if not key:
            raise ValidationError("File key is required")
        data = await _read_limited(file, settings.max_upload_bytes)
        content_type = file.content_type or mimetypes.guess_type(file.filename or key)[0] or "application/octet-stream"
        source = BytesSource(name=file.filename or key, data=data)
        with source.open() as fh:
            await gateway.put(key, fh, content_type, size=len(data))
        return UploadResponse(key=key)

    @app.delete("/api/objects/{key:path}", response_model=MessageResponse)
    async def delete_object(key: str, gateway: ObjectStoreGateway = Depends(get_gateway)):
        await gateway.delete(key)
        return MessageResponse(message="Object deleted successfully")

    @app.get("/api/download/{key:path}", response_model=DownloadUrlResponse)
    async def download_url(key: str, gateway: ObjectStoreGateway = Depends(get_gateway)):
        signed = await gateway.signed_download_url(key)
        return DownloadUrlResponse(url=signed.url, expires_in=signed.expires_in)

    @app.post("/api/test", response_model=MessageResponse)
    async def test_connection(req: ConnectionTestRequest, validator: ConnectivityValidator = Depends(get_validator)):
        await validator.validate(StoreIdentity(bucket_name=req.bucket_name, region=req.region))
        return MessageResponse(message="Connection successful")

    @app.get("/api/stats", response_model=StatsResponse)
    async def stats(prefix: str = "", gateway: ObjectStoreGateway = Depends(get_gateway)):
        return StatsResponse.from_stats(await gateway.stats(prefix))

    @app.get("/api/uploads", response_model=list[UploadTaskOut])
    async def list_uploads(uploads: UploadOrchestrator = Depends(get_orchestrator)):
        return [UploadTaskOut.from_snapshot(s) for s in uploads.snapshot()]

    @app.post("/api/uploads", response_model=list[UploadTaskOut])
    async def enqueue_uploads(
        background_tasks: BackgroundTasks,
        files: list[UploadFile] | None = File(None),
        prefix: str = Form(""),
        uploads: UploadOrchestrator = Depends(get_orchestrator),
        gateway: ObjectStoreGateway = Depends(get_gateway),
    ):
        if not files:
            raise ValidationError("No files provided")
        delimiter = gateway.delimiter
        # validate every file before queueing any of them
        staged = []
        for f in files:
            target_key = _upload_key(prefix, f.filename or "", delimiter)
            staged.append((f, target_key, await _read_limited(f, settings.max_upload_bytes)))
        out = []
        for f, target_key, data in staged:
            snap = uploads.enqueue(BytesSource(name=f.filename or target_key, data=data), target_key, content_type=f.content_type)
            out.append(UploadTaskOut.from_snapshot(snap))
        background_tasks.add_task(uploads.dispatch)
        return out

    @app.post("/api/uploads/retry", response_model=list[UploadTaskOut])
    async def retry_failed_uploads(background_tasks: BackgroundTasks, uploads: UploadOrchestrator = Depends(get_orchestrator)):
        requeued = uploads.requeue_failed()
        if requeued:
            background_tasks.add_task(uploads.dispatch)
        return [UploadTaskOut.from_snapshot(s) for s in requeued]

    @app.post("/api/uploads/{task_id}/retry", response_model=UploadTaskOut)
    async def retry_upload(task_id: str, background_tasks: BackgroundTasks, uploads: UploadOrchestrator = Depends(get_orchestrator)):
        try:
            snap = uploads.requeue(task_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Upload not found") from None
        background_tasks.add_task(uploads.dispatch)
        return UploadTaskOut.from_snapshot(snap)

    @app.delete("/api/uploads/{task_id}", response_model=MessageResponse)
    async def remove_upload(task_id: str, uploads: UploadOrchestrator = Depends(get_orchestrator)):
        try:
            uploads.remove(task_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Upload not found") from None
        return MessageResponse(message="Upload removed")

    @app.delete("/api/uploads", response_model=ClearUploadsResponse)
    async def clear_uploads(uploads: UploadOrchestrator = Depends(get_orchestrator)):
        removed = uploads.clear_finished()
        return ClearUploadsResponse(message="Completed uploads cleared", removed=removed)

    return app


app = create_app()

from __future__ import annotations

import contextvars
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
log = logging.getLogger("bucket_manager.http")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags every request with x-request-id (client supplied or generated) and logs one access line."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        token = request_id_var.set(rid)
        t0 = time.perf_counter()
        try:
            response: Response = await call_next(request)
            log.info(
                "request method=%s path=%s status=%s ms=%s",
                request.method,
                request.url.path,
                response.status_code,
                int((time.perf_counter() - t0) * 1000),
            )
        finally:
            request_id_var.reset(token)
        response.headers["x-request-id"] = rid
        return response

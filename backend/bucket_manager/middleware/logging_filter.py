from __future__ import annotations

import logging

from bucket_manager.middleware.request_id import request_id_var

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s %(message)s"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        rid = request_id_var.get()
        record.request_id = rid if rid else "-"
        return True


def install_logging(level: str = "INFO") -> logging.Logger:
    """Attach one stderr handler to the bucket_manager logger tree. Safe to call repeatedly."""
    log = logging.getLogger("bucket_manager")
    log.setLevel(level.upper())
    if not any(getattr(h, "_bucket_manager", False) for h in log.handlers):
        handler = logging.StreamHandler()
        handler._bucket_manager = True  # type: ignore[attr-defined]
        handler.addFilter(RequestIdFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
    return log

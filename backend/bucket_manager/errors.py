from __future__ import annotations


class StoreError(Exception):
    """Base class for every failure the bucket manager reports to callers."""

    status_code = 500

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.__class__.__name__


class NotConfigured(StoreError):
    status_code = 503

    def __init__(self, message: str = "Store not configured. Set S3_BUCKET_NAME and AWS_DEFAULT_REGION first."):
        super().__init__(message)


class MismatchError(StoreError):
    status_code = 400

    def __init__(self, field: str, expected: str, actual: str | None):
        self.field = field
        self.expected = expected
        self.actual = actual
        label = "Bucket" if field == "bucket_name" else field.replace("_", " ").capitalize()
        super().__init__(f"{label} mismatch. Backend configured for: {expected} (got: {actual})")


class RemoteError(StoreError):
    status_code = 502

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        self.status = status
        self.code = code
        super().__init__(message)


class ValidationError(StoreError):
    status_code = 400

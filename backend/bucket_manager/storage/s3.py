from __future__ import annotations

import logging
from typing import IO, Callable, Iterator

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bucket_manager.errors import RemoteError
from bucket_manager.models import ListingPage, ObjectRecord, StoreConfig

log = logging.getLogger("bucket_manager.s3")

# Objects above this size go through multipart; the byte callback fires for both paths.
MULTIPART_THRESHOLD = 16 * 1024 * 1024


def _remote_error(op: str, exc: Exception) -> RemoteError:
    if isinstance(exc, ClientError):
        err = exc.response.get("Error") or {}
        meta = exc.response.get("ResponseMetadata") or {}
        code = str(err.get("Code") or "") or None
        status = meta.get("HTTPStatusCode")
        message = str(err.get("Message") or code or exc)
        log.warning("s3_error op=%s code=%s status=%s message=%s", op, code, status, message)
        return RemoteError(f"Failed to {op}: {message}", status=status, code=code)
    log.warning("s3_error op=%s error=%s", op, exc)
    return RemoteError(f"Failed to {op}: {exc}")


class S3Store:
    def __init__(self, config: StoreConfig, connect_timeout_s: float = 10.0, read_timeout_s: float = 30.0, client=None):
        self.config = config
        self.bucket = config.identity.bucket_name
        self._client = client or self._build_client(connect_timeout_s, read_timeout_s)

    def _build_client(self, connect_timeout_s: float, read_timeout_s: float):
        session_kwargs = {"region_name": self.config.identity.region}
        # IAM role: leave credentials to the default provider chain
        if not self.config.use_iam_role:
            session_kwargs["aws_access_key_id"] = self.config.access_key_id
            session_kwargs["aws_secret_access_key"] = self.config.secret_access_key
        session = boto3.session.Session(**session_kwargs)
        client_config = Config(
            connect_timeout=connect_timeout_s,
            read_timeout=read_timeout_s,
            retries={"total_max_attempts": 1},
        )
        return session.client("s3", endpoint_url=self.config.endpoint_url, config=client_config)

    def list_page(self, prefix: str, delimiter: str | None, token: str | None, max_keys: int) -> ListingPage:
        kwargs = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": max_keys}
        if delimiter:
            kwargs["Delimiter"] = delimiter
        if token:
            kwargs["ContinuationToken"] = token
        try:
            response = self._client.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _remote_error("list objects", e) from e

        prefixes = tuple(p["Prefix"] for p in response.get("CommonPrefixes", []) if p.get("Prefix"))
        objects = tuple(
            ObjectRecord(key=c["Key"], size=int(c.get("Size") or 0), last_modified=c.get("LastModified"))
            for c in response.get("Contents", [])
            if c.get("Key")
        )
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListingPage(prefix=prefix, common_prefixes=prefixes, objects=objects, next_token=next_token)

    def iter_objects(self, prefix: str) -> Iterator[ObjectRecord]:
        token: str | None = None
        while True:
            page = self.list_page(prefix, None, token, 1000)
            yield from page.objects
            if not page.next_token:
                break
            token = page.next_token

    def head(self, key: str) -> ObjectRecord:
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _remote_error("find object", e) from e
        return ObjectRecord(key=key, size=int(response.get("ContentLength") or 0), last_modified=response.get("LastModified"))

    def put(self, key: str, fileobj: IO[bytes], content_type: str, on_bytes: Callable[[int], None] | None = None) -> None:
        try:
            self._client.upload_fileobj(
                fileobj,
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Callback=on_bytes,
                Config=TransferConfig(multipart_threshold=MULTIPART_THRESHOLD, use_threads=False),
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise _remote_error("upload file", e) from e

    def delete(self, key: str) -> None:
        # S3 answers 204 for missing keys, so this is idempotent as-is
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _remote_error("delete object", e) from e

    def presign_get(self, key: str, expires_in: int) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise _remote_error("generate download URL", e) from e

"""
Document Object Storage (S3 API, MinIO-compatible)

Key layout:
    <bucket>/YYYY/MM/DD/<uuid4 hex>-<sanitized name>.pdf

The key is always built server-side from the upload date, a random token
and a sanitized file name, never accepted from the client. Keys are
collision-resistant and browsable by date.

Reliability:
  - Every network call goes through with_retry (3 attempts, 250ms doubling).
  - The bucket is created lazily on first use. Concurrent first callers are
    serialized by an asyncio.Lock; "already exists / owned by you" from the
    provider counts as success.

Only PDFs are accepted: the declared content type must be application/pdf
and the file name must end in .pdf.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from ocrpipe.core.exceptions import ObjectNotFoundError, UnsupportedDocumentError
from ocrpipe.storage.retry import with_retry

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PDF_EXTENSION    = ".pdf"
DEFAULT_FILE_NAME = "document.pdf"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_.\-]")

_BUCKET_EXISTS_CODES = frozenset({"BucketAlreadyOwnedByYou", "BucketAlreadyExists"})
_NOT_FOUND_CODES     = frozenset({"NoSuchKey", "NoSuchBucket", "404", "NotFound"})


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StorageObjectInfo:
    """Returned by upload_pdf."""
    key:          str
    file_name:    str    # sanitized name embedded in the key
    size_bytes:   int
    content_type: str
    etag:         str = ""


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------

def is_pdf(file_name: str, content_type: str) -> bool:
    """Both the declared content type and the extension must say PDF."""
    return (
        (content_type or "").split(";", 1)[0].strip().lower() == PDF_CONTENT_TYPE
        and file_name.lower().endswith(PDF_EXTENSION)
    )


def sanitize_file_name(file_name: str) -> str:
    """
    Strip directory components, replace unsafe characters with '_' and
    force a .pdf suffix.
    """
    basename = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not basename or basename in (".", ".."):
        return DEFAULT_FILE_NAME

    safe = _UNSAFE_CHARS.sub("_", basename)
    stem, ext = os.path.splitext(safe)
    if ext.lower() != PDF_EXTENSION:
        stem = safe
    return f"{stem or 'document'}{PDF_EXTENSION}"


def build_object_key(file_name: str, now: datetime | None = None) -> str:
    """YYYY/MM/DD/<random hex>-<sanitized name>.pdf"""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y/%m/%d}/{uuid.uuid4().hex}-{sanitize_file_name(file_name)}"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


# ---------------------------------------------------------------------------
# Storage service
# ---------------------------------------------------------------------------

class DocumentStorage:
    """
    Async PDF storage against a single bucket.

    One instance per process is enough: aioboto3 clients are opened per
    call (async context manager), the instance only holds configuration and
    the bucket-ready flag.
    """

    def __init__(
        self,
        *,
        endpoint_url: str,
        access_key:   str,
        secret_key:   str,
        bucket:       str,
        region:       str = "us-east-1",
    ) -> None:
        if not access_key or not secret_key:
            raise ValueError("object storage credentials are not configured")

        self._endpoint_url = endpoint_url
        self._access_key   = access_key
        self._secret_key   = secret_key
        self._bucket       = bucket
        self._region       = region
        self._session      = aioboto3.Session()

        self._bucket_ready = False
        self._bucket_lock  = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "DocumentStorage":
        return cls(
            endpoint_url=settings.minio_endpoint_url,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            bucket=settings.minio_bucket,
            region=settings.minio_region,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            endpoint_url=self._endpoint_url,
            aws_access_key_id=self._access_key,
            aws_secret_access_key=self._secret_key,
            region_name=self._region,
            # MinIO serves buckets by path, not virtual host
            config=Config(s3={"addressing_style": "path"}),
        )

    async def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet. Runs at most once per instance."""
        if self._bucket_ready:
            return
        async with self._bucket_lock:
            if self._bucket_ready:
                return
            async with self._client() as s3:
                try:
                    await s3.head_bucket(Bucket=self._bucket)
                except ClientError as exc:
                    if _error_code(exc) not in _NOT_FOUND_CODES:
                        raise
                    try:
                        await s3.create_bucket(Bucket=self._bucket)
                        logger.info("Bucket created | bucket=%s", self._bucket)
                    except ClientError as create_exc:
                        if _error_code(create_exc) not in _BUCKET_EXISTS_CODES:
                            raise
                        logger.debug("Bucket created concurrently | bucket=%s", self._bucket)
            self._bucket_ready = True

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upload_pdf(
        self,
        body:         bytes | BinaryIO,
        size:         int,
        file_name:    str,
        content_type: str,
        metadata:     dict[str, str] | None = None,
    ) -> StorageObjectInfo:
        """
        Store a PDF under a freshly generated key.

        Raises UnsupportedDocumentError for anything that is not a PDF.
        """
        if not is_pdf(file_name, content_type):
            raise UnsupportedDocumentError(
                f"only PDF uploads are accepted (file={file_name!r} content_type={content_type!r})"
            )

        raw = body if isinstance(body, bytes) else body.read()
        if size and size != len(raw):
            logger.warning(
                "Declared size differs from body | file=%s declared=%d actual=%d",
                file_name, size, len(raw),
            )

        key = build_object_key(file_name)
        await self.ensure_bucket()

        async def _put() -> dict:
            async with self._client() as s3:
                return await s3.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=raw,
                    ContentType=PDF_CONTENT_TYPE,
                    Metadata=metadata or {},
                )

        resp = await with_retry(_put, name="s3.put_object")
        logger.info("S3 upload ok | key=%s size=%d", key, len(raw))

        return StorageObjectInfo(
            key=key,
            file_name=key.rsplit("/", 1)[-1].split("-", 1)[-1],
            size_bytes=len(raw),
            content_type=PDF_CONTENT_TYPE,
            etag=resp.get("ETag", "").strip('"'),
        )

    async def download(self, key: str) -> bytes:
        """Fetch an object's bytes. Raises ObjectNotFoundError for a missing key."""
        await self.ensure_bucket()

        async def _get() -> bytes:
            async with self._client() as s3:
                try:
                    resp = await s3.get_object(Bucket=self._bucket, Key=key)
                    return await resp["Body"].read()
                except ClientError as exc:
                    if _error_code(exc) in _NOT_FOUND_CODES:
                        raise ObjectNotFoundError(f"Object not found: {key}") from exc
                    raise

        data = await with_retry(_get, name="s3.get_object")
        logger.info("S3 download ok | key=%s size=%d", key, len(data))
        return data

    async def delete(self, key: str) -> None:
        await self.ensure_bucket()

        async def _delete() -> None:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self._bucket, Key=key)

        await with_retry(_delete, name="s3.delete_object")
        logger.info("S3 delete ok | key=%s", key)

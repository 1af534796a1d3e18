"""
Unit Tests — Object storage client
═══════════════════════════════════
Tests for ocrpipe/storage/s3.py and ocrpipe/storage/retry.py

Coverage:
  ✅ PDF validation (content type AND extension)
  ✅ File-name sanitization and key layout YYYY/MM/DD/<hex>-<name>.pdf
  ✅ Upload sends the bytes with application/pdf
  ✅ Retry: 3 attempts, 250ms → 500ms backoff, final error propagates
  ✅ Missing key → ObjectNotFoundError
  ✅ Bucket created lazily once; "already owned" counts as success
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from ocrpipe.core.exceptions import ObjectNotFoundError, UnsupportedDocumentError
from ocrpipe.storage.retry import with_retry
from ocrpipe.storage.s3 import DocumentStorage, build_object_key, is_pdf, sanitize_file_name


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "test"}}, "operation")


def _build_s3_mock(body: bytes = b"%PDF-1.4") -> AsyncMock:
    """Build a mock S3 client context manager."""
    s3 = AsyncMock()
    s3.__aenter__ = AsyncMock(return_value=s3)
    s3.__aexit__  = AsyncMock(return_value=None)
    s3.head_bucket   = AsyncMock(return_value={})
    s3.create_bucket = AsyncMock(return_value={})
    s3.put_object    = AsyncMock(return_value={"ETag": '"etag-123"'})
    s3.delete_object = AsyncMock(return_value={})

    stream = MagicMock()
    stream.read = AsyncMock(return_value=body)
    s3.get_object = AsyncMock(return_value={"Body": stream})
    return s3


@pytest.fixture
def s3_mock() -> AsyncMock:
    return _build_s3_mock()


@pytest.fixture
def storage(s3_mock):
    with patch("ocrpipe.storage.s3.aioboto3.Session") as mock_session:
        mock_session.return_value.client.return_value = s3_mock
        yield DocumentStorage(
            endpoint_url="http://minio:9000",
            access_key="minio",
            secret_key="minio123",
            bucket="documents",
        )


@pytest.fixture
def no_sleep():
    with patch("ocrpipe.storage.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


# ─────────────────────────────────────────────────────────────────────────────
# Key helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestKeyHelpers:

    @pytest.mark.parametrize("file_name, content_type, expected", [
        ("a.pdf",  "application/pdf",                  True),
        ("A.PDF",  "application/pdf; charset=binary",  True),
        ("a.pdf",  "image/png",                        False),
        ("a.png",  "application/pdf",                  False),
        ("a",      "application/pdf",                  False),
    ])
    def test_is_pdf_requires_type_and_extension(self, file_name, content_type, expected):
        assert is_pdf(file_name, content_type) is expected

    @pytest.mark.parametrize("raw, expected", [
        ("report.pdf",              "report.pdf"),
        ("../../etc/passwd",        "passwd.pdf"),
        ("C:\\Users\\me\\scan.PDF", "scan.pdf"),
        ("my file (1).pdf",         "my_file__1_.pdf"),
        ("notes.txt",               "notes.txt.pdf"),
        ("",                        "document.pdf"),
        ("dir/",                    "document.pdf"),
    ])
    def test_sanitize_file_name(self, raw, expected):
        assert sanitize_file_name(raw) == expected

    def test_object_key_layout(self):
        key = build_object_key("my report.pdf", now=datetime(2024, 3, 9, tzinfo=timezone.utc))
        assert re.fullmatch(r"2024/03/09/[0-9a-f]{32}-my_report\.pdf", key)

    def test_object_keys_are_unique(self):
        assert build_object_key("a.pdf") != build_object_key("a.pdf")


# ─────────────────────────────────────────────────────────────────────────────
# Retry helper
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestWithRetry:

    async def test_returns_first_success(self, no_sleep):
        op = AsyncMock(return_value="ok")
        assert await with_retry(op, name="op") == "ok"
        op.assert_awaited_once()
        no_sleep.assert_not_awaited()

    async def test_recovers_after_transient_errors(self, no_sleep):
        op = AsyncMock(side_effect=[OSError("reset"), OSError("reset"), "ok"])
        assert await with_retry(op, name="op") == "ok"
        assert op.await_count == 3

    async def test_backoff_doubles_from_250ms(self, no_sleep):
        op = AsyncMock(side_effect=OSError("down"))
        with pytest.raises(OSError):
            await with_retry(op, name="op")

        assert op.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.25, 0.5]

    async def test_final_error_propagates_unchanged(self, no_sleep):
        final = _client_error("InternalError")
        op = AsyncMock(side_effect=[OSError("first"), OSError("second"), final])
        with pytest.raises(ClientError) as exc_info:
            await with_retry(op, name="op")
        assert exc_info.value is final


# ─────────────────────────────────────────────────────────────────────────────
# Storage operations
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDocumentStorage:

    def test_refuses_missing_credentials(self):
        with pytest.raises(ValueError):
            DocumentStorage(endpoint_url="http://minio:9000", access_key="", secret_key="", bucket="b")

    async def test_upload_pdf(self, storage, s3_mock, sample_pdf_bytes):
        info = await storage.upload_pdf(
            sample_pdf_bytes, len(sample_pdf_bytes), "Q1 report.pdf", "application/pdf",
        )

        kwargs = s3_mock.put_object.await_args.kwargs
        assert kwargs["Bucket"] == "documents"
        assert kwargs["Key"] == info.key
        assert kwargs["Body"] == sample_pdf_bytes
        assert kwargs["ContentType"] == "application/pdf"
        assert info.key.endswith("-Q1_report.pdf")
        assert info.file_name == "Q1_report.pdf"
        assert info.size_bytes == len(sample_pdf_bytes)
        assert info.etag == "etag-123"

    async def test_upload_rejects_non_pdf(self, storage, s3_mock):
        with pytest.raises(UnsupportedDocumentError):
            await storage.upload_pdf(b"hello", 5, "notes.txt", "text/plain")
        s3_mock.put_object.assert_not_awaited()

    async def test_download_returns_bytes(self, storage, s3_mock):
        assert await storage.download("2024/01/01/abc-a.pdf") == b"%PDF-1.4"
        s3_mock.get_object.assert_awaited_once_with(Bucket="documents", Key="2024/01/01/abc-a.pdf")

    async def test_download_missing_key(self, storage, s3_mock, no_sleep):
        s3_mock.get_object.side_effect = _client_error("NoSuchKey")
        with pytest.raises(ObjectNotFoundError):
            await storage.download("missing.pdf")

    async def test_download_gives_up_after_three_attempts(self, storage, s3_mock, no_sleep):
        s3_mock.get_object.side_effect = _client_error("SlowDown")
        with pytest.raises(ClientError):
            await storage.download("k.pdf")
        assert s3_mock.get_object.await_count == 3

    async def test_delete(self, storage, s3_mock):
        await storage.delete("k.pdf")
        s3_mock.delete_object.assert_awaited_once_with(Bucket="documents", Key="k.pdf")


@pytest.mark.unit
class TestBucketSelfHealing:

    async def test_existing_bucket_is_checked_once(self, storage, s3_mock):
        await storage.download("a.pdf")
        await storage.download("b.pdf")

        s3_mock.head_bucket.assert_awaited_once_with(Bucket="documents")
        s3_mock.create_bucket.assert_not_awaited()

    async def test_missing_bucket_is_created(self, storage, s3_mock):
        s3_mock.head_bucket.side_effect = _client_error("404")
        await storage.download("a.pdf")
        s3_mock.create_bucket.assert_awaited_once_with(Bucket="documents")

    @pytest.mark.parametrize("code", ["BucketAlreadyOwnedByYou", "BucketAlreadyExists"])
    async def test_create_race_counts_as_success(self, storage, s3_mock, code):
        s3_mock.head_bucket.side_effect = _client_error("NoSuchBucket")
        s3_mock.create_bucket.side_effect = _client_error(code)

        await storage.ensure_bucket()
        await storage.ensure_bucket()

        s3_mock.create_bucket.assert_awaited_once()

    async def test_concurrent_callers_check_once(self, storage, s3_mock):
        await asyncio.gather(*(storage.ensure_bucket() for _ in range(5)))
        s3_mock.head_bucket.assert_awaited_once()

    async def test_access_denied_propagates(self, storage, s3_mock):
        s3_mock.head_bucket.side_effect = _client_error("AccessDenied")
        with pytest.raises(ClientError):
            await storage.ensure_bucket()

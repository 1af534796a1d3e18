"""
Document Ingestion Service

Upload path core (the HTTP layer in front of it is out of scope):

  submit()
    1. Validate + store the PDF (DocumentStorage.upload_pdf)
    2. Build the ingest envelope (server-generated document id)
    3. Publish to documents / document.uploaded

  remove()
    Explicit document deletion: drops the blob and the search entry.

Failure policy:
  - UnsupportedDocumentError surfaces unchanged (caller maps it to a 4xx).
  - Storage errors propagate after the storage client's own retries.
  - A publish failure propagates too; the blob stays in storage and the
    caller decides whether to retry the publish or fail the request.
"""

from __future__ import annotations

import logging
import uuid
from typing import BinaryIO
from uuid import UUID

from ocrpipe.messaging.publisher import MessagePublisher
from ocrpipe.messaging.topology import INGEST
from ocrpipe.schemas.messages import DocumentMessage
from ocrpipe.search.base import SearchIndex
from ocrpipe.storage.s3 import DocumentStorage

logger = logging.getLogger(__name__)


class DocumentIngestionService:

    def __init__(
        self,
        storage:      DocumentStorage,
        publisher:    MessagePublisher,
        search_index: SearchIndex | None = None,
    ) -> None:
        self._storage      = storage
        self._publisher    = publisher
        self._search_index = search_index

    async def submit(
        self,
        body:           bytes | BinaryIO,
        size:           int,
        file_name:      str,
        content_type:   str,
        *,
        document_id:    UUID | None = None,
        tenant_id:      str | None = None,
        correlation_id: str | None = None,
    ) -> DocumentMessage:
        document_id = document_id or uuid.uuid4()

        metadata = {"document-id": str(document_id)}
        if tenant_id:
            metadata["tenant-id"] = tenant_id

        stored = await self._storage.upload_pdf(
            body, size, file_name, content_type, metadata=metadata,
        )

        message = DocumentMessage.create(
            document_id=document_id,
            file_name=file_name,
            content_type=stored.content_type,
            storage_path=stored.key,
            tenant_id=tenant_id,
            correlation_id=correlation_id,
        )

        try:
            await self._publisher.publish_async(message, INGEST)
        except Exception:
            logger.exception(
                "Ingest publish failed, object left in storage | doc=%s key=%s",
                document_id, stored.key,
            )
            raise

        logger.info(
            "Document submitted | doc=%s tenant=%s key=%s size=%d",
            document_id, tenant_id, stored.key, stored.size_bytes,
        )
        return message

    async def remove(self, document_id: UUID, storage_key: str) -> None:
        await self._storage.delete(storage_key)
        if self._search_index is not None:
            await self._search_index.delete_document(document_id)
        logger.info("Document removed | doc=%s key=%s", document_id, storage_key)

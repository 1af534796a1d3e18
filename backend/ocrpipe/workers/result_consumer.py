"""
Result Consumer — writes OCR text back to the document record

Per delivery (ocr.results):
  1. load the document by id
  2. replace its content field with message.content
  3. persist, then ack

A missing document or any repository failure dead-letters the delivery
(ocr.results.dlq). Neither is expected to heal on redelivery, so requeueing
would only loop.
"""

from __future__ import annotations

import logging

from ocrpipe.core.exceptions import RepositoryError
from ocrpipe.db.repository import DocumentRepository
from ocrpipe.messaging.connection import BrokerConnection
from ocrpipe.messaging.consumer import Disposition, QueueConsumer
from ocrpipe.messaging.topology import RESULT, TopologyDeclarer
from ocrpipe.schemas.messages import DocumentMessage

logger = logging.getLogger(__name__)


class ResultHandler:

    def __init__(self, repository: DocumentRepository) -> None:
        self._repository = repository

    async def handle(self, message: DocumentMessage) -> Disposition:
        try:
            document = await self._repository.get_by_id(message.document_id)
        except RepositoryError as exc:
            logger.error(
                "Result lookup failed, dead-lettering | doc=%s correlation_id=%s error=%s",
                message.document_id, message.correlation_id, exc,
            )
            return Disposition.DEAD_LETTER

        if document is None:
            logger.error(
                "Document not found, dead-lettering | doc=%s correlation_id=%s",
                message.document_id, message.correlation_id,
            )
            return Disposition.DEAD_LETTER

        document.content = message.content
        try:
            await self._repository.update(document)
        except RepositoryError as exc:
            logger.error(
                "Result update failed, dead-lettering | doc=%s correlation_id=%s error=%s",
                message.document_id, message.correlation_id, exc,
            )
            return Disposition.DEAD_LETTER

        logger.info(
            "Document content updated | doc=%s chars=%d",
            message.document_id, len(message.content),
        )
        return Disposition.ACK


class ResultConsumer(QueueConsumer):

    def __init__(
        self,
        broker:   BrokerConnection,
        handler:  ResultHandler,
        declarer: TopologyDeclarer | None = None,
        **kwargs,
    ) -> None:
        super().__init__(broker, RESULT, declarer, **kwargs)
        self._handler = handler

    async def handle(self, message: DocumentMessage) -> Disposition:
        return await self._handler.handle(message)

"""
Document repository used by the result consumer.

get_by_id returns None for an unknown id; every database failure surfaces
as RepositoryError so callers never depend on SQLAlchemy exception types.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ocrpipe.core.exceptions import RepositoryError
from ocrpipe.db.session import get_session_factory, session_scope
from ocrpipe.models.documents import Document

logger = logging.getLogger(__name__)


class DocumentRepository(ABC):

    @abstractmethod
    async def get_by_id(self, document_id: UUID) -> Document | None:
        """Load a document, or None when no row has this id."""

    @abstractmethod
    async def update(self, document: Document) -> None:
        """Persist all changed fields of a previously loaded document."""


class SqlAlchemyDocumentRepository(DocumentRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def get_by_id(self, document_id: UUID) -> Document | None:
        try:
            async with session_scope(self._session_factory) as session:
                return await session.get(Document, document_id)
        except SQLAlchemyError as exc:
            logger.error("Document lookup failed | doc=%s error=%s", document_id, exc)
            raise RepositoryError(f"failed to load document {document_id}") from exc

    async def update(self, document: Document) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                await session.merge(document)
        except SQLAlchemyError as exc:
            logger.error("Document update failed | doc=%s error=%s", document.id, exc)
            raise RepositoryError(f"failed to update document {document.id}") from exc

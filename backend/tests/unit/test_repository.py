"""
Unit Tests — SQLAlchemy document repository
Tests for ocrpipe/db/repository.py with a mocked async session factory.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from ocrpipe.core.exceptions import RepositoryError
from ocrpipe.db.repository import SqlAlchemyDocumentRepository
from ocrpipe.models.documents import Document


def _session_factory(session: AsyncMock) -> MagicMock:
    """async_sessionmaker stand-in: factory() → async CM yielding `session`."""
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__  = AsyncMock(return_value=None)

    transaction = AsyncMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__  = AsyncMock(return_value=None)
    session.begin = MagicMock(return_value=transaction)

    return MagicMock(return_value=session)


@pytest.fixture
def session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def repository(session) -> SqlAlchemyDocumentRepository:
    return SqlAlchemyDocumentRepository(_session_factory(session))


@pytest.mark.unit
class TestSqlAlchemyDocumentRepository:

    async def test_get_by_id(self, repository, session, document_id):
        row = Document(id=document_id, title="t", file_name="a.pdf", mime_type="application/pdf",
                       storage_key="k.pdf")
        session.get.return_value = row

        assert await repository.get_by_id(document_id) is row
        session.get.assert_awaited_once_with(Document, document_id)

    async def test_get_unknown_id_returns_none(self, repository, session, document_id):
        session.get.return_value = None
        assert await repository.get_by_id(document_id) is None

    async def test_update_merges_inside_transaction(self, repository, session, document_id):
        row = Document(id=document_id, title="t", file_name="a.pdf", mime_type="application/pdf",
                       storage_key="k.pdf", content="text")

        await repository.update(row)

        session.begin.assert_called_once()
        session.merge.assert_awaited_once_with(row)

    async def test_database_errors_become_repository_errors(self, repository, session, document_id):
        session.get.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(RepositoryError):
            await repository.get_by_id(document_id)

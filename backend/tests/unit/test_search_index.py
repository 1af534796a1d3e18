"""
Unit Tests — Elasticsearch search index
Tests for ocrpipe/search/elasticsearch_store.py

AsyncElasticsearch is replaced by an AsyncMock; no cluster is contacted.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from elasticsearch import BadRequestError, ConnectionError as ESConnectionError, NotFoundError

from ocrpipe.search.base import MAX_SEARCH_RESULTS
from ocrpipe.search.elasticsearch_store import ElasticsearchIndex


def _api_error(cls, message: str, status: int):
    return cls(message, MagicMock(status=status), {})


@pytest.fixture
def es_client() -> AsyncMock:
    client = AsyncMock()
    client.indices.exists = AsyncMock(return_value=True)
    client.search = AsyncMock(return_value={"hits": {"hits": []}})
    return client


@pytest.fixture
def index(es_client) -> ElasticsearchIndex:
    return ElasticsearchIndex("http://es:9200", "documents", client=es_client)


@pytest.mark.unit
class TestEnsureIndex:

    async def test_existing_index_is_left_alone(self, index, es_client):
        assert await index.ensure_index() is True
        es_client.indices.create.assert_not_awaited()

    async def test_missing_index_is_created(self, index, es_client):
        es_client.indices.exists.return_value = False
        assert await index.ensure_index() is True
        assert es_client.indices.create.await_args.kwargs["index"] == "documents"

    async def test_concurrent_creation_counts_as_success(self, index, es_client):
        es_client.indices.exists.return_value = False
        es_client.indices.create.side_effect = _api_error(
            BadRequestError, "resource_already_exists_exception", 400,
        )
        assert await index.ensure_index() is True

    async def test_unreachable_cluster_reports_false(self, index, es_client):
        es_client.indices.exists.side_effect = ESConnectionError("refused")
        assert await index.ensure_index() is False


@pytest.mark.unit
class TestIndexDocument:

    async def test_index_writes_with_refresh(self, index, es_client, document_id):
        assert await index.index_document(document_id, "A\n--- PAGE BREAK ---\nB", "invoice.pdf")

        kwargs = es_client.index.await_args.kwargs
        assert kwargs["index"] == "documents"
        assert kwargs["id"] == str(document_id)
        assert kwargs["refresh"] is True
        assert kwargs["document"]["content"] == "A\n--- PAGE BREAK ---\nB"
        assert kwargs["document"]["fileName"] == "invoice.pdf"

    async def test_index_failure_returns_false(self, index, es_client, document_id):
        es_client.index.side_effect = ESConnectionError("timeout")
        assert await index.index_document(document_id, "text", "a.pdf") is False


@pytest.mark.unit
class TestSearch:

    async def test_search_returns_document_ids(self, index, es_client):
        ids = [uuid.uuid4(), uuid.uuid4()]
        es_client.search.return_value = {
            "hits": {"hits": [{"_id": str(i)} for i in ids] + [{"_id": "legacy-doc"}]}
        }

        assert await index.search("invoice") == ids

        kwargs = es_client.search.await_args.kwargs
        assert kwargs["size"] == MAX_SEARCH_RESULTS
        assert kwargs["query"]["multi_match"]["query"] == "invoice"
        assert "content" in kwargs["query"]["multi_match"]["fields"]

    async def test_blank_query_skips_cluster(self, index, es_client):
        assert await index.search("   ") == []
        es_client.search.assert_not_awaited()

    async def test_search_failure_returns_empty(self, index, es_client):
        es_client.search.side_effect = ESConnectionError("refused")
        assert await index.search("invoice") == []


@pytest.mark.unit
class TestDeleteDocument:

    async def test_delete(self, index, es_client, document_id):
        assert await index.delete_document(document_id) is True
        es_client.delete.assert_awaited_once_with(index="documents", id=str(document_id), refresh=True)

    async def test_delete_unknown_document(self, index, es_client, document_id):
        es_client.delete.side_effect = _api_error(NotFoundError, "not_found", 404)
        assert await index.delete_document(document_id) is False

    async def test_close_closes_client(self, index, es_client):
        await index.close()
        es_client.close.assert_awaited_once()

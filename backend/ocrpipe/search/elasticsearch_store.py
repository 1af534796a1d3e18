"""
Elasticsearch-backed SearchIndex.

Index document shape:
  {
    "id":        "<document uuid>",
    "fileName":  "invoice.pdf",
    "content":   "<OCR text>",
    "indexedAt": "2024-01-01T00:00:00+00:00"
  }

Writes use refresh=true so a search issued right after index_document /
delete_document observes the change.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from elasticsearch import (
    ApiError,
    AsyncElasticsearch,
    BadRequestError,
    NotFoundError,
    TransportError,
)

from ocrpipe.search.base import MAX_SEARCH_RESULTS, SearchIndex

logger = logging.getLogger(__name__)

_INDEX_MAPPINGS = {
    "properties": {
        "id":        {"type": "keyword"},
        "fileName":  {"type": "text", "fields": {"raw": {"type": "keyword"}}},
        "content":   {"type": "text"},
        "indexedAt": {"type": "date"},
    }
}

_SEARCH_FIELDS = ["content", "fileName"]

_ES_ERRORS = (ApiError, TransportError)


class ElasticsearchIndex(SearchIndex):

    def __init__(self, url: str, index_name: str, client: AsyncElasticsearch | None = None) -> None:
        self._index  = index_name
        self._client = client or AsyncElasticsearch(hosts=[url])

    @classmethod
    def from_settings(cls, settings) -> "ElasticsearchIndex":
        return cls(settings.elasticsearch_url, settings.elasticsearch_index)

    async def ensure_index(self) -> bool:
        try:
            if await self._client.indices.exists(index=self._index):
                return True
            await self._client.indices.create(index=self._index, mappings=_INDEX_MAPPINGS)
            logger.info("Search index created | index=%s", self._index)
            return True
        except BadRequestError as exc:
            if exc.error == "resource_already_exists_exception":
                return True
            logger.error("Search index creation failed | index=%s error=%s", self._index, exc)
            return False
        except _ES_ERRORS as exc:
            logger.error("Search index check failed | index=%s error=%s", self._index, exc)
            return False

    async def index_document(self, document_id: UUID, content: str, file_name: str) -> bool:
        body = {
            "id":        str(document_id),
            "fileName":  file_name,
            "content":   content,
            "indexedAt": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._client.index(
                index=self._index,
                id=str(document_id),
                document=body,
                refresh=True,
            )
        except _ES_ERRORS as exc:
            logger.error("Indexing failed | doc=%s index=%s error=%s", document_id, self._index, exc)
            return False

        logger.info("Indexed | doc=%s index=%s chars=%d", document_id, self._index, len(content))
        return True

    async def search(self, query: str) -> list[UUID]:
        if not query or not query.strip():
            return []
        try:
            resp = await self._client.search(
                index=self._index,
                query={
                    "multi_match": {
                        "query":     query,
                        "fields":    _SEARCH_FIELDS,
                        "fuzziness": "AUTO",
                    }
                },
                size=MAX_SEARCH_RESULTS,
            )
        except _ES_ERRORS as exc:
            logger.error("Search failed | index=%s query=%r error=%s", self._index, query, exc)
            return []

        ids: list[UUID] = []
        for hit in resp["hits"]["hits"]:
            try:
                ids.append(UUID(hit["_id"]))
            except ValueError:
                logger.warning("Skipping hit with non-uuid id | id=%s", hit["_id"])
        return ids

    async def delete_document(self, document_id: UUID) -> bool:
        try:
            await self._client.delete(index=self._index, id=str(document_id), refresh=True)
        except NotFoundError:
            logger.info("Delete skipped, not indexed | doc=%s", document_id)
            return False
        except _ES_ERRORS as exc:
            logger.error("Delete from index failed | doc=%s error=%s", document_id, exc)
            return False

        logger.info("Removed from index | doc=%s", document_id)
        return True

    async def close(self) -> None:
        await self._client.close()

"""
Search Index — Abstract Base

The OCR worker and the ingestion service only speak this interface, so the
full-text backend is swappable and trivially stubbed in tests.

Contract (all implementations):
  - index_document is create-or-replace keyed by document id, and visible
    to search as soon as it returns True.
  - Failures are reported, never raised: False from index/delete, an empty
    list from search. Indexing is a best-effort side effect of the pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID

MAX_SEARCH_RESULTS = 100


class SearchIndex(ABC):

    @abstractmethod
    async def ensure_index(self) -> bool:
        """Create the index with its mapping if missing."""

    @abstractmethod
    async def index_document(self, document_id: UUID, content: str, file_name: str) -> bool:
        """Create or replace the entry for document_id."""

    @abstractmethod
    async def search(self, query: str) -> list[UUID]:
        """
        Fuzzy full-text search over content and file name.
        Returns matching document ids, best match first, at most MAX_SEARCH_RESULTS.
        """

    @abstractmethod
    async def delete_document(self, document_id: UUID) -> bool:
        """Remove the entry; False when it did not exist or the call failed."""

    async def close(self) -> None:
        """Release client resources."""

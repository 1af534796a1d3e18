from ocrpipe.search.base import MAX_SEARCH_RESULTS, SearchIndex
from ocrpipe.search.elasticsearch_store import ElasticsearchIndex

__all__ = ["MAX_SEARCH_RESULTS", "SearchIndex", "ElasticsearchIndex"]

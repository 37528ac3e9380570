"""Tools module - web search, result caching and page content retrieval."""

from .search_cache import SearchCache, CacheEntry
from .web_search import (
    WebSearchService,
    ResultParsingStrategy,
    StructuralResultStrategy,
    LinkHeuristicStrategy,
)
from .content_fetch import ContentFetchService, extract_page_text

__all__ = [
    'SearchCache',
    'CacheEntry',
    'WebSearchService',
    'ResultParsingStrategy',
    'StructuralResultStrategy',
    'LinkHeuristicStrategy',
    'ContentFetchService',
    'extract_page_text',
]

"""
Web Search Service - Provides web search results for grounding answers.

Order of operations:
1. cache lookup by ``query:limit``
2. the provider's native search API, when it has one and a credential
3. scraping a public search results page with an ordered list of parsing
   strategies, the first strategy that yields anything wins
4. dedupe by URL, rank by snippet length, truncate, cache

Failures never propagate (cancellation excepted): the caller gets an explicit
SearchOutcome and answers from model knowledge when nothing was found.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, List, Sequence
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup, Tag

from ..core.cancellation import CancelToken, ensure_token
from ..core.errors import AbortedError
from ..llm.base import ProviderConfig
from ..llm.network import NetworkRetryClient
from ..models.search import SearchResult, SearchOutcome, site_label_for
from .search_cache import SearchCache

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PAGE_URL = "https://html.duckduckgo.com/html/"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"
)
MAX_SNIPPET_CHARS = 300


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def unwrap_result_url(href: str) -> str:
    """Resolve protocol-relative and redirect-wrapped (``uddg=``) result links."""
    href = (href or "").strip()
    if href.startswith("//"):
        href = "https:" + href
    parts = urlsplit(href)
    if parts.query:
        target = parse_qs(parts.query).get("uddg")
        if target and target[0].startswith("http"):
            return target[0]
    return href


def _is_web_url(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


class ResultParsingStrategy(ABC):
    """Turns a search results page into SearchResults."""

    name: str = "strategy"

    @abstractmethod
    def parse(self, html: str) -> List[SearchResult]:
        pass


class StructuralResultStrategy(ResultParsingStrategy):
    """Matches known result containers and reads title link and snippet from each."""

    name = "structural"

    CONTAINER_SELECTORS = (
        "div.result",
        "div.web-result",
        "article[data-testid='result']",
        "li.b_algo",
    )
    TITLE_SELECTORS = ("a.result__a", "h2 a", "h3 a")
    SNIPPET_SELECTORS = (".result__snippet", ".snippet", "p")

    def parse(self, html: str) -> List[SearchResult]:
        soup = BeautifulSoup(html, "html.parser")
        containers: List[Tag] = []
        for selector in self.CONTAINER_SELECTORS:
            containers = soup.select(selector)
            if containers:
                break

        results: List[SearchResult] = []
        for container in containers:
            if "result--ad" in (container.get("class") or []):
                continue
            link = self._first(container, self.TITLE_SELECTORS)
            if link is None or not link.get("href"):
                continue
            url = unwrap_result_url(link["href"])
            title = _clean_text(link.get_text(" "))
            if not _is_web_url(url) or not title:
                continue
            snippet_el = self._first(container, self.SNIPPET_SELECTORS)
            snippet = _clean_text(snippet_el.get_text(" ")) if snippet_el is not None else ""
            results.append(SearchResult(title=title, url=url, snippet=snippet[:MAX_SNIPPET_CHARS]))
        return results

    @staticmethod
    def _first(container: Tag, selectors: Sequence[str]) -> Optional[Tag]:
        for selector in selectors:
            found = container.select_one(selector)
            if found is not None:
                return found
        return None


class LinkHeuristicStrategy(ResultParsingStrategy):
    """
    Generic fallback: any outbound link with a title-like text, using the
    surrounding block's text as the snippet.
    """

    name = "link_heuristic"
    MIN_TITLE_CHARS = 15

    def __init__(self, excluded_hosts: Sequence[str] = ()):
        self.excluded_hosts = {h.lower() for h in excluded_hosts}

    def parse(self, html: str) -> List[SearchResult]:
        soup = BeautifulSoup(html, "html.parser")
        results: List[SearchResult] = []
        for link in soup.find_all("a", href=True):
            url = unwrap_result_url(link["href"])
            if not _is_web_url(url):
                continue
            if site_label_for(url) in self.excluded_hosts:
                continue
            title = _clean_text(link.get_text(" "))
            if len(title) < self.MIN_TITLE_CHARS:
                continue
            block = link.find_parent(["li", "article", "div", "p"])
            snippet = ""
            if block is not None:
                snippet = _clean_text(block.get_text(" ")).replace(title, "", 1).strip()
            results.append(SearchResult(title=title, url=url, snippet=snippet[:MAX_SNIPPET_CHARS]))
        return results


class WebSearchService:
    """
    Web search with caching, a native API path and a scraping fallback.
    """

    def __init__(
        self,
        client: Optional[NetworkRetryClient] = None,
        cache: Optional[SearchCache] = None,
        search_page_url: str = DEFAULT_SEARCH_PAGE_URL,
        timeout: float = 10.0,
        strategies: Optional[List[ResultParsingStrategy]] = None,
    ):
        """
        Initialize web search service.

        Args:
            client: Retrying network client
            cache: Result cache shared across turns
            search_page_url: Public results page fetched by GET for scraping
            timeout: Request timeout in seconds
            strategies: Ordered page parsing strategies
        """
        self.client = client or NetworkRetryClient(timeout=timeout)
        self.cache = cache or SearchCache()
        self.search_page_url = search_page_url
        self.timeout = timeout
        page_host = site_label_for(search_page_url)
        self.strategies = strategies or [
            StructuralResultStrategy(),
            LinkHeuristicStrategy(excluded_hosts=[page_host, "duckduckgo.com"]),
        ]

    async def search(
        self,
        query: str,
        limit: int = 5,
        provider: Optional[ProviderConfig] = None,
        token: Optional[CancelToken] = None,
    ) -> SearchOutcome:
        """
        Perform a web search.

        Args:
            query: Search query
            limit: Maximum number of results to return
            provider: Active provider, consulted for a native search API
            token: Cancellation token of the calling turn

        Returns:
            SearchOutcome; ``found`` is False when nothing usable came back
        """
        token = ensure_token(token)
        key = SearchCache.make_key(query, limit)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Search cache hit for '{query[:80]}'")
            return SearchOutcome(results=cached, source="cache")

        errors: List[str] = []
        try:
            if provider is not None and provider.has_native_search:
                try:
                    results = await self._search_native(query, limit, provider, token)
                except AbortedError:
                    raise
                except Exception as e:
                    logger.warning(f"Native search via {provider.id} failed: {e}")
                    errors.append(f"native: {e}")
                    results = []
                if results:
                    final = self._finalize(results, limit, rank=False)
                    self.cache.put(key, final)
                    return SearchOutcome(results=final, source="api")

            results = await self._search_scrape(query, token)
            if results:
                final = self._finalize(results, limit, rank=True)
                self.cache.put(key, final)
                logger.info(f"Search for '{query[:80]}' returned {len(final)} results")
                return SearchOutcome(results=final, source="scrape")
        except AbortedError:
            raise
        except Exception as e:
            logger.warning(f"Web search failed for '{query[:80]}': {e}", exc_info=True)
            errors.append(str(e))

        logger.info(f"Search for '{query[:80]}' found nothing")
        return SearchOutcome(source="none", error="; ".join(errors) or None)

    async def _search_native(
        self,
        query: str,
        limit: int,
        provider: ProviderConfig,
        token: CancelToken,
    ) -> List[SearchResult]:
        """Call the provider's structured search API."""
        resp = await self.client.request(
            "POST",
            provider.search_api_url,
            token,
            json={"query": query, "max_results": limit},
            headers={
                "Authorization": f"Bearer {provider.search_api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        data = resp.json()

        results = []
        for item in data.get("results", []) or []:
            url = item.get("url", "")
            if not _is_web_url(url):
                continue
            results.append(SearchResult(
                title=_clean_text(item.get("title", "")),
                url=url,
                snippet=_clean_text(item.get("content", "")),
            ))
        return results

    async def _search_scrape(self, query: str, token: CancelToken) -> List[SearchResult]:
        """Fetch the public results page and run the parsing strategies in order."""
        resp = await self.client.request(
            "GET",
            self.search_page_url,
            token,
            params={"q": query},
            headers={"User-Agent": BROWSER_USER_AGENT},
            timeout=self.timeout,
        )
        html = resp.text
        for strategy in self.strategies:
            try:
                results = strategy.parse(html)
            except Exception as e:
                logger.warning(f"Search page strategy '{strategy.name}' failed: {e}")
                continue
            if results:
                logger.debug(f"Search page parsed by '{strategy.name}': {len(results)} results")
                return results
        return []

    @staticmethod
    def _finalize(results: List[SearchResult], limit: int, rank: bool) -> List[SearchResult]:
        seen = set()
        unique: List[SearchResult] = []
        for result in results:
            if result.url in seen:
                continue
            seen.add(result.url)
            unique.append(result)
        if rank:
            # sorted() is stable: equal snippet lengths keep page order
            unique = sorted(unique, key=lambda r: len(r.snippet), reverse=True)
        final = unique[:max(limit, 0)]
        for ordinal, result in enumerate(final, 1):
            result.ordinal = ordinal
        return final

    def format_results(self, results: List[SearchResult]) -> str:
        """
        Format search results into numbered context for the LLM.

        Args:
            results: Search results, content already fetched where possible

        Returns:
            Formatted string with one numbered block per result
        """
        if not results:
            return "No search results found."

        formatted = ""
        for result in results:
            formatted += f"[{result.ordinal}] {result.title} ({result.site_label})\n"
            formatted += f"URL: {result.url}\n"
            formatted += f"{result.content or result.snippet}\n\n"

        return formatted.rstrip() + "\n"

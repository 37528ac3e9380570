"""
Content Fetch Service - retrieves page text for search results in parallel.

Each result gets its own short deadline and the whole fan-out races one
overall deadline. Whatever is still pending when it elapses, and every
individual failure, resolves to the result's original snippet.
"""

import asyncio
import logging
import re
import time
from typing import List, Optional

from bs4 import BeautifulSoup

from ..core.cancellation import CancelToken, ensure_token
from ..core.errors import AbortedError
from ..llm.network import NetworkRetryClient
from ..models.search import SearchResult
from .web_search import BROWSER_USER_AGENT

logger = logging.getLogger(__name__)

BOILERPLATE_TAGS = [
    "script", "style", "noscript", "nav", "header", "footer",
    "aside", "form", "iframe", "svg", "button",
]
BLOCK_TAGS = ["article", "main", "section", "div", "td", "body"]


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def extract_page_text(html: str, max_chars: int = 3000, min_chars: int = 200) -> str:
    """
    Extract the main readable text of an HTML page.

    Picks the block whose direct paragraphs carry the most text, discounted by
    the share of that block's text sitting inside links. Falls back to the
    page's whole visible text when that yields fewer than ``min_chars``.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()

    best_text = ""
    best_score = 0.0
    for block in soup.find_all(BLOCK_TAGS):
        paragraphs = [_normalize_text(p.get_text(" ")) for p in block.find_all("p", recursive=False)]
        text = "\n\n".join(p for p in paragraphs if p)
        if not text:
            continue
        total_chars = len(_normalize_text(block.get_text(" "))) or 1
        link_chars = sum(len(a.get_text(strip=True)) for a in block.find_all("a"))
        link_density = min(link_chars / total_chars, 1.0)
        score = len(text) * (1.0 - link_density)
        if score > best_score:
            best_score = score
            best_text = text

    if len(best_text) >= min_chars:
        return _truncate(best_text, max_chars)

    return _truncate(_normalize_text(soup.get_text("\n")), max_chars)


class ContentFetchService:
    """Bounded parallel page fetch with per-item and overall deadlines."""

    def __init__(
        self,
        client: Optional[NetworkRetryClient] = None,
        item_timeout: float = 5.0,
        overall_timeout: float = 8.0,
        max_content_chars: int = 3000,
        min_content_chars: int = 200,
    ):
        self.client = client or NetworkRetryClient(timeout=item_timeout)
        self.item_timeout = item_timeout
        self.overall_timeout = overall_timeout
        self.max_content_chars = max_content_chars
        self.min_content_chars = min_content_chars

    async def fetch_all(
        self,
        results: List[SearchResult],
        max_results: int,
        token: Optional[CancelToken] = None,
    ) -> List[SearchResult]:
        """
        Fetch page content for the first ``max_results`` results.

        Always returns exactly min(len(results), max_results) results in input
        order; only cancellation escapes (as AbortedError).
        """
        token = ensure_token(token)
        selected = [r.model_copy() for r in results[:max(max_results, 0)]]
        if not selected:
            return []

        start_time = time.time()
        tasks = [asyncio.create_task(self._fetch_one(r, token)) for r in selected]
        try:
            done, pending = await token.run(asyncio.wait(tasks, timeout=self.overall_timeout))
        except AbortedError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        fetched = 0
        for result, task in zip(selected, tasks):
            content = None
            if task in done and not task.cancelled() and task.exception() is None:
                content = task.result()
            if content:
                result.content = content
                fetched += 1
            else:
                result.content = result.snippet

        logger.info(
            f"Fetched content for {fetched}/{len(selected)} results",
            extra={"extra_fields": {
                "fetched": fetched,
                "requested": len(selected),
                "timed_out": len(pending),
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            }}
        )
        return selected

    async def _fetch_one(self, result: SearchResult, token: CancelToken) -> Optional[str]:
        try:
            return await asyncio.wait_for(
                self._fetch_content(result.url, token), timeout=self.item_timeout
            )
        except AbortedError:
            raise
        except asyncio.TimeoutError:
            logger.debug(f"Content fetch timed out: {result.url}")
        except Exception as e:
            logger.debug(f"Content fetch failed for {result.url}: {e}")
        return None

    async def _fetch_content(self, url: str, token: CancelToken) -> Optional[str]:
        resp = await self.client.request(
            "GET",
            url,
            token,
            headers={"User-Agent": BROWSER_USER_AGENT, "Accept": "text/html,text/plain;q=0.9"},
            timeout=self.item_timeout,
        )
        content_type = resp.headers.get("content-type", "").lower()
        if not content_type or "html" in content_type:
            text = extract_page_text(resp.text, self.max_content_chars, self.min_content_chars)
        elif content_type.startswith("text/"):
            text = _truncate(_normalize_text(resp.text), self.max_content_chars)
        else:
            return None
        return text or None

"""
Search Models - Web search results and the explicit outcome of a search call.
"""

from typing import Optional, List, Literal
from urllib.parse import urlsplit
from pydantic import BaseModel, Field, model_validator

from .session import SourceRef


def site_label_for(url: str) -> str:
    """Hostname without a leading ``www.``."""
    host = (urlsplit(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


class SearchResult(BaseModel):
    """A single web search hit. ``content`` holds the snippet until fetched."""
    title: str
    url: str
    snippet: str = ""
    site_label: str = ""
    content: Optional[str] = None
    ordinal: int = 0

    @model_validator(mode="after")
    def _fill_defaults(self) -> "SearchResult":
        if self.content is None:
            self.content = self.snippet
        if not self.site_label:
            self.site_label = site_label_for(self.url)
        return self

    def to_source_ref(self) -> SourceRef:
        return SourceRef(
            title=self.title or self.site_label or self.url,
            url=self.url,
            site_label=self.site_label,
            ordinal=self.ordinal,
        )


class SearchOutcome(BaseModel):
    """
    Result of a web search call.

    An empty result list with no error means nothing was found; an error
    means the search subsystem failed. Either way the caller answers from
    model knowledge.
    """
    results: List[SearchResult] = Field(default_factory=list)
    source: Literal["cache", "api", "scrape", "none"] = "none"
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool(self.results)

"""
Render debouncing for streamed assistant text.

Deltas arrive far faster than a host can usefully re-render markdown, and the
cost of each render grows with the transcript. The debouncer coalesces
updates behind a fixed window and guarantees exactly one final,
non-debounced render when the turn completes or aborts.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Union

from ..models.session import SourceRef
from .cancellation import CancelToken
from .errors import AbortedError

logger = logging.getLogger(__name__)


@dataclass
class RenderUpdate:
    """Accumulated markdown text handed to the host for display."""
    text: str
    sources: List[SourceRef] = field(default_factory=list)
    final: bool = False
    status: str = "streaming"  # streaming, finalized, cancelled, failed


RenderCallback = Callable[[RenderUpdate], Union[None, Awaitable[None]]]


class RenderDebouncer:
    """Coalesces render requests; its pending timer is bound to the turn's token."""

    def __init__(self, callback: Optional[RenderCallback], token: CancelToken,
                 window_ms: int = 50):
        self._callback = callback
        self._token = token
        self._window = max(window_ms, 0) / 1000.0
        self._text = ""
        self._sources: List[SourceRef] = []
        self._pending: Optional[asyncio.Task] = None
        self._finalized = False
        self.render_count = 0

    @property
    def finalized(self) -> bool:
        return self._finalized

    def set_sources(self, sources: List[SourceRef]) -> None:
        self._sources = list(sources)

    def push(self, text: str) -> None:
        """Record the latest accumulated text and schedule a render if none is pending."""
        if self._finalized:
            return
        self._text = text
        if self._callback is None:
            return
        if self._pending is None or self._pending.done():
            self._pending = asyncio.create_task(self._delayed_render())

    async def _delayed_render(self) -> None:
        try:
            await self._token.sleep(self._window)
        except AbortedError:
            return
        if not self._finalized:
            await self._emit(RenderUpdate(self._text, list(self._sources)))

    async def finalize(self, status: str, text: Optional[str] = None) -> None:
        """
        Cancel any pending timer and render once, immediately.

        Subsequent calls are no-ops, so completion and abort paths can both
        call this safely.
        """
        if self._finalized:
            return
        self._finalized = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            await asyncio.gather(self._pending, return_exceptions=True)
        self._pending = None
        if text is not None:
            self._text = text
        await self._emit(RenderUpdate(self._text, list(self._sources), final=True, status=status))

    async def _emit(self, update: RenderUpdate) -> None:
        if self._callback is None:
            return
        self.render_count += 1
        try:
            result = self._callback(update)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # Host renderer errors are logged, never propagated
            logger.error(f"Render callback failed: {e}", exc_info=True)

"""
Unit tests for render debouncing.
"""

import asyncio
import pytest
from unittest.mock import MagicMock

from urlbar_llm.core.cancellation import CancelToken
from urlbar_llm.core.render import RenderDebouncer, RenderUpdate
from urlbar_llm.models import SourceRef


class TestRenderDebouncer:
    """Tests for RenderDebouncer."""

    @pytest.mark.asyncio
    async def test_burst_is_coalesced(self):
        updates = []
        debouncer = RenderDebouncer(updates.append, CancelToken(), window_ms=20)

        for text in ["H", "He", "Hel", "Hell", "Hello"]:
            debouncer.push(text)
        await asyncio.sleep(0.1)

        assert len(updates) == 1
        assert updates[0].text == "Hello"
        assert updates[0].final is False

    @pytest.mark.asyncio
    async def test_finalize_renders_once_immediately(self):
        updates = []
        debouncer = RenderDebouncer(updates.append, CancelToken(), window_ms=1000)
        debouncer.set_sources([SourceRef(title="Doc", url="https://example.com", ordinal=1)])
        debouncer.push("partial")

        await debouncer.finalize("finalized", "complete answer")
        await debouncer.finalize("failed", "ignored")

        assert len(updates) == 1
        final = updates[0]
        assert isinstance(final, RenderUpdate)
        assert final.final is True
        assert final.status == "finalized"
        assert final.text == "complete answer"
        assert final.sources[0].ordinal == 1
        assert debouncer.finalized

    @pytest.mark.asyncio
    async def test_push_after_finalize_is_ignored(self):
        updates = []
        debouncer = RenderDebouncer(updates.append, CancelToken(), window_ms=5)
        await debouncer.finalize("cancelled", "")
        debouncer.push("late")
        await asyncio.sleep(0.05)
        assert len(updates) == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_drops_pending_render(self):
        updates = []
        token = CancelToken()
        debouncer = RenderDebouncer(updates.append, token, window_ms=50)
        debouncer.push("text")
        token.cancel()
        await asyncio.sleep(0.1)
        assert updates == []

    @pytest.mark.asyncio
    async def test_async_callback(self):
        updates = []

        async def on_render(update):
            updates.append(update.text)

        debouncer = RenderDebouncer(on_render, CancelToken(), window_ms=0)
        debouncer.push("a")
        await asyncio.sleep(0.01)
        await debouncer.finalize("finalized")
        assert updates == ["a", "a"]
        assert debouncer.render_count == 2

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_propagate(self):
        callback = MagicMock(side_effect=RuntimeError("renderer crashed"))
        debouncer = RenderDebouncer(callback, CancelToken(), window_ms=0)
        await debouncer.finalize("finalized", "text")
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_without_callback(self):
        debouncer = RenderDebouncer(None, CancelToken())
        debouncer.push("text")
        await debouncer.finalize("finalized")
        assert debouncer.render_count == 0

"""
Unit tests for the per-turn cancellation token.
"""

import asyncio
import pytest

from urlbar_llm.core.cancellation import CancelToken, ensure_token
from urlbar_llm.core.errors import AbortedError


class TestCancelToken:
    """Tests for CancelToken."""

    def test_initial_state(self):
        token = CancelToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self):
        token = CancelToken()
        token.cancel()
        token.cancel()
        assert token.cancelled is True
        with pytest.raises(AbortedError):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancelToken()

        async def work():
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        token = CancelToken()

        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await token.run(work())

    @pytest.mark.asyncio
    async def test_run_aborts_pending_work(self):
        token = CancelToken()
        started = asyncio.Event()
        finished = False

        async def never_ends():
            nonlocal finished
            started.set()
            await asyncio.sleep(60)
            finished = True

        async def cancel_when_started():
            await started.wait()
            token.cancel()

        canceller = asyncio.create_task(cancel_when_started())
        with pytest.raises(AbortedError):
            await asyncio.wait_for(token.run(never_ends()), timeout=1.0)
        await canceller
        assert finished is False

    @pytest.mark.asyncio
    async def test_run_after_cancel_does_not_start_work(self):
        token = CancelToken()
        token.cancel()
        called = False

        async def work():
            nonlocal called
            called = True

        with pytest.raises(AbortedError):
            await token.run(work())
        assert called is False

    @pytest.mark.asyncio
    async def test_run_discards_result_that_lost_the_race(self):
        token = CancelToken()
        started = asyncio.Event()
        opened = {"closed": False}
        discarded = []

        async def opens_resource():
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                # Finished its work just as the cancel arrived
                return opened
            return None

        async def close(resource):
            resource["closed"] = True
            discarded.append(resource)

        async def cancel_when_started():
            await started.wait()
            token.cancel()

        asyncio.create_task(cancel_when_started())
        with pytest.raises(AbortedError):
            await token.run(opens_resource(), discard=close)
        assert opened["closed"] is True
        assert discarded == [opened]

    @pytest.mark.asyncio
    async def test_run_does_not_discard_cancelled_work(self):
        token = CancelToken()
        started = asyncio.Event()
        discarded = []

        async def never_ends():
            started.set()
            await asyncio.sleep(60)

        async def discard(result):
            discarded.append(result)

        async def cancel_when_started():
            await started.wait()
            token.cancel()

        asyncio.create_task(cancel_when_started())
        with pytest.raises(AbortedError):
            await token.run(never_ends(), discard=discard)
        assert discarded == []

    @pytest.mark.asyncio
    async def test_sleep_completes_without_cancel(self):
        token = CancelToken()
        await token.sleep(0.01)
        await token.sleep(0)

    @pytest.mark.asyncio
    async def test_sleep_interrupted_by_cancel(self):
        token = CancelToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)
        start = loop.time()
        with pytest.raises(AbortedError):
            await token.sleep(30)
        assert loop.time() - start < 1.0

    def test_ensure_token(self):
        token = CancelToken("mine")
        assert ensure_token(token) is token
        detached = ensure_token(None)
        assert isinstance(detached, CancelToken)
        assert detached.cancelled is False

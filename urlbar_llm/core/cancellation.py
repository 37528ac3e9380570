"""
Per-turn cancellation token.

Every suspension point a turn can reach (requests, stream reads, backoff
sleeps, debounce timers, deadline races) awaits through the token, so one
cancel() resolves all of them on the next scheduling tick instead of on
their next natural wakeup.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import AbortedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Cancellation signal owned by one turn."""

    def __init__(self, name: str = "turn"):
        self.name = name
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token. Calling it again is a no-op."""
        if not self._event.is_set():
            logger.debug(f"Cancel token fired: {self.name}")
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedError()

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """
        Sleep for ``delay`` seconds unless the token fires first.

        Raises:
            AbortedError: the token fired before or during the sleep
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise AbortedError()

    async def run(self, awaitable: Awaitable[T],
                  discard: Optional[Callable[[T], Awaitable[None]]] = None) -> T:
        """
        Await ``awaitable`` racing it against the token.

        When the token wins, the underlying task is cancelled and reaped
        before AbortedError is raised. If the task still produced a result,
        it is handed to ``discard`` so resources such as open responses are
        released.
        """
        if self._event.is_set():
            # Close a bare coroutine so it never warns about not being awaited
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise AbortedError()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await _reap(task)
        if discard is not None and not task.cancelled() and task.exception() is None:
            await discard(task.result())
        raise AbortedError()


async def _reap(task: "asyncio.Future[Any]") -> None:
    """Wait for a cancelled task to unwind, discarding its outcome."""
    await asyncio.gather(task, return_exceptions=True)


def ensure_token(token: Optional[CancelToken]) -> CancelToken:
    """Return ``token`` or a fresh one that never fires."""
    return token if token is not None else CancelToken("detached")

"""
Network Retry Client - httpx wrapper with bounded retries and cancellable backoff.

Retries HTTP 429/500/502/503/504 and connection-level failures (refused,
timeout, DNS) up to ``max_attempts`` times. Everything else is terminal on
first occurrence. Backoff sleeps go through the turn's CancelToken.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx

from ..core.cancellation import CancelToken, ensure_token
from ..core.errors import (
    AbortedError,
    NetworkError,
    TransientNetworkError,
    error_for_status,
)
from ..core.logging_config import filter_sensitive_data

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS = (httpx.TimeoutException, httpx.NetworkError)


class NetworkRetryClient:
    """Retrying request wrapper shared by providers, search and content fetch."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            max_attempts: Total attempts including the first one
            base_delay: Backoff before the first retry, in seconds
            max_delay: Upper bound for any single backoff
            timeout: Default per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.transport = transport

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the 0-based ``attempt`` failed: min(base * 2^attempt, cap)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _client(self, timeout: Optional[float]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.timeout,
            transport=self.transport,
            follow_redirects=True,
        )

    async def request(
        self,
        method: str,
        url: str,
        token: Optional[CancelToken] = None,
        *,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Send a request and return the fully read response.

        Raises:
            AbortedError: the token fired
            AuthError, RateLimitError, ServiceUnavailableError,
            ClientRequestError, TransientNetworkError: terminal failure
        """
        token = ensure_token(token)
        async with self._client(timeout) as client:
            return await self._with_retries(
                method,
                url,
                token,
                lambda: client.request(method, url, json=json, params=params, headers=headers),
                streaming=False,
            )

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        token: Optional[CancelToken] = None,
        *,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming response. Retries apply until headers arrive;
        failures while the body is consumed propagate to the reader.
        """
        token = ensure_token(token)
        async with self._client(timeout) as client:
            request = client.build_request(method, url, json=json, headers=headers)
            response = await self._with_retries(
                method,
                url,
                token,
                lambda: client.send(request, stream=True),
                streaming=True,
            )
            try:
                yield response
            finally:
                await response.aclose()

    async def _with_retries(
        self,
        method: str,
        url: str,
        token: CancelToken,
        send: Callable[[], Awaitable[httpx.Response]],
        streaming: bool,
    ) -> httpx.Response:
        last_error: Optional[NetworkError] = None

        for attempt in range(self.max_attempts):
            token.raise_if_cancelled()
            start_time = time.time()

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"HTTP {method} {url} attempt {attempt + 1}/{self.max_attempts}")

            try:
                response = await token.run(send(), discard=_close_response)
            except AbortedError:
                logger.info(f"HTTP {method} {url} aborted")
                raise
            except RETRYABLE_EXCEPTIONS as e:
                last_error = TransientNetworkError(f"{method} {url} failed: {e}")
                last_error.__cause__ = e
            except httpx.HTTPError as e:
                raise TransientNetworkError(f"{method} {url} failed: {e}") from e
            else:
                duration_ms = (time.time() - start_time) * 1000
                if response.status_code < 400:
                    logger.debug(
                        f"HTTP {method} {url} -> {response.status_code} in {duration_ms:.0f}ms"
                    )
                    return response

                error = error_for_status(
                    response.status_code,
                    f"{method} {url} returned HTTP {response.status_code} {response.reason_phrase}",
                )
                if streaming:
                    await response.aclose()
                elif logger.isEnabledFor(logging.DEBUG):
                    logger.debug(f"Error response body: {response.text[:500]}")

                if response.status_code not in RETRYABLE_STATUS:
                    logger.warning(
                        f"HTTP {method} {url} failed with status {response.status_code}",
                        extra={"extra_fields": {
                            "status_code": response.status_code,
                            "attempt": attempt + 1,
                            "duration_ms": round(duration_ms, 2),
                        }}
                    )
                    raise error
                last_error = error

            if attempt + 1 < self.max_attempts:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"HTTP {method} {url} attempt {attempt + 1} failed ({last_error}), "
                    f"retrying in {delay:.2f}s"
                )
                await token.sleep(delay)

        logger.error(
            f"HTTP {method} {url} failed after {self.max_attempts} attempts: {last_error}",
            extra={"extra_fields": {
                "status_code": getattr(last_error, "status_code", None),
                "attempts": self.max_attempts,
            }}
        )
        raise last_error


async def _close_response(response: httpx.Response) -> None:
    await response.aclose()


def redact_headers(headers: Optional[Dict[str, str]]) -> Dict[str, Any]:
    """Headers safe to write to a log line."""
    return filter_sensitive_data(dict(headers or {}))

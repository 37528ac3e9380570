"""
Error taxonomy shared by the network, streaming and orchestration layers.

Only the orchestrator turns these into user-facing text.
"""

from typing import Optional


class UrlbarLLMError(Exception):
    """Base class for all errors raised by this package."""


class AbortedError(UrlbarLLMError):
    """The active turn was cancelled by the host or by a newer turn."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class NetworkError(UrlbarLLMError):
    """A request failed; carries the HTTP status when one was received."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(NetworkError):
    """Connection-level failure that persisted through every retry."""


class AuthError(NetworkError):
    """Credentials were rejected (401/403)."""


class RateLimitError(NetworkError):
    """Still rate limited (429) after every retry."""


class ServiceUnavailableError(NetworkError):
    """Server-side failure (5xx) after every retry."""


class ClientRequestError(NetworkError):
    """The request itself was rejected (4xx other than 401/403/429)."""


class ParseError(UrlbarLLMError):
    """Malformed stream content. Never escapes a parser."""


def error_for_status(status_code: int, message: str) -> NetworkError:
    """Map a terminal HTTP status onto the error taxonomy."""
    if status_code in (401, 403):
        return AuthError(message, status_code)
    if status_code == 429:
        return RateLimitError(message, status_code)
    if status_code >= 500:
        return ServiceUnavailableError(message, status_code)
    return ClientRequestError(message, status_code)

"""Core module - cancellation, error taxonomy, rendering and logging support."""

from .cancellation import CancelToken
from .errors import (
    UrlbarLLMError,
    AbortedError,
    NetworkError,
    TransientNetworkError,
    AuthError,
    RateLimitError,
    ServiceUnavailableError,
    ClientRequestError,
    ParseError,
)

__all__ = [
    'CancelToken',
    'UrlbarLLMError',
    'AbortedError',
    'NetworkError',
    'TransientNetworkError',
    'AuthError',
    'RateLimitError',
    'ServiceUnavailableError',
    'ClientRequestError',
    'ParseError',
]

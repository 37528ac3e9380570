"""
Request logging for the host API.

Pure ASGI middleware, so the chat event stream reaches the client chunk by
chunk. Each exchange is logged twice (started and completed) under a short
request id. User text typed into the address bar is logged by length only;
event-stream replies are summarised by size and event count.
"""

import json
import logging
import time
import uuid
from typing import List, Optional
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import filter_sensitive_data, truncate_large_data

logger = logging.getLogger(__name__)

MAX_LOGGED_BODY = 2000
PRIVATE_FIELDS = ("message", "content")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _redact_private(payload):
    if isinstance(payload, dict):
        return {
            key: f"<{len(value)} chars>" if key in PRIVATE_FIELDS and isinstance(value, str)
            else _redact_private(value)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [_redact_private(item) for item in payload]
    return payload


def _parse_json(data: bytes):
    if not data:
        return None
    try:
        return json.loads(data.decode("utf-8", errors="ignore"))
    except json.JSONDecodeError:
        return None


def _loggable_body(data: bytes) -> Optional[str]:
    """Sanitized, size-limited rendering of a request or response body."""
    if not data:
        return None
    payload = _parse_json(data)
    if payload is None:
        text = data.decode("utf-8", errors="ignore")
    else:
        text = json.dumps(_redact_private(filter_sensitive_data(payload)), ensure_ascii=False)
    return truncate_large_data(text, max_length=MAX_LOGGED_BODY)


class _Exchange:
    """What the middleware observes of one request/response pair."""

    def __init__(self, scope: Scope):
        self.request_id = uuid.uuid4().hex[:12]
        self.method = scope.get("method", "UNKNOWN")
        self.path = scope.get("path", "")
        client = scope.get("client")
        self.client = client[0] if client else None
        self.started = time.monotonic()
        self.request_chunks: List[bytes] = []
        self.response_chunks: List[bytes] = []
        self.status_code = 0
        self.event_stream = False
        self.response_bytes = 0
        self.events = 0

    @property
    def duration_ms(self) -> float:
        return round((time.monotonic() - self.started) * 1000, 2)

    def on_response_start(self, message: Message) -> None:
        self.status_code = message.get("status", 0)
        for name, value in message.get("headers", []):
            if name.lower() == b"content-type":
                self.event_stream = value.startswith(b"text/event-stream")

    def on_response_body(self, chunk: bytes) -> None:
        self.response_bytes += len(chunk)
        if self.event_stream:
            self.events += chunk.count(b"data: ")
        else:
            self.response_chunks.append(chunk)

    def conversation_id(self) -> Optional[str]:
        body = _parse_json(b"".join(self.request_chunks))
        if isinstance(body, dict) and body.get("conversation_id"):
            return body["conversation_id"]
        parts = self.path.strip("/").split("/")
        if len(parts) >= 3 and parts[0] == "chat":
            return parts[1]
        return None


class RequestLoggingMiddleware:
    """Logs every API request except the excluded paths."""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[list] = None):
        """
        Args:
            app: The ASGI application
            exclude_paths: Paths to skip entirely (default: "/" and "/health")
        """
        self.app = app
        self.exclude_paths = exclude_paths or ["/health", "/"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "") in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        exchange = _Exchange(scope)

        async def logging_receive() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                exchange.request_chunks.append(message.get("body", b""))
            return message

        async def logging_send(message: Message) -> None:
            if message["type"] == "http.response.start":
                exchange.on_response_start(message)
            elif message["type"] == "http.response.body":
                exchange.on_response_body(message.get("body", b""))
            await send(message)

        logger.info(
            f"Request started: {exchange.method} {exchange.path}",
            extra={"extra_fields": {
                "request_id": exchange.request_id,
                "method": exchange.method,
                "path": exchange.path,
                "client": exchange.client,
            }}
        )

        try:
            await self.app(scope, logging_receive, logging_send)
        except Exception as e:
            logger.error(
                f"Request failed: {exchange.method} {exchange.path} - {e}",
                exc_info=True,
                extra={"extra_fields": {
                    "request_id": exchange.request_id,
                    "duration_ms": exchange.duration_ms,
                    "error": str(e),
                }}
            )
            raise

        fields = {
            "request_id": exchange.request_id,
            "method": exchange.method,
            "path": exchange.path,
            "status_code": exchange.status_code,
            "duration_ms": exchange.duration_ms,
            "conversation_id": exchange.conversation_id(),
            "request_body": _loggable_body(b"".join(exchange.request_chunks)),
            "response_bytes": exchange.response_bytes,
        }
        if exchange.event_stream:
            fields["events"] = exchange.events
        else:
            fields["response_body"] = _loggable_body(b"".join(exchange.response_chunks))

        logger.log(
            _level_for(exchange.status_code),
            f"Request completed: {exchange.method} {exchange.path} - "
            f"{exchange.status_code} ({fields['duration_ms']:.2f}ms)",
            extra={"extra_fields": fields}
        )

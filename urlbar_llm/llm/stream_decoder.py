"""
Stream Decoder - incremental parser for the two streaming wire formats.

Event-stream (OpenAI-compatible):
    data: {"choices":[{"delta":{"content":"Hel"}}]}
    data: [DONE]

Line-delimited JSON (native chat):
    {"message":{"content":"Hel"},"done":false}
    {"message":{"content":""},"done":true}

Chunk boundaries may split a line, or a multi-byte character, anywhere. The
trailing partial line of each chunk is held back and prepended to the next.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional

from ..core.cancellation import CancelToken, ensure_token
from ..core.errors import ParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"


class WireFormat(str, Enum):
    """Streaming wire format spoken by a provider."""
    NATIVE_CHAT = "native_chat"  # line-delimited JSON (Ollama /api/chat)
    OPENAI_COMPATIBLE = "openai_compatible"  # event-stream /chat/completions


@dataclass(frozen=True)
class StreamEvent:
    """A text delta, or the terminal Done signal."""
    kind: str  # "delta" or "done"
    text: str = ""

    @property
    def is_done(self) -> bool:
        return self.kind == "done"


DONE = StreamEvent("done")


class StreamDecoder:
    """Turns raw response bytes into ordered delta events for one wire format."""

    def __init__(self, wire_format: WireFormat):
        self.wire_format = wire_format
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._done = False
        self.skipped_lines = 0

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """
        Consume one chunk and return the events completed by it.

        Once Done has been produced, further input is ignored.
        """
        if self._done:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._process_lines(lines)

    def finish(self) -> List[StreamEvent]:
        """End of input: parse the held remainder, then emit Done."""
        if self._done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        events = self._process_lines([remainder]) if remainder else []
        if not self._done:
            self._done = True
            events.append(DONE)
        return events

    def _process_lines(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            try:
                delta, finished = self._parse_line(line)
            except ParseError as e:
                self.skipped_lines += 1
                logger.debug(f"Skipping malformed stream line: {e}")
                continue
            if delta:
                events.append(StreamEvent("delta", delta))
            if finished:
                self._done = True
                events.append(DONE)
                break
        return events

    def _parse_line(self, line: str) -> "tuple[Optional[str], bool]":
        if self.wire_format is WireFormat.OPENAI_COMPATIBLE:
            return self._parse_event_stream_line(line)
        return self._parse_ndjson_line(line)

    def _parse_event_stream_line(self, line: str) -> "tuple[Optional[str], bool]":
        if not line.startswith(DATA_PREFIX):
            return None, False
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_MARKER:
            return None, True
        chunk = _loads(payload)
        try:
            content = chunk["choices"][0]["delta"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None, False
        return (content if isinstance(content, str) else None), False

    def _parse_ndjson_line(self, line: str) -> "tuple[Optional[str], bool]":
        if not line.strip():
            return None, False
        chunk = _loads(line)
        if not isinstance(chunk, dict):
            raise ParseError(f"expected an object, got {type(chunk).__name__}")
        message = chunk.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        return (content if isinstance(content, str) else None), chunk.get("done") is True

    async def decode(self, chunks: AsyncIterator[bytes],
                     token: Optional[CancelToken] = None) -> AsyncIterator[StreamEvent]:
        """
        Decode an incrementally arriving byte stream.

        Every read races the token, so cancellation aborts the pending read
        with AbortedError instead of producing Done.
        """
        token = ensure_token(token)
        iterator = chunks.__aiter__()
        while True:
            chunk = await token.run(_next_chunk(iterator))
            if chunk is None:
                break
            for event in self.feed(chunk):
                yield event
                if event.is_done:
                    return
        for event in self.finish():
            yield event


async def _next_chunk(iterator: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def _loads(payload: str):
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, ValueError) as e:
        raise ParseError(str(e)) from e

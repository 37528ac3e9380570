"""
LLM Provider Base - Abstract base for the chat providers and their shared types.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, AsyncGenerator
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from ..core.cancellation import CancelToken, ensure_token
from .network import NetworkRetryClient, redact_headers
from .stream_decoder import StreamDecoder, WireFormat

logger = logging.getLogger(__name__)


class ProviderConfig(BaseModel):
    """Immutable description of one chat provider."""
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    base_url: str
    api_key: Optional[str] = None
    model: str
    wire_format: WireFormat
    supports_search: bool = True
    search_api_url: Optional[str] = None
    search_api_key: Optional[str] = None

    @property
    def requires_api_key(self) -> bool:
        return self.wire_format is WireFormat.OPENAI_COMPATIBLE

    @property
    def has_native_search(self) -> bool:
        return bool(self.search_api_url and self.search_api_key)


@dataclass
class LLMMessage:
    """Represents a message in a conversation."""
    role: str  # "system", "user", "assistant"
    content: str

    @staticmethod
    def text(role: str, text: str) -> "LLMMessage":
        """Create a text-only message."""
        return LLMMessage(role=role, content=text)


@dataclass
class LLMResponse:
    """Response from a non-streaming LLM call."""
    content: str
    model: str = ""
    usage: Dict[str, int] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = None


class LLMProvider(ABC):
    """
    Abstract base class for chat providers.

    Each subclass pairs a request builder with a delta extractor for exactly
    one wire format; the pair is selected once per provider by the factory.
    """

    wire_format: WireFormat

    def __init__(self, config: ProviderConfig, client: Optional[NetworkRetryClient] = None,
                 default_temperature: float = 0.7, timeout: float = 120.0,
                 log_calls: bool = True):
        self.config = config
        self.log_calls = log_calls
        self.client = client or NetworkRetryClient(timeout=timeout)
        self.default_temperature = default_temperature
        self.timeout = timeout

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    @abstractmethod
    def _endpoint(self) -> str:
        """URL the chat request is POSTed to."""

    @abstractmethod
    def _build_payload(self, messages: List[LLMMessage], stream: bool,
                       temperature: Optional[float], max_tokens: Optional[int]) -> Dict[str, Any]:
        """Request body for this wire format."""

    @abstractmethod
    def _extract_content(self, data: Dict[str, Any]) -> str:
        """Assistant text from a non-streaming response body."""

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _format_messages(self, messages: List[LLMMessage]) -> List[Dict[str, Any]]:
        """Convert LLMMessage list to API-compatible format."""
        return [{"role": m.role, "content": m.content} for m in messages]

    async def chat_completion(
        self,
        messages: List[LLMMessage],
        token: Optional[CancelToken] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Send a non-streaming chat completion request.

        Args:
            messages: Conversation messages
            token: Cancellation token of the calling turn
            temperature: Sampling temperature override
            max_tokens: Max tokens override

        Returns:
            LLMResponse with the generated content
        """
        payload = self._build_payload(messages, False, temperature, max_tokens)
        resp = await self.client.request(
            "POST", self._endpoint(), token, json=payload, headers=self._get_headers()
        )
        data = resp.json()
        return LLMResponse(
            content=self._extract_content(data),
            model=data.get("model", self.model),
            usage=data.get("usage", {}) or {},
            raw=data,
        )

    async def chat_completion_stream(
        self,
        messages: List[LLMMessage],
        token: Optional[CancelToken] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream chat completion deltas.

        Yields:
            str: Text deltas in arrival order, until the stream's Done signal
        """
        token = ensure_token(token)
        start_time = time.time()
        payload = self._build_payload(messages, True, temperature, max_tokens)
        headers = self._get_headers()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"LLM stream starting: provider={self.config.id}, model={self.model}, "
                f"{len(messages)} messages, headers={redact_headers(headers)}"
            )

        content_length = 0
        decoder = StreamDecoder(self.wire_format)
        async with self.client.stream(
            "POST", self._endpoint(), token, json=payload, headers=headers, timeout=self.timeout
        ) as response:
            async for event in decoder.decode(response.aiter_bytes(), token):
                if event.is_done:
                    continue
                content_length += len(event.text)
                yield event.text

        if self.log_calls:
            logger.info(
                "LLM stream completed",
                extra={"extra_fields": {
                    "provider": self.config.id,
                    "model": self.model,
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                    "content_length": content_length,
                    "skipped_lines": decoder.skipped_lines,
                }}
            )

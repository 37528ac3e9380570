"""
Native chat provider (Ollama /api/chat, line-delimited JSON stream).
"""

from typing import Optional, List, Dict, Any

from .base import LLMProvider, LLMMessage, WireFormat


class NativeChatProvider(LLMProvider):
    """Local provider; sends no bearer token unless one is configured."""

    wire_format = WireFormat.NATIVE_CHAT

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat"

    def _build_payload(self, messages: List[LLMMessage], stream: bool,
                       temperature: Optional[float], max_tokens: Optional[int]) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": temperature if temperature is not None else self.default_temperature,
        }
        if max_tokens:
            options["num_predict"] = max_tokens
        return {
            "model": self.model,
            "messages": self._format_messages(messages),
            "stream": stream,
            "options": options,
        }

    def _extract_content(self, data: Dict[str, Any]) -> str:
        return (data.get("message") or {}).get("content") or ""

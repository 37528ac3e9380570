"""
OpenAI-compatible LLM Provider.
Covers Mistral, OpenAI, Gemini's compatibility endpoint and any other
server that speaks /chat/completions with an event-stream response.
"""

from typing import Optional, List, Dict, Any

from .base import LLMProvider, LLMMessage, WireFormat


class OpenAICompatibleProvider(LLMProvider):
    """Provider for chat/completions endpoints streaming `data: {...}` records."""

    wire_format = WireFormat.OPENAI_COMPATIBLE

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _build_payload(self, messages: List[LLMMessage], stream: bool,
                       temperature: Optional[float], max_tokens: Optional[int]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._format_messages(messages),
            "temperature": temperature if temperature is not None else self.default_temperature,
            "stream": stream,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return payload

    def _extract_content(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

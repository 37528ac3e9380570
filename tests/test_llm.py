"""
Unit tests for the LLM module.
Tests LLMMessage, LLMResponse, providers, presets and factory.
"""

import pytest
import json
import logging
import httpx

from urlbar_llm.config import Settings
from urlbar_llm.core.cancellation import CancelToken
from urlbar_llm.core.errors import AbortedError, AuthError
from urlbar_llm.llm.base import LLMMessage, LLMResponse, ProviderConfig, WireFormat
from urlbar_llm.llm.factory import create_llm_provider
from urlbar_llm.llm.network import NetworkRetryClient
from urlbar_llm.llm.ollama_provider import NativeChatProvider
from urlbar_llm.llm.openai_provider import OpenAICompatibleProvider
from urlbar_llm.llm.presets import build_provider_configs, parse_provider_mention


def _remote_config(**overrides):
    values = dict(
        id="mistral",
        display_name="Mistral AI",
        base_url="https://api.mistral.ai/v1/",
        api_key="sk-test123",
        model="mistral-medium-latest",
        wire_format=WireFormat.OPENAI_COMPATIBLE,
    )
    values.update(overrides)
    return ProviderConfig(**values)


def _local_config(**overrides):
    values = dict(
        id="ollama",
        display_name="Ollama (Local)",
        base_url="http://localhost:11434/api",
        model="mistral",
        wire_format=WireFormat.NATIVE_CHAT,
    )
    values.update(overrides)
    return ProviderConfig(**values)


def _client(handler):
    return NetworkRetryClient(transport=httpx.MockTransport(handler))


async def _collect(stream):
    return [delta async for delta in stream]


class TestLLMMessage:
    """Tests for LLMMessage dataclass."""

    def test_text_message(self):
        msg = LLMMessage.text("user", "Hello")
        assert msg.role == "user"
        assert msg.content == "Hello"

    def test_system_message(self):
        msg = LLMMessage.text("system", "You are a helpful assistant")
        assert msg.role == "system"


class TestLLMResponse:
    """Tests for LLMResponse dataclass."""

    def test_basic_response(self):
        resp = LLMResponse(content="Hello!", model="gpt-4")
        assert resp.content == "Hello!"
        assert resp.usage == {}
        assert resp.raw is None


class TestOpenAICompatibleProvider:
    """Tests for the event-stream provider."""

    def test_init(self):
        provider = OpenAICompatibleProvider(_remote_config())
        assert provider.model == "mistral-medium-latest"
        assert provider.base_url == "https://api.mistral.ai/v1"
        assert provider._endpoint() == "https://api.mistral.ai/v1/chat/completions"

    def test_headers(self):
        provider = OpenAICompatibleProvider(_remote_config())
        headers = provider._get_headers()
        assert headers["Authorization"] == "Bearer sk-test123"
        assert headers["Content-Type"] == "application/json"

    def test_payload(self):
        provider = OpenAICompatibleProvider(_remote_config())
        payload = provider._build_payload(
            [LLMMessage.text("system", "sys"), LLMMessage.text("user", "hi")],
            stream=True, temperature=None, max_tokens=None,
        )
        assert payload["model"] == "mistral-medium-latest"
        assert payload["stream"] is True
        assert payload["messages"][1] == {"role": "user", "content": "hi"}
        assert "max_tokens" not in payload

    @pytest.mark.asyncio
    async def test_chat_completion_success(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "ANSWER"}}],
                "model": "mistral-medium-latest",
                "usage": {"prompt_tokens": 10, "completion_tokens": 1},
            })

        provider = OpenAICompatibleProvider(_remote_config(), client=_client(handler))
        result = await provider.chat_completion(
            [LLMMessage.text("user", "Hello")], temperature=0.0, max_tokens=5
        )

        assert result.content == "ANSWER"
        assert result.usage["completion_tokens"] == 1
        assert seen["url"] == "https://api.mistral.ai/v1/chat/completions"
        assert seen["body"]["temperature"] == 0.0
        assert seen["body"]["max_tokens"] == 5
        assert seen["body"]["stream"] is False

    @pytest.mark.asyncio
    async def test_stream(self):
        body = (
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
            b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
            b"data: [DONE]\n\n"
        )

        def handler(request):
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        provider = OpenAICompatibleProvider(_remote_config(), client=_client(handler))
        deltas = await _collect(provider.chat_completion_stream([LLMMessage.text("user", "hi")]))
        assert "".join(deltas) == "Hello"

    @pytest.mark.asyncio
    async def test_stream_auth_failure(self):
        provider = OpenAICompatibleProvider(
            _remote_config(), client=_client(lambda request: httpx.Response(401))
        )
        with pytest.raises(AuthError):
            await _collect(provider.chat_completion_stream([LLMMessage.text("user", "hi")]))

    @pytest.mark.asyncio
    async def test_stream_with_cancelled_token(self):
        provider = OpenAICompatibleProvider(
            _remote_config(), client=_client(lambda request: httpx.Response(200))
        )
        token = CancelToken()
        token.cancel()
        with pytest.raises(AbortedError):
            await _collect(provider.chat_completion_stream([LLMMessage.text("user", "hi")], token))


class TestNativeChatProvider:
    """Tests for the line-delimited JSON provider."""

    def test_no_bearer_without_key(self):
        provider = NativeChatProvider(_local_config())
        assert "Authorization" not in provider._get_headers()
        assert provider._endpoint() == "http://localhost:11434/api/chat"

    def test_payload_options(self):
        provider = NativeChatProvider(_local_config(), default_temperature=0.3)
        payload = provider._build_payload(
            [LLMMessage.text("user", "hi")], stream=True, temperature=None, max_tokens=8
        )
        assert payload["options"] == {"temperature": 0.3, "num_predict": 8}

    @pytest.mark.asyncio
    async def test_chat_completion(self):
        provider = NativeChatProvider(
            _local_config(),
            client=_client(lambda request: httpx.Response(
                200, json={"model": "mistral", "message": {"role": "assistant", "content": "SEARCH"}}
            )),
        )
        result = await provider.chat_completion([LLMMessage.text("user", "news today")])
        assert result.content == "SEARCH"

    @pytest.mark.asyncio
    async def test_stream(self):
        body = (
            b'{"message":{"content":"Paris"},"done":false}\n'
            b'{"message":{"content":" is the capital."},"done":false}\n'
            b'{"message":{"content":""},"done":true}\n'
        )
        provider = NativeChatProvider(
            _local_config(), client=_client(lambda request: httpx.Response(200, content=body))
        )
        deltas = await _collect(provider.chat_completion_stream([LLMMessage.text("user", "hi")]))
        assert "".join(deltas) == "Paris is the capital."


class TestPresets:
    """Tests for provider presets and mentions."""

    def test_build_presets(self):
        configs = build_provider_configs(Settings(mistral_api_key="key", ollama_api_key=None))
        assert set(configs) == {"mistral", "openai", "gemini", "ollama"}
        assert configs["mistral"].api_key == "key"
        assert configs["ollama"].wire_format is WireFormat.NATIVE_CHAT
        assert configs["ollama"].requires_api_key is False
        assert configs["ollama"].has_native_search is False

    def test_ollama_native_search_needs_key(self):
        configs = build_provider_configs(Settings(ollama_api_key="ollama-key"))
        assert configs["ollama"].has_native_search is True

    def test_parse_mention(self):
        known = build_provider_configs(Settings())
        assert parse_provider_mention("@mistral what is rust", known) == ("mistral", "what is rust")
        assert parse_provider_mention("@Ollama hi", known) == ("ollama", "hi")
        assert parse_provider_mention("@unknown hi", known) == (None, "@unknown hi")
        assert parse_provider_mention("email me@mistral", known) == (None, "email me@mistral")
        assert parse_provider_mention("@gemini", known) == ("gemini", "")


class TestLLMFactory:
    """Tests for LLM provider factory."""

    def test_create_openai_compatible_provider(self):
        provider = create_llm_provider(_remote_config())
        assert isinstance(provider, OpenAICompatibleProvider)

    def test_create_native_provider(self):
        provider = create_llm_provider(_local_config())
        assert isinstance(provider, NativeChatProvider)

    def test_no_api_key_returns_none(self):
        assert create_llm_provider(_remote_config(api_key=None)) is None

    def test_kwargs_are_passed(self):
        provider = create_llm_provider(
            _local_config(), default_temperature=0.1, timeout=5.0, log_calls=False
        )
        assert provider.default_temperature == 0.1
        assert provider.timeout == 5.0
        assert provider.log_calls is False


class EchoChatProvider(NativeChatProvider):
    """Only the wire hooks are defined; streaming comes from the base class."""

    def _endpoint(self) -> str:
        return f"{self.base_url}/echo"


class TestSharedStreaming:
    """Tests for the streaming path shared by every wire format."""

    @pytest.mark.asyncio
    async def test_subclass_streams_through_base(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, content=b'{"message":{"content":"ok"},"done":true}\n')

        provider = EchoChatProvider(_local_config(), client=_client(handler))
        deltas = await _collect(provider.chat_completion_stream([LLMMessage.text("user", "hi")]))

        assert deltas == ["ok"]
        assert seen["url"] == "http://localhost:11434/api/echo"
        assert "chat_completion_stream" not in NativeChatProvider.__dict__
        assert "chat_completion_stream" not in OpenAICompatibleProvider.__dict__

    @pytest.mark.asyncio
    @pytest.mark.parametrize("log_calls,expected", [(True, 1), (False, 0)])
    async def test_completion_log_follows_setting(self, caplog, log_calls, expected):
        body = b'{"message":{"content":"ok"},"done":true}\n'
        provider = NativeChatProvider(
            _local_config(),
            client=_client(lambda request: httpx.Response(200, content=body)),
            log_calls=log_calls,
        )
        caplog.set_level(logging.INFO, logger="urlbar_llm.llm.base")

        await _collect(provider.chat_completion_stream([LLMMessage.text("user", "hi")]))

        completed = [r for r in caplog.records if r.getMessage() == "LLM stream completed"]
        assert len(completed) == expected

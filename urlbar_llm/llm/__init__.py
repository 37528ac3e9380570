"""LLM module - provider abstraction, retrying network layer and stream decoding."""

from .base import LLMProvider, LLMMessage, LLMResponse, ProviderConfig, WireFormat
from .network import NetworkRetryClient
from .stream_decoder import StreamDecoder, StreamEvent
from .openai_provider import OpenAICompatibleProvider
from .ollama_provider import NativeChatProvider
from .factory import create_llm_provider
from .presets import build_provider_configs, parse_provider_mention

__all__ = [
    'LLMProvider',
    'LLMMessage',
    'LLMResponse',
    'ProviderConfig',
    'WireFormat',
    'NetworkRetryClient',
    'StreamDecoder',
    'StreamEvent',
    'OpenAICompatibleProvider',
    'NativeChatProvider',
    'create_llm_provider',
    'build_provider_configs',
    'parse_provider_mention',
]

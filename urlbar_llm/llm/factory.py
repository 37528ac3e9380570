"""
LLM Provider Factory - Resolves a ProviderConfig to its wire-format provider.
"""

from typing import Optional
from .base import LLMProvider, ProviderConfig, WireFormat
from .network import NetworkRetryClient
from .ollama_provider import NativeChatProvider
from .openai_provider import OpenAICompatibleProvider


def create_llm_provider(
    config: ProviderConfig,
    client: Optional[NetworkRetryClient] = None,
    **kwargs
) -> Optional[LLMProvider]:
    """
    Create an LLM provider instance for a provider configuration.

    Args:
        config: Provider configuration; ``wire_format`` selects the class
        client: Shared retrying network client
        **kwargs: Passed to the provider (default_temperature, timeout, log_calls)

    Returns:
        LLMProvider instance, or None if a remote provider has no API key
    """
    if config.requires_api_key and not config.api_key:
        return None

    if config.wire_format is WireFormat.OPENAI_COMPATIBLE:
        return OpenAICompatibleProvider(config, client=client, **kwargs)

    elif config.wire_format is WireFormat.NATIVE_CHAT:
        return NativeChatProvider(config, client=client, **kwargs)

    else:
        raise ValueError(f"Unsupported wire format: {config.wire_format}")

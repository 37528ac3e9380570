"""
Provider presets and the `@provider` mention that selects one.
"""

import re
from typing import Dict, Optional, Tuple

from ..config.settings import Settings
from .base import ProviderConfig, WireFormat

MENTION_PATTERN = re.compile(r"^@(\w+)(?:\s+|$)")

OLLAMA_WEB_SEARCH_URL = "https://ollama.com/api/web_search"


def build_provider_configs(config: Settings) -> Dict[str, ProviderConfig]:
    """Resolve the built-in presets against the current settings."""
    return {
        "mistral": ProviderConfig(
            id="mistral",
            display_name="Mistral AI",
            base_url="https://api.mistral.ai/v1",
            api_key=config.mistral_api_key or None,
            model=config.mistral_model,
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        "openai": ProviderConfig(
            id="openai",
            display_name="OpenAI",
            base_url="https://api.openai.com/v1",
            api_key=config.openai_api_key or None,
            model=config.openai_model,
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        "gemini": ProviderConfig(
            id="gemini",
            display_name="Google Gemini",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai",
            api_key=config.gemini_api_key or None,
            model=config.gemini_model,
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        "ollama": ProviderConfig(
            id="ollama",
            display_name="Ollama (Local)",
            base_url=config.ollama_base_url,
            api_key=None,
            model=config.ollama_model,
            wire_format=WireFormat.NATIVE_CHAT,
            search_api_url=OLLAMA_WEB_SEARCH_URL,
            search_api_key=config.ollama_api_key or None,
        ),
    }


def parse_provider_mention(text: str, known: Dict[str, ProviderConfig]) -> Tuple[Optional[str], str]:
    """
    Split a leading ``@provider`` mention off a query.

    Returns:
        (provider_id, remaining query); provider_id is None when the text does
        not start with a mention of a known provider, in which case the text
        is returned unchanged.
    """
    match = MENTION_PATTERN.match(text)
    if not match:
        return None, text
    provider_id = match.group(1).lower()
    if provider_id not in known:
        return None, text
    return provider_id, text[match.end():].strip()

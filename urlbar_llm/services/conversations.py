"""
Conversation Registry - builds providers and keeps one orchestrator per
host conversation (e.g. one per browser window).
"""

import logging
from typing import Dict, List, Optional

from ..agents.orchestrator import ConversationOrchestrator
from ..config.settings import Settings
from ..llm.base import LLMProvider, ProviderConfig
from ..llm.factory import create_llm_provider
from ..llm.network import NetworkRetryClient
from ..llm.presets import build_provider_configs
from ..storage.session_store import SessionStore
from ..tools.content_fetch import ContentFetchService
from ..tools.search_cache import SearchCache
from ..tools.web_search import WebSearchService

logger = logging.getLogger(__name__)


class UnknownProviderError(LookupError):
    """No provider preset with the requested id."""


class ProviderNotConfiguredError(LookupError):
    """The provider exists but lacks the credentials it needs."""


class ConversationRegistry:
    """
    Shared services plus the orchestrators of all open conversations.
    """

    def __init__(self, config: Settings, session_store: Optional[SessionStore] = None,
                 client: Optional[NetworkRetryClient] = None):
        self.config = config
        self.session_store = session_store
        self.client = client or NetworkRetryClient(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            timeout=config.llm_timeout,
        )
        self.provider_configs: Dict[str, ProviderConfig] = build_provider_configs(config)
        self.search_service = WebSearchService(
            client=self.client,
            cache=SearchCache(
                max_size=config.search_cache_max_size,
                ttl_seconds=config.search_cache_ttl_seconds,
            ),
            search_page_url=config.search_page_url,
            timeout=config.search_timeout,
        )
        self.fetch_service = ContentFetchService(
            client=self.client,
            item_timeout=config.fetch_item_timeout,
            overall_timeout=config.fetch_overall_timeout,
            max_content_chars=config.fetch_max_content_chars,
            min_content_chars=config.fetch_min_content_chars,
        )
        self._orchestrators: Dict[str, ConversationOrchestrator] = {}

    def list_providers(self) -> List[dict]:
        providers = []
        for config in self.provider_configs.values():
            providers.append({
                "id": config.id,
                "display_name": config.display_name,
                "model": config.model,
                "wire_format": config.wire_format.value,
                "configured": not config.requires_api_key or bool(config.api_key),
                "native_search": config.has_native_search,
                "default": config.id == self.config.default_provider,
            })
        return providers

    def create_provider(self, provider_id: str) -> LLMProvider:
        """
        Build the provider for ``provider_id``.

        Raises:
            UnknownProviderError: no such preset
            ProviderNotConfiguredError: remote provider without an API key
        """
        config = self.provider_configs.get(provider_id)
        if config is None:
            raise UnknownProviderError(f"Unknown provider: {provider_id}")
        provider = create_llm_provider(
            config,
            client=self.client,
            default_temperature=self.config.llm_temperature,
            timeout=self.config.llm_timeout,
            log_calls=self.config.log_llm_calls,
        )
        if provider is None:
            raise ProviderNotConfiguredError(f"Provider {provider_id} has no API key configured")
        return provider

    def get(self, conversation_id: str) -> Optional[ConversationOrchestrator]:
        return self._orchestrators.get(conversation_id)

    async def get_or_create(self, conversation_id: str,
                            provider_id: Optional[str] = None) -> ConversationOrchestrator:
        """
        Return the conversation's orchestrator, switching it to ``provider_id``
        when a different provider is requested.
        """
        orchestrator = self._orchestrators.get(conversation_id)
        if orchestrator is not None:
            if provider_id and provider_id != orchestrator.provider_id:
                await orchestrator.switch_provider(self.create_provider(provider_id))
                logger.info(f"Conversation {conversation_id} switched to {provider_id}")
            return orchestrator

        provider = self.create_provider(provider_id or self.config.default_provider)
        orchestrator = ConversationOrchestrator(
            provider,
            session_store=self.session_store,
            search_service=self.search_service,
            fetch_service=self.fetch_service,
            search_enabled=self.config.search_enabled,
            search_max_results=self.config.search_max_results,
            fetch_max_results=self.config.fetch_max_results,
            render_debounce_ms=self.config.render_debounce_ms,
        )
        self._orchestrators[conversation_id] = orchestrator
        logger.info(f"Conversation {conversation_id} opened with {orchestrator.provider_id}")
        return orchestrator

    async def close_all(self) -> None:
        """Deactivate every open conversation, persisting non-empty ones."""
        for conversation_id, orchestrator in list(self._orchestrators.items()):
            try:
                await orchestrator.deactivate()
            except Exception as e:
                logger.error(f"Failed to close conversation {conversation_id}: {e}")
        self._orchestrators.clear()

"""Services module - application-level wiring of conversations and providers."""

from .conversations import (
    ConversationRegistry,
    ProviderNotConfiguredError,
    UnknownProviderError,
)

__all__ = ['ConversationRegistry', 'ProviderNotConfiguredError', 'UnknownProviderError']

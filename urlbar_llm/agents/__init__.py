"""Agents module - per-conversation turn orchestration."""

from .search_classifier import SearchNeedClassifier
from .orchestrator import (
    ConversationOrchestrator,
    TurnContext,
    TurnResult,
    TurnState,
    describe_error,
)

__all__ = [
    'SearchNeedClassifier',
    'ConversationOrchestrator',
    'TurnContext',
    'TurnResult',
    'TurnState',
    'describe_error',
]

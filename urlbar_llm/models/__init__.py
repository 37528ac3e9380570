"""Models module."""

from .session import SourceRef, Message, Session, SessionSummary, Conversation
from .search import SearchResult, SearchOutcome
from .chat import ChatRequest

__all__ = [
    'SourceRef', 'Message', 'Session', 'SessionSummary', 'Conversation',
    'SearchResult', 'SearchOutcome', 'ChatRequest',
]

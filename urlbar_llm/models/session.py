"""
Session Models - Defines structures for conversation messages and stored sessions.
"""

from datetime import datetime, timezone
from typing import Optional, List, Literal
from pydantic import BaseModel, Field


class SourceRef(BaseModel):
    """Numbered citation pointing to a retrieved page, referenced inline as [n]."""
    title: str
    url: str
    site_label: str = ""
    ordinal: int = Field(ge=1)


class Message(BaseModel):
    """One chat message. Assistant messages may carry their sources."""
    role: Literal["user", "assistant", "system"]
    content: str
    sources: List[SourceRef] = Field(default_factory=list)


class Session(BaseModel):
    """A persisted conversation bound to one provider."""
    id: str
    provider_id: str
    title: Optional[str] = None  # derived once from the first user message
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    messages: List[Message] = Field(default_factory=list)


class SessionSummary(BaseModel):
    """Session listing entry without the message bodies."""
    id: str
    provider_id: str
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    message_count: int = 0

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls(
            id=session.id,
            provider_id=session.provider_id,
            title=session.title,
            created_at=session.created_at,
            updated_at=session.updated_at,
            message_count=len(session.messages),
        )


class Conversation(BaseModel):
    """Runtime conversation: ordered messages plus the session it persists to."""
    messages: List[Message] = Field(default_factory=list)
    bound_session_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.messages


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

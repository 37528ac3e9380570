"""
Chat API Models - Request bodies accepted by the host API.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """A user message for one host conversation."""
    conversation_id: str = Field(default="default", min_length=1, max_length=128)
    message: str = Field(min_length=1)
    provider_id: Optional[str] = None  # a leading @provider mention wins over this

"""
Request dependencies - resolve the services created at startup.
"""

from fastapi import HTTPException, Request, status

from ..services.conversations import ConversationRegistry
from ..storage.session_store import SessionStore


def get_registry(request: Request) -> ConversationRegistry:
    return request.app.state.registry


def get_session_store(request: Request) -> SessionStore:
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session storage is not available"
        )
    return store

"""
Session API endpoints - Browse and delete stored conversation sessions.
"""

from typing import List

from fastapi import APIRouter, HTTPException, Depends, Query, Response, status

from ..models import Session, SessionSummary
from ..storage.session_store import SessionStore
from .deps import get_session_store

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=List[SessionSummary])
async def list_sessions(
    provider_id: str = Query(..., min_length=1),
    store: SessionStore = Depends(get_session_store),
):
    """List a provider's sessions, most recently updated first."""
    sessions = await store.list_by_provider(provider_id)
    return [SessionSummary.from_session(s) for s in sessions]


@router.get("/{session_id}", response_model=Session)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    return session


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    if not await store.delete(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)

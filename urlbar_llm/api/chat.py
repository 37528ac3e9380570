"""
Chat API endpoints - Run conversation turns and stream their renders.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.responses import StreamingResponse

from ..agents.orchestrator import ConversationOrchestrator, TurnResult, TurnState
from ..core.render import RenderUpdate
from ..llm.presets import parse_provider_mention
from ..models import ChatRequest
from ..services.conversations import (
    ConversationRegistry,
    ProviderNotConfiguredError,
    UnknownProviderError,
)
from ..storage.session_store import SessionStore
from .deps import get_registry, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


def _sources(update_sources) -> list:
    return [s.model_dump() for s in update_sources]


async def _resolve_orchestrator(
    registry: ConversationRegistry,
    conversation_id: str,
    provider_id: Optional[str],
) -> ConversationOrchestrator:
    try:
        return await registry.get_or_create(conversation_id, provider_id)
    except UnknownProviderError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProviderNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _result_event(result: TurnResult) -> dict:
    if result.state is TurnState.FINALIZED:
        return {
            "type": "final",
            "content": result.content,
            "sources": _sources(result.sources),
            "session_id": result.session_id,
            "searched": result.searched,
        }
    return {"type": "error", "kind": result.error_kind, "message": result.error_message}


@router.post("/message")
async def send_message(
    request: ChatRequest,
    registry: ConversationRegistry = Depends(get_registry),
):
    """
    Send a message and stream the turn as server-sent events.

    A message starting with ``@<provider>`` selects that provider; the mention
    is stripped from the query.

    Events:
        render: debounced accumulated text and sources
        final: completed answer with sources and the session it was saved to
        error: cancelled or failed turn, with ``kind`` and a short ``message``
    """
    if not registry.config.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Assistant is disabled"
        )

    mentioned, query = parse_provider_mention(request.message.strip(), registry.provider_configs)
    if not query:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is empty")

    orchestrator = await _resolve_orchestrator(
        registry, request.conversation_id, mentioned or request.provider_id
    )

    queue: asyncio.Queue = asyncio.Queue()
    turn = asyncio.create_task(orchestrator.send(query, on_render=queue.put_nowait))
    turn.add_done_callback(lambda _: queue.put_nowait(None))

    async def event_generator():
        try:
            while True:
                update: Optional[RenderUpdate] = await queue.get()
                if update is None:
                    break
                if update.final:
                    continue
                yield _sse({
                    "type": "render",
                    "text": update.text,
                    "sources": _sources(update.sources),
                })

            try:
                result = turn.result()
            except Exception as e:
                logger.error(f"Turn for conversation {request.conversation_id} raised: {e}", exc_info=True)
                yield _sse({"type": "error", "kind": "generic-failure", "message": str(e)})
                return
            yield _sse(_result_event(result))
        finally:
            # Client went away mid-turn
            if not turn.done():
                orchestrator.cancel()
                await asyncio.gather(turn, return_exceptions=True)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.post("/{conversation_id}/cancel")
async def cancel_turn(
    conversation_id: str,
    registry: ConversationRegistry = Depends(get_registry),
):
    """Cancel the conversation's turn in flight."""
    orchestrator = registry.get(conversation_id)
    cancelled = orchestrator.cancel() if orchestrator is not None else False
    return {"conversation_id": conversation_id, "cancelled": cancelled}


@router.post("/{conversation_id}/load/{session_id}")
async def load_session(
    conversation_id: str,
    session_id: str,
    registry: ConversationRegistry = Depends(get_registry),
    store: SessionStore = Depends(get_session_store),
):
    """Continue a stored session in this conversation, switching to its provider."""
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )

    orchestrator = await _resolve_orchestrator(registry, conversation_id, session.provider_id)
    await orchestrator.load_session(session)
    return {
        "conversation_id": conversation_id,
        "session_id": session.id,
        "provider_id": session.provider_id,
        "messages": [m.model_dump() for m in session.messages],
    }


@router.post("/{conversation_id}/deactivate")
async def deactivate(
    conversation_id: str,
    registry: ConversationRegistry = Depends(get_registry),
):
    """Persist and clear the conversation, as when the address bar loses focus."""
    orchestrator = registry.get(conversation_id)
    session_id = await orchestrator.deactivate() if orchestrator is not None else None
    return {"conversation_id": conversation_id, "session_id": session_id}

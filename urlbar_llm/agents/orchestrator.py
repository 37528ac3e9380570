"""
Conversation Orchestrator - Runs one conversation's turns through the
classify, search, fetch, compose and stream pipeline.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ..core.cancellation import CancelToken
from ..core.errors import (
    AbortedError,
    AuthError,
    ClientRequestError,
    NetworkError,
    RateLimitError,
    ServiceUnavailableError,
)
from ..core.logging_config import bind_turn
from ..core.render import RenderCallback, RenderDebouncer
from ..llm.base import LLMMessage, LLMProvider
from ..models.search import SearchResult
from ..models.session import Conversation, Message, Session, SourceRef
from ..storage.session_store import SessionStore, new_session_id
from ..tools.content_fetch import ContentFetchService
from ..tools.web_search import WebSearchService
from .search_classifier import SearchNeedClassifier

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant answering questions typed into a web browser's address bar.

Answer directly and concisely using markdown. Lead with the answer, then add only the detail that helps.
Always respond in the same language the user wrote in."""

SEARCH_CONTEXT_PROMPT = """The following web search results were retrieved for the user's latest message.

{results}
Use these results to answer. Cite a result inline with its number in square brackets, like [1] or [2][3], right after the statement it supports.
Only cite numbers listed above. If the results do not answer the question, say so briefly and answer from your own knowledge."""

_turn_ids = itertools.count(1)


class TurnState(str, Enum):
    IDLE = "idle"
    CLASSIFYING = "classifying"
    SEARCHING = "searching"
    FETCHING = "fetching"
    COMPOSING = "composing"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TurnState.FINALIZED, TurnState.CANCELLED, TurnState.FAILED})


@dataclass
class TurnContext:
    """Mutable state of the turn in flight."""
    query: str
    token: CancelToken
    is_follow_up: bool
    results: List[SearchResult] = field(default_factory=list)
    sources: List[SourceRef] = field(default_factory=list)
    content: str = ""
    started_at: float = field(default_factory=time.time)


@dataclass
class TurnResult:
    """Outcome reported to the host once a turn reaches a terminal state."""
    state: TurnState
    content: str = ""
    sources: List[SourceRef] = field(default_factory=list)
    session_id: Optional[str] = None
    searched: bool = False
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


def describe_error(exc: BaseException) -> Tuple[str, str]:
    """
    Translate a turn failure into an error kind and a short user-facing message.
    """
    if isinstance(exc, AbortedError):
        return "cancelled", "Request cancelled."
    if isinstance(exc, AuthError):
        return "invalid-credentials", "The provider rejected the API key. Check your credentials in settings."
    if isinstance(exc, RateLimitError):
        return "rate-limited", "Rate limit reached. Wait a moment and try again."
    if isinstance(exc, ServiceUnavailableError):
        return "temporarily-unavailable", "The provider is temporarily unavailable. Try again shortly."
    if isinstance(exc, ClientRequestError):
        status = f" (HTTP {exc.status_code})" if exc.status_code else ""
        return "bad-request", f"The provider rejected the request{status}. Check the model name and settings."
    if isinstance(exc, NetworkError):
        return "connection-problem", "Could not reach the provider. Check your connection or the server address."
    return "generic-failure", "Something went wrong while generating the answer."


class ConversationOrchestrator:
    """
    Owns one Conversation and drives at most one turn at a time.

    Starting a new turn cancels and awaits the turn in flight. A turn only
    changes the Conversation when it finalizes; cancelled and failed turns
    leave it exactly as it was.
    """

    def __init__(
        self,
        provider: LLMProvider,
        session_store: Optional[SessionStore] = None,
        search_service: Optional[WebSearchService] = None,
        fetch_service: Optional[ContentFetchService] = None,
        classifier: Optional[SearchNeedClassifier] = None,
        search_enabled: bool = True,
        search_max_results: int = 5,
        fetch_max_results: int = 3,
        render_debounce_ms: int = 50,
    ):
        """
        Initialize orchestrator.

        Args:
            provider: Chat provider used for classification and answers
            session_store: Where finalized turns are persisted (optional)
            search_service: Web search used when the classifier asks for it
            fetch_service: Page content fetcher for search results
            classifier: Search classifier; defaults to one bound to ``provider``
            search_enabled: Global search toggle
            search_max_results: Results requested from search
            fetch_max_results: Results whose pages are fetched and cited
            render_debounce_ms: Render batching window
        """
        self.provider = provider
        self.session_store = session_store
        self.search_service = search_service
        self.fetch_service = fetch_service
        self._classifier = classifier
        self.search_enabled = search_enabled
        self.search_max_results = search_max_results
        self.fetch_max_results = fetch_max_results
        self.render_debounce_ms = render_debounce_ms

        self.conversation = Conversation()
        self.state = TurnState.IDLE
        self.state_history: List[TurnState] = []
        self._token: Optional[CancelToken] = None
        self._turn_done: Optional[asyncio.Event] = None
        # Held while a turn is being swapped in, so starts never interleave
        self._turn_lock = asyncio.Lock()

    @property
    def provider_id(self) -> str:
        return self.provider.config.id

    @property
    def classifier(self) -> SearchNeedClassifier:
        if self._classifier is None:
            self._classifier = SearchNeedClassifier(self.provider)
        return self._classifier

    @property
    def is_active(self) -> bool:
        return self._token is not None and self.state not in TERMINAL_STATES

    def _search_available(self) -> bool:
        return (
            self.search_enabled
            and self.provider.config.supports_search
            and self.search_service is not None
        )

    def _set_state(self, state: TurnState) -> None:
        logger.debug(f"Turn state: {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    def cancel(self) -> bool:
        """
        Cancel the turn in flight, if any.

        Returns:
            bool: True if a turn was running and has been signalled
        """
        if self._token is None or self._token.cancelled:
            return False
        logger.info(f"Cancelling turn {self._token.name}")
        self._token.cancel()
        return True

    async def _cancel_and_wait(self) -> None:
        self.cancel()
        if self._turn_done is not None:
            await self._turn_done.wait()

    async def send(self, text: str, on_render: Optional[RenderCallback] = None) -> TurnResult:
        """
        Run a full turn for a new user message.

        Args:
            text: User's message
            on_render: Receives debounced partial renders and one final render

        Returns:
            TurnResult in state FINALIZED, CANCELLED or FAILED
        """
        query = text.strip()
        if not query:
            raise ValueError("Message must not be empty")

        async with self._turn_lock:
            await self._cancel_and_wait()
            token = CancelToken(f"turn-{next(_turn_ids)}")
            done = asyncio.Event()
            self._token = token
            self._turn_done = done
            self.state_history = []

        try:
            with bind_turn(token.name):
                return await self._run_turn(query, token, on_render)
        except asyncio.CancelledError:
            token.cancel()
            raise
        finally:
            done.set()
            if self._token is token:
                self._token = None

    async def _run_turn(self, query: str, token: CancelToken,
                        on_render: Optional[RenderCallback]) -> TurnResult:
        ctx = TurnContext(
            query=query,
            token=token,
            is_follow_up=not self.conversation.is_empty,
        )
        debouncer = RenderDebouncer(on_render, token, self.render_debounce_ms)

        logger.info(
            f"Turn started: {token.name}",
            extra={"extra_fields": {
                "provider": self.provider_id,
                "follow_up": ctx.is_follow_up,
                "query_length": len(query),
            }}
        )

        try:
            if self._search_available():
                await self._gather_context(ctx)

            self._set_state(TurnState.COMPOSING)
            messages = self.compose_messages(query, ctx.results)
            ctx.sources = [r.to_source_ref() for r in ctx.results]
            debouncer.set_sources(ctx.sources)

            self._set_state(TurnState.STREAMING)
            async for delta in self.provider.chat_completion_stream(messages, token):
                ctx.content += delta
                debouncer.push(ctx.content)
            token.raise_if_cancelled()

        except AbortedError:
            self._set_state(TurnState.CANCELLED)
            logger.info(f"Turn cancelled: {token.name}")
            await debouncer.finalize(TurnState.CANCELLED.value, "")
            kind, message = describe_error(AbortedError())
            return TurnResult(state=TurnState.CANCELLED, searched=bool(ctx.results),
                              error_kind=kind, error_message=message)

        except Exception as e:
            kind, message = describe_error(e)
            self._set_state(TurnState.FAILED)
            logger.error(
                f"Turn failed: {token.name}: {e}",
                exc_info=not isinstance(e, NetworkError),
                extra={"extra_fields": {"provider": self.provider_id, "kind": kind}}
            )
            await debouncer.finalize(TurnState.FAILED.value, message)
            return TurnResult(state=TurnState.FAILED, searched=bool(ctx.results),
                              error_kind=kind, error_message=message)

        # Both messages land together or not at all
        self.conversation.messages = self.conversation.messages + [
            Message(role="user", content=query),
            Message(role="assistant", content=ctx.content, sources=ctx.sources),
        ]
        self._set_state(TurnState.FINALIZED)
        await debouncer.finalize(TurnState.FINALIZED.value, ctx.content)
        session_id = await self._persist()

        logger.info(
            f"Turn finalized: {token.name}",
            extra={"extra_fields": {
                "provider": self.provider_id,
                "response_length": len(ctx.content),
                "sources": len(ctx.sources),
                "renders": debouncer.render_count,
                "duration_ms": round((time.time() - ctx.started_at) * 1000, 2),
            }}
        )
        return TurnResult(
            state=TurnState.FINALIZED,
            content=ctx.content,
            sources=ctx.sources,
            session_id=session_id,
            searched=bool(ctx.results),
        )

    async def _gather_context(self, ctx: TurnContext) -> None:
        """Classify, search and fetch; leaves ``ctx.results`` empty when any step finds nothing."""
        self._set_state(TurnState.CLASSIFYING)
        if not await self.classifier.needs_search(ctx.query, ctx.is_follow_up, ctx.token):
            return

        self._set_state(TurnState.SEARCHING)
        outcome = await self.search_service.search(
            ctx.query, self.search_max_results, self.provider.config, ctx.token
        )
        if not outcome.found:
            logger.info(f"Search found nothing ({outcome.source}): {outcome.error or 'no results'}")
            return

        self._set_state(TurnState.FETCHING)
        if self.fetch_service is not None:
            ctx.results = await self.fetch_service.fetch_all(
                outcome.results, self.fetch_max_results, ctx.token
            )
        else:
            ctx.results = outcome.results[:self.fetch_max_results]

    def compose_messages(self, query: str, results: List[SearchResult]) -> List[LLMMessage]:
        """
        Build the outbound message list for the provider.

        Order: behaviour instruction, prior turns, optional search context,
        latest user message.
        """
        messages = [LLMMessage.text("system", SYSTEM_PROMPT)]
        messages.extend(
            LLMMessage.text(m.role, m.content) for m in self.conversation.messages
        )
        if results:
            formatted = self.search_service.format_results(results)
            messages.append(LLMMessage.text("system", SEARCH_CONTEXT_PROMPT.format(results=formatted)))
        messages.append(LLMMessage.text("user", query))
        return messages

    async def _persist(self) -> Optional[str]:
        """Upsert the conversation into its bound session, creating and binding one if needed."""
        if self.session_store is None or self.conversation.is_empty:
            return None

        session = Session(
            id=self.conversation.bound_session_id or new_session_id(),
            provider_id=self.provider_id,
            messages=list(self.conversation.messages),
        )
        try:
            stored = await self.session_store.upsert(session)
        except Exception as e:
            logger.error(f"Failed to persist session {session.id}: {e}", exc_info=True)
            return None

        self.conversation.bound_session_id = stored.id
        return stored.id

    async def load_session(self, session: Session) -> None:
        """Replace the conversation with a stored session and bind to it."""
        async with self._turn_lock:
            await self._cancel_and_wait()
            self._reset(Conversation(
                messages=list(session.messages),
                bound_session_id=session.id,
            ))
        logger.info(f"Loaded session {session.id} ({len(session.messages)} messages)")

    async def switch_provider(self, provider: LLMProvider) -> None:
        """Persist and close the current conversation, then continue with another provider."""
        if provider.config.id == self.provider_id:
            return
        await self.deactivate()
        self.provider = provider
        self._classifier = None

    async def deactivate(self) -> Optional[str]:
        """
        Persist a non-empty conversation, then clear it.

        Returns:
            Optional[str]: Id of the session the conversation was saved to
        """
        async with self._turn_lock:
            await self._cancel_and_wait()
            session_id = await self._persist()
            self._reset()
        return session_id

    async def clear(self) -> None:
        """Drop the conversation and its session binding without persisting."""
        async with self._turn_lock:
            await self._cancel_and_wait()
            self._reset()

    def _reset(self, conversation: Optional[Conversation] = None) -> None:
        self.conversation = conversation or Conversation()
        self.state = TurnState.IDLE
        self.state_history = []

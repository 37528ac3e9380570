"""
Session Store - Persistent storage of conversation sessions using StorageInterface.

Layout:
    sessions/index.json                     session id -> provider id
    sessions/<provider_id>/<session_id>.json
    sessions/legacy_migrated.flag           written once the legacy file is migrated
    conversations.json                      legacy flat list, migrated once
"""

import json
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, List, Any

from pydantic import ValidationError

from ..models.session import Message, Session, utc_now
from .interface import StorageInterface

logger = logging.getLogger(__name__)

SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


def derive_title(messages: List[Message], max_chars: int = 60) -> Optional[str]:
    """Title from the first non-empty user message, capped at ``max_chars``."""
    for message in messages:
        if message.role != "user":
            continue
        text = " ".join(message.content.split())
        if not text:
            continue
        if len(text) <= max_chars:
            return text
        return text[:max(max_chars - 3, 1)].rstrip() + "..."
    return None


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionStore:
    """
    Manages persistent storage of conversation sessions.
    One JSON file per session, grouped by provider.
    """

    sessions_dir = "sessions"
    legacy_path = "conversations.json"

    def __init__(
        self,
        storage: StorageInterface,
        max_messages: int = 50,
        max_per_provider: int = 25,
        title_max_chars: int = 60,
        max_content_chars: int = 200_000,
    ):
        """
        Initialize session store.

        Args:
            storage: StorageInterface implementation (typically LocalStorage)
            max_messages: Messages kept per session (the most recent ones)
            max_per_provider: Sessions kept per provider, oldest updated dropped
            title_max_chars: Cap for derived titles
            max_content_chars: Safety cap for a single message's content
        """
        self.storage = storage
        self.max_messages = max_messages
        self.max_per_provider = max_per_provider
        self.title_max_chars = title_max_chars
        self.max_content_chars = max_content_chars
        self._index_path = f"{self.sessions_dir}/index.json"
        self._migration_marker = f"{self.sessions_dir}/legacy_migrated.flag"

    def _session_path(self, provider_id: str, session_id: str) -> str:
        for value in (provider_id, session_id):
            if not SAFE_ID.match(value or ""):
                raise ValueError(f"Invalid identifier for storage path: {value!r}")
        return f"{self.sessions_dir}/{provider_id}/{session_id}.json"

    async def _load_index(self) -> Dict[str, str]:
        """Load session id to provider id index mapping."""
        content = await self.storage.load(self._index_path)
        if content is None:
            return {}
        try:
            index = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Session index is unreadable, starting empty: {e}")
            return {}
        return index if isinstance(index, dict) else {}

    async def _save_index(self, index: Dict[str, str]) -> bool:
        return await self.storage.save(self._index_path, json.dumps(index, indent=2))

    def _cap_messages(self, messages: List[Message]) -> List[Message]:
        kept = messages[-self.max_messages:] if self.max_messages > 0 else list(messages)
        capped = []
        for message in kept:
            if len(message.content) > self.max_content_chars:
                message = message.model_copy(
                    update={"content": message.content[:self.max_content_chars]}
                )
            capped.append(message)
        return capped

    async def _write(self, session: Session, index: Dict[str, str]) -> None:
        path = self._session_path(session.provider_id, session.id)
        previous_provider = index.get(session.id)
        if previous_provider and previous_provider != session.provider_id:
            await self.storage.delete(self._session_path(previous_provider, session.id))

        saved = await self.storage.save(path, session.model_dump_json(indent=2))
        if not saved:
            raise OSError(f"Failed to write session {session.id}")
        index[session.id] = session.provider_id

    async def get(self, session_id: str) -> Optional[Session]:
        """
        Get session by id.

        Returns:
            Optional[Session]: Stored session or None if not found
        """
        index = await self._load_index()
        provider_id = index.get(session_id)
        if provider_id is None:
            return None
        return await self._read(self._session_path(provider_id, session_id))

    async def _read(self, path: str) -> Optional[Session]:
        content = await self.storage.load(path)
        if content is None:
            return None
        try:
            return Session.model_validate_json(content)
        except ValidationError as e:
            logger.error(f"Skipping unreadable session file {path}: {e}")
            return None

    async def upsert(self, session: Session) -> Session:
        """
        Insert or update a session keyed by its id.

        ``created_at`` is set only once, ``updated_at`` is always refreshed and
        the title, once known, is never recomputed. The provider's sessions
        beyond the cap are pruned afterwards.

        Returns:
            Session: The session as stored
        """
        existing = await self.get(session.id)
        now = utc_now()
        if existing is not None and existing.updated_at is not None and now <= existing.updated_at:
            now = existing.updated_at + timedelta(microseconds=1)

        if existing is not None and existing.created_at is not None:
            created_at = existing.created_at
        else:
            created_at = session.created_at or now

        title = (existing.title if existing is not None else None) or session.title
        if not title:
            title = derive_title(session.messages, self.title_max_chars)

        stored = Session(
            id=session.id,
            provider_id=session.provider_id,
            title=title,
            created_at=created_at,
            updated_at=now,
            messages=self._cap_messages(session.messages),
        )

        index = await self._load_index()
        await self._write(stored, index)
        await self._save_index(index)

        logger.info(
            f"Session saved: {stored.id}",
            extra={"extra_fields": {
                "session_id": stored.id,
                "provider_id": stored.provider_id,
                "message_count": len(stored.messages),
            }}
        )

        await self._prune(stored.provider_id)
        return stored

    async def list_by_provider(self, provider_id: str) -> List[Session]:
        """
        List a provider's sessions, most recently updated first.
        """
        if not SAFE_ID.match(provider_id or ""):
            return []
        files = await self.storage.list(f"{self.sessions_dir}/{provider_id}", pattern="*.json")
        sessions = []
        for path in files:
            session = await self._read(path)
            if session is not None:
                sessions.append(session)

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        sessions.sort(key=lambda s: s.updated_at or epoch, reverse=True)
        return sessions

    async def delete(self, session_id: str) -> bool:
        """
        Delete a session.

        Returns:
            bool: True if a stored session was removed
        """
        index = await self._load_index()
        provider_id = index.pop(session_id, None)
        if provider_id is None:
            return False
        deleted = await self.storage.delete(self._session_path(provider_id, session_id))
        await self._save_index(index)
        logger.info(f"Session deleted: {session_id}")
        return deleted

    async def _prune(self, provider_id: str) -> int:
        if self.max_per_provider <= 0:
            return 0
        sessions = await self.list_by_provider(provider_id)
        stale = sessions[self.max_per_provider:]
        if not stale:
            return 0

        index = await self._load_index()
        for session in stale:
            await self.storage.delete(self._session_path(provider_id, session.id))
            index.pop(session.id, None)
        await self._save_index(index)
        logger.info(f"Pruned {len(stale)} sessions for provider {provider_id}")
        return len(stale)

    async def migrate_legacy_if_present(self) -> int:
        """
        Convert the legacy flat conversation file into sessions, once.

        Legacy entries look like
        ``{"id", "provider", "title"?, "messages": [...], "timestamp": <ms>}``.

        Returns:
            int: Number of sessions migrated
        """
        if await self.storage.exists(self._migration_marker):
            return 0
        content = await self.storage.load(self.legacy_path)
        if content is None:
            return 0

        try:
            entries = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Legacy conversation file is unreadable, not migrating: {e}")
            return 0
        if isinstance(entries, dict):
            entries = entries.get("conversations", [])

        index = await self._load_index()
        migrated = 0
        providers = set()
        for entry in entries if isinstance(entries, list) else []:
            session = self._session_from_legacy(entry)
            if session is None:
                continue
            await self._write(session, index)
            providers.add(session.provider_id)
            migrated += 1
        await self._save_index(index)

        for provider_id in providers:
            await self._prune(provider_id)

        await self.storage.save(self._migration_marker, utc_now().isoformat())
        await self.storage.delete(self.legacy_path)
        logger.info(f"Migrated {migrated} legacy conversations into sessions")
        return migrated

    def _session_from_legacy(self, entry: Any) -> Optional[Session]:
        if not isinstance(entry, dict):
            return None
        provider_id = str(entry.get("provider") or entry.get("providerId") or "")
        session_id = str(entry.get("id") or new_session_id())
        if not SAFE_ID.match(provider_id) or not SAFE_ID.match(session_id):
            logger.warning(f"Skipping legacy conversation with invalid ids: {session_id!r}")
            return None

        messages = []
        for raw in entry.get("messages") or []:
            if not isinstance(raw, dict) or raw.get("role") not in ("user", "assistant", "system"):
                continue
            messages.append(Message(role=raw["role"], content=str(raw.get("content") or "")))
        if not messages:
            return None

        stamp = entry.get("timestamp")
        when = utc_now()
        if isinstance(stamp, (int, float)):
            try:
                when = datetime.fromtimestamp(stamp / 1000.0, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                logger.warning(f"Legacy conversation {session_id} has an unusable timestamp {stamp!r}, using now")

        title = entry.get("title")
        if not isinstance(title, str) or not title.strip():
            title = derive_title(messages, self.title_max_chars)

        try:
            return Session(
                id=session_id,
                provider_id=provider_id,
                title=title,
                created_at=when,
                updated_at=when,
                messages=self._cap_messages(messages),
            )
        except ValidationError as e:
            logger.warning(f"Skipping malformed legacy conversation {session_id}: {e}")
            return None

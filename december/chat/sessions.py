from __future__ import annotations

import logging
import secrets
import threading
import time

from december.chat.types import ChatSession, Message, now_iso

logger = logging.getLogger(__name__)


def _new_session_id(environment_id: str) -> str:
    return f"{environment_id}-{time.time_ns() // 1_000_000}-{secrets.token_hex(4)}"


class ChatSessionStore:
    """In-memory chat transcripts keyed by session id and by environment.

    Nothing is persisted; a restart loses all history. All map mutations and
    appends happen under one lock so concurrent get-or-create calls for the
    same environment observe a single session.
    """

    def __init__(self, *, max_sessions: int | None = None) -> None:
        self._sessions: dict[str, ChatSession] = {}
        self._session_by_env: dict[str, str] = {}
        self._lock = threading.Lock()
        self._max_sessions = max_sessions if max_sessions and max_sessions > 0 else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _insert_locked(self, environment_id: str) -> ChatSession:
        session_id = _new_session_id(environment_id)
        while session_id in self._sessions:
            session_id = _new_session_id(environment_id)
        session = ChatSession(id=session_id, environment_id=environment_id)
        self._sessions[session_id] = session
        self._session_by_env.setdefault(environment_id, session_id)
        self._evict_locked()
        logger.info(
            "Created chat session %s for environment %s", session_id, environment_id
        )
        return session

    def _first_for_env_locked(self, environment_id: str) -> ChatSession | None:
        for s in self._sessions.values():
            if s.environment_id == environment_id:
                return s
        return None

    def _evict_locked(self) -> None:
        if self._max_sessions is None:
            return
        while len(self._sessions) > self._max_sessions:
            oldest = min(self._sessions.values(), key=lambda s: s.updated_at)
            self._sessions.pop(oldest.id, None)
            if self._session_by_env.get(oldest.environment_id) == oldest.id:
                nxt = self._first_for_env_locked(oldest.environment_id)
                if nxt is None:
                    self._session_by_env.pop(oldest.environment_id, None)
                else:
                    self._session_by_env[oldest.environment_id] = nxt.id
            logger.info("Evicted chat session %s (capacity reached)", oldest.id)

    def create(self, environment_id: str) -> ChatSession:
        with self._lock:
            return self._insert_locked(environment_id)

    def get(self, session_id: str) -> ChatSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(self, environment_id: str) -> ChatSession:
        with self._lock:
            sid = self._session_by_env.get(environment_id)
            if sid is not None and sid in self._sessions:
                return self._sessions[sid]
            existing = self._first_for_env_locked(environment_id)
            if existing is not None:
                self._session_by_env[environment_id] = existing.id
                return existing
            return self._insert_locked(environment_id)

    def sessions_for(self, environment_id: str) -> list[ChatSession]:
        with self._lock:
            return [
                s for s in self._sessions.values() if s.environment_id == environment_id
            ]

    def append(self, session: ChatSession, message: Message) -> None:
        with self._lock:
            session.messages.append(message)
            session.updated_at = now_iso()

    def history(self, session: ChatSession) -> list[Message]:
        with self._lock:
            return list(session.messages)

    def clear_environment(self, environment_id: str) -> int:
        """Drop every session of an environment; returns how many were removed."""
        with self._lock:
            ids = [
                s.id for s in self._sessions.values() if s.environment_id == environment_id
            ]
            for sid in ids:
                self._sessions.pop(sid, None)
            self._session_by_env.pop(environment_id, None)
            return len(ids)


_default_store = ChatSessionStore()


def default_store() -> ChatSessionStore:
    return _default_store


def get_or_create_chat_session(environment_id: str) -> ChatSession:
    return _default_store.get_or_create(environment_id)


def get_chat_session(session_id: str) -> ChatSession | None:
    return _default_store.get(session_id)

"""Conversation sessions with turn-based trimming and a shared keyed store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional

from common.locks import ReadWriteLock

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Dict[str, str]) -> "ChatMessage":
        return cls(role=MessageRole(payload["role"]), content=payload.get("content", ""))

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(MessageRole.ASSISTANT, content)


@dataclass
class SessionConfig:
    """Per-session limits. A turn is one user message plus one assistant reply."""

    max_turns: int = 10
    system_prompt: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_turns < 0:
            raise ValueError("max_turns must be non-negative")


@dataclass
class Session:
    id: str
    messages: List[ChatMessage] = field(default_factory=list)
    config: SessionConfig = field(default_factory=SessionConfig)

    @classmethod
    def new(cls, session_id: str, config: SessionConfig) -> "Session":
        messages: List[ChatMessage] = []
        if config.system_prompt is not None:
            messages.append(ChatMessage.system(config.system_prompt))
        return cls(id=session_id, messages=messages, config=replace(config))

    def add_user_message(self, content: str) -> None:
        self.messages.append(ChatMessage.user(content))
        self.trim_history()

    def add_assistant_message(self, content: str) -> None:
        self.messages.append(ChatMessage.assistant(content))
        self.trim_history()

    def clear(self) -> None:
        """Drop everything except the system message."""
        system = next((m for m in self.messages if m.role is MessageRole.SYSTEM), None)
        self.messages = [system] if system is not None else []

    def trim_history(self) -> None:
        """Remove the oldest complete turns beyond ``config.max_turns``.

        A trailing unpaired message belongs to the turn in progress and is kept
        until its reply arrives. The leading system message is never touched.
        """
        non_system = sum(1 for m in self.messages if m.role is not MessageRole.SYSTEM)
        turns = non_system // 2
        if turns <= self.config.max_turns:
            return

        to_remove = (turns - self.config.max_turns) * 2
        start = next(
            (idx for idx, m in enumerate(self.messages) if m.role is not MessageRole.SYSTEM),
            0,
        )
        del self.messages[start : start + to_remove]
        logger.debug("Trimmed %d message(s) from session %s", to_remove, self.id)

    def snapshot(self) -> "Session":
        """Return an independent copy; messages themselves are immutable."""
        return Session(id=self.id, messages=list(self.messages), config=replace(self.config))

    def message_dicts(self) -> List[Dict[str, str]]:
        return [m.to_dict() for m in self.messages]


class SessionStore:
    """Thread-safe map of session id to :class:`Session`.

    Callers always receive snapshots; changes become visible to others only
    through :meth:`update` or :meth:`sync`. Each method holds the lock for a
    single map operation.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._sessions)

    def get_or_create(self, session_id: str, config: SessionConfig) -> Session:
        with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None:
                session = Session.new(session_id, config)
                self._sessions[session_id] = session
                logger.info("Created session %s (alive=%d)", session_id, len(self._sessions))
            return session.snapshot()

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock.read():
            session = self._sessions.get(session_id)
            return session.snapshot() if session is not None else None

    def update(self, session: Session) -> None:
        stored = session.snapshot()
        with self._lock.write():
            self._sessions[stored.id] = stored

    def sync(self, session_id: str, messages: Iterable[ChatMessage], config: SessionConfig) -> Session:
        """Replace the history with client-held ``messages`` and re-trim."""
        incoming = list(messages)
        with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None:
                session = Session.new(session_id, config)
                self._sessions[session_id] = session
            session.messages = incoming
            session.config = replace(config)
            session.trim_history()
            logger.info("Synced session %s with %d message(s)", session_id, len(session.messages))
            return session.snapshot()

    def remove(self, session_id: str) -> bool:
        with self._lock.write():
            if self._sessions.pop(session_id, None) is None:
                return False
            logger.info("Removed session %s (alive=%d)", session_id, len(self._sessions))
            return True

    def clear_history(self, session_id: str) -> bool:
        """Clear in place; returns False when the session does not exist."""
        with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.clear()
            return True

    def list_sessions(self) -> List[Dict[str, object]]:
        """Return lightweight session metadata, most recently created first."""
        with self._lock.read():
            sessions = [s.snapshot() for s in self._sessions.values()]
        payload = []
        for session in reversed(sessions):
            conversation = [m for m in session.messages if m.role is not MessageRole.SYSTEM]
            payload.append(
                {
                    "session_id": session.id,
                    "message_count": len(session.messages),
                    "last_message": conversation[-1].content if conversation else "",
                }
            )
        return payload

"""
Session context manager.

Each session carries an append-only log of tool calls and a small
preference store. Sessions are passed explicitly into the relay service
instead of living in process-wide globals, and expire after a TTL.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from model_relay.config import SESSIONS

# Learning confidence grows by this much per recorded call, up to the cap
LEARNING_STEP = 0.1
LEARNING_CAP = 0.95


@dataclass(frozen=True)
class ToolCallRecord:
    """One recorded call made within a session."""

    tool: str
    arguments: dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "tool": self.tool,
            "arguments": self.arguments,
        }


@dataclass
class SessionContext:
    """Per-session call history and learned preferences."""

    id: str
    _history: list[ToolCallRecord] = field(default_factory=list)
    preferences: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    @property
    def history(self) -> tuple[ToolCallRecord, ...]:
        """Read-only view of the call log."""
        return tuple(self._history)

    def record(self, tool: str, arguments: dict[str, Any]) -> ToolCallRecord:
        """Append a tool call to the log."""
        entry = ToolCallRecord(tool=tool, arguments=dict(arguments))
        self._history.append(entry)
        self.last_activity = time.time()
        return entry

    def recent(self, lookback: int | None = None) -> list[ToolCallRecord]:
        """
        Return the most recent calls.

        Raises:
            ValueError: If lookback is less than 1.
        """
        count = SESSIONS.DEFAULT_LOOKBACK if lookback is None else lookback
        if count < 1:
            raise ValueError(f"lookback must be at least 1, got {count}")
        return self._history[-count:]

    def set_preference(self, key: str, value: Any) -> None:
        self.preferences[key] = value
        self.last_activity = time.time()

    @property
    def learning_confidence(self) -> float:
        """Confidence in learned preferences, growing with recorded activity."""
        return min(len(self._history) * LEARNING_STEP, LEARNING_CAP)

    def is_expired(self, ttl: int) -> bool:
        """Check if session has expired."""
        return time.time() - self.last_activity > ttl


class SessionManager:
    """
    Manages session contexts with automatic cleanup.

    Features:
    - In-memory storage with TTL
    - Automatic pruning of expired sessions
    - Safe for concurrent requests with an asyncio lock
    """

    def __init__(self, ttl_seconds: int | None = None) -> None:
        """
        Initialize session manager.

        Args:
            ttl_seconds: Time-to-live for idle sessions.
        """
        self.ttl_seconds = ttl_seconds or SESSIONS.TTL_SECONDS

        self._sessions: dict[str, SessionContext] = {}
        self._lock = asyncio.Lock()
        self._last_cleanup = time.time()
        self._cleanup_interval = 60.0

    def generate_id(self) -> str:
        """Generate a unique session ID."""
        return str(uuid.uuid4())

    def _create(self) -> SessionContext:
        session = SessionContext(id=self.generate_id())
        self._sessions[session.id] = session
        return session

    async def get_or_create(self, session_id: str | None) -> tuple[SessionContext, bool]:
        """
        Get existing session or create new one.

        Args:
            session_id: Optional session ID.

        Returns:
            Tuple of (session, is_new).
        """
        async with self._lock:
            now = time.time()
            if now - self._last_cleanup > self._cleanup_interval:
                self._cleanup_expired()
                self._last_cleanup = now

            if not session_id:
                return self._create(), True

            session = self._sessions.get(session_id)
            if session is None:
                return self._create(), True

            if session.is_expired(self.ttl_seconds):
                del self._sessions[session_id]
                return self._create(), True

            return session, False

    async def get(self, session_id: str) -> SessionContext | None:
        """Return a live session, or None if unknown or expired."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired(self.ttl_seconds):
                del self._sessions[session_id]
                return None
            return session

    def _cleanup_expired(self) -> None:
        """Remove expired sessions. Called with lock held."""
        expired = [
            sid for sid, s in self._sessions.items() if s.is_expired(self.ttl_seconds)
        ]
        for sid in expired:
            del self._sessions[sid]

    async def cleanup_expired(self) -> int:
        """
        Public method to trigger cleanup.

        Returns:
            Number of sessions removed.
        """
        async with self._lock:
            initial_count = len(self._sessions)
            self._cleanup_expired()
            return initial_count - len(self._sessions)

    def get_stats(self) -> dict[str, int]:
        """Get manager statistics."""
        return {
            "active_sessions": len(self._sessions),
            "ttl_seconds": self.ttl_seconds,
        }

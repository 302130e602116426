"""
Session Manager

Owns session lifecycle, per-session configuration and per-session metrics.

State machine: CREATED -> ACTIVE (first processed change) -> ENDED.
An ended session is removed from the table; any later reference to its id
fails with SessionNotFound.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .common_types import CursorPosition
from .config import SessionConfig
from .errors import SessionNotFound

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CREATED = "created"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class SessionMetrics:
    """Cumulative counters for one session."""
    change_count: int = 0
    total_latency_ms: float = 0.0
    feedback_count: int = 0
    deferred_count: int = 0
    provider_failures: int = 0
    duration_seconds: float = 0.0

    @property
    def average_latency_ms(self) -> float:
        return self.total_latency_ms / self.change_count if self.change_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "change_count": self.change_count,
            "total_latency_ms": round(self.total_latency_ms, 3),
            "average_latency_ms": round(self.average_latency_ms, 3),
            "feedback_count": self.feedback_count,
            "deferred_count": self.deferred_count,
            "provider_failures": self.provider_failures,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class Session:
    session_id: str
    user_id: str
    config: SessionConfig
    created_at: float
    last_activity: float
    state: SessionState = SessionState.CREATED
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
    current_file: str | None = None
    cursor: CursorPosition | None = None
    in_flight: int = 0


@dataclass(frozen=True)
class SessionView:
    """Read-only copy of a session for callers outside the engine."""
    session_id: str
    user_id: str
    state: SessionState
    created_at: float
    last_activity: float
    config: dict[str, Any]
    metrics: dict[str, Any]
    current_file: str | None
    cursor: CursorPosition | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
            "config": self.config,
            "metrics": self.metrics,
            "current_file": self.current_file,
            "cursor": self.cursor.to_dict() if self.cursor else None,
        }


def new_session_id() -> str:
    return f"fb_session_{uuid.uuid4().hex}"


class SessionManager:
    """Session table. Mutated only from the event loop."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    def start_session(self, user_id: str, config: SessionConfig) -> Session:
        now = self._clock()
        session = Session(
            session_id=new_session_id(),
            user_id=user_id,
            config=config,
            created_at=now,
            last_activity=now,
        )
        self._sessions[session.session_id] = session
        logger.info(f"[SESSION] Started {session.session_id} for user {user_id}")
        return session

    def end_session(self, session_id: str) -> SessionMetrics:
        """
        Remove a session and return its final metrics.

        Raises:
            SessionNotFound: Unknown or already-ended session
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)

        session.state = SessionState.ENDED
        session.metrics.duration_seconds = self._clock() - session.created_at
        logger.info(
            f"[SESSION] Ended {session_id}: {session.metrics.change_count} changes, "
            f"{session.metrics.feedback_count} feedback"
        )
        return session.metrics

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require_active(self, session_id: str) -> Session:
        """
        Return a live session.

        Raises:
            SessionNotFound: Unknown or ended session
        """
        session = self._sessions.get(session_id)
        if session is None or session.state == SessionState.ENDED:
            raise SessionNotFound(session_id)
        return session

    def touch(self, session: Session, file_path: str, cursor: CursorPosition | None) -> None:
        """Record activity; last_activity never moves backwards."""
        session.last_activity = max(session.last_activity, self._clock())
        session.current_file = file_path
        if cursor is not None:
            session.cursor = cursor
        if session.state == SessionState.CREATED:
            session.state = SessionState.ACTIVE

    def begin_processing(self, session: Session) -> None:
        session.in_flight += 1

    def end_processing(self, session: Session) -> None:
        session.in_flight = max(0, session.in_flight - 1)

    def idle_sessions(self, timeout: float, now: float | None = None) -> list[str]:
        """Ids of sessions idle longer than timeout with nothing in flight."""
        now = self._clock() if now is None else now
        return [
            sid for sid, s in self._sessions.items()
            if now - s.last_activity > timeout and s.in_flight == 0
        ]

    def get_session_info(self, session_id: str) -> SessionView | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return SessionView(
            session_id=session.session_id,
            user_id=session.user_id,
            state=session.state,
            created_at=session.created_at,
            last_activity=session.last_activity,
            config=session.config.to_dict(),
            metrics=session.metrics.to_dict(),
            current_file=session.current_file,
            cursor=session.cursor,
        )

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

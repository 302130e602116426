"""
Tests for the session manager.
"""

import pytest

from live_feedback_mcp.common_types import CursorPosition
from live_feedback_mcp.config import SessionConfig
from live_feedback_mcp.errors import NotFoundError, SessionNotFound
from live_feedback_mcp.session_manager import SessionManager, SessionState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> SessionManager:
    return SessionManager(clock=clock)


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(enabled_providers=frozenset({"syntax"}))


class TestSessionManager:
    """Tests for SessionManager class."""

    def test_start_session_fresh_ids(self, manager, session_config):
        a = manager.start_session("u1", session_config)
        b = manager.start_session("u1", session_config)

        assert a.session_id != b.session_id
        assert a.session_id.startswith("fb_session_")
        assert a.state == SessionState.CREATED
        assert len(manager) == 2

    def test_first_touch_activates(self, manager, session_config, clock):
        session = manager.start_session("u1", session_config)
        clock.now += 5

        manager.touch(session, "Token.sol", CursorPosition(3, 4))

        assert session.state == SessionState.ACTIVE
        assert session.last_activity == 1005.0
        assert session.current_file == "Token.sol"
        assert session.cursor == CursorPosition(3, 4)

    def test_last_activity_never_decreases(self, manager, session_config, clock):
        session = manager.start_session("u1", session_config)
        clock.now += 10
        manager.touch(session, "A.sol", None)

        clock.now -= 100
        manager.touch(session, "A.sol", None)

        assert session.last_activity == 1010.0

    def test_end_session_returns_metrics(self, manager, session_config, clock):
        session = manager.start_session("u1", session_config)
        session.metrics.change_count = 3
        clock.now += 42

        metrics = manager.end_session(session.session_id)

        assert metrics.change_count == 3
        assert metrics.duration_seconds == 42
        assert session.state == SessionState.ENDED
        assert session.session_id not in manager

    def test_end_session_twice_raises(self, manager, session_config):
        session = manager.start_session("u1", session_config)
        manager.end_session(session.session_id)

        with pytest.raises(NotFoundError):
            manager.end_session(session.session_id)

    def test_require_active_unknown(self, manager):
        with pytest.raises(SessionNotFound) as exc_info:
            manager.require_active("fb_session_missing")
        assert exc_info.value.session_id == "fb_session_missing"

    def test_idle_sessions_skip_in_flight(self, manager, session_config, clock):
        idle = manager.start_session("u1", session_config)
        busy = manager.start_session("u2", session_config)
        manager.begin_processing(busy)
        fresh_start = clock.now

        clock.now += 120
        recent = manager.start_session("u3", session_config)

        stale = manager.idle_sessions(timeout=60)

        assert stale == [idle.session_id]
        assert recent.created_at > fresh_start

        manager.end_processing(busy)
        assert sorted(manager.idle_sessions(timeout=60)) == sorted([idle.session_id, busy.session_id])

    def test_session_info_is_snapshot(self, manager, session_config):
        session = manager.start_session("u1", session_config)

        info = manager.get_session_info(session.session_id)

        assert info.user_id == "u1"
        assert info.config["enabled_providers"] == ["syntax"]
        assert info.to_dict()["state"] == "created"
        assert manager.get_session_info("unknown") is None

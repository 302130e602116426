"""
Integration tests for the feedback engine.

Tests cover:
- Session lifecycle and configuration
- Instant feedback returned, deferred feedback published with the same id
- Debounce coalescing across rapid edits
- Content cache shared across sessions
- Failure isolation, feedback levels, history bounds
- Idle sweep and results arriving after a session ended
"""

import asyncio
import dataclasses
import time

import pytest
import pytest_asyncio

from conftest import TOKEN_SOL, CountingProvider
from live_feedback_mcp.common_types import ChangeEvent, CursorPosition, Finding, Phase, Severity
from live_feedback_mcp.config import EngineConfig
from live_feedback_mcp.engine import FeedbackEngine
from live_feedback_mcp.errors import InvalidInput, NotFoundError, SessionNotFound
from live_feedback_mcp.providers.base import ProviderRegistry
from live_feedback_mcp.session_manager import SessionState


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


@pytest_asyncio.fixture
async def make_engine(engine_config: EngineConfig):
    """Factory for engines with custom providers and config overrides."""
    engines: list[FeedbackEngine] = []

    def factory(*providers, **overrides) -> FeedbackEngine:
        config = dataclasses.replace(engine_config, **overrides)
        engine = FeedbackEngine(config, ProviderRegistry(list(providers)))
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        await engine.close()


class TestSessions:
    """Session lifecycle through the engine."""

    @pytest.mark.asyncio
    async def test_start_session_defaults(self, engine):
        session_id = engine.start_session("u1")

        info = engine.get_session_info(session_id)
        assert info.state == SessionState.CREATED
        assert info.config["enabled_providers"] == ["fast", "slow"]
        assert info.config["feedback_level"] == "normal"
        assert info.config["auto_triggers"] is True
        assert info.config["debounce_delay_ms"] == 30
        assert info.config["max_history_size"] == 50

    @pytest.mark.asyncio
    async def test_camel_case_config(self, engine):
        session_id = engine.start_session("u1", {
            "enabledProviders": ["fast"],
            "feedbackLevel": "verbose",
            "autoTriggers": False,
            "debounceDelayMs": 250,
        })

        config = engine.get_session_info(session_id).config
        assert config["enabled_providers"] == ["fast"]
        assert config["feedback_level"] == "verbose"
        assert config["auto_triggers"] is False
        assert config["debounce_delay_ms"] == 250

    @pytest.mark.asyncio
    async def test_unknown_provider_rejected(self, engine):
        with pytest.raises(InvalidInput):
            engine.start_session("u1", {"enabled_providers": ["fast", "nope"]})

    @pytest.mark.asyncio
    async def test_unknown_feedback_level_rejected(self, engine):
        with pytest.raises(InvalidInput):
            engine.start_session("u1", {"feedback_level": "loud"})

    @pytest.mark.asyncio
    async def test_end_session_then_process_change_fails(self, engine):
        """Test an ended session rejects changes and cannot be ended twice."""
        session_id = engine.start_session("u1")
        await engine.process_change(ChangeEvent(session_id, "A.sol", "contract A {}"))

        metrics = engine.end_session(session_id)

        assert metrics.change_count == 1
        with pytest.raises(SessionNotFound):
            await engine.process_change(ChangeEvent(session_id, "A.sol", "contract A {}"))
        with pytest.raises(NotFoundError):
            engine.end_session(session_id)
        with pytest.raises(SessionNotFound):
            engine.get_history(session_id)
        assert engine.get_session_info(session_id) is None

    @pytest.mark.asyncio
    async def test_unknown_session_always_fails(self, engine):
        with pytest.raises(SessionNotFound):
            await engine.process_change(ChangeEvent("fb_session_unknown", "A.sol", "x"))
        assert engine.metrics.snapshot().rejected_requests == 1

    @pytest.mark.asyncio
    async def test_first_change_activates_session(self, engine):
        session_id = engine.start_session("u1")

        await engine.process_change(ChangeEvent(session_id, "A.sol", "x", cursor=CursorPosition(1, 1)))

        info = engine.get_session_info(session_id)
        assert info.state == SessionState.ACTIVE
        assert info.current_file == "A.sol"
        assert info.cursor == CursorPosition(1, 1)


class TestChangeProcessing:
    """Instant and deferred feedback."""

    @pytest.mark.asyncio
    async def test_instant_returned_deferred_published(self, engine, deferred_provider):
        """Test the deferred Feedback reuses the instant id and both land in history."""
        session_id = engine.start_session("u1")

        feedback = await engine.process_change(ChangeEvent(session_id, "A.sol", "contract A {}"))

        assert feedback.deferred is None
        assert feedback.instant.results["fast"].success
        assert feedback.metadata["change_kind"] == "edit"

        notification = await engine.next_notification(session_id, timeout=2)

        assert notification.feedback_id == feedback.feedback_id
        assert [f.message for f in notification.deferred.findings] == ["deep finding"]
        assert notification.instant.findings == feedback.instant.findings
        assert deferred_provider.call_count == 1

        history = engine.get_history(session_id)
        assert [h.deferred is None for h in history] == [True, False]
        assert engine.get_session_info(session_id).metrics["deferred_count"] == 1

    @pytest.mark.asyncio
    async def test_process_change_accepts_payload(self, engine):
        session_id = engine.start_session("u1")

        feedback = await engine.process_change({
            "sessionId": session_id,
            "filePath": "A.sol",
            "content": "contract A {}",
            "cursorPosition": {"line": 1, "column": 3},
            "changeType": "insert",
            "triggerCharacter": "{",
        })

        assert feedback.metadata["change_kind"] == "insert"
        assert feedback.metadata["trigger_character"] == "{"

    @pytest.mark.asyncio
    async def test_malformed_payload_rejected(self, engine):
        session_id = engine.start_session("u1")

        with pytest.raises(InvalidInput):
            await engine.process_change({"session_id": session_id, "file_path": "A.sol"})
        with pytest.raises(InvalidInput):
            await engine.process_change({
                "session_id": session_id,
                "file_path": "A.sol",
                "content": "x",
                "cursor": {"line": 0, "column": 0},
            })
        assert engine.metrics.snapshot().rejected_requests == 2

    @pytest.mark.asyncio
    async def test_rapid_edits_coalesce(self, engine, deferred_provider):
        """Test N rapid edits give one deferred run on the Nth content."""
        session_id = engine.start_session("u1", {"debounce_delay_ms": 200})

        for i in range(3):
            await engine.process_change(ChangeEvent(session_id, "A.sol", f"version {i}"))

        await engine.scheduler.wait_idle()

        assert deferred_provider.calls == ["version 2"]
        notifications = engine.drain_notifications(session_id)
        assert len(notifications) == 1
        assert notifications[0].metadata["content_hash"] == ChangeEvent(session_id, "A.sol", "version 2").content_hash

    @pytest.mark.asyncio
    async def test_auto_triggers_off(self, engine, deferred_provider):
        session_id = engine.start_session("u1", {"auto_triggers": False})

        await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))

        assert engine.scheduler.pending_count == 0
        await engine.scheduler.wait_idle()
        assert deferred_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_all_providers_disabled(self, engine):
        """Test an empty provider set yields empty partitions and no errors."""
        session_id = engine.start_session("u1", {"enabled_providers": []})

        feedback = await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))

        assert feedback.instant.is_empty
        assert feedback.instant.failed_providers == []
        assert feedback.deferred is None
        assert engine.scheduler.pending_count == 0
        assert engine.drain_notifications(session_id) == []

    @pytest.mark.asyncio
    async def test_cache_shared_across_sessions(self, engine, instant_provider):
        """Test identical content from a second session is served from cache."""
        first = engine.start_session("u1", {"auto_triggers": False})
        second = engine.start_session("u2", {"auto_triggers": False})

        await engine.process_change(ChangeEvent(first, "Token.sol", TOKEN_SOL))
        feedback = await engine.process_change(ChangeEvent(second, "Other.sol", TOKEN_SOL))

        assert instant_provider.call_count == 1
        assert feedback.instant.results["fast"].from_cache is True
        assert engine.cache.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_history_bounded_and_chronological(self, engine):
        session_id = engine.start_session("u1", {"max_history_size": 3, "auto_triggers": False})

        for i in range(5):
            await engine.process_change(ChangeEvent(session_id, "A.sol", f"v{i}"))

        history = engine.get_history(session_id)
        expected = [ChangeEvent(session_id, "A.sol", f"v{i}").content_hash for i in (2, 3, 4)]
        assert [h.metadata["content_hash"] for h in history] == expected
        assert len(engine.get_history(session_id, limit=2)) == 2
        with pytest.raises(InvalidInput):
            engine.get_history(session_id, limit=-1)

    @pytest.mark.asyncio
    async def test_subscribe_receives_deferred(self, engine):
        session_id = engine.start_session("u1")
        received = []
        engine.subscribe(session_id, received.append)

        feedback = await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))
        await engine.scheduler.wait_idle()

        assert [f.feedback_id for f in received] == [feedback.feedback_id]


class TestFailureIsolation:
    """Provider failures never fail the request."""

    @pytest.mark.asyncio
    async def test_failed_and_timed_out_providers_marked(self, make_engine):
        ok = CountingProvider("ok")
        bad = CountingProvider("bad", fail=True)
        stuck = CountingProvider("stuck", delay=0.5)
        engine = make_engine(ok, bad, stuck, instant_deadline_ms=50)
        session_id = engine.start_session("u1")

        feedback = await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))

        results = feedback.instant.results
        assert results["ok"].success
        assert results["bad"].error.category == "provider_unavailable"
        assert results["stuck"].error.category == "provider_timeout"
        assert [f.message for f in feedback.instant.findings] == ["ok finding"]
        assert engine.get_session_info(session_id).metrics["provider_failures"] == 2
        assert engine.metrics.snapshot().successful_requests == 1


class TestFeedbackLevels:
    """minimal / normal / verbose."""

    @pytest.mark.asyncio
    async def test_minimal_filters_info(self, make_engine):
        mixed = CountingProvider("mixed", findings=[
            Finding(category="style", severity=Severity.INFO, message="nit"),
            Finding(category="security", severity=Severity.WARNING, message="risk"),
        ])
        engine = make_engine(mixed)
        minimal = engine.start_session("u1", {"feedback_level": "minimal"})
        normal = engine.start_session("u2")

        low = await engine.process_change(ChangeEvent(minimal, "A.sol", "x"))
        full = await engine.process_change(ChangeEvent(normal, "A.sol", "x"))

        assert [f.message for f in low.instant.findings] == ["risk"]
        assert [f.message for f in full.instant.findings] == ["risk", "nit"]

    @pytest.mark.asyncio
    async def test_verbose_adds_timings(self, engine):
        session_id = engine.start_session("u1", {"feedback_level": "verbose"})

        feedback = await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))

        assert "fast" in feedback.metadata["instant_timings"]
        assert feedback.metadata["instant_timings"]["fast"]["from_cache"] is False
        verbose = feedback.to_dict(verbose=True)
        assert "elapsed_ms" in verbose["instant"]["providers"]["fast"]

    @pytest.mark.asyncio
    async def test_cursor_only_providers_skipped_without_cursor(self, make_engine):
        completion = CountingProvider("completion")
        completion.requires_cursor = True
        engine = make_engine(CountingProvider("fast"), completion)
        session_id = engine.start_session("u1", {"auto_triggers": False})

        without = await engine.process_change(ChangeEvent(session_id, "A.sol", "a"))
        with_cursor = await engine.process_change(
            ChangeEvent(session_id, "A.sol", "b", cursor=CursorPosition(1, 1))
        )

        assert "completion" not in without.instant.results
        assert "completion" in with_cursor.instant.results


class TestReclamation:
    """Idle sweep and late deferred results."""

    @pytest.mark.asyncio
    async def test_idle_sweep_ends_sessions_and_cancels_timers(self, engine, deferred_provider):
        session_id = engine.start_session("u1", {"debounce_delay_ms": 5000})
        await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))
        assert engine.scheduler.pending_count == 1

        ended = engine.sweep_idle_sessions(now=time.time() + 3600)

        assert ended == [session_id]
        assert engine.scheduler.pending_count == 0
        assert engine.get_session_info(session_id) is None
        assert deferred_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_sweep_keeps_recent_sessions(self, engine):
        session_id = engine.start_session("u1")

        assert engine.sweep_idle_sessions() == []
        assert engine.get_session_info(session_id) is not None

    @pytest.mark.asyncio
    async def test_deferred_result_after_end_is_discarded(self, make_engine):
        slow = CountingProvider("slow", phase=Phase.DEFERRED, delay=0.2)
        engine = make_engine(CountingProvider("fast"), slow, debounce_delay_ms=5)
        session_id = engine.start_session("u1")

        await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))
        await _wait_for(lambda: slow.call_count == 1)
        engine.end_session(session_id)
        await engine.scheduler.wait_idle()

        view = engine.metrics.snapshot()
        assert view.deferred_discarded == 1
        assert view.deferred_runs == 0

    @pytest.mark.asyncio
    async def test_end_session_during_instant_phase_releases_state(self, make_engine):
        """Test a change still running when its session ends leaves nothing behind."""
        fast = CountingProvider("fast", delay=0.1)
        deep = CountingProvider("deep", phase=Phase.DEFERRED)
        engine = make_engine(fast, deep, debounce_delay_ms=5)
        session_id = engine.start_session("u1")

        task = asyncio.create_task(engine.process_change(ChangeEvent(session_id, "A.sol", "x")))
        await _wait_for(lambda: fast.call_count == 1)
        engine.end_session(session_id)
        feedback = await task
        await engine.scheduler.wait_idle()

        assert feedback.instant.results["fast"].success
        assert engine.history.get_stats() == {"sessions": 0, "total_entries": 0}
        assert engine._awaiting_deferred == {}
        assert engine.scheduler.pending_count == 0
        assert deep.call_count == 0


class TestEngineLifecycle:
    @pytest.mark.asyncio
    async def test_create_rejects_invalid_config(self, engine_config):
        with pytest.raises(InvalidInput):
            FeedbackEngine.create(dataclasses.replace(engine_config, instant_deadline_ms=0))

    @pytest.mark.asyncio
    async def test_start_and_close(self, engine):
        session_id = engine.start_session("u1")
        await engine.start()

        await engine.close()

        assert engine.get_session_info(session_id) is None
        assert len(engine.sessions) == 0

    @pytest.mark.asyncio
    async def test_status_snapshot(self, engine):
        session_id = engine.start_session("u1", {"auto_triggers": False})
        await engine.process_change(ChangeEvent(session_id, "A.sol", "x"))

        status = engine.get_status()

        assert status["sessions"]["active"] == 1
        assert status["metrics"]["total_requests"] == 1
        assert status["metrics"]["success_rate"] == 1.0
        assert status["cache"]["size"] == 1
        assert [p["id"] for p in status["providers"]] == ["fast", "slow"]
        assert status["config"]["llm_enabled"] is False


class TestTokenScenario:
    """End-to-end with the built-in providers."""

    @pytest.mark.asyncio
    async def test_token_sol_tx_origin(self, default_engine):
        """Three rapid edits: three instant tx.origin warnings, one deferred security run."""
        security = default_engine.registry.get("security")
        analyzed: list[str] = []
        original = security.analyze

        def counting_analyze(content, cursor, file_path):
            analyzed.append(content)
            return original(content, cursor, file_path)

        security.analyze = counting_analyze
        session_id = default_engine.start_session("u1", {"debounce_delay_ms": 150})

        contents = [TOKEN_SOL + f"// edit {i}\n" for i in range(3)]
        for content in contents:
            feedback = await default_engine.process_change(ChangeEvent(session_id, "Token.sol", content))
            assert any(
                f.rule_id == "tx-origin" and f.severity == Severity.WARNING
                for f in feedback.instant.findings
            )
            await asyncio.sleep(0.01)

        await default_engine.scheduler.wait_idle()

        assert analyzed == [contents[-1]]
        notifications = default_engine.drain_notifications(session_id)
        assert len(notifications) == 1
        assert notifications[0].deferred.results["security"].success
        assert "access-control" in [f.rule_id for f in notifications[0].deferred.findings]

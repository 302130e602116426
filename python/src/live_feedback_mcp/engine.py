"""
Feedback Engine

Orchestrates the real-time feedback pipeline:

1. Validate the change event against an active session
2. Run instant-phase providers through the fan-out aggregator and return
   the result to the caller
3. Re-arm the debounce timer for (session, file)
4. When the timer fires, run deferred-phase providers on the latest
   snapshot and publish the result to the session's feedback channel

Every component is owned by the engine and passed in explicitly; there are
no module-level singletons.
"""

import asyncio
import logging
import time
from typing import Any

from openai import AsyncOpenAI

from .cache_manager import ContentCache
from .common_types import ChangeEvent, Feedback, Phase, PhaseResult, Severity, new_feedback_id
from .config import EngineConfig, SessionConfig
from .debounce import DebounceKey, DebounceScheduler
from .errors import FeedbackEngineError, InvalidInput, SessionNotFound
from .history import FeedbackHistory
from .metrics import MetricsAggregator
from .parallel_execution import FanOutAggregator
from .profiling import LatencyTracker
from .providers import ProviderRegistry, create_default_registry
from .providers.base import Provider
from .session_manager import Session, SessionManager, SessionMetrics, SessionView
from .streaming import FeedbackChannel, FeedbackListener

logger = logging.getLogger(__name__)


class FeedbackEngine:
    """Real-time multi-provider feedback engine."""

    def __init__(
        self,
        config: EngineConfig,
        registry: ProviderRegistry,
        cache: ContentCache | None = None,
        history: FeedbackHistory | None = None,
        metrics: MetricsAggregator | None = None,
        sessions: SessionManager | None = None,
    ):
        self.config = config
        self.registry = registry
        self.cache = cache or ContentCache(config.cache_max_entries)
        self.history = history or FeedbackHistory(config.max_history_size)
        self.metrics = metrics or MetricsAggregator()
        self.sessions = sessions or SessionManager()
        self.aggregator = FanOutAggregator(self.cache, self.metrics, config.max_workers)
        self.scheduler = DebounceScheduler(self._run_deferred)

        self._channels: dict[str, FeedbackChannel] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Instant feedback awaiting its deferred partition, per debounce key
        self._awaiting_deferred: dict[DebounceKey, tuple[ChangeEvent, Feedback]] = {}
        self._sweep_task: asyncio.Task | None = None
        self._closed = False

    @classmethod
    def create(
        cls,
        config: EngineConfig | None = None,
        llm_client: AsyncOpenAI | None = None,
    ) -> "FeedbackEngine":
        """
        Build an engine with the default provider registry.

        Raises:
            InvalidInput: The engine configuration is invalid
        """
        config = config or EngineConfig()
        errors = config.validate()
        if errors:
            raise InvalidInput(f"Invalid engine configuration: {'; '.join(errors)}")
        return cls(config, create_default_registry(config, llm_client))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the idle-session sweep."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                f"[ENGINE] Started with providers: {', '.join(self.registry.ids())}"
            )

    async def close(self) -> None:
        """End every session and release background work."""
        if self._closed:
            return
        self._closed = True

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None

        for session_id in self.sessions.session_ids():
            self.end_session(session_id)

        await self.scheduler.shutdown()
        self.aggregator.shutdown()
        logger.info("[ENGINE] Closed")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            self.sweep_idle_sessions()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, user_id: str, config: dict[str, Any] | None = None) -> str:
        """
        Create a session and return its id.

        Raises:
            InvalidInput: Unknown provider ids or malformed config values
        """
        if not isinstance(user_id, str) or not user_id:
            raise InvalidInput("user_id is required")

        session_config = SessionConfig.from_dict(config, self.config, self.registry.ids())
        session = self.sessions.start_session(user_id, session_config)

        self.history.open(session.session_id, session_config.max_history_size)
        self._channels[session.session_id] = FeedbackChannel(
            session.session_id, self.config.channel_max_pending
        )
        self._locks[session.session_id] = asyncio.Lock()
        return session.session_id

    def end_session(self, session_id: str) -> SessionMetrics:
        """
        End a session and release its resources.

        Raises:
            SessionNotFound: Unknown or already-ended session
        """
        metrics = self.sessions.end_session(session_id)

        self.scheduler.cancel_session(session_id)
        self.history.clear(session_id)
        channel = self._channels.pop(session_id, None)
        if channel is not None:
            channel.close()
        self._locks.pop(session_id, None)
        for key in [k for k in self._awaiting_deferred if k.session_id == session_id]:
            del self._awaiting_deferred[key]

        return metrics

    def get_session_info(self, session_id: str) -> SessionView | None:
        return self.sessions.get_session_info(session_id)

    def sweep_idle_sessions(self, now: float | None = None) -> list[str]:
        """End sessions idle past the timeout. Never raises."""
        ended = []
        for session_id in self.sessions.idle_sessions(self.config.session_idle_timeout, now):
            try:
                self.end_session(session_id)
            except FeedbackEngineError as e:
                logger.debug(f"[ENGINE] Sweep skipped {session_id}: {e}")
                continue
            ended.append(session_id)

        if ended:
            logger.info(f"[ENGINE] Reclaimed {len(ended)} idle session(s)")
        return ended

    # ------------------------------------------------------------------
    # Change processing
    # ------------------------------------------------------------------

    async def process_change(self, event: ChangeEvent | dict[str, Any]) -> Feedback:
        """
        Run the instant phase for a change and schedule the deferred phase.

        Returns:
            Feedback with the instant partition; the deferred Feedback (same
            id) is published to the session channel once typing pauses

        Raises:
            InvalidInput: Malformed change event
            SessionNotFound: Unknown or ended session
        """
        try:
            if not isinstance(event, ChangeEvent):
                event = ChangeEvent.from_dict(event)
            lock = self._locks.get(event.session_id)
            if lock is None:
                raise SessionNotFound(event.session_id)
        except FeedbackEngineError:
            self.metrics.record_request(0.0, success=False)
            raise

        async with lock:
            try:
                # The session may have ended while we waited for the lock
                session = self.sessions.require_active(event.session_id)
            except SessionNotFound:
                self.metrics.record_request(0.0, success=False)
                raise

            self.sessions.begin_processing(session)
            try:
                feedback = await self._process_instant(session, event)
            finally:
                self.sessions.end_processing(session)

        return feedback

    async def _process_instant(self, session: Session, event: ChangeEvent) -> Feedback:
        with LatencyTracker(f"process_change {event.file_path}") as timer:
            self.sessions.touch(session, event.file_path, event.cursor)
            providers = self._enabled_providers(session, Phase.INSTANT, event)
            instant = await self.aggregator.run_phase(
                session.session_id,
                Phase.INSTANT,
                providers,
                event,
                self.config.instant_deadline_ms,
            )

        elapsed_ms = timer.elapsed_ms
        level = session.config.feedback_level
        metadata: dict[str, Any] = {
            "change_kind": event.change_kind.value,
            "trigger_character": event.trigger_character,
            "processing_ms": round(elapsed_ms, 3),
            "content_hash": event.content_hash,
            "feedback_level": level,
        }
        if level == "verbose":
            metadata["instant_timings"] = _timings(instant)

        feedback = Feedback(
            feedback_id=new_feedback_id(),
            session_id=session.session_id,
            file_path=event.file_path,
            instant=self._apply_level(instant, level),
            metadata=metadata,
        )

        self.metrics.record_request(elapsed_ms, success=True)

        if not self._is_live(session):
            # Ended while providers were running; its resources are already released
            logger.debug(f"[ENGINE] Session {session.session_id} ended during instant phase")
            return feedback

        session.metrics.change_count += 1
        session.metrics.total_latency_ms += elapsed_ms
        session.metrics.feedback_count += 1
        session.metrics.provider_failures += len(instant.failed_providers)
        self.history.append(session.session_id, feedback)

        if session.config.auto_triggers and self._enabled_providers(session, Phase.DEFERRED, event):
            key = DebounceKey(event.session_id, event.file_path)
            self._awaiting_deferred[key] = (event, feedback)
            self.scheduler.schedule(event, session.config.debounce_delay_ms)

        return feedback

    async def _run_deferred(self, event: ChangeEvent) -> None:
        """Debounce callback: deferred phase on the settled snapshot."""
        key = DebounceKey(event.session_id, event.file_path)
        pending = self._awaiting_deferred.get(key)
        if pending is None or pending[0] is not event:
            return
        del self._awaiting_deferred[key]
        instant_feedback = pending[1]

        session = self.sessions.get(event.session_id)
        if session is None:
            return

        providers = self._enabled_providers(session, Phase.DEFERRED, event)
        self.sessions.begin_processing(session)
        try:
            deferred = await self.aggregator.run_phase(
                session.session_id,
                Phase.DEFERRED,
                providers,
                event,
                self.config.deferred_deadline_ms,
            )
        finally:
            self.sessions.end_processing(session)

        channel = self._channels.get(session.session_id)
        if not self._is_live(session) or channel is None:
            logger.debug(f"[ENGINE] Discarding deferred result for ended session {session.session_id}")
            self.metrics.record_deferred(delivered=False)
            return

        level = session.config.feedback_level
        metadata: dict[str, Any] = {"deferred_ms": round(deferred.elapsed_ms, 3)}
        if level == "verbose":
            metadata["deferred_timings"] = _timings(deferred)
        feedback = instant_feedback.with_deferred(self._apply_level(deferred, level), **metadata)

        session.metrics.deferred_count += 1
        session.metrics.provider_failures += len(deferred.failed_providers)
        self.history.append(session.session_id, feedback)

        dropped_before = channel.dropped
        channel.publish(feedback)
        if channel.dropped > dropped_before:
            self.metrics.record_dropped_notification(channel.dropped - dropped_before)
        self.metrics.record_deferred(delivered=True)

    def _is_live(self, session: Session) -> bool:
        return self.sessions.get(session.session_id) is session

    def _enabled_providers(self, session: Session, phase: Phase, event: ChangeEvent) -> list[Provider]:
        providers = self.registry.for_phase(phase, session.config.enabled_providers)
        if event.cursor is None:
            providers = [p for p in providers if not p.requires_cursor]
        return providers

    @staticmethod
    def _apply_level(result: PhaseResult, level: str) -> PhaseResult:
        if level == "minimal":
            return result.filtered(Severity.WARNING)
        return result

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _require_channel(self, session_id: str) -> FeedbackChannel:
        channel = self._channels.get(session_id)
        if channel is None:
            raise SessionNotFound(session_id)
        return channel

    async def next_notification(self, session_id: str, timeout: float | None = None) -> Feedback | None:
        """Wait for the next deferred Feedback; None on timeout."""
        return await self._require_channel(session_id).get(timeout)

    def drain_notifications(self, session_id: str) -> list[Feedback]:
        return self._require_channel(session_id).drain()

    def subscribe(self, session_id: str, callback: FeedbackListener):
        """Invoke callback for every deferred Feedback; returns an unsubscribe function."""
        return self._require_channel(session_id).subscribe(callback)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_history(self, session_id: str, limit: int | None = None) -> list[Feedback]:
        """
        Past feedback for a session, oldest first.

        Raises:
            SessionNotFound: Unknown or ended session
        """
        self.sessions.require_active(session_id)
        if limit is not None and limit < 0:
            raise InvalidInput("limit must not be negative")
        return self.history.get(session_id, limit)

    def get_status(self) -> dict[str, Any]:
        return {
            "metrics": self.metrics.snapshot().to_dict(),
            "cache": self.cache.get_stats(),
            "sessions": {
                "active": len(self.sessions),
                "idle_timeout_seconds": self.config.session_idle_timeout,
            },
            "history": self.history.get_stats(),
            "debounce": {
                "pending": self.scheduler.pending_count,
                "scheduled": self.scheduler.scheduled,
                "coalesced": self.scheduler.coalesced,
                "fired": self.scheduler.fired,
            },
            "providers": self.registry.describe(),
            "detached_providers": self.aggregator.detached_count,
            "config": {
                "debounce_delay_ms": self.config.debounce_delay_ms,
                "instant_deadline_ms": self.config.instant_deadline_ms,
                "deferred_deadline_ms": self.config.deferred_deadline_ms,
                "max_workers": self.aggregator.max_workers,
                "llm_enabled": "semantic" in self.registry,
            },
            "timestamp": time.time(),
        }


def _timings(result: PhaseResult) -> dict[str, dict[str, Any]]:
    return {
        pid: {"elapsed_ms": round(r.elapsed_ms, 3), "from_cache": r.from_cache, "success": r.success}
        for pid, r in result.results.items()
    }

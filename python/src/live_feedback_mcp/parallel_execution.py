"""
Fan-out/aggregate execution of providers.

Runs every enabled provider of a phase concurrently and joins the results
into one PhaseResult within a deadline:
- Cache first; a disabled cache counts as a miss
- CPU-bound providers run on a shared thread pool sized by CPU count
- A provider that raises becomes a provider_unavailable entry
- A provider still running at the deadline becomes a provider_timeout
  entry and is detached; its late outcome is counted and a late success
  is cached
- Concurrent callers with the same (provider, content) key share one
  running invocation
"""

import asyncio
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor

from .cache_manager import ContentCache
from .common_types import ChangeEvent, Phase, PhaseResult, ProviderResult, normalize_content
from .errors import CacheUnavailable, ProviderFailure, ProviderTimeout
from .metrics import MetricsAggregator
from .profiling import LatencyTracker
from .providers.base import Provider, SyncProvider

logger = logging.getLogger(__name__)


def get_optimal_workers(max_limit: int = 16, min_limit: int = 4) -> int:
    """
    Calculate optimal number of worker threads based on CPU count.

    Formula: max(min_limit, min(max_limit, os.cpu_count() or min_limit))

    Examples:
    - 2 CPU system: 4 workers (enforces minimum)
    - 8 CPU system: 8 workers
    - 16+ CPU system: 16 workers (enforces maximum)
    """
    cpu_count = os.cpu_count() or min_limit
    return max(min_limit, min(max_limit, cpu_count))


class FanOutAggregator:
    """Concurrent, failure-isolated provider execution with a deadline."""

    def __init__(
        self,
        cache: ContentCache,
        metrics: MetricsAggregator,
        max_workers: int | None = None,
    ):
        self.cache = cache
        self.metrics = metrics
        self.max_workers = max_workers or get_optimal_workers()
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="feedback-provider",
        )
        self._detached: set[asyncio.Future] = set()
        # One running invocation per (provider_id, cache key), shared by every caller
        self._in_flight: dict[tuple[str, str], asyncio.Future] = {}

    @property
    def detached_count(self) -> int:
        """Timed-out invocations still running in the background."""
        return len(self._detached)

    async def run_phase(
        self,
        session_id: str,
        phase: Phase,
        providers: list[Provider],
        event: ChangeEvent,
        deadline_ms: float,
    ) -> PhaseResult:
        """
        Run providers concurrently and join their results.

        Never raises for provider problems: every provider in `providers`
        has an entry in the returned PhaseResult, in the given order.

        Args:
            session_id: Session the event belongs to (for logging)
            phase: Phase being executed
            providers: Enabled providers for this phase
            event: Change event to analyze
            deadline_ms: Time budget for the whole phase

        Returns:
            PhaseResult keyed by provider id
        """
        results: dict[str, ProviderResult] = {}
        running: dict[asyncio.Future, tuple[Provider, str]] = {}
        content = normalize_content(event.content)

        with LatencyTracker(f"{phase.value} phase {session_id}") as timer:
            for provider in providers:
                key = provider.cache_key(event)
                cached = self._lookup(provider.provider_id, key)
                if cached is not None:
                    results[provider.provider_id] = cached
                    continue
                running[self._start(provider, key, content, event)] = (provider, key)

            if running:
                done, pending = await asyncio.wait(running, timeout=deadline_ms / 1000)

                for future in done:
                    provider, key = running[future]
                    result = future.result()
                    self.metrics.record_provider(result.success)
                    if result.success:
                        self.cache.put(provider.provider_id, key, result)
                    results[provider.provider_id] = result

                for future in pending:
                    provider, key = running[future]
                    logger.warning(
                        f"[FANOUT] {provider.provider_id} exceeded {deadline_ms:.0f}ms "
                        f"deadline ({phase.value}, session {session_id})"
                    )
                    self.metrics.record_provider(False, timed_out=True)
                    results[provider.provider_id] = ProviderResult.from_error(
                        ProviderTimeout(provider.provider_id, f"did not finish within {deadline_ms:.0f}ms"),
                        elapsed_ms=deadline_ms,
                    )
                    self._detach(future, provider.provider_id, key)

        ordered = {p.provider_id: results[p.provider_id] for p in providers}
        return PhaseResult(phase=phase, results=ordered, elapsed_ms=timer.elapsed_ms)

    def _lookup(self, provider_id: str, key: str) -> ProviderResult | None:
        try:
            cached = self.cache.get(provider_id, key)
        except CacheUnavailable:
            cached = None
        self.metrics.record_cache(hit=cached is not None)
        return cached

    def _start(self, provider: Provider, key: str, content: str, event: ChangeEvent) -> asyncio.Future:
        """Invoke a provider, or join an invocation already running for the same key."""
        flight_key = (provider.provider_id, key)
        future = self._in_flight.get(flight_key)
        if future is not None and not future.done():
            logger.debug(f"[FANOUT] Joining in-flight {provider.provider_id} run")
            return future

        future = asyncio.ensure_future(self._invoke(provider, content, event))
        self._in_flight[flight_key] = future

        def release(f: asyncio.Future) -> None:
            if self._in_flight.get(flight_key) is f:
                del self._in_flight[flight_key]

        future.add_done_callback(release)
        return future

    async def _invoke(self, provider: Provider, content: str, event: ChangeEvent) -> ProviderResult:
        start = time.perf_counter()
        try:
            if isinstance(provider, SyncProvider):
                loop = asyncio.get_running_loop()
                findings = await loop.run_in_executor(
                    self._executor, provider.analyze, content, event.cursor, event.file_path
                )
            else:
                findings = await provider.run(content, event.cursor, event.file_path)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"[FANOUT] {provider.provider_id} failed: {type(e).__name__}: {e}")
            if isinstance(e, ProviderFailure):
                error = e
            else:
                error = ProviderFailure(provider.provider_id, str(e) or type(e).__name__)
            return ProviderResult.from_error(error, elapsed_ms=elapsed_ms)

        elapsed_ms = (time.perf_counter() - start) * 1000
        return ProviderResult.ok(provider.provider_id, findings, elapsed_ms=elapsed_ms)

    def _detach(self, future: asyncio.Future, provider_id: str, key: str) -> None:
        if future in self._detached:
            return
        self._detached.add(future)

        def on_done(f: asyncio.Future) -> None:
            self._detached.discard(f)
            if f.cancelled():
                return
            result = f.result()
            self.metrics.record_late_completion()
            if result.success:
                self.cache.put(provider_id, key, result)
            logger.debug(
                f"[FANOUT] Late {'success' if result.success else 'failure'} from "
                f"{provider_id} after {result.elapsed_ms:.1f}ms"
            )

        future.add_done_callback(on_done)

    def shutdown(self) -> None:
        """Cancel detached work and stop the thread pool."""
        for future in list(self._detached):
            future.cancel()
        self._detached.clear()
        self._in_flight.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)

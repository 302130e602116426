"""
Process-wide metrics for the feedback engine.

Includes:
- Request counters and success rate
- Rolling latency (exponential moving average)
- Provider invocation, failure and timeout counters
- Cache hit/miss counters
- Deferred delivery counters
"""

import time
from dataclasses import dataclass, asdict
from typing import Any


# Weight given to the newest sample. The first sample seeds the average,
# then avg = alpha * sample + (1 - alpha) * avg.
LATENCY_EMA_ALPHA = 0.2


@dataclass(frozen=True)
class MetricsView:
    """Read-only snapshot returned by MetricsAggregator.snapshot()."""
    total_requests: int
    successful_requests: int
    rejected_requests: int
    success_rate: float
    average_latency_ms: float
    last_latency_ms: float
    provider_invocations: int
    provider_failures: int
    provider_timeouts: int
    late_completions: int
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float
    deferred_runs: int
    deferred_discarded: int
    notifications_dropped: int
    uptime_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetricsAggregator:
    """Rolling counters for latency, success rate and cache efficiency."""

    def __init__(self, alpha: float = LATENCY_EMA_ALPHA):
        self.alpha = alpha
        self._started_at = time.time()
        self.reset()

    def reset(self) -> None:
        self.total_requests = 0
        self.successful_requests = 0
        self.rejected_requests = 0
        self.average_latency_ms = 0.0
        self.last_latency_ms = 0.0
        self.provider_invocations = 0
        self.provider_failures = 0
        self.provider_timeouts = 0
        self.late_completions = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.deferred_runs = 0
        self.deferred_discarded = 0
        self.notifications_dropped = 0

    def record_request(self, latency_ms: float, success: bool = True) -> None:
        """Record a process_change call. Rejected calls do not move latency."""
        self.total_requests += 1
        if not success:
            self.rejected_requests += 1
            return

        self.successful_requests += 1
        self.last_latency_ms = latency_ms
        if self.successful_requests == 1:
            self.average_latency_ms = latency_ms
        else:
            self.average_latency_ms = (
                self.alpha * latency_ms + (1 - self.alpha) * self.average_latency_ms
            )

    def record_provider(self, success: bool, timed_out: bool = False) -> None:
        self.provider_invocations += 1
        if timed_out:
            self.provider_timeouts += 1
        elif not success:
            self.provider_failures += 1

    def record_late_completion(self) -> None:
        self.late_completions += 1

    def record_cache(self, hit: bool) -> None:
        if hit:
            self.cache_hits += 1
        else:
            self.cache_misses += 1

    def record_deferred(self, delivered: bool) -> None:
        if delivered:
            self.deferred_runs += 1
        else:
            self.deferred_discarded += 1

    def record_dropped_notification(self, count: int = 1) -> None:
        self.notifications_dropped += count

    def snapshot(self) -> MetricsView:
        lookups = self.cache_hits + self.cache_misses
        return MetricsView(
            total_requests=self.total_requests,
            successful_requests=self.successful_requests,
            rejected_requests=self.rejected_requests,
            success_rate=(
                self.successful_requests / self.total_requests if self.total_requests else 1.0
            ),
            average_latency_ms=round(self.average_latency_ms, 3),
            last_latency_ms=round(self.last_latency_ms, 3),
            provider_invocations=self.provider_invocations,
            provider_failures=self.provider_failures,
            provider_timeouts=self.provider_timeouts,
            late_completions=self.late_completions,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            cache_hit_rate=self.cache_hits / lookups if lookups else 0.0,
            deferred_runs=self.deferred_runs,
            deferred_discarded=self.deferred_discarded,
            notifications_dropped=self.notifications_dropped,
            uptime_seconds=round(time.time() - self._started_at, 3),
        )

"""
Tests for fan-out/aggregate provider execution.

Tests cover:
- Results keyed by provider in the given order
- Failure isolation (raising and timed-out providers)
- Cache reuse, late completions and shared in-flight invocations
- Thread-pool execution of synchronous providers
"""

import asyncio
import threading

import pytest

from conftest import CountingProvider
from live_feedback_mcp.cache_manager import ContentCache
from live_feedback_mcp.common_types import ChangeEvent, Finding, Phase, Severity
from live_feedback_mcp.errors import ProviderFailure, ProviderTimeout
from live_feedback_mcp.metrics import MetricsAggregator
from live_feedback_mcp.parallel_execution import FanOutAggregator, get_optimal_workers
from live_feedback_mcp.providers.base import SyncProvider


def _event(content: str = "contract A {}") -> ChangeEvent:
    return ChangeEvent(session_id="s1", file_path="A.sol", content=content)


class ThreadRecordingProvider(SyncProvider):
    provider_id = "threaded"

    def __init__(self):
        self.thread_names: list[str] = []

    def analyze(self, content, cursor, file_path):
        self.thread_names.append(threading.current_thread().name)
        return [Finding(category="style", severity=Severity.INFO, message="ok")]


@pytest.fixture
def aggregator():
    aggregator = FanOutAggregator(ContentCache(64), MetricsAggregator(), max_workers=2)
    yield aggregator
    aggregator.shutdown()


class TestFanOutAggregator:
    """Tests for FanOutAggregator class."""

    @pytest.mark.asyncio
    async def test_results_in_provider_order(self, aggregator):
        """Test every provider has an entry, in the order given."""
        providers = [CountingProvider("b"), CountingProvider("a"), CountingProvider("c")]

        result = await aggregator.run_phase("s1", Phase.INSTANT, providers, _event(), 1000)

        assert list(result.results) == ["b", "a", "c"]
        assert all(r.success for r in result.results.values())
        assert len(result.findings) == 3

    @pytest.mark.asyncio
    async def test_empty_provider_list(self, aggregator):
        result = await aggregator.run_phase("s1", Phase.DEFERRED, [], _event(), 1000)

        assert result.is_empty
        assert result.findings == []
        assert result.failed_providers == []

    @pytest.mark.asyncio
    async def test_failing_provider_isolated(self, aggregator):
        """Test a raising provider becomes a failure entry and siblings still report."""
        good = CountingProvider("good")
        bad = CountingProvider("bad", fail=True)

        result = await aggregator.run_phase("s1", Phase.INSTANT, [good, bad], _event(), 1000)

        assert result.results["good"].success
        assert not result.results["bad"].success
        assert result.results["bad"].error.category == "provider_unavailable"
        assert result.failed_providers == ["bad"]
        assert [f.message for f in result.findings] == ["good finding"]
        assert aggregator.metrics.provider_failures == 1

    @pytest.mark.asyncio
    async def test_timeout_marks_provider_and_detaches(self, aggregator):
        """Test a slow provider times out without delaying its siblings."""
        fast = CountingProvider("fast")
        slow = CountingProvider("slow", delay=0.3)

        loop = asyncio.get_running_loop()
        start = loop.time()
        result = await aggregator.run_phase("s1", Phase.INSTANT, [fast, slow], _event(), 50)
        elapsed = loop.time() - start

        assert elapsed < 0.25
        assert result.results["fast"].success
        assert result.results["slow"].timed_out
        assert result.results["slow"].error.category == "provider_timeout"
        assert aggregator.detached_count == 1
        assert aggregator.metrics.provider_timeouts == 1

        # The detached invocation finishes later and fills the cache
        await asyncio.sleep(0.4)
        assert aggregator.detached_count == 0
        assert aggregator.metrics.late_completions == 1
        assert ("slow", _event().content_hash) in aggregator.cache

    @pytest.mark.asyncio
    async def test_cache_prevents_second_invocation(self, aggregator):
        """Test a provider runs once per unique content."""
        provider = CountingProvider("syntax")

        first = await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event(), 1000)
        second = await aggregator.run_phase("s2", Phase.INSTANT, [provider], _event(), 1000)

        assert provider.call_count == 1
        assert first.results["syntax"].from_cache is False
        assert second.results["syntax"].from_cache is True
        assert second.findings == first.findings

    @pytest.mark.asyncio
    async def test_changed_content_invokes_again(self, aggregator):
        provider = CountingProvider("syntax")

        await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event("a"), 1000)
        await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event("b"), 1000)

        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, aggregator):
        provider = CountingProvider("flaky", fail=True)

        await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event(), 1000)
        await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event(), 1000)

        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_disabled_cache_degrades_to_miss(self):
        """Test capacity 0 behaves as always-miss."""
        aggregator = FanOutAggregator(ContentCache(0), MetricsAggregator(), max_workers=2)
        provider = CountingProvider("syntax")
        try:
            await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event(), 1000)
            result = await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event(), 1000)
        finally:
            aggregator.shutdown()

        assert provider.call_count == 2
        assert result.results["syntax"].success
        assert aggregator.metrics.cache_misses == 2

    @pytest.mark.asyncio
    async def test_failure_entries_carry_error_kind(self, aggregator):
        """Test failure entries are categorized by the provider error class."""
        bad = CountingProvider("bad", fail=True)
        slow = CountingProvider("slow", delay=0.3)

        result = await aggregator.run_phase("s1", Phase.INSTANT, [bad, slow], _event(), 50)

        assert result.results["bad"].error.category == ProviderFailure.kind
        assert result.results["bad"].error.message == "simulated failure"
        assert result.results["slow"].error.category == ProviderTimeout.kind
        assert "50ms" in result.results["slow"].error.message

    @pytest.mark.asyncio
    async def test_concurrent_identical_content_shares_invocation(self, aggregator):
        """Test simultaneous requests for the same content run the provider once."""
        provider = CountingProvider("syntax", delay=0.05)

        first, second = await asyncio.gather(
            aggregator.run_phase("s1", Phase.INSTANT, [provider], _event("same"), 1000),
            aggregator.run_phase("s2", Phase.INSTANT, [provider], _event("same"), 1000),
        )

        assert provider.call_count == 1
        assert first.results["syntax"].success
        assert second.findings == first.findings

    @pytest.mark.asyncio
    async def test_timed_out_invocation_joined_by_next_request(self, aggregator):
        """Test a request arriving while a detached run is still going waits on it."""
        provider = CountingProvider("deep", delay=0.2)

        timed_out = await aggregator.run_phase("s1", Phase.DEFERRED, [provider], _event(), 50)
        joined = await aggregator.run_phase("s2", Phase.DEFERRED, [provider], _event(), 1000)

        assert timed_out.results["deep"].timed_out
        assert joined.results["deep"].success
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_sync_provider_runs_on_thread_pool(self, aggregator):
        provider = ThreadRecordingProvider()

        result = await aggregator.run_phase("s1", Phase.INSTANT, [provider], _event(), 1000)

        assert result.results["threaded"].success
        assert provider.thread_names[0].startswith("feedback-provider")


class TestOptimalWorkers:
    def test_bounds(self):
        workers = get_optimal_workers()
        assert 4 <= workers <= 16

    def test_custom_limits(self):
        assert get_optimal_workers(max_limit=2, min_limit=1) <= 2

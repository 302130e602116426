"""
Pytest configuration and fixtures for Live Feedback MCP tests.
"""

import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from live_feedback_mcp.common_types import CursorPosition, Finding, Phase, Severity
from live_feedback_mcp.config import EngineConfig
from live_feedback_mcp.engine import FeedbackEngine
from live_feedback_mcp.errors import ProviderFailure
from live_feedback_mcp.providers.base import Provider, ProviderRegistry


TOKEN_SOL = '''pragma solidity ^0.8.20;

contract Token {
    address owner;
    mapping(address => uint256) balances;

    /// @notice Transfer ownership
    function transferOwnership(address newOwner) public {
        require(tx.origin == owner);
        owner = newOwner;
    }
}
'''

VULNERABLE_SOL = '''pragma solidity ^0.8.20;

contract Bank {
    mapping(address => uint256) public balances;
    address[] public users;

    function deposit() public payable {
        balances[msg.sender] += msg.value;
    }

    function withdraw(uint256 amount) public {
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] -= amount;
    }

    function total() public view returns (uint256 sum) {
        for (uint256 i = 0; i < users.length; i++) {
            sum += balances[users[i]];
        }
    }
}
'''


class CountingProvider(Provider):
    """Async test provider that records every invocation."""

    def __init__(
        self,
        provider_id: str,
        phase: Phase = Phase.INSTANT,
        findings: list[Finding] | None = None,
        delay: float = 0.0,
        fail: bool = False,
    ):
        self.provider_id = provider_id
        self.phase = phase
        self.description = f"test provider {provider_id}"
        self.findings = findings if findings is not None else [
            Finding(category="test", severity=Severity.WARNING, message=f"{provider_id} finding", line=1)
        ]
        self.delay = delay
        self.fail = fail
        self.calls: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def run(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        self.calls.append(content)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderFailure(self.provider_id, "simulated failure")
        return list(self.findings)


@pytest.fixture
def engine_config() -> EngineConfig:
    """Create a test engine configuration with short timers."""
    return EngineConfig(
        debounce_delay_ms=30,
        instant_deadline_ms=1000,
        deferred_deadline_ms=2000,
        cache_max_entries=128,
        max_history_size=50,
        channel_max_pending=8,
        session_idle_timeout=60,
        sweep_interval=3600,
        max_workers=4,
        api_key="",
    )


@pytest.fixture
def instant_provider() -> CountingProvider:
    return CountingProvider("fast")


@pytest.fixture
def deferred_provider() -> CountingProvider:
    return CountingProvider(
        "slow",
        phase=Phase.DEFERRED,
        findings=[Finding(category="security", severity=Severity.ERROR, message="deep finding", line=2)],
    )


@pytest.fixture
def registry(instant_provider: CountingProvider, deferred_provider: CountingProvider) -> ProviderRegistry:
    return ProviderRegistry([instant_provider, deferred_provider])


@pytest_asyncio.fixture
async def engine(
    engine_config: EngineConfig,
    registry: ProviderRegistry,
) -> AsyncGenerator[FeedbackEngine, None]:
    """Engine wired with counting test providers."""
    engine = FeedbackEngine(engine_config, registry)
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def default_engine(engine_config: EngineConfig) -> AsyncGenerator[FeedbackEngine, None]:
    """Engine wired with the built-in providers."""
    engine = FeedbackEngine.create(engine_config)
    yield engine
    await engine.close()

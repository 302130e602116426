"""
Provider contract and registry.

Every analyzer implements Provider: a stable id, a phase affinity and an
async run() returning findings. Providers signal failure by raising
ProviderFailure (or any exception); the aggregator turns that into a
failure entry so it never fails the request.

SyncProvider is the base for CPU-bound, rule-based analyzers. They
implement analyze() synchronously and the aggregator runs them on its
thread pool.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Iterator

from ..common_types import ChangeEvent, CursorPosition, Finding, Phase


class Provider(ABC):
    """A pluggable analyzer capability."""

    provider_id: str = ""
    phase: Phase = Phase.INSTANT
    description: str = ""
    # Skipped by the engine when the change event has no cursor
    requires_cursor: bool = False

    def cache_key(self, event: ChangeEvent) -> str:
        """Hash of the input this provider depends on (content only by default)."""
        return event.content_hash

    @abstractmethod
    async def run(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        """Analyze a snapshot and return findings."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider_id} ({self.phase.value})>"


class SyncProvider(Provider):
    """Provider whose analysis is synchronous, CPU-bound work."""

    @abstractmethod
    def analyze(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        """Analyze a snapshot synchronously."""

    async def run(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        return await asyncio.to_thread(self.analyze, content, cursor, file_path)


class ProviderRegistry:
    """Typed mapping of provider id to implementation, built at startup."""

    def __init__(self, providers: list[Provider] | None = None):
        self._providers: dict[str, Provider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: Provider) -> None:
        if not provider.provider_id:
            raise ValueError(f"{type(provider).__name__} has no provider_id")
        if provider.provider_id in self._providers:
            raise ValueError(f"Provider already registered: {provider.provider_id}")
        self._providers[provider.provider_id] = provider

    def get(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id)

    def ids(self) -> list[str]:
        return list(self._providers)

    def for_phase(self, phase: Phase, enabled: frozenset[str] | set[str]) -> list[Provider]:
        """Enabled providers with the given phase affinity, in registration order."""
        return [
            p for pid, p in self._providers.items()
            if pid in enabled and p.phase == phase
        ]

    def describe(self) -> list[dict]:
        return [
            {"id": p.provider_id, "phase": p.phase.value, "description": p.description}
            for p in self._providers.values()
        ]

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

"""
Analysis providers.

Rule-based providers run on the aggregator's thread pool; the semantic
provider calls an LLM and is only registered when an API key is set.
"""

from openai import AsyncOpenAI

from ..config import EngineConfig
from .base import Provider, ProviderRegistry, SyncProvider
from .completion import CompletionProvider
from .hints import HintsProvider
from .patterns import PatternProvider
from .security import SecurityProvider
from .semantic import SemanticProvider
from .syntax import SyntaxProvider

__all__ = [
    "Provider",
    "SyncProvider",
    "ProviderRegistry",
    "SyntaxProvider",
    "PatternProvider",
    "CompletionProvider",
    "HintsProvider",
    "SecurityProvider",
    "SemanticProvider",
    "create_default_registry",
]


def create_default_registry(
    config: EngineConfig,
    llm_client: AsyncOpenAI | None = None,
) -> ProviderRegistry:
    """Registry with the built-in providers, in execution order."""
    registry = ProviderRegistry([
        SyntaxProvider(),
        PatternProvider(),
        CompletionProvider(),
        HintsProvider(),
        SecurityProvider(),
    ])
    if config.llm_enabled or llm_client is not None:
        registry.register(SemanticProvider(config, client=llm_client))
    return registry

"""
Configuration for the Live Feedback MCP Server

Environment Variables:
- FEEDBACK_DEBOUNCE_MS: Quiet period before deferred analysis runs (default: 500)
- FEEDBACK_INSTANT_DEADLINE_MS: Deadline for the instant phase (default: 80)
- FEEDBACK_DEFERRED_DEADLINE_MS: Deadline for the deferred phase (default: 10000)
- FEEDBACK_CACHE_SIZE: Maximum entries in the shared content cache (default: 2048)
- FEEDBACK_HISTORY_SIZE: Feedback entries kept per session (default: 1000)
- FEEDBACK_SESSION_IDLE_TIMEOUT: Seconds before an idle session is reclaimed (default: 1800)
- FEEDBACK_SWEEP_INTERVAL: Seconds between idle sweeps (default: 60)
- FEEDBACK_CHANNEL_SIZE: Pending deferred notifications per session (default: 64)
- OPENROUTER_API_KEY: Enables the LLM-backed semantic provider
- FEEDBACK_LLM_MODEL: Model used by the semantic provider
- FEEDBACK_PROFILE: Log per-phase latency at DEBUG when set

OpenRouter:
- Uses OpenAI-compatible API at https://openrouter.ai/api/v1
"""

import os
from dataclasses import dataclass, field
from typing import Any, Literal

from dotenv import load_dotenv

from .errors import InvalidInput

load_dotenv()


DEFAULT_MODEL = "google/gemini-2.5-flash-lite"

FeedbackLevel = Literal["minimal", "normal", "verbose"]
FEEDBACK_LEVELS: tuple[str, ...] = ("minimal", "normal", "verbose")


def _optional_int(name: str) -> int | None:
    value = os.getenv(name, "")
    return int(value) if value else None


@dataclass
class EngineConfig:
    """Configuration for the feedback engine."""

    # Scheduling
    debounce_delay_ms: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_DEBOUNCE_MS", "500"))
    )
    instant_deadline_ms: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_INSTANT_DEADLINE_MS", "80"))
    )
    deferred_deadline_ms: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_DEFERRED_DEADLINE_MS", "10000"))
    )

    # Memory bounds
    cache_max_entries: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_CACHE_SIZE", "2048"))
    )
    max_history_size: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_HISTORY_SIZE", "1000"))
    )
    channel_max_pending: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_CHANNEL_SIZE", "64"))
    )

    # Session reclamation
    session_idle_timeout: float = field(
        default_factory=lambda: float(os.getenv("FEEDBACK_SESSION_IDLE_TIMEOUT", "1800"))
    )
    sweep_interval: float = field(
        default_factory=lambda: float(os.getenv("FEEDBACK_SWEEP_INTERVAL", "60"))
    )

    # Thread pool for CPU-bound providers (None = size from CPU count)
    max_workers: int | None = field(
        default_factory=lambda: _optional_int("FEEDBACK_MAX_WORKERS")
    )

    # LLM provider (OpenRouter)
    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    api_base_url: str = "https://openrouter.ai/api/v1"
    model: str = field(default_factory=lambda: os.getenv("FEEDBACK_LLM_MODEL", DEFAULT_MODEL))
    llm_max_tokens: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_LLM_MAX_TOKENS", "1500"))
    )
    llm_max_input_tokens: int = field(
        default_factory=lambda: int(os.getenv("FEEDBACK_LLM_MAX_INPUT_TOKENS", "6000"))
    )

    @property
    def llm_enabled(self) -> bool:
        return bool(self.api_key)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.debounce_delay_ms < 0:
            errors.append("debounce_delay_ms must not be negative")

        if self.instant_deadline_ms <= 0:
            errors.append("instant_deadline_ms must be positive")

        if self.deferred_deadline_ms < self.instant_deadline_ms:
            errors.append("deferred_deadline_ms must be at least instant_deadline_ms")

        if self.cache_max_entries < 0:
            errors.append("cache_max_entries must not be negative")

        if self.max_history_size < 1:
            errors.append("max_history_size must be at least 1")

        if self.channel_max_pending < 1:
            errors.append("channel_max_pending must be at least 1")

        if self.session_idle_timeout <= 0:
            errors.append("session_idle_timeout must be positive")

        return errors


@dataclass
class SessionConfig:
    """Per-session configuration supplied to start_session."""

    enabled_providers: frozenset[str]
    feedback_level: FeedbackLevel = "normal"
    auto_triggers: bool = True
    debounce_delay_ms: int = 500
    max_history_size: int = 1000

    # camelCase aliases accepted from editor clients
    _ALIASES = {
        "enabledProviders": "enabled_providers",
        "feedbackLevel": "feedback_level",
        "autoTriggers": "auto_triggers",
        "debounceDelayMs": "debounce_delay_ms",
        "maxHistorySize": "max_history_size",
    }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any] | None,
        engine_config: EngineConfig,
        known_providers: list[str],
    ) -> "SessionConfig":
        """
        Build a session config, filling unspecified fields with defaults.

        Args:
            data: Raw config mapping (snake_case or camelCase keys)
            engine_config: Source of engine-wide defaults
            known_providers: Registered provider ids (default: all enabled)

        Raises:
            InvalidInput: Unknown provider ids or malformed values
        """
        raw = {cls._ALIASES.get(k, k): v for k, v in (data or {}).items()}

        providers = raw.get("enabled_providers")
        if providers is None:
            enabled = frozenset(known_providers)
        elif isinstance(providers, str) or not hasattr(providers, "__iter__"):
            raise InvalidInput("enabled_providers must be a collection of provider ids")
        else:
            enabled = frozenset(providers)
            unknown = sorted(enabled - set(known_providers))
            if unknown:
                raise InvalidInput(f"Unknown providers: {', '.join(unknown)}")

        level = raw.get("feedback_level", "normal")
        if level not in FEEDBACK_LEVELS:
            raise InvalidInput(
                f"feedback_level must be one of {', '.join(FEEDBACK_LEVELS)}, got {level!r}"
            )

        try:
            debounce = int(raw.get("debounce_delay_ms", engine_config.debounce_delay_ms))
            history = int(raw.get("max_history_size", engine_config.max_history_size))
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"Invalid numeric session setting: {e}") from e

        if debounce < 0:
            raise InvalidInput("debounce_delay_ms must not be negative")
        if history < 1:
            raise InvalidInput("max_history_size must be at least 1")

        auto_triggers = raw.get("auto_triggers", True)
        if not isinstance(auto_triggers, bool):
            raise InvalidInput(f"auto_triggers must be a boolean, got {auto_triggers!r}")

        return cls(
            enabled_providers=enabled,
            feedback_level=level,
            auto_triggers=auto_triggers,
            debounce_delay_ms=debounce,
            max_history_size=history,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled_providers": sorted(self.enabled_providers),
            "feedback_level": self.feedback_level,
            "auto_triggers": self.auto_triggers,
            "debounce_delay_ms": self.debounce_delay_ms,
            "max_history_size": self.max_history_size,
        }


@dataclass
class ServerConfig:
    """Configuration for the MCP server."""

    name: str = "live-feedback"
    version: str = "0.3.0"
    description: str = (
        "MCP server providing real-time, incremental editor feedback "
        "from concurrent analysis providers"
    )


def get_config() -> tuple[EngineConfig, ServerConfig]:
    """Get configuration instances."""
    return EngineConfig(), ServerConfig()

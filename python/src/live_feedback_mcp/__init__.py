"""
Live Feedback MCP Server

An MCP server providing real-time, incremental editor feedback from
concurrent analysis providers.

How a change flows:
- Instant-phase providers (syntax, patterns, completion, hints) run
  concurrently under a tight deadline; their findings come back with the call
- Deferred-phase providers (security, optional LLM semantic review) run once
  typing pauses, always on the latest snapshot, and are published to a
  per-session feedback channel
- Results are cached by (provider, content hash) and shared across sessions
"""

__version__ = "0.3.0"

from .server import main, create_server
from .engine import FeedbackEngine
from .config import EngineConfig, SessionConfig
from .common_types import ChangeEvent, CursorPosition, Feedback, Finding, Severity
from .errors import (
    FeedbackEngineError,
    InvalidInput,
    NotFoundError,
    SessionNotFound,
)

__all__ = [
    "main",
    "create_server",
    "FeedbackEngine",
    "EngineConfig",
    "SessionConfig",
    "ChangeEvent",
    "CursorPosition",
    "Feedback",
    "Finding",
    "Severity",
    "FeedbackEngineError",
    "InvalidInput",
    "NotFoundError",
    "SessionNotFound",
]

"""
Session Handlers for the Live Feedback MCP Server.

Provides handlers for session lifecycle operations:
- feedback_start_session: Open a session with optional per-session config
- feedback_end_session: Close a session and return its metrics
- feedback_status: Engine health, metrics and cache statistics
"""

import json
from typing import Any

from mcp.types import TextContent

from ..config import ServerConfig
from ..engine import FeedbackEngine
from ..errors import FeedbackEngineError


def json_response(data: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


def error_response(error: FeedbackEngineError) -> list[TextContent]:
    """Render an engine error as {"error": kind, "message": ...}."""
    return json_response({"error": error.kind, "message": str(error)})


async def handle_feedback_start_session(
    arguments: dict[str, Any],
    engine: FeedbackEngine,
) -> list[TextContent]:
    """Handle feedback_start_session tool call."""
    user_id = arguments.get("user_id", "")
    config = arguments.get("config")

    if config is not None and not isinstance(config, dict):
        return json_response({"error": "invalid_input", "message": "config must be an object"})

    try:
        session_id = engine.start_session(user_id, config)
    except FeedbackEngineError as e:
        return error_response(e)

    info = engine.get_session_info(session_id)
    return json_response({
        "session_id": session_id,
        "config": info.config if info else {},
    })


async def handle_feedback_end_session(
    arguments: dict[str, Any],
    engine: FeedbackEngine,
) -> list[TextContent]:
    """Handle feedback_end_session tool call."""
    session_id = arguments.get("session_id", "")

    try:
        metrics = engine.end_session(session_id)
    except FeedbackEngineError as e:
        return error_response(e)

    return json_response({"session_id": session_id, "metrics": metrics.to_dict()})


async def handle_feedback_status(
    arguments: dict[str, Any],
    engine: FeedbackEngine,
    server_config: ServerConfig,
) -> list[TextContent]:
    """Handle feedback_status tool call, optionally including one session."""
    status = {
        "server": {
            "name": server_config.name,
            "version": server_config.version,
        },
        **engine.get_status(),
    }

    session_id = arguments.get("session_id")
    if session_id:
        info = engine.get_session_info(session_id)
        status["session"] = info.to_dict() if info else None

    errors = engine.config.validate()
    if errors:
        status["errors"] = errors

    return json_response(status)

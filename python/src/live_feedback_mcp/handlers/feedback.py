"""
Feedback Handlers for the Live Feedback MCP Server.

Provides handlers for the change pipeline:
- feedback_process_change: Instant feedback for one change event
- feedback_poll: Deferred feedback published since the last poll
- feedback_history: Past feedback for a session
"""

from typing import Any

from mcp.types import TextContent

from ..engine import FeedbackEngine
from ..errors import FeedbackEngineError
from .session import error_response, json_response


# Upper bound for a blocking poll
MAX_POLL_TIMEOUT_SECONDS = 30.0


def _is_verbose(engine: FeedbackEngine, session_id: str) -> bool:
    info = engine.get_session_info(session_id)
    return info is not None and info.config.get("feedback_level") == "verbose"


def _render(feedback, verbose: bool) -> dict[str, Any]:
    data = feedback.to_dict(verbose)
    data["findings"] = [f.to_dict() for f in feedback.instant.findings]
    if feedback.deferred is not None:
        data["deferred_findings"] = [f.to_dict() for f in feedback.deferred.findings]
    return data


async def handle_feedback_process_change(
    arguments: dict[str, Any],
    engine: FeedbackEngine,
) -> list[TextContent]:
    """Handle feedback_process_change tool call."""
    try:
        feedback = await engine.process_change(arguments)
    except FeedbackEngineError as e:
        return error_response(e)

    return json_response(_render(feedback, _is_verbose(engine, feedback.session_id)))


async def handle_feedback_poll(
    arguments: dict[str, Any],
    engine: FeedbackEngine,
) -> list[TextContent]:
    """
    Handle feedback_poll tool call.

    Returns everything pending. With a timeout and nothing pending, waits
    for the next deferred Feedback.
    """
    session_id = arguments.get("session_id", "")
    try:
        timeout = min(float(arguments.get("timeout", 0) or 0), MAX_POLL_TIMEOUT_SECONDS)
    except (TypeError, ValueError):
        return json_response({"error": "invalid_input", "message": "timeout must be a number"})

    try:
        notifications = engine.drain_notifications(session_id)
        if not notifications and timeout > 0:
            feedback = await engine.next_notification(session_id, timeout)
            if feedback is not None:
                notifications = [feedback, *engine.drain_notifications(session_id)]
    except FeedbackEngineError as e:
        return error_response(e)

    verbose = _is_verbose(engine, session_id)
    return json_response({
        "session_id": session_id,
        "notifications": [_render(f, verbose) for f in notifications],
    })


async def handle_feedback_history(
    arguments: dict[str, Any],
    engine: FeedbackEngine,
) -> list[TextContent]:
    """Handle feedback_history tool call."""
    session_id = arguments.get("session_id", "")
    limit = arguments.get("limit")

    if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool)):
        return json_response({"error": "invalid_input", "message": "limit must be an integer"})

    try:
        entries = engine.get_history(session_id, limit)
    except FeedbackEngineError as e:
        return error_response(e)

    verbose = _is_verbose(engine, session_id)
    return json_response({
        "session_id": session_id,
        "count": len(entries),
        "history": [_render(f, verbose) for f in entries],
    })

"""
Request Handlers for the Live Feedback MCP Server.

This package contains the tool handlers used by server.py:
- session: Session lifecycle and status handlers
- feedback: Change processing, notification polling and history handlers
"""

from .feedback import (
    handle_feedback_history,
    handle_feedback_poll,
    handle_feedback_process_change,
)
from .session import (
    error_response,
    handle_feedback_end_session,
    handle_feedback_start_session,
    handle_feedback_status,
    json_response,
)

__all__ = [
    # Session handlers
    "handle_feedback_start_session",
    "handle_feedback_end_session",
    "handle_feedback_status",
    # Feedback handlers
    "handle_feedback_process_change",
    "handle_feedback_poll",
    "handle_feedback_history",
    # Helpers
    "json_response",
    "error_response",
]

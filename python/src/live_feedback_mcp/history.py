"""
Feedback History Store

Bounded ring buffer of past Feedback per session, kept for replay and
inspection. Overflow evicts the oldest entry first. Nothing is persisted
beyond process lifetime.
"""

from collections import deque
from typing import Any

from .common_types import Feedback


class FeedbackHistory:
    """Per-session FIFO buffers of Feedback."""

    def __init__(self, default_capacity: int = 1000):
        self.default_capacity = default_capacity
        self._buffers: dict[str, deque[Feedback]] = {}

    def open(self, session_id: str, capacity: int | None = None) -> None:
        """Create the buffer for a session. Reopening keeps existing entries."""
        if session_id not in self._buffers:
            self._buffers[session_id] = deque(maxlen=capacity or self.default_capacity)

    def append(self, session_id: str, feedback: Feedback) -> bool:
        """Append to an open buffer. Returns False for unknown or cleared sessions."""
        buffer = self._buffers.get(session_id)
        if buffer is None:
            return False
        buffer.append(feedback)
        return True

    def get(self, session_id: str, limit: int | None = None) -> list[Feedback]:
        """
        Return up to `limit` most recent entries, oldest first.

        Unknown sessions yield an empty list.
        """
        buffer = self._buffers.get(session_id)
        if not buffer:
            return []
        # Snapshot before slicing so concurrent appends cannot reorder the view
        entries = list(buffer)
        if limit is not None and limit >= 0:
            entries = entries[-limit:] if limit else []
        return entries

    def clear(self, session_id: str) -> None:
        self._buffers.pop(session_id, None)

    def size(self, session_id: str) -> int:
        buffer = self._buffers.get(session_id)
        return len(buffer) if buffer else 0

    def get_stats(self) -> dict[str, Any]:
        return {
            "sessions": len(self._buffers),
            "total_entries": sum(len(b) for b in self._buffers.values()),
        }

"""
Deferred feedback delivery.

Each session owns one FeedbackChannel. Deferred results are published to it
after the debounce settles; the transport either polls it or subscribes a
listener. The queue is bounded and drops the oldest pending notification
on overflow.
"""

import asyncio
import logging
from collections import deque
from typing import Callable

from .common_types import Feedback

logger = logging.getLogger(__name__)


FeedbackListener = Callable[[Feedback], None]


class FeedbackChannel:
    """Bounded, drop-oldest notification queue for one session."""

    def __init__(self, session_id: str, max_pending: int = 64):
        self.session_id = session_id
        self.max_pending = max_pending
        self._pending: deque[Feedback] = deque()
        self._listeners: list[FeedbackListener] = []
        self._available = asyncio.Event()
        self.published = 0
        self.dropped = 0
        self.closed = False

    def publish(self, feedback: Feedback) -> bool:
        """
        Queue a notification and notify listeners.

        Returns:
            False if the channel is closed, True otherwise
        """
        if self.closed:
            return False

        if len(self._pending) >= self.max_pending:
            self._pending.popleft()
            self.dropped += 1
            logger.debug(f"[CHANNEL] {self.session_id}: dropped oldest notification")

        self._pending.append(feedback)
        self.published += 1
        self._available.set()

        for listener in list(self._listeners):
            try:
                listener(feedback)
            except Exception as e:
                logger.error(f"[CHANNEL] Listener failed for {self.session_id}: {type(e).__name__}: {e}")

        return True

    def subscribe(self, listener: FeedbackListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def get(self, timeout: float | None = None) -> Feedback | None:
        """Wait for the next notification; None on timeout or close."""
        while not self._pending:
            if self.closed:
                return None
            self._available.clear()
            try:
                await asyncio.wait_for(self._available.wait(), timeout)
            except asyncio.TimeoutError:
                return None
        return self._pop()

    def get_nowait(self) -> Feedback | None:
        return self._pop() if self._pending else None

    def drain(self) -> list[Feedback]:
        items = list(self._pending)
        self._pending.clear()
        return items

    def close(self) -> None:
        self.closed = True
        self._listeners.clear()
        self._available.set()

    def _pop(self) -> Feedback:
        return self._pending.popleft()

    def __len__(self) -> int:
        return len(self._pending)

"""
Debounce/coalescing scheduler.

One timer per (session, file). Every schedule() cancels the pending timer
for its key and arms a new one, keeping only the newest event, so a burst
of N edits inside the quiet period yields at most one callback carrying the
Nth snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, NamedTuple

from .common_types import ChangeEvent

logger = logging.getLogger(__name__)


class DebounceKey(NamedTuple):
    session_id: str
    file_path: str


DeferredCallback = Callable[[ChangeEvent], Awaitable[None]]


@dataclass
class _PendingRun:
    event: ChangeEvent
    task: asyncio.Task
    fired: bool = False


class DebounceScheduler:
    """Per-key cancel-and-reschedule timers on the running event loop."""

    def __init__(self, callback: DeferredCallback):
        self._callback = callback
        self._pending: dict[DebounceKey, _PendingRun] = {}
        # Callbacks that already fired and are still running
        self._running: set[asyncio.Task] = set()
        self.scheduled = 0
        self.coalesced = 0
        self.fired = 0

    def schedule(self, event: ChangeEvent, delay_ms: int) -> DebounceKey:
        """(Re)arm the timer for the event's key with the event as latest input."""
        key = DebounceKey(event.session_id, event.file_path)

        previous = self._pending.get(key)
        if previous is not None and not previous.fired:
            previous.task.cancel()
            self.coalesced += 1

        task = asyncio.create_task(self._fire_after(key, delay_ms / 1000))
        self._pending[key] = _PendingRun(event=event, task=task)
        self.scheduled += 1
        return key

    def cancel(self, key: DebounceKey) -> bool:
        run = self._pending.pop(key, None)
        if run is None or run.fired:
            return False
        run.task.cancel()
        return True

    def cancel_session(self, session_id: str) -> int:
        """Drop every pending timer for a session. Returns how many were cancelled."""
        keys = [k for k in self._pending if k.session_id == session_id]
        cancelled = sum(1 for key in keys if self.cancel(key))
        if cancelled:
            logger.debug(f"[DEBOUNCE] Cancelled {cancelled} pending run(s) for {session_id}")
        return cancelled

    def is_pending(self, key: DebounceKey) -> bool:
        run = self._pending.get(key)
        return run is not None and not run.fired

    def pending_event(self, key: DebounceKey) -> ChangeEvent | None:
        run = self._pending.get(key)
        return run.event if run is not None and not run.fired else None

    @property
    def pending_count(self) -> int:
        return sum(1 for run in self._pending.values() if not run.fired)

    async def _fire_after(self, key: DebounceKey, delay: float) -> None:
        await asyncio.sleep(delay)

        run = self._pending.get(key)
        if run is None or run.task is not asyncio.current_task():
            return
        run.fired = True
        del self._pending[key]
        self.fired += 1

        task = asyncio.current_task()
        self._running.add(task)
        try:
            await self._callback(run.event)
        except Exception as e:
            logger.error(
                f"[DEBOUNCE] Deferred run failed for {key.session_id}:{key.file_path}: "
                f"{type(e).__name__}: {e}"
            )
        finally:
            self._running.discard(task)

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no callback is running."""
        while True:
            tasks = [run.task for run in self._pending.values()] + list(self._running)
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all pending timers and in-flight callbacks."""
        tasks = [run.task for run in self._pending.values()] + list(self._running)
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

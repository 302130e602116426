"""
Latency tracking and logging setup for the feedback engine.

LatencyTracker measures a code block and logs "[LATENCY] <phase>: 12.3ms".
"""

import logging
import time

logger = logging.getLogger(__name__)


class LatencyTracker:
    """
    Context manager to track latency for a code block.

    Usage:
        with LatencyTracker("instant_phase") as timer:
            ...
        timer.elapsed_ms
    """
    def __init__(self, phase_name: str = "operation", log_level: int = logging.DEBUG):
        self.phase_name = phase_name
        self.log_level = log_level
        self.start_time: float | None = None
        self.end_time: float | None = None

    @property
    def elapsed_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return (end - self.start_time) * 1000

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.end_time = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        logger.log(self.log_level, f"[LATENCY] {self.phase_name}: {self.elapsed_ms:.1f}ms")


def enable_profiling(log_level=logging.DEBUG):
    """Enable detailed latency output."""
    configure_logging(log_level)
    logging.getLogger(__name__).setLevel(log_level)


def configure_logging(log_level=logging.INFO):
    """Log to stderr; stdout belongs to the MCP stdio transport."""
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

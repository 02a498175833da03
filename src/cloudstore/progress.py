"""Transfer progress reporting.

This module provides:
- ProgressListenerFactory: Creates a progress sink per transfer
- NullProgressListenerFactory: No-op default
- LoggingProgressListenerFactory: Logs every ``step_percent`` percent
- ProgressTracker: Thread-safe cumulative counter feeding a sink
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int], None]


class ProgressListenerFactory(Protocol):
    """Creates a sink receiving cumulative transferred bytes."""

    def create(self, description: str, total_bytes: int) -> ProgressSink:
        """Return the sink for one transfer."""
        ...


class NullProgressListenerFactory:
    """Discards progress."""

    def create(self, description: str, total_bytes: int) -> ProgressSink:
        return _ignore


def _ignore(transferred: int) -> None:
    pass


class LoggingProgressListenerFactory:
    """Logs progress at INFO each time another step is crossed."""

    def __init__(self, step_percent: int = 10) -> None:
        self.step_percent = max(1, min(step_percent, 100))

    def create(self, description: str, total_bytes: int) -> ProgressSink:
        step = self.step_percent
        last_reported = [-1]

        def sink(transferred: int) -> None:
            if total_bytes <= 0:
                percent = 100
            else:
                percent = min(100, transferred * 100 // total_bytes)
            bucket = percent // step
            if bucket > last_reported[0]:
                last_reported[0] = bucket
                logger.info(f"{description}: {percent}% ({transferred}/{total_bytes} bytes)")

        return sink


class ProgressTracker:
    """Accumulates bytes of concurrently finishing chunks for one sink.

    The sink is called under a lock, so it sees non-decreasing totals.
    Sink exceptions are logged and never abort the transfer.
    """

    def __init__(self, sink: ProgressSink, description: str = "") -> None:
        self._sink = sink
        self._description = description
        self._transferred = 0
        self._lock = threading.Lock()

    @classmethod
    def create(
        cls,
        factory: ProgressListenerFactory | None,
        description: str,
        total_bytes: int,
    ) -> ProgressTracker:
        """Build a tracker from an optional factory."""
        factory = factory or NullProgressListenerFactory()
        try:
            sink = factory.create(description, total_bytes)
        except Exception:
            logger.warning(f"Progress listener factory failed for {description}", exc_info=True)
            sink = _ignore
        return cls(sink, description)

    @property
    def transferred(self) -> int:
        """Bytes reported so far."""
        with self._lock:
            return self._transferred

    def add(self, byte_count: int) -> None:
        """Record ``byte_count`` more bytes and notify the sink."""
        with self._lock:
            self._transferred += byte_count
            try:
                self._sink(self._transferred)
            except Exception:
                logger.warning(
                    f"Progress listener failed for {self._description}", exc_info=True
                )

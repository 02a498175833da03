"""Tests for progress reporting."""

from __future__ import annotations

import threading

import pytest

from cloudstore.progress import (
    LoggingProgressListenerFactory,
    NullProgressListenerFactory,
    ProgressTracker,
)


class RecordingFactory:
    """Factory whose sinks record every reported total."""

    def __init__(self) -> None:
        self.created: list[tuple[str, int]] = []
        self.reports: list[int] = []

    def create(self, description: str, total_bytes: int):
        self.created.append((description, total_bytes))
        return self.reports.append


class TestProgressTracker:
    """Tests for ProgressTracker."""

    def test_cumulative_totals(self) -> None:
        """The sink receives running totals."""
        factory = RecordingFactory()
        tracker = ProgressTracker.create(factory, "upload s3://b/k", 30)
        for n in (10, 10, 10):
            tracker.add(n)

        assert factory.created == [("upload s3://b/k", 30)]
        assert factory.reports == [10, 20, 30]
        assert tracker.transferred == 30

    def test_concurrent_adds_are_monotonic(self) -> None:
        """Totals stay non-decreasing under concurrent updates."""
        factory = RecordingFactory()
        tracker = ProgressTracker.create(factory, "download", 8000)

        def worker() -> None:
            for _ in range(1000):
                tracker.add(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert factory.reports == sorted(factory.reports)
        assert factory.reports[-1] == 8000

    def test_sink_errors_are_swallowed(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failing sink is logged and does not raise."""

        def broken(transferred: int) -> None:
            raise RuntimeError("sink broke")

        tracker = ProgressTracker(broken, "upload")
        tracker.add(5)
        assert tracker.transferred == 5
        assert "Progress listener failed" in caplog.text

    def test_default_factory(self) -> None:
        """Without a factory progress is discarded."""
        tracker = ProgressTracker.create(None, "upload", 10)
        tracker.add(10)
        assert tracker.transferred == 10
        NullProgressListenerFactory().create("x", 1)(1)


class TestLoggingProgressListenerFactory:
    """Tests for LoggingProgressListenerFactory."""

    def test_logs_each_step(self, caplog: pytest.LogCaptureFixture) -> None:
        """One record per crossed step."""
        sink = LoggingProgressListenerFactory(step_percent=50).create("upload", 100)
        with caplog.at_level("INFO", logger="cloudstore.progress"):
            for transferred in (10, 40, 60, 70, 100):
                sink(transferred)

        messages = [r.getMessage() for r in caplog.records]
        assert messages == [
            "upload: 10% (10/100 bytes)",
            "upload: 60% (60/100 bytes)",
            "upload: 100% (100/100 bytes)",
        ]

    def test_empty_transfer(self, caplog: pytest.LogCaptureFixture) -> None:
        """A zero-byte transfer reports 100%."""
        sink = LoggingProgressListenerFactory().create("upload", 0)
        with caplog.at_level("INFO", logger="cloudstore.progress"):
            sink(0)
        assert "100%" in caplog.text

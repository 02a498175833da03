"""Tests for non-blocking future composition."""

from __future__ import annotations

from collections.abc import Generator
from concurrent.futures import Future, ThreadPoolExecutor

import pytest

from cloudstore.futures import (
    all_settled,
    catching,
    immediate,
    immediate_failure,
    outcome,
    transform,
)


@pytest.fixture
def pool() -> Generator[ThreadPoolExecutor, None, None]:
    """Single-thread pool for continuations."""
    executor = ThreadPoolExecutor(max_workers=1)
    yield executor
    executor.shutdown(wait=True)


class TestTransform:
    """Tests for transform()."""

    def test_applies_continuation(self, pool: ThreadPoolExecutor) -> None:
        """The continuation receives the source result."""
        assert transform(immediate(2), lambda x: x * 3, pool).result(timeout=5) == 6

    def test_flattens_returned_future(self, pool: ThreadPoolExecutor) -> None:
        """A continuation returning a Future is unwrapped."""
        result = transform(immediate(2), lambda x: immediate(x + 1), pool)
        assert result.result(timeout=5) == 3

    def test_propagates_source_failure(self, pool: ThreadPoolExecutor) -> None:
        """A failed source skips the continuation."""
        called = []
        result = transform(immediate_failure(KeyError("k")), called.append, pool)
        with pytest.raises(KeyError):
            result.result(timeout=5)
        assert called == []

    def test_continuation_exception(self, pool: ThreadPoolExecutor) -> None:
        """An exception raised by the continuation fails the result."""

        def boom(_: object) -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            transform(immediate(1), boom, pool).result(timeout=5)

    def test_chain_on_single_worker_does_not_deadlock(self, pool: ThreadPoolExecutor) -> None:
        """Nested chains complete even when the pool has one worker."""
        def step(x: int) -> Future:
            return transform(immediate(x), lambda y: y + 1, pool)

        future = immediate(0)
        for _ in range(20):
            future = transform(future, step, pool)
        assert future.result(timeout=5) == 20

    def test_shut_down_executor_fails_target(self) -> None:
        """A continuation that cannot be scheduled fails the result."""
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        with pytest.raises(RuntimeError):
            transform(immediate(1), lambda x: x, executor).result(timeout=5)


class TestCatching:
    """Tests for catching()."""

    def test_recovers(self, pool: ThreadPoolExecutor) -> None:
        """The handler's value replaces the failure."""
        result = catching(immediate_failure(ValueError("x")), lambda e: "recovered", pool)
        assert result.result(timeout=5) == "recovered"

    def test_success_passes_through(self, pool: ThreadPoolExecutor) -> None:
        """Successful results skip the handler."""
        assert catching(immediate(5), lambda e: 0, pool).result(timeout=5) == 5

    def test_reraise(self, pool: ThreadPoolExecutor) -> None:
        """A handler may re-raise the original error."""

        def reraise(error: BaseException) -> None:
            raise error

        with pytest.raises(ValueError):
            catching(immediate_failure(ValueError("x")), reraise, pool).result(timeout=5)


class TestAllSettled:
    """Tests for all_settled()."""

    def test_waits_for_all_and_never_fails(self) -> None:
        """Failures do not short-circuit; every input is returned in order."""
        slow: Future = Future()
        inputs = [immediate(1), immediate_failure(ValueError("x")), slow]
        settled = all_settled(inputs)

        assert not settled.done()
        slow.set_result(3)

        result = settled.result(timeout=5)
        assert result == inputs
        assert [outcome(f)[0] for f in result] == [1, None, 3]
        assert isinstance(outcome(result[1])[1], ValueError)

    def test_empty(self) -> None:
        """An empty input completes immediately."""
        assert all_settled([]).result(timeout=5) == []

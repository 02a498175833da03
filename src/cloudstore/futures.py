"""Non-blocking composition of concurrent.futures.Future.

This module provides:
- transform: Chain a continuation on success (flattens returned futures)
- catching: Chain a handler on failure
- all_settled: Wait for every future without failing fast
- immediate / immediate_failure: Already-completed futures

Continuations are submitted to an executor and never block a worker while
waiting on another future, so chains of dependent steps cannot deadlock a
bounded pool.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future
from typing import Any


def immediate(value: Any) -> Future:
    """Return a future already completed with ``value``."""
    future: Future = Future()
    future.set_result(value)
    return future


def immediate_failure(error: BaseException) -> Future:
    """Return a future already failed with ``error``."""
    future: Future = Future()
    future.set_exception(error)
    return future


def _copy_outcome(source: Future, target: Future) -> None:
    if target.done():
        return
    if source.cancelled():
        target.cancel()
        return
    error = source.exception()
    if error is not None:
        target.set_exception(error)
    else:
        target.set_result(source.result())


def _resolve(target: Future, value: Any) -> None:
    if isinstance(value, Future):
        value.add_done_callback(lambda f: _copy_outcome(f, target))
    else:
        target.set_result(value)


def _run_continuation(
    executor: Executor, target: Future, fn: Callable[[Any], Any], arg: Any
) -> None:
    def call() -> None:
        try:
            value = fn(arg)
        except Exception as e:
            target.set_exception(e)
            return
        _resolve(target, value)

    try:
        executor.submit(call)
    except RuntimeError as e:
        # Executor already shut down
        target.set_exception(e)


def transform(future: Future, fn: Callable[[Any], Any], executor: Executor) -> Future:
    """Run ``fn(result)`` on ``executor`` once ``future`` succeeds.

    Args:
        future: Source future.
        fn: Continuation. If it returns a Future, the returned future is
            completed with that future's outcome.
        executor: Where the continuation runs.

    Returns:
        Future of the continuation's result. Failures of ``future`` are
        propagated unchanged and ``fn`` is not called.
    """
    target: Future = Future()

    def on_done(source: Future) -> None:
        if source.cancelled():
            target.cancel()
            return
        error = source.exception()
        if error is not None:
            target.set_exception(error)
            return
        _run_continuation(executor, target, fn, source.result())

    future.add_done_callback(on_done)
    return target


def catching(
    future: Future, fn: Callable[[BaseException], Any], executor: Executor
) -> Future:
    """Run ``fn(error)`` on ``executor`` if ``future`` fails.

    The handler may return a replacement value (or Future) or re-raise.
    Successful results pass through unchanged.
    """
    target: Future = Future()

    def on_done(source: Future) -> None:
        if source.cancelled():
            target.cancel()
            return
        error = source.exception()
        if error is None:
            target.set_result(source.result())
            return
        _run_continuation(executor, target, fn, error)

    future.add_done_callback(on_done)
    return target


def all_settled(futures: Iterable[Future]) -> Future:
    """Complete once every future in ``futures`` is done.

    The returned future never fails; its result is the list of input
    futures, in input order, for the caller to inspect.
    """
    pending = list(futures)
    target: Future = Future()
    if not pending:
        target.set_result([])
        return target

    remaining = len(pending)
    lock = threading.Lock()

    def on_done(_: Future) -> None:
        nonlocal remaining
        with lock:
            remaining -= 1
            finished = remaining == 0
        if finished:
            target.set_result(pending)

    for future in pending:
        future.add_done_callback(on_done)
    return target


def outcome(future: Future) -> tuple[Any, BaseException | None]:
    """Return ``(result, error)`` of a completed future."""
    error = future.exception()
    if error is not None:
        return None, error
    return future.result(), None

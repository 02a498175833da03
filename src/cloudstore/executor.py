"""Retrying command execution on two independently sized pools.

This module provides:
- Scheduler: Fires delayed callbacks onto an executor (APScheduler date jobs)
- CommandExecutor: Runs commands on the network pool and retries failures
- ExecutorState: Lifecycle of the executor

Network calls run on the bounded "api" pool. Retry timing and future
continuations run on the separate "internal" pool, so retry bookkeeping
never queues behind saturated network workers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from cloudstore.core.config import DEFAULT_INTERNAL_WORKERS, RetryPolicy, default_api_workers
from cloudstore.core.errors import UsageError, is_retryable

logger = logging.getLogger(__name__)


class ExecutorState(Enum):
    """State of the command executor."""

    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()


class Scheduler:
    """Fires callbacks after a delay.

    Delays are one-shot date jobs on an APScheduler background scheduler.
    A due job only hands its callback to ``executor``, so the scheduler's
    own threads never run user code.
    """

    def __init__(self, executor: Executor, name: str = "cloudstore-scheduler") -> None:
        self._executor = executor
        self._name = name
        self._lock = threading.Lock()
        self._stopped = False
        self._scheduler = BackgroundScheduler(
            timezone=timezone.utc,
            job_defaults={"misfire_grace_time": None, "coalesce": False},
        )
        self._scheduler.start()

    def schedule(self, delay: float, fn: Callable[[], None]) -> None:
        """Run ``fn`` on the executor after ``delay`` seconds.

        Raises:
            UsageError: If the scheduler is stopped.
        """
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay, 0.0))
        with self._lock:
            if self._stopped:
                raise UsageError("Scheduler is stopped")
            self._scheduler.add_job(
                self._dispatch,
                trigger=DateTrigger(run_date=run_date),
                args=[fn],
                name=self._name,
            )

    def pending(self) -> int:
        """Number of callbacks waiting for their deadline."""
        return len(self._scheduler.get_jobs())

    def stop(self) -> list[Callable[[], None]]:
        """Stop the scheduler.

        Returns:
            Callbacks that had not fired yet, earliest deadline first.
        """
        with self._lock:
            if self._stopped:
                return []
            self._stopped = True
            jobs = self._scheduler.get_jobs()
            self._scheduler.remove_all_jobs()
        self._scheduler.shutdown(wait=False)
        return [job.args[0] for job in jobs]

    def _dispatch(self, fn: Callable[[], None]) -> None:
        try:
            self._executor.submit(fn)
        except RuntimeError:
            logger.exception("Scheduler could not dispatch a callback")


@dataclass
class _Command:
    """One in-flight command and its retry state."""

    work: Callable[..., Any]
    description: str
    policy: RetryPolicy
    pass_attempt: bool
    future: Future = field(default_factory=Future)
    attempt: int = 0


class CommandExecutor:
    """Runs units of work with bounded retries.

    Usage:
        executor = CommandExecutor(api_workers=8)
        future = executor.execute(lambda: backend.head_object(b, k), "head s3://b/k", policy)
        descriptor = future.result()
        executor.shutdown()
    """

    def __init__(
        self,
        api_workers: int | None = None,
        internal_workers: int = DEFAULT_INTERNAL_WORKERS,
        default_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the executor and start its pools.

        Args:
            api_workers: Size of the network pool. Defaults to a small
                multiple of the CPU count.
            internal_workers: Size of the orchestration pool.
            default_policy: Policy used when ``execute`` is given none.
        """
        self._api_workers = api_workers or default_api_workers()
        self._api = ThreadPoolExecutor(
            max_workers=self._api_workers, thread_name_prefix="cloudstore-api"
        )
        self._internal = ThreadPoolExecutor(
            max_workers=internal_workers, thread_name_prefix="cloudstore-internal"
        )
        self._scheduler = Scheduler(self._internal)
        self._default_policy = default_policy or RetryPolicy()

        self._state = ExecutorState.RUNNING
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight = 0
        self._waiting: set[int] = set()
        self._commands: dict[int, _Command] = {}

    @property
    def state(self) -> ExecutorState:
        """Get current executor state."""
        return self._state

    @property
    def internal(self) -> Executor:
        """Executor for continuations and orchestration steps."""
        return self._internal

    @property
    def api_workers(self) -> int:
        """Size of the network pool."""
        return self._api_workers

    @property
    def in_flight(self) -> int:
        """Number of commands without a terminal outcome yet."""
        with self._lock:
            return self._in_flight

    def execute(
        self,
        work: Callable[..., Any],
        description: str,
        policy: RetryPolicy | None = None,
        pass_attempt: bool = False,
    ) -> Future:
        """Run ``work`` on the network pool, retrying per ``policy``.

        Args:
            work: Unit of work. Called with no arguments, or with the
                zero-based attempt number when ``pass_attempt`` is set.
            description: Human-readable label used in log messages.
            policy: Retry policy, defaults to the executor's default policy.
            pass_attempt: Pass the attempt number to ``work``.

        Returns:
            Future completed exactly once with the result of the first
            successful attempt, or the exception of the last attempt.

        Raises:
            UsageError: If the executor is shutting down.
        """
        command = _Command(work, description, policy or self._default_policy, pass_attempt)
        with self._lock:
            if self._state != ExecutorState.RUNNING:
                raise UsageError(f"Cannot run '{description}': executor is shut down")
            self._in_flight += 1
            self._commands[id(command)] = command

        logger.debug(f"Command submitted: {description}")
        self._dispatch(command)
        return command.future

    def submit_internal(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run orchestration code on the internal pool."""
        return self._internal.submit(fn, *args)

    def _dispatch(self, command: _Command) -> None:
        with self._lock:
            self._waiting.discard(id(command))
        try:
            self._api.submit(self._run_attempt, command)
        except RuntimeError as e:
            self._finish(command, error=e)

    def _run_attempt(self, command: _Command) -> None:
        try:
            if command.pass_attempt:
                result = command.work(command.attempt)
            else:
                result = command.work()
        except Exception as e:
            self._handle_failure(command, e)
            return
        self._finish(command, result=result)

    def _handle_failure(self, command: _Command, error: Exception) -> None:
        policy = command.policy
        max_retries = policy.max_retries
        retryable = is_retryable(error, policy.retry_client_errors)

        if not retryable:
            logger.debug(f"Not retrying {command.description}: {type(error).__name__}: {error}")
            self._finish(command, error=error)
            return

        if command.attempt >= max_retries:
            logger.error(f"All {max_retries} retries failed for {command.description}: {error}")
            self._finish(command, error=error)
            return

        delay = policy.backoff(command.attempt)
        logger.warning(
            f"Attempt {command.attempt + 1}/{max_retries + 1} failed for "
            f"{command.description}: {error}. Retrying in {delay:.1f}s..."
        )
        command.attempt += 1

        with self._lock:
            self._waiting.add(id(command))
        try:
            self._scheduler.schedule(delay, lambda: self._dispatch(command))
        except UsageError:
            self._finish(command, error=error)

    def _finish(
        self,
        command: _Command,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            if self._commands.pop(id(command), None) is None:
                return
            self._waiting.discard(id(command))

        if error is not None:
            command.future.set_exception(error)
        else:
            command.future.set_result(result)

        with self._lock:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting commands and release the pools.

        Args:
            wait: Wait for in-flight commands, including scheduled retries,
                to reach a terminal outcome. When False, commands waiting for
                a retry fail with UsageError.
        """
        with self._lock:
            if self._state == ExecutorState.STOPPED:
                return
            self._state = ExecutorState.STOPPING
            logger.debug(f"Command executor stopping ({self._in_flight} in flight)")
            if wait:
                while self._in_flight:
                    self._idle.wait()

        self._scheduler.stop()
        with self._lock:
            abandoned = [self._commands[i] for i in self._waiting if i in self._commands]
        for command in abandoned:
            self._finish(
                command,
                error=UsageError(f"Executor shut down before '{command.description}' completed"),
            )

        self._api.shutdown(wait=wait)
        self._internal.shutdown(wait=wait)
        with self._lock:
            self._state = ExecutorState.STOPPED
        logger.debug("Command executor stopped")

    def __enter__(self) -> CommandExecutor:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()

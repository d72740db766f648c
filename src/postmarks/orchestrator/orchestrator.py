"""Durable step orchestrator.

A workflow is an ``async`` function of a :class:`Run` that performs its
side effects only through :meth:`StepOrchestrator.do`.  Each call names
its step; the name is the idempotency key:

* a step whose success is already in the log is replayed: its stored
  value is returned and the action is not invoked;
* otherwise the action runs (with a per-attempt timeout), and its outcome
  is written to the log before the value is handed back.

Transient failures are retried with exponential backoff.  Every attempt is
logged as ``started`` before its action runs, so an attempt cut short by a
timeout or a crash still counts and the budget of a step holds across
host restarts.

Usage::

    orchestrator = StepOrchestrator(StepLog(Path("runs.sqlite3")))
    run = await orchestrator.create_run("a@x.com", "https://example.com")

    async def workflow(run: Run) -> None:
        text = await orchestrator.do(run, "fetch-content", lambda: fetch(run.url))
        ...

    await orchestrator.execute(run, workflow)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic_core import to_jsonable_python

from postmarks.errors import (
    InvariantViolation,
    PostmarksError,
    StepRetriesExhaustedError,
    TerminalError,
    TransientError,
)
from postmarks.orchestrator.models import FailureKind, Run, RunStatus, StepOutcome, StepResult
from postmarks.orchestrator.step_log import StepLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

Action = Callable[[], Awaitable[Any]]
Workflow = Callable[[Run], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour of a single step.

    Attributes
    ----------
    max_attempts:
        Total invocations allowed for the step, across resumptions.
    base_delay:
        Backoff before the second attempt, in seconds; doubles each time.
    max_delay:
        Cap on a single backoff.
    timeout:
        Per-attempt timeout in seconds (``None`` disables it).
    timeout_is_terminal:
        Treat a timeout as terminal instead of transient.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float | None = 60.0
    timeout_is_terminal: bool = False

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))


def classify(exc: BaseException, policy: RetryPolicy) -> FailureKind:
    """Map an exception raised by a step action to a failure kind."""
    if isinstance(exc, TimeoutError):
        return FailureKind.TERMINAL if policy.timeout_is_terminal else FailureKind.TRANSIENT
    if isinstance(exc, (TransientError, ConnectionError)):
        return FailureKind.TRANSIENT
    if isinstance(exc, TerminalError):
        return FailureKind.TERMINAL
    return FailureKind.PROGRAMMER


def _most_severe(errors: list[BaseException]) -> BaseException:
    # Cancellation first, then programmer errors, so neither hides behind a terminal one.
    for err in errors:
        if isinstance(err, asyncio.CancelledError):
            return err
    for err in errors:
        if not isinstance(err, PostmarksError) or isinstance(err, InvariantViolation):
            return err
    return errors[0]


class StepOrchestrator:
    """Executes workflows as sequences of named, memoized steps.

    Parameters
    ----------
    step_log:
        Durable log the step outcomes and run statuses are written to.
    default_policy:
        Retry policy for steps that do not pass their own.
    fan_out_limit:
        Maximum number of fan-out actions running at once.
    """

    def __init__(
        self,
        step_log: StepLog,
        *,
        default_policy: RetryPolicy | None = None,
        fan_out_limit: int = 8,
    ) -> None:
        self.step_log = step_log
        self.default_policy = default_policy or RetryPolicy()
        self.fan_out_limit = fan_out_limit

    # -- runs -----------------------------------------------------------------

    async def create_run(self, owner: str, url: str) -> Run:
        run = Run(owner=owner, url=url)
        await self.step_log.create_run(run)
        logger.info("Created run %s for %s: %s", run.run_id, owner, url)
        return run

    async def load_run(self, run_id: str) -> Run | None:
        return await self.step_log.load(run_id)

    async def execute(self, run: Run, workflow: Workflow) -> Run:
        """Drive *run* through *workflow* and record its final status.

        Terminal failures end the run as ``failed``.  Programmer errors also
        fail the run and are re-raised.  Cancellation leaves the status
        untouched so the run can be resumed later.
        """
        if run.status.is_terminal:
            logger.info("Run %s already %s; nothing to do", run.run_id, run.status.value)
            return run

        run.status = RunStatus.RUNNING
        run.error = None
        await self.step_log.save_status(run)
        try:
            await workflow(run)
        except asyncio.CancelledError:
            logger.info("Run %s cancelled; completed steps stay committed", run.run_id)
            raise
        except TerminalError as exc:
            await self._finish(run, RunStatus.FAILED, str(exc))
            logger.warning("Run %s failed: %s", run.run_id, exc)
        except Exception as exc:
            await self._finish(run, RunStatus.FAILED, f"{type(exc).__name__}: {exc}")
            logger.exception("Run %s aborted by an unexpected error", run.run_id)
            raise
        else:
            await self._finish(run, RunStatus.COMPLETED, None)
            logger.info("Run %s completed", run.run_id)
        return run

    async def fail_run(self, run: Run, reason: str) -> None:
        """Mark *run* failed without executing anything further."""
        if not run.status.is_terminal:
            await self._finish(run, RunStatus.FAILED, reason)
            logger.info("Run %s marked failed: %s", run.run_id, reason)

    async def _finish(self, run: Run, status: RunStatus, error: str | None) -> None:
        run.status = status
        run.error = error
        await self.step_log.save_status(run)

    # -- steps ----------------------------------------------------------------

    async def do(
        self,
        run: Run,
        step_name: str,
        action: Action,
        *,
        policy: RetryPolicy | None = None,
    ) -> Any:
        """Run *action* as the step *step_name* of *run*, at most once to success.

        Returns the JSON-compatible value stored for the step.  The same
        value is returned on every replay.

        Raises
        ------
        TerminalError
            The action failed terminally, or its attempt budget is spent
            (:class:`StepRetriesExhaustedError`).
        InvariantViolation
            *step_name* is already executing within this run.
        """
        previous = run.steps.get(step_name)
        if previous is not None and previous.succeeded:
            logger.debug("Run %s: replaying %s", run.run_id, step_name)
            return previous.value
        if step_name in run._inflight:
            raise InvariantViolation(f"step {step_name!r} issued twice in run {run.run_id}")

        policy = policy or self.default_policy
        attempts = previous.attempts if previous is not None else 0
        if attempts >= policy.max_attempts:
            raise StepRetriesExhaustedError(step_name, attempts, PostmarksError(previous.error or "interrupted"))

        run._inflight.add(step_name)
        try:
            while True:
                attempts += 1
                logger.debug("Run %s: %s attempt %d/%d", run.run_id, step_name, attempts, policy.max_attempts)
                await self.step_log.record(
                    run, StepResult(step_name=step_name, outcome=StepOutcome.STARTED, attempts=attempts)
                )
                try:
                    value = await asyncio.wait_for(action(), timeout=policy.timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    kind = classify(exc, policy)
                    exhausted = kind is FailureKind.TRANSIENT and attempts >= policy.max_attempts
                    await self._record_failure(
                        run, step_name, FailureKind.TERMINAL if exhausted else kind, exc, attempts
                    )
                    if kind is not FailureKind.TRANSIENT:
                        raise
                    if exhausted:
                        raise StepRetriesExhaustedError(step_name, attempts, exc) from exc
                    delay = policy.delay_for(attempts)
                    logger.warning(
                        "Run %s: %s failed (attempt %d/%d), retrying in %.1fs: %s",
                        run.run_id,
                        step_name,
                        attempts,
                        policy.max_attempts,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
                    continue

                result = StepResult(
                    step_name=step_name,
                    outcome=StepOutcome.SUCCESS,
                    value=to_jsonable_python(value),
                    attempts=attempts,
                )
                await self.step_log.record(run, result)
                logger.info("Run %s: %s done", run.run_id, step_name)
                return result.value
        finally:
            run._inflight.discard(step_name)

    async def _record_failure(
        self,
        run: Run,
        step_name: str,
        kind: FailureKind,
        exc: BaseException,
        attempts: int,
    ) -> None:
        result = StepResult(
            step_name=step_name,
            outcome=StepOutcome.FAILURE,
            failure_kind=kind,
            error=f"{type(exc).__name__}: {exc}",
            attempts=attempts,
        )
        await self.step_log.record(run, result)

    async def fan_out(self, actions: Sequence[Callable[[], Awaitable[T]]], *, limit: int | None = None) -> list[T]:
        """Run independent step coroutines concurrently.

        Every action is allowed to finish before the first error is raised,
        so siblings that succeeded are memoized and will be replayed on the
        next attempt of the run.  Results keep the order of *actions*.
        """
        semaphore = asyncio.Semaphore(limit or self.fan_out_limit)

        async def _bounded(action: Callable[[], Awaitable[T]]) -> T:
            async with semaphore:
                return await action()

        results = await asyncio.gather(*(_bounded(a) for a in actions), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise _most_severe(errors)
        return list(results)  # type: ignore[arg-type]

"""Run and step records persisted by the step log."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, PrivateAttr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class StepOutcome(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    FAILURE = "failure"


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"
    PROGRAMMER = "programmer"


class StepResult(BaseModel):
    """Latest recorded outcome of one named step.

    Attributes
    ----------
    step_name:
        Unique name of the step within its run.
    outcome:
        ``started`` while an attempt is in progress (or was interrupted),
        then ``success`` or ``failure``.
    value:
        JSON-compatible value returned by the action (success only).
    failure_kind:
        Classification of the last failure (failure only).
    error:
        Message of the last failure.
    attempts:
        Number of times the action has been invoked, across resumptions.
    completed_at:
        When this outcome was recorded.
    """

    step_name: str
    outcome: StepOutcome
    value: Any = None
    failure_kind: FailureKind | None = None
    error: str | None = None
    attempts: int = 1
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.outcome is StepOutcome.SUCCESS


class Run(BaseModel):
    """One execution instance of the ingestion pipeline for ``(owner, url)``."""

    run_id: str = Field(default_factory=lambda: uuid4().hex)
    owner: str
    url: str
    status: RunStatus = RunStatus.PENDING
    steps: dict[str, StepResult] = Field(default_factory=dict)
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Step names currently executing; never persisted.
    _inflight: set[str] = PrivateAttr(default_factory=set)

"""
Orchestrator: durable, memoized execution of named workflow steps.

Public surface
--------------
- :class:`StepOrchestrator`: ``do`` / ``fan_out`` / ``execute``.
- :class:`RetryPolicy`: per-step attempt budget, backoff and timeout.
- :class:`StepLog`: SQLite-backed ``(run_id, step_name) -> StepResult`` log.
- :class:`Run`, :class:`RunStatus`, :class:`StepResult`: persisted records.
"""

from postmarks.orchestrator.models import FailureKind, Run, RunStatus, StepOutcome, StepResult
from postmarks.orchestrator.orchestrator import RetryPolicy, StepOrchestrator, classify
from postmarks.orchestrator.step_log import StepLog

__all__ = [
    "FailureKind",
    "RetryPolicy",
    "Run",
    "RunStatus",
    "StepLog",
    "StepOrchestrator",
    "StepOutcome",
    "StepResult",
    "classify",
]

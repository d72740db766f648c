"""Durable log of runs and their step results, backed by SQLite.

Every write happens before the orchestrator hands a step's value back to
the pipeline, so a crashed host can rebuild any run with :meth:`StepLog.load`
and resume it without re-executing completed steps.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path

from postmarks.orchestrator.models import Run, RunStatus, StepResult, utcnow
from postmarks.store.sqlite import get_connection, initialize_schema

logger = logging.getLogger(__name__)

STEP_LOG_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY NOT NULL,
    owner TEXT NOT NULL,
    url TEXT NOT NULL,
    status TEXT NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status);
CREATE TABLE IF NOT EXISTS run_steps (
    run_id TEXT NOT NULL,
    step_name TEXT NOT NULL,
    seq INTEGER NOT NULL,
    result_json TEXT NOT NULL,
    PRIMARY KEY (run_id, step_name),
    FOREIGN KEY (run_id) REFERENCES runs(run_id) ON DELETE CASCADE
);
"""


class StepLog:
    """Key-value log of ``(run_id, step_name) -> StepResult`` plus run headers."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        initialize_schema(self.db_path, STEP_LOG_SCHEMA)

    # -- async API (used by the orchestrator) ---------------------------------

    async def create_run(self, run: Run) -> None:
        await asyncio.to_thread(self._insert_run, run)

    async def save_status(self, run: Run) -> None:
        run.updated_at = utcnow()
        await asyncio.to_thread(self._update_run, run)

    async def record(self, run: Run, result: StepResult) -> None:
        """Persist *result* and mirror it onto ``run.steps``."""
        await asyncio.to_thread(self._upsert_step, run.run_id, result)
        run.steps[result.step_name] = result

    async def load(self, run_id: str) -> Run | None:
        return await asyncio.to_thread(self._select_run, run_id)

    async def list_runs(self, *statuses: RunStatus) -> list[Run]:
        """Return runs in any of *statuses* (all runs when none given), oldest first."""
        return await asyncio.to_thread(self._select_runs, statuses)

    # -- blocking helpers -----------------------------------------------------

    def _insert_run(self, run: Run) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO runs (run_id, owner, url, status, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.run_id,
                    run.owner,
                    run.url,
                    run.status.value,
                    run.error,
                    run.created_at.isoformat(),
                    run.updated_at.isoformat(),
                ),
            )

    def _update_run(self, run: Run) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                "UPDATE runs SET status = ?, error = ?, updated_at = ? WHERE run_id = ?",
                (run.status.value, run.error, run.updated_at.isoformat(), run.run_id),
            )

    def _upsert_step(self, run_id: str, result: StepResult) -> None:
        payload = result.model_dump_json()
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO run_steps (run_id, step_name, seq, result_json)
                VALUES (?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM run_steps WHERE run_id = ?), ?)
                ON CONFLICT (run_id, step_name) DO UPDATE SET result_json = excluded.result_json
                """,
                (run_id, result.step_name, run_id, payload),
            )

    def _select_run(self, run_id: str) -> Run | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)).fetchone()
            if row is None:
                return None
            steps = conn.execute(
                "SELECT result_json FROM run_steps WHERE run_id = ? ORDER BY seq",
                (run_id,),
            ).fetchall()
        return _row_to_run(row, steps)

    def _select_runs(self, statuses: tuple[RunStatus, ...]) -> list[Run]:
        with get_connection(self.db_path) as conn:
            if statuses:
                marks = ", ".join("?" for _ in statuses)
                rows = conn.execute(
                    f"SELECT run_id FROM runs WHERE status IN ({marks}) ORDER BY created_at",
                    [s.value for s in statuses],
                ).fetchall()
            else:
                rows = conn.execute("SELECT run_id FROM runs ORDER BY created_at").fetchall()
        runs = [self._select_run(row["run_id"]) for row in rows]
        return [run for run in runs if run is not None]


def _row_to_run(row: sqlite3.Row, steps: list[sqlite3.Row]) -> Run:
    results = [StepResult.model_validate_json(s["result_json"]) for s in steps]
    return Run(
        run_id=row["run_id"],
        owner=row["owner"],
        url=row["url"],
        status=RunStatus(row["status"]),
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        steps={r.step_name: r for r in results},
    )

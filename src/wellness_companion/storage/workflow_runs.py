"""Workflow run and completed-step records for resumable check-in cycles."""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from wellness_companion.storage.database import open_user_db, write_transaction

RUN_STATUSES = ("waiting", "completed", "timed_out", "failed")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class WorkflowRun:
    """One check-in cycle."""

    run_id: str
    user_id: str
    started_at: str
    status: str
    state: str
    awaited_event: str | None = None
    timeout_deadline: str | None = None
    error: str | None = None
    history: list[str] = field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "timed_out", "failed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "userId": self.user_id,
            "startedAt": self.started_at,
            "status": self.status,
            "state": self.state,
            "awaitedEvent": self.awaited_event,
            "timeoutDeadline": self.timeout_deadline,
            "error": self.error,
        }


def _row_to_run(row: sqlite3.Row) -> WorkflowRun:
    return WorkflowRun(
        run_id=row["run_id"],
        user_id=row["user_id"],
        started_at=row["started_at"],
        status=row["status"],
        state=row["state"],
        awaited_event=row["awaited_event"],
        timeout_deadline=row["timeout_deadline"],
        error=row["error"],
    )


class WorkflowRunStorage:
    """Persists runs and their completed steps for one user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id

    def create_run(self, state: str = "idle") -> WorkflowRun:
        run = WorkflowRun(
            run_id=uuid.uuid4().hex,
            user_id=self.user_id,
            started_at=_utc_now(),
            status="waiting",
            state=state,
            history=[state],
        )
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                conn.execute(
                    """
                    INSERT INTO workflow_runs
                        (run_id, user_id, status, state, started_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (run.run_id, run.user_id, run.status, run.state, run.started_at, run.started_at),
                )
        return run

    def save_run(self, run: WorkflowRun) -> None:
        if run.status not in RUN_STATUSES:
            raise ValueError(f"Invalid run status: {run.status}")
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                conn.execute(
                    """
                    UPDATE workflow_runs
                    SET status = ?, state = ?, awaited_event = ?, timeout_deadline = ?,
                        error = ?, updated_at = ?
                    WHERE run_id = ?
                    """,
                    (
                        run.status,
                        run.state,
                        run.awaited_event,
                        run.timeout_deadline,
                        run.error,
                        _utc_now(),
                        run.run_id,
                    ),
                )

    def get_run(self, run_id: str) -> WorkflowRun | None:
        with open_user_db(self.user_id) as conn:
            row = conn.execute(
                "SELECT * FROM workflow_runs WHERE run_id = ? AND user_id = ?",
                (run_id, self.user_id),
            ).fetchone()
        return _row_to_run(row) if row else None

    def list_runs(self, status: str | None = None) -> list[WorkflowRun]:
        query = "SELECT * FROM workflow_runs WHERE user_id = ?"
        params: list[Any] = [self.user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY started_at DESC"
        with open_user_db(self.user_id) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_run(row) for row in rows]

    def record_step(self, run_id: str, step_name: str, result: Any) -> None:
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                conn.execute(
                    """
                    INSERT OR REPLACE INTO workflow_steps (run_id, step_name, result, completed_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (run_id, step_name, json.dumps(result), _utc_now()),
                )

    def completed_steps(self, run_id: str) -> dict[str, Any]:
        """Map of step name to its stored result."""
        with open_user_db(self.user_id) as conn:
            rows = conn.execute(
                "SELECT step_name, result FROM workflow_steps WHERE run_id = ?",
                (run_id,),
            ).fetchall()
        return {row["step_name"]: json.loads(row["result"]) for row in rows}

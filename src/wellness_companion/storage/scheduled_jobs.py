"""Scheduled job records.

Jobs are persisted per user so they survive restarts; the scheduler re-arms
them on agent start.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from wellness_companion.storage.database import open_user_db, write_transaction


@dataclass
class ScheduledJob:
    """A scheduled job record."""

    id: str
    user_id: str
    callback_name: str
    trigger_kind: str  # scheduled, delayed, cron
    trigger_value: str
    payload: str | None
    next_run_at: str | None
    created_at: str

    @property
    def is_recurring(self) -> bool:
        """Check if job re-arms after firing."""
        return self.trigger_kind == "cron"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "callback": self.callback_name,
            "type": self.trigger_kind,
            "value": self.trigger_value,
            "payload": self.payload,
            "nextRunAt": self.next_run_at,
            "createdAt": self.created_at,
        }


def _row_to_job(row: sqlite3.Row) -> ScheduledJob:
    return ScheduledJob(
        id=row["id"],
        user_id=row["user_id"],
        callback_name=row["callback_name"],
        trigger_kind=row["trigger_kind"],
        trigger_value=row["trigger_value"],
        payload=row["payload"],
        next_run_at=row["next_run_at"],
        created_at=row["created_at"],
    )


class ScheduledJobStorage:
    """Storage for the scheduled jobs of one user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id

    def create(
        self,
        callback_name: str,
        trigger_kind: str,
        trigger_value: str,
        payload: str | None = None,
        next_run_at: datetime | None = None,
    ) -> ScheduledJob:
        """Persist a new job and return it."""
        job = ScheduledJob(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            callback_name=callback_name,
            trigger_kind=trigger_kind,
            trigger_value=trigger_value,
            payload=payload,
            next_run_at=next_run_at.isoformat() if next_run_at else None,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                conn.execute(
                    """
                    INSERT INTO scheduled_jobs (
                        id, user_id, callback_name, trigger_kind, trigger_value,
                        payload, next_run_at, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        job.user_id,
                        job.callback_name,
                        job.trigger_kind,
                        job.trigger_value,
                        job.payload,
                        job.next_run_at,
                        job.created_at,
                    ),
                )
        return job

    def get_by_id(self, job_id: str) -> ScheduledJob | None:
        with open_user_db(self.user_id) as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE user_id = ? AND id = ?",
                (self.user_id, job_id),
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(self, callback_name: str | None = None) -> list[ScheduledJob]:
        query = "SELECT * FROM scheduled_jobs WHERE user_id = ?"
        params: list[Any] = [self.user_id]
        if callback_name:
            query += " AND callback_name = ?"
            params.append(callback_name)
        query += " ORDER BY created_at ASC"
        with open_user_db(self.user_id) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def update_next_run(self, job_id: str, next_run_at: datetime | None) -> None:
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                conn.execute(
                    "UPDATE scheduled_jobs SET next_run_at = ? WHERE user_id = ? AND id = ?",
                    (next_run_at.isoformat() if next_run_at else None, self.user_id, job_id),
                )

    def delete(self, job_id: str) -> bool:
        """Delete a job. Returns False if it did not exist."""
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                cursor = conn.execute(
                    "DELETE FROM scheduled_jobs WHERE user_id = ? AND id = ?",
                    (self.user_id, job_id),
                )
        return cursor.rowcount > 0

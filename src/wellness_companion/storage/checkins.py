"""Check-in ledger: at most one record per user per calendar day."""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from wellness_companion.config import settings
from wellness_companion.errors import ValidationError
from wellness_companion.logging import format_log_context, get_logger, truncate_log_text
from wellness_companion.state import CheckInSummary, StateSlot
from wellness_companion.storage.database import open_user_db, write_transaction
from wellness_companion.storage.preferences import PreferenceStore
from wellness_companion.tone import normalize_tone
from wellness_companion.utils.cron import resolve_timezone

logger = get_logger(__name__)

MIN_HISTORY_LIMIT = 1
MAX_HISTORY_LIMIT = 30


@dataclass(frozen=True)
class CheckInRecord:
    """One stored daily check-in."""

    id: str
    user_id: str
    date: str
    emotional_tone: str
    summary: str
    recommendations: list[str] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "date": self.date,
            "emotionalTone": self.emotional_tone,
            "summary": self.summary,
            "recommendations": list(self.recommendations),
            "createdAt": self.created_at,
        }

    def to_summary(self) -> CheckInSummary:
        return CheckInSummary(
            date=self.date, emotional_tone=self.emotional_tone, summary=self.summary
        )


def _row_to_record(row: sqlite3.Row) -> CheckInRecord:
    try:
        recommendations = json.loads(row["recommendations"] or "[]")
    except json.JSONDecodeError:
        recommendations = []
    return CheckInRecord(
        id=row["id"],
        user_id=row["user_id"],
        date=row["date"],
        emotional_tone=row["emotional_tone"],
        summary=row["summary"],
        recommendations=recommendations,
        created_at=row["created_at"],
    )


class CheckInLedger:
    """Idempotent daily check-in records for a single user."""

    def __init__(
        self,
        user_id: str,
        slot: StateSlot | None = None,
        preferences: PreferenceStore | None = None,
    ) -> None:
        self.user_id = user_id
        self.slot = slot
        self.preferences = preferences or PreferenceStore(user_id, slot)

    def today(self) -> date:
        """Current calendar date in the user's timezone."""
        tz = resolve_timezone(self.preferences.get_timezone())
        return datetime.now(tz).date()

    def upsert_check_in(
        self,
        tone: str,
        summary: str,
        recommendations: list[str],
        on_date: date | None = None,
    ) -> CheckInRecord:
        """Insert today's check-in, or update it in place if one exists.

        Args:
            tone: positive/neutral/negative; anything else is stored as neutral
            summary: Non-empty summary text
            recommendations: Ordered list of recommendation strings
            on_date: Calendar date to write (defaults to today in the user's timezone)

        Raises:
            ValidationError: If summary is empty or recommendations is not a list of strings.
        """
        if not isinstance(summary, str) or not summary.strip():
            raise ValidationError("Summary is required")
        if not isinstance(recommendations, list) or not all(
            isinstance(item, str) for item in recommendations
        ):
            raise ValidationError("Recommendations must be a list of strings")

        normalized = normalize_tone(tone)
        day = (on_date or self.today()).isoformat()
        now = datetime.now(timezone.utc).isoformat()
        payload = json.dumps(recommendations)

        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                existing = conn.execute(
                    "SELECT id FROM check_ins WHERE user_id = ? AND date = ?",
                    (self.user_id, day),
                ).fetchone()
                if existing:
                    record_id = existing["id"]
                    conn.execute(
                        """
                        UPDATE check_ins
                        SET emotional_tone = ?, summary = ?, recommendations = ?, created_at = ?
                        WHERE id = ?
                        """,
                        (normalized, summary, payload, now, record_id),
                    )
                else:
                    record_id = uuid.uuid4().hex
                    conn.execute(
                        """
                        INSERT INTO check_ins
                            (id, user_id, date, emotional_tone, summary, recommendations, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (record_id, self.user_id, day, normalized, summary, payload, now),
                    )

        record = CheckInRecord(
            id=record_id,
            user_id=self.user_id,
            date=day,
            emotional_tone=normalized,
            summary=summary,
            recommendations=list(recommendations),
            created_at=now,
        )
        ctx = format_log_context("checkin_saved", component="ledger", user=self.user_id)
        action = "updated" if existing else "inserted"
        logger.info(f"{ctx} {action} {day} tone={normalized} summary={truncate_log_text(summary, 80)}")

        self.refresh_state()
        return record

    def get_history(self, limit: int = 7) -> list[CheckInRecord]:
        """Return up to ``limit`` records, newest date first.

        Raises:
            ValidationError: If limit is outside 1-30.
        """
        if (
            isinstance(limit, bool)
            or not isinstance(limit, int)
            or not MIN_HISTORY_LIMIT <= limit <= MAX_HISTORY_LIMIT
        ):
            raise ValidationError(
                f"Limit must be between {MIN_HISTORY_LIMIT} and {MAX_HISTORY_LIMIT}"
            )
        return self._recent(limit)

    def get_last_check_in_date(self) -> date | None:
        with open_user_db(self.user_id) as conn:
            row = conn.execute(
                "SELECT MAX(date) AS last_date FROM check_ins WHERE user_id = ?",
                (self.user_id,),
            ).fetchone()
        if row is None or row["last_date"] is None:
            return None
        return date.fromisoformat(row["last_date"])

    def refresh_state(self) -> None:
        """Reload the recent check-ins cached in agent state."""
        if self.slot is None:
            return
        recent = self._recent(settings.STATE_RECENT_CHECK_INS)
        self.slot.update(
            daily_check_ins=tuple(record.to_summary() for record in recent),
            last_check_in=recent[0].date if recent else None,
        )

    def _recent(self, limit: int) -> list[CheckInRecord]:
        with open_user_db(self.user_id) as conn:
            rows = conn.execute(
                """
                SELECT * FROM check_ins
                WHERE user_id = ?
                ORDER BY date DESC, created_at DESC
                LIMIT ?
                """,
                (self.user_id, limit),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

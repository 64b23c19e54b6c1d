"""User preferences storage.

One row per user in ``user_preferences``. Reads go through a single
get-with-fallback helper: cached agent state, then the persisted row, then
the configured default.
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from wellness_companion.config import settings
from wellness_companion.errors import ValidationError
from wellness_companion.logging import format_log_context, get_logger
from wellness_companion.state import StateSlot
from wellness_companion.storage.database import open_user_db, write_transaction
from wellness_companion.utils.cron import is_valid_check_in_time, is_valid_timezone

logger = get_logger(__name__)

MAX_AGENT_NAME_LENGTH = 50


class ModelProvider(str, Enum):
    OPENAI = "openai"
    WORKERS_AI = "workers-ai"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class UserPreferences:
    """Persisted preferences of one user."""

    user_id: str
    check_in_time: str
    timezone: str
    agent_name: str
    model_provider: str
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "userId": data["user_id"],
            "checkInTime": data["check_in_time"],
            "timezone": data["timezone"],
            "agentName": data["agent_name"],
            "modelProvider": data["model_provider"],
            "updatedAt": data["updated_at"],
        }


def default_preferences(user_id: str) -> UserPreferences:
    return UserPreferences(
        user_id=user_id,
        check_in_time=settings.DEFAULT_CHECK_IN_TIME,
        timezone=settings.DEFAULT_TIMEZONE,
        agent_name=settings.AGENT_NAME,
        model_provider=settings.DEFAULT_MODEL_PROVIDER,
    )


class PreferenceStore:
    """Reads and updates the preferences of a single user."""

    def __init__(self, user_id: str, slot: StateSlot | None = None) -> None:
        self.user_id = user_id
        self.slot = slot

    # ========================================================================
    # Reads
    # ========================================================================

    def get_preferences(self) -> UserPreferences:
        """Return the full row, creating it with defaults on first access."""
        with open_user_db(self.user_id) as conn:
            prefs = self._read(conn)
            if prefs is None:
                with write_transaction(conn):
                    self._insert_defaults(conn)
                prefs = self._read(conn)
        self._publish(prefs)
        return prefs

    def get_agent_name(self) -> str:
        return self._get_with_fallback("agent_name")

    def get_model_provider(self) -> str:
        return self._get_with_fallback("model_provider")

    def get_check_in_time(self) -> str:
        return self._get_with_fallback("check_in_time")

    def get_timezone(self) -> str:
        return self._get_with_fallback("timezone")

    def _get_with_fallback(self, field: str) -> str:
        """State slot, then database row, then configured default. Never raises."""
        default = getattr(default_preferences(self.user_id), field)

        if self.slot is not None:
            cached = self.slot.state.preferences
            if cached is not None and getattr(cached, field):
                return getattr(cached, field)

        try:
            with open_user_db(self.user_id) as conn:
                prefs = self._read(conn)
        except Exception as e:
            ctx = format_log_context("preferences", component="storage", user=self.user_id)
            logger.error(f"{ctx} failed to read {field}, using default: {e}")
            return default

        if prefs is None:
            return default
        return getattr(prefs, field) or default

    # ========================================================================
    # Updates
    # ========================================================================

    def update_agent_name(self, name: str) -> UserPreferences:
        cleaned = name.strip() if isinstance(name, str) else ""
        if not cleaned:
            raise ValidationError("Agent name cannot be empty")
        if len(cleaned) > MAX_AGENT_NAME_LENGTH:
            raise ValidationError(
                f"Agent name must be {MAX_AGENT_NAME_LENGTH} characters or less"
            )
        return self._update("agent_name", cleaned)

    def update_model_provider(self, provider: str) -> UserPreferences:
        try:
            value = ModelProvider(provider).value
        except ValueError:
            allowed = ", ".join(p.value for p in ModelProvider)
            raise ValidationError(
                f"Invalid model provider '{provider}'. Must be one of: {allowed}"
            ) from None
        return self._update("model_provider", value)

    def update_check_in_time(self, value: str) -> UserPreferences:
        if not is_valid_check_in_time(value):
            raise ValidationError(
                f"Invalid check-in time '{value}'. Use HH:MM format (24-hour)"
            )
        return self._update("check_in_time", value)

    def update_timezone(self, name: str) -> UserPreferences:
        if not is_valid_timezone(name):
            raise ValidationError(f"Unknown timezone '{name}'")
        return self._update("timezone", name)

    def _update(self, column: str, value: str) -> UserPreferences:
        with open_user_db(self.user_id) as conn:
            with write_transaction(conn):
                self._insert_defaults(conn)
                conn.execute(
                    f"UPDATE user_preferences SET {column} = ?, updated_at = ? WHERE user_id = ?",
                    (value, _utc_now(), self.user_id),
                )
            prefs = self._read(conn)

        self._publish(prefs)
        ctx = format_log_context("preferences", component="storage", user=self.user_id)
        logger.info(f"{ctx} {column} updated to {value}")
        return prefs

    # ========================================================================
    # Helpers
    # ========================================================================

    def _insert_defaults(self, conn: sqlite3.Connection) -> None:
        defaults = default_preferences(self.user_id)
        conn.execute(
            """
            INSERT OR IGNORE INTO user_preferences
                (user_id, check_in_time, timezone, agent_name, model_provider, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                self.user_id,
                defaults.check_in_time,
                defaults.timezone,
                defaults.agent_name,
                defaults.model_provider,
                _utc_now(),
            ),
        )

    def _read(self, conn: sqlite3.Connection) -> UserPreferences | None:
        row = conn.execute(
            "SELECT * FROM user_preferences WHERE user_id = ?", (self.user_id,)
        ).fetchone()
        if row is None:
            return None
        defaults = default_preferences(self.user_id)
        return UserPreferences(
            user_id=row["user_id"],
            check_in_time=row["check_in_time"] or defaults.check_in_time,
            timezone=row["timezone"] or defaults.timezone,
            agent_name=row["agent_name"] or defaults.agent_name,
            model_provider=row["model_provider"] or defaults.model_provider,
            updated_at=row["updated_at"],
        )

    def _publish(self, prefs: UserPreferences) -> None:
        if self.slot is not None:
            self.slot.update(preferences=prefs)

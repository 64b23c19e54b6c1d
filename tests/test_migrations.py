from __future__ import annotations

import sqlite3

import pytest

from wellness_companion.config import settings
from wellness_companion.storage import database
from wellness_companion.storage.database import (
    SCHEMA_VERSION,
    connect,
    ensure_schema,
    get_schema_version,
    migrate,
    open_user_db,
    write_transaction,
)


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}


def test_fresh_database_is_migrated_to_latest(tmp_path) -> None:
    conn = connect(tmp_path / "fresh.db")
    try:
        assert migrate(conn) == SCHEMA_VERSION
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"check_ins", "user_preferences", "scheduled_jobs", "workflow_runs", "workflow_steps"} <= tables
        assert {"agent_name", "model_provider"} <= _columns(conn, "user_preferences")
    finally:
        conn.close()


def test_migrate_is_a_no_op_when_current(tmp_path) -> None:
    conn = connect(tmp_path / "again.db")
    try:
        migrate(conn)
        conn.execute(
            "INSERT INTO user_preferences (user_id, updated_at) VALUES ('bob', 'now')"
        )
        assert migrate(conn) == SCHEMA_VERSION
        assert conn.execute("SELECT COUNT(*) FROM user_preferences").fetchone()[0] == 1
    finally:
        conn.close()


def test_version_one_database_gains_later_columns(tmp_path) -> None:
    conn = connect(tmp_path / "old.db")
    try:
        with write_transaction(conn):
            database.MIGRATIONS[0](conn)
            conn.execute("PRAGMA user_version = 1")
        conn.execute(
            "INSERT INTO user_preferences (user_id, check_in_time, timezone, updated_at) "
            "VALUES ('bob', '08:15', 'UTC', 'then')"
        )

        migrate(conn)

        row = conn.execute("SELECT * FROM user_preferences WHERE user_id = 'bob'").fetchone()
        assert row["check_in_time"] == "08:15"
        assert row["agent_name"] is None
        assert row["model_provider"] == "openai"
        assert get_schema_version(conn) == SCHEMA_VERSION
    finally:
        conn.close()


def test_ensure_schema_runs_once_per_file(tmp_path, monkeypatch) -> None:
    calls: list[str] = []
    original = database.migrate

    def _counting_migrate(conn):
        calls.append("migrate")
        return original(conn)

    monkeypatch.setattr(database, "migrate", _counting_migrate)
    db_path = tmp_path / "once.db"

    ensure_schema(db_path)
    ensure_schema(db_path)

    assert calls == ["migrate"]


def test_user_database_lives_under_users_root() -> None:
    with open_user_db("carol") as conn:
        assert get_schema_version(conn) == SCHEMA_VERSION
    assert (settings.USERS_ROOT / "carol" / "wellness.db").exists()


def test_check_in_unique_per_user_and_day() -> None:
    with open_user_db("dave") as conn:
        conn.execute(
            "INSERT INTO check_ins (id, user_id, date, emotional_tone, summary, created_at) "
            "VALUES ('a', 'dave', '2026-01-01', 'neutral', 's', 'now')"
        )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO check_ins (id, user_id, date, emotional_tone, summary, created_at) "
                "VALUES ('b', 'dave', '2026-01-01', 'neutral', 's', 'now')"
            )


def test_write_transaction_rolls_back_on_error(tmp_path) -> None:
    conn = connect(tmp_path / "rollback.db")
    try:
        migrate(conn)
        with pytest.raises(RuntimeError):
            with write_transaction(conn):
                conn.execute(
                    "INSERT INTO user_preferences (user_id, updated_at) VALUES ('eve', 'now')"
                )
                raise RuntimeError("abort")
        assert conn.execute("SELECT COUNT(*) FROM user_preferences").fetchone()[0] == 0
    finally:
        conn.close()

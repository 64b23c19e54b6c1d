"""Per-user SQLite database with versioned migrations.

Each user gets one file at ``USERS_ROOT/<user_id>/wellness.db``. The schema
version lives in ``PRAGMA user_version``; migrations run in order, each in
its own transaction, and are applied at most once per file.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from wellness_companion.config import settings
from wellness_companion.logging import format_log_context, get_logger

logger = get_logger(__name__)

Migration = Callable[[sqlite3.Connection], None]


def _v1_initial(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS check_ins (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            date TEXT NOT NULL,
            emotional_tone TEXT NOT NULL,
            summary TEXT NOT NULL,
            recommendations TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_check_ins_user_date ON check_ins(user_id, date)"
    )
    conn.execute("""
        CREATE TABLE IF NOT EXISTS user_preferences (
            user_id TEXT PRIMARY KEY,
            check_in_time TEXT NOT NULL DEFAULT '09:00',
            timezone TEXT NOT NULL DEFAULT 'UTC',
            updated_at TEXT NOT NULL
        )
    """)


def _v2_agent_name(conn: sqlite3.Connection) -> None:
    conn.execute("ALTER TABLE user_preferences ADD COLUMN agent_name TEXT")


def _v3_model_provider(conn: sqlite3.Connection) -> None:
    conn.execute(
        "ALTER TABLE user_preferences ADD COLUMN model_provider TEXT NOT NULL DEFAULT 'openai'"
    )


def _v4_scheduled_jobs(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS scheduled_jobs (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            callback_name TEXT NOT NULL,
            trigger_kind TEXT NOT NULL,
            trigger_value TEXT NOT NULL,
            payload TEXT,
            next_run_at TEXT,
            created_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_scheduled_jobs_callback "
        "ON scheduled_jobs(user_id, callback_name)"
    )


def _v5_workflow_runs(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS workflow_runs (
            run_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            awaited_event TEXT,
            timeout_deadline TEXT,
            status TEXT NOT NULL,
            state TEXT NOT NULL,
            error TEXT,
            started_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_workflow_runs_status ON workflow_runs(status)")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS workflow_steps (
            run_id TEXT NOT NULL,
            step_name TEXT NOT NULL,
            result TEXT NOT NULL,
            completed_at TEXT NOT NULL,
            PRIMARY KEY (run_id, step_name),
            FOREIGN KEY (run_id) REFERENCES workflow_runs(run_id)
        )
    """)


# Ordered; the position (1-based) is the schema version a migration produces
MIGRATIONS: list[Migration] = [
    _v1_initial,
    _v2_agent_name,
    _v3_model_provider,
    _v4_scheduled_jobs,
    _v5_workflow_runs,
]

SCHEMA_VERSION = len(MIGRATIONS)

_migrated_paths: set[str] = set()
_migrate_lock = threading.Lock()


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a connection in autocommit mode; callers manage transactions."""
    conn = sqlite3.connect(str(db_path), isolation_level=None, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def migrate(conn: sqlite3.Connection) -> int:
    """Apply pending migrations in order. Returns the resulting version."""
    current = get_schema_version(conn)
    for version, step in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        with write_transaction(conn):
            # Re-check under the write lock; another connection may have won
            if get_schema_version(conn) >= version:
                continue
            step(conn)
            conn.execute(f"PRAGMA user_version = {version}")
        logger.info(
            f"{format_log_context('migration', component='storage', version=version)} applied {step.__name__}"
        )
    return get_schema_version(conn)


def ensure_schema(db_path: Path | str, conn: sqlite3.Connection | None = None) -> None:
    """Migrate a database file once per process."""
    key = str(Path(db_path).resolve())
    if key in _migrated_paths:
        return
    with _migrate_lock:
        if key in _migrated_paths:
            return
        own = conn is None
        conn = conn or connect(db_path)
        try:
            migrate(conn)
        finally:
            if own:
                conn.close()
        _migrated_paths.add(key)


def reset_migration_cache() -> None:
    """Forget which files were migrated (used when the users root changes)."""
    with _migrate_lock:
        _migrated_paths.clear()


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside ``BEGIN IMMEDIATE``; commit on success, roll back on error."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


@contextmanager
def open_user_db(user_id: str) -> Iterator[sqlite3.Connection]:
    """Open (and migrate on first use) the database of one user."""
    db_path = settings.get_user_db_path(user_id)
    conn = connect(db_path)
    try:
        ensure_schema(db_path, conn)
        yield conn
    finally:
        conn.close()

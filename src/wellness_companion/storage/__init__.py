"""Per-user SQLite storage."""

from wellness_companion.storage.checkins import CheckInLedger, CheckInRecord
from wellness_companion.storage.database import (
    SCHEMA_VERSION,
    connect,
    ensure_schema,
    migrate,
    open_user_db,
    write_transaction,
)
from wellness_companion.storage.preferences import ModelProvider, PreferenceStore, UserPreferences
from wellness_companion.storage.scheduled_jobs import ScheduledJob, ScheduledJobStorage
from wellness_companion.storage.workflow_runs import WorkflowRun, WorkflowRunStorage

__all__ = [
    "SCHEMA_VERSION",
    "CheckInLedger",
    "CheckInRecord",
    "ModelProvider",
    "PreferenceStore",
    "ScheduledJob",
    "ScheduledJobStorage",
    "UserPreferences",
    "WorkflowRun",
    "WorkflowRunStorage",
    "connect",
    "ensure_schema",
    "migrate",
    "open_user_db",
    "write_transaction",
]

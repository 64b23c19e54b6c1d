"""Per-user job scheduling on APScheduler.

Jobs are persisted in the user's database and armed on a shared
``AsyncIOScheduler``. When a job fires, its callback name and payload are
handed to a dispatcher (the agent registry) which runs the matching agent
method.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.date import DateTrigger

from wellness_companion.errors import InvalidScheduleError, NotFoundError, ScheduleError
from wellness_companion.logging import format_log_context, get_logger
from wellness_companion.storage.preferences import PreferenceStore
from wellness_companion.storage.scheduled_jobs import ScheduledJob, ScheduledJobStorage
from wellness_companion.utils.cron import (
    build_cron_trigger,
    daily_cron_for,
    is_valid_check_in_time,
    parse_cron_next,
    resolve_timezone,
)

logger = get_logger(__name__)

DAILY_CHECK_IN_CALLBACK = "executeDailyCheckIn"
TASK_CALLBACK = "executeTask"
CALLBACKS = frozenset({DAILY_CHECK_IN_CALLBACK, TASK_CALLBACK})

Dispatcher = Callable[[str, str, str | None], Awaitable[Any]]


# ============================================================================
# Trigger definitions
# ============================================================================


@dataclass(frozen=True)
class ScheduleAt:
    """Run once at an absolute time."""

    when: datetime
    kind: str = "scheduled"


@dataclass(frozen=True)
class ScheduleAfter:
    """Run once after a delay in seconds."""

    seconds: int
    kind: str = "delayed"


@dataclass(frozen=True)
class ScheduleCron:
    """Run on a recurring 5-field cron expression."""

    expression: str
    kind: str = "cron"


Schedule = ScheduleAt | ScheduleAfter | ScheduleCron


def parse_schedule(data: dict[str, Any]) -> Schedule:
    """Convert tool input into a trigger definition.

    Accepted shapes:
        {"type": "scheduled", "date": "2026-01-01T09:00:00Z"}
        {"type": "delayed", "delayInSeconds": 60}
        {"type": "cron", "cron": "0 9 * * *"}

    Raises:
        InvalidScheduleError: For "no-schedule", unknown types or missing values.
    """
    if not isinstance(data, dict):
        raise InvalidScheduleError("Not a valid schedule input")

    kind = data.get("type")
    if kind == "scheduled":
        value = data.get("date")
        if isinstance(value, datetime):
            return ScheduleAt(value)
        if isinstance(value, str):
            try:
                return ScheduleAt(datetime.fromisoformat(value.replace("Z", "+00:00")))
            except ValueError as e:
                raise InvalidScheduleError(f"Invalid date '{value}': {e}") from e
        raise InvalidScheduleError("Scheduled tasks need a 'date'")
    if kind == "delayed":
        value = data.get("delayInSeconds")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidScheduleError("Delayed tasks need a numeric 'delayInSeconds'")
        return ScheduleAfter(int(value))
    if kind == "cron":
        value = data.get("cron")
        if not isinstance(value, str) or not value.strip():
            raise InvalidScheduleError("Cron tasks need a 'cron' expression")
        return ScheduleCron(value.strip())
    raise InvalidScheduleError("Not a valid schedule input")


# ============================================================================
# Scheduler
# ============================================================================


class CheckInScheduler:
    """Creates, arms, lists, and cancels scheduled jobs for every user."""

    def __init__(
        self,
        runtime: AsyncIOScheduler | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self.runtime = runtime if runtime is not None else AsyncIOScheduler(timezone=timezone.utc)
        self._dispatcher = dispatcher
        self._locks: dict[str, asyncio.Lock] = {}

    def set_dispatcher(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _runtime_id(user_id: str, job_id: str) -> str:
        return f"{user_id}:{job_id}"

    # ------------------------------------------------------------------------
    # Daily check-in
    # ------------------------------------------------------------------------

    async def ensure_daily_check_in(self, user_id: str) -> ScheduledJob | None:
        """Make sure exactly one daily check-in job exists for the user.

        Returns the existing or newly created job, or None when the stored
        check-in time is invalid.
        """
        preferences = PreferenceStore(user_id)
        check_in_time = preferences.get_check_in_time()
        ctx = format_log_context("daily_check_in", component="scheduler", user=user_id)

        if not is_valid_check_in_time(check_in_time):
            logger.error(f"{ctx} invalid check-in time '{check_in_time}', not scheduling")
            return None

        expression = daily_cron_for(check_in_time)
        async with self._lock_for(user_id):
            existing = ScheduledJobStorage(user_id).list_jobs(DAILY_CHECK_IN_CALLBACK)
            if existing:
                logger.debug(f"{ctx} already scheduled ({existing[0].id})")
                return existing[0]

            job = self._create_job(
                user_id,
                ScheduleCron(expression),
                DAILY_CHECK_IN_CALLBACK,
                "Daily wellness check-in",
                tz_name=preferences.get_timezone(),
            )
        logger.info(f"{ctx} scheduled at {check_in_time} ({expression})")
        return job

    async def reschedule_daily_check_in(self, user_id: str) -> ScheduledJob | None:
        """Replace the daily check-in job after the check-in time changed."""
        async with self._lock_for(user_id):
            for job in ScheduledJobStorage(user_id).list_jobs(DAILY_CHECK_IN_CALLBACK):
                self._remove(user_id, job.id)
        return await self.ensure_daily_check_in(user_id)

    # ------------------------------------------------------------------------
    # Generic jobs
    # ------------------------------------------------------------------------

    def schedule(
        self,
        user_id: str,
        when: Schedule,
        callback_name: str = TASK_CALLBACK,
        description: str | None = None,
    ) -> str:
        """Persist and arm a job. Returns its id.

        Raises:
            InvalidScheduleError: Unknown callback, invalid cron, non-positive delay.
            ScheduleError: The backend refused the job (nothing is left persisted).
        """
        if callback_name == DAILY_CHECK_IN_CALLBACK and ScheduledJobStorage(user_id).list_jobs(
            DAILY_CHECK_IN_CALLBACK
        ):
            raise InvalidScheduleError("A daily check-in is already scheduled")
        tz_name = PreferenceStore(user_id).get_timezone()
        job = self._create_job(user_id, when, callback_name, description, tz_name=tz_name)
        ctx = format_log_context("schedule", component="scheduler", user=user_id, job=job.id)
        logger.info(f"{ctx} {job.trigger_kind}={job.trigger_value} callback={callback_name}")
        return job.id

    def list_jobs(self, user_id: str) -> list[ScheduledJob]:
        return ScheduledJobStorage(user_id).list_jobs()

    def cancel(self, user_id: str, job_id: str) -> None:
        """Cancel a job.

        Raises:
            NotFoundError: If the job does not exist (including already cancelled).
        """
        if not self._remove(user_id, job_id):
            raise NotFoundError(f"Scheduled task {job_id} not found")
        ctx = format_log_context("cancel", component="scheduler", user=user_id, job=job_id)
        logger.info(f"{ctx} cancelled")

    def restore(self, user_id: str) -> int:
        """Re-arm persisted jobs after a restart. Returns how many were armed."""
        storage = ScheduledJobStorage(user_id)
        tz_name = PreferenceStore(user_id).get_timezone()
        armed = 0
        for job in storage.list_jobs():
            ctx = format_log_context("restore", component="scheduler", user=user_id, job=job.id)
            try:
                trigger = self._trigger_for_job(job, tz_name)
                self._arm(user_id, job.id, trigger)
            except (ValueError, InvalidScheduleError) as e:
                logger.error(f"{ctx} cannot re-arm job: {e}")
                continue
            armed += 1
        if armed:
            logger.info(f"{format_log_context('restore', component='scheduler', user=user_id)} re-armed {armed} job(s)")
        return armed

    async def fire(self, user_id: str, job_id: str) -> None:
        """Run a job: dispatch its callback, then delete or re-arm it."""
        storage = ScheduledJobStorage(user_id)
        job = storage.get_by_id(job_id)
        ctx = format_log_context("fire", component="scheduler", user=user_id, job=job_id)
        if job is None:
            logger.warning(f"{ctx} job no longer exists")
            return

        if job.is_recurring:
            tz = resolve_timezone(PreferenceStore(user_id).get_timezone())
            try:
                storage.update_next_run(job_id, parse_cron_next(job.trigger_value, datetime.now(tz), tz))
            except ValueError as e:
                logger.error(f"{ctx} cannot compute next run: {e}")
        else:
            storage.delete(job_id)

        if self._dispatcher is None:
            logger.warning(f"{ctx} no dispatcher registered, dropping {job.callback_name}")
            return

        logger.info(f"{ctx} running {job.callback_name}")
        try:
            await self._dispatcher(user_id, job.callback_name, job.payload)
        except Exception:
            logger.exception(f"{ctx} callback {job.callback_name} failed")

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def start(self) -> None:
        """Start the runtime. Must be called with a running event loop."""
        if self.runtime.running:
            logger.warning("Scheduler already running")
            return
        self.runtime.start()
        logger.info(f"{format_log_context('system', component='scheduler')} started")

    def shutdown(self) -> None:
        if not self.runtime.running:
            return
        self.runtime.shutdown(wait=False)
        logger.info(f"{format_log_context('system', component='scheduler')} stopped")

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _create_job(
        self,
        user_id: str,
        when: Schedule,
        callback_name: str,
        description: str | None,
        tz_name: str | None = None,
    ) -> ScheduledJob:
        if callback_name not in CALLBACKS:
            raise InvalidScheduleError(f"Unknown callback '{callback_name}'")

        trigger, value, next_run = self._resolve(when, tz_name)
        storage = ScheduledJobStorage(user_id)
        job = storage.create(
            callback_name=callback_name,
            trigger_kind=when.kind,
            trigger_value=value,
            payload=description,
            next_run_at=next_run,
        )
        try:
            self._arm(user_id, job.id, trigger)
        except Exception as e:
            storage.delete(job.id)
            raise ScheduleError(f"Failed to schedule task: {e}") from e
        return job

    def _resolve(
        self, when: Schedule, tz_name: str | None
    ) -> tuple[BaseTrigger, str, datetime]:
        """Build the trigger, its stored value, and the first run time."""
        now = datetime.now(timezone.utc)
        if isinstance(when, ScheduleAt):
            run_at = when.when
            if run_at.tzinfo is None:
                run_at = run_at.replace(tzinfo=timezone.utc)
            return DateTrigger(run_date=run_at), run_at.isoformat(), run_at
        if isinstance(when, ScheduleAfter):
            if when.seconds <= 0:
                raise InvalidScheduleError("Delay must be a positive number of seconds")
            run_at = now + timedelta(seconds=when.seconds)
            return DateTrigger(run_date=run_at), str(when.seconds), run_at
        if isinstance(when, ScheduleCron):
            tz = resolve_timezone(tz_name)
            try:
                trigger = build_cron_trigger(when.expression, tz)
                next_run = parse_cron_next(when.expression, now, tz)
            except ValueError as e:
                raise InvalidScheduleError(str(e)) from e
            return trigger, when.expression, next_run
        raise InvalidScheduleError("Not a valid schedule input")

    def _trigger_for_job(self, job: ScheduledJob, tz_name: str | None) -> BaseTrigger:
        if job.is_recurring:
            return build_cron_trigger(job.trigger_value, resolve_timezone(tz_name))
        if not job.next_run_at:
            raise InvalidScheduleError("One-shot job has no run time")
        # Past run times fire as soon as the runtime starts
        return DateTrigger(run_date=datetime.fromisoformat(job.next_run_at))

    def _arm(self, user_id: str, job_id: str, trigger: BaseTrigger) -> None:
        self.runtime.add_job(
            self.fire,
            trigger,
            args=[user_id, job_id],
            id=self._runtime_id(user_id, job_id),
            replace_existing=True,
            misfire_grace_time=None,
            coalesce=True,
        )

    def _remove(self, user_id: str, job_id: str) -> bool:
        """Delete a job row and disarm it. Returns False if the row did not exist."""
        deleted = ScheduledJobStorage(user_id).delete(job_id)
        try:
            self.runtime.remove_job(self._runtime_id(user_id, job_id))
        except JobLookupError:
            pass
        return deleted

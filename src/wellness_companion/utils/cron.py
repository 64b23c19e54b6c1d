"""Cron helpers shared by the scheduler and preference validation."""

import re
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from wellness_companion.logging import get_logger

logger = get_logger(__name__)

# HH:MM, 24-hour clock, single-digit hours allowed
CHECK_IN_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def is_valid_check_in_time(value: object) -> bool:
    """Check an HH:MM check-in time."""
    return isinstance(value, str) and CHECK_IN_TIME_PATTERN.match(value) is not None


def daily_cron_for(check_in_time: str) -> str:
    """Build the daily cron expression for an HH:MM time.

    "09:30" -> "30 9 * * *"

    Raises:
        ValueError: If the time is not a valid HH:MM value.
    """
    if not is_valid_check_in_time(check_in_time):
        raise ValueError(f"Invalid check-in time '{check_in_time}'. Expected HH:MM (24-hour).")
    hours, minutes = check_in_time.split(":")
    return f"{int(minutes)} {int(hours)} * * *"


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA zone name, falling back to UTC."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return timezone.utc


def is_valid_timezone(name: object) -> bool:
    if not isinstance(name, str) or not name.strip():
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def build_cron_trigger(cron: str, tz: tzinfo | str | None = None) -> CronTrigger:
    """Create an APScheduler trigger from a 5-field cron expression.

    Raises:
        ValueError: If the expression is invalid.
    """
    parts = (cron or "").split()
    if len(parts) != 5:
        raise ValueError(
            f"Invalid cron expression '{cron}'. "
            "Expected 5 fields (minute hour day month weekday)."
        )
    if isinstance(tz, str) or tz is None:
        tz = resolve_timezone(tz)
    try:
        return CronTrigger.from_crontab(" ".join(parts), timezone=tz)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid cron expression '{cron}': {e}") from e


def parse_cron_next(cron: str, after: datetime, tz: tzinfo | str | None = None) -> datetime:
    """Calculate the next run time of a cron expression strictly after ``after``.

    Raises:
        ValueError: If the expression is invalid or never fires again.
    """
    trigger = build_cron_trigger(cron, tz)
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    # CronTrigger includes ``now`` itself when it matches, so start one second later
    start = after.replace(microsecond=0) + timedelta(seconds=1)
    next_time = trigger.get_next_fire_time(None, start)
    if next_time is None:
        raise ValueError(f"Cron expression '{cron}' has no future run time")
    return next_time

"""
backups/cron.py -- Minimal cron handling for backup schedules.

Only the minute and hour fields drive scheduling. Day-of-month, month and
day-of-week are accepted and used for the human-readable description, but a
schedule fires at most once per day at the given time. Anything richer is out
of scope for the backup scheduler.

parse_cron_expression() algorithm:
  - Not exactly 5 space-separated fields: run in 24 hours, "Daily".
  - Otherwise start from now with seconds zeroed, set the minute and hour
    when those fields are not "*", and add one day if the result is not
    strictly in the future.

Times are wall-clock times in BACKUP_TIMEZONE (a zoneinfo zone), so "0 3 * * *"
stays at 03:00 local time across daylight saving changes. The UTC offset
is worked out for the date of each run.

validate_cron_expression() is the stricter gate used on API input: it
rejects anything the scheduler would not handle sensibly (step values,
lists, out-of-range numbers).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from core.config import get_settings

_DESCRIPTIONS = {
    "0 0 * * *": "Daily at midnight",
    "0 0 * * 0": "Weekly on Sunday",
    "0 0 1 * *": "Monthly on the 1st",
}

_RANGES = [(0, 59), (0, 23), (1, 31), (1, 12), (0, 7)]
_FIELD_NAMES = ["minute", "hour", "day of month", "month", "day of week"]


def _zone(tz: str | None) -> ZoneInfo:
    return ZoneInfo(tz or get_settings().backup_timezone)


def get_cron_description(expression: str) -> str:
    if len(expression.split(" ")) != 5:
        return "Daily"
    return _DESCRIPTIONS.get(expression, "Custom schedule")


def parse_cron_expression(
    expression: str, now: datetime | None = None, tz: str | None = None
) -> tuple[datetime, str]:
    """Return (next_run, description) for expression relative to now, in zone tz."""
    now = (now or datetime.now(timezone.utc)).astimezone(_zone(tz))
    parts = expression.split(" ")
    if len(parts) != 5:
        return now + timedelta(hours=24), "Daily"

    minute, hour = parts[0], parts[1]
    next_run = now.replace(second=0, microsecond=0)
    if minute != "*":
        next_run = next_run.replace(minute=int(minute))
    if hour != "*":
        next_run = next_run.replace(hour=int(hour))
    if next_run <= now:
        next_run += timedelta(days=1)
    return next_run, get_cron_description(expression)


def calculate_next_run(expression: str, now: datetime | None = None, tz: str | None = None) -> datetime:
    return parse_cron_expression(expression, now, tz)[0]


def validate_cron_expression(expression: str) -> str | None:
    """Return an error message for an unusable expression, or None if it is fine."""
    parts = expression.split(" ")
    if len(parts) != 5:
        return "Cron expression must have exactly 5 space-separated fields"
    for value, (low, high), name in zip(parts, _RANGES, _FIELD_NAMES):
        if value == "*":
            continue
        if not value.isdigit() or not low <= int(value) <= high:
            return f"Invalid {name} field {value!r}: use * or a number from {low} to {high}"
    return None

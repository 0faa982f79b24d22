"""
Cron expression evaluation.

Expressions have five fields (minute, hour, day of month, month, day of week)
or six, in which case the first field is seconds. Evaluation happens in the
local time of the requested IANA timezone so fire times follow the zone's
daylight-saving rules; results are always returned in UTC.
"""
import logging
from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from cron_scheduler.errors import InvalidScheduleError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


def _load_timezone(name: str) -> ZoneInfo:
    if not name:
        raise InvalidScheduleError("Invalid cron expression: timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidScheduleError(f"Invalid cron expression: unknown timezone '{name}'") from e


def _split_fields(expression: str) -> list:
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidScheduleError("Invalid cron expression: expression is empty")
    fields = expression.split()
    if len(fields) not in (5, 6):
        raise InvalidScheduleError(
            f"Invalid cron expression: expected 5 or 6 fields, got {len(fields)}"
        )
    return fields


def _build(expression: str, start: datetime) -> croniter:
    fields = _split_fields(expression)
    try:
        return croniter(" ".join(fields), start, second_at_beginning=len(fields) == 6)
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidScheduleError(f"Invalid cron expression: {e}") from e


def _to_local(moment: Optional[datetime], tz: ZoneInfo) -> datetime:
    if moment is None:
        return datetime.now(tz)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment.astimezone(tz)


class CronSchedule:
    """
    A parsed cron expression bound to a timezone.
    """

    def __init__(self, expression: str, timezone: str = DEFAULT_TIMEZONE):
        self.expression = " ".join(_split_fields(expression))
        self.timezone = timezone
        self._tz = _load_timezone(timezone)
        # Parse eagerly so construction doubles as validation.
        _build(self.expression, datetime.now(self._tz))

    def next(self, after: Optional[datetime] = None) -> datetime:
        """
        Return the first fire time strictly after `after` (default: now), in UTC.
        """
        start = _to_local(after, self._tz)
        return _build(self.expression, start).get_next(datetime).astimezone(dt_timezone.utc)

    def previous(self, before: Optional[datetime] = None) -> datetime:
        """
        Return the last fire time strictly before `before` (default: now), in UTC.
        """
        start = _to_local(before, self._tz)
        return _build(self.expression, start).get_prev(datetime).astimezone(dt_timezone.utc)

    def describe(self) -> str:
        return describe_cron_expression(self.expression)

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r}, timezone={self.timezone!r})"


def validate_cron_expression(expression: str, timezone: str = DEFAULT_TIMEZONE) -> bool:
    """
    Validate a cron expression under a timezone.

    Raises:
        InvalidScheduleError: If the expression or the timezone is invalid.
    """
    CronSchedule(expression, timezone)
    return True


def get_next_execution(expression: str, timezone: str = DEFAULT_TIMEZONE, after: Optional[datetime] = None) -> Optional[datetime]:
    """
    Next fire time after `after`, or None when the expression cannot be evaluated.
    """
    try:
        return CronSchedule(expression, timezone).next(after)
    except InvalidScheduleError:
        logger.debug("Cannot compute next execution for %r (%s)", expression, timezone)
        return None


def get_previous_execution(expression: str, timezone: str = DEFAULT_TIMEZONE, before: Optional[datetime] = None) -> Optional[datetime]:
    """
    Previous fire time before `before`, or None when the expression cannot be evaluated.
    """
    try:
        return CronSchedule(expression, timezone).previous(before)
    except InvalidScheduleError:
        logger.debug("Cannot compute previous execution for %r (%s)", expression, timezone)
        return None


def describe_cron_expression(expression: str) -> str:
    """
    Best-effort human readable description. Unrecognised patterns echo the
    five schedule fields back.
    """
    parts = expression.strip().split() if isinstance(expression, str) else []
    if len(parts) not in (5, 6):
        return "Invalid cron expression"
    if len(parts) == 6:
        seconds, parts = parts[0], parts[1:]
        if seconds not in ("0", "*"):
            return " ".join(parts)

    minute, hour, day_of_month, month, day_of_week = parts
    every_day = day_of_month == "*" and month == "*" and day_of_week == "*"

    if minute == "*" and hour == "*" and every_day:
        return "Every minute"
    if minute.startswith("*/") and hour == "*" and every_day and minute[2:].isdigit():
        return f"Every {int(minute[2:])} minutes"
    if minute == "0" and hour == "*" and every_day:
        return "Every hour"
    if minute == "0" and hour == "0" and every_day:
        return "Every day at midnight"
    if minute.isdigit() and hour.isdigit() and every_day:
        return f"Every day at {int(hour):02d}:{int(minute):02d}"

    return f"{minute} {hour} {day_of_month} {month} {day_of_week}"

"""
Recurrence and due-date arithmetic for recurring chores.

All calculations happen in a target timezone (the household's, or the
configured default) and deadlines are normalized to the very end of the
local calendar day, 23:59:59.999.

Month arithmetic uses dateutil's relativedelta, which clamps to the last
valid day of the target month: Jan 31 + 1 month is Feb 28 (Feb 29 in leap
years), never a rollover into March.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from dateutil.relativedelta import relativedelta

from household_ledger.engine.errors import ValidationError
from household_ledger.models.chores import RecurrenceUnit

logger = structlog.get_logger(__name__)

DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"

END_OF_DAY = time(23, 59, 59, 999000)

MIN_INTERVAL = 1
MAX_INTERVAL = 365

# Safety limit for catching a stale schedule up to the present
MAX_DATE_CALCULATION_ITERATIONS = 100

DateLike = Union[date, datetime]
TimezoneLike = Union[str, tzinfo, None]


def resolve_timezone(tz: TimezoneLike = None) -> tzinfo:
    """Turn an IANA name (or None for the default) into a tzinfo."""
    if tz is None:
        tz = DEFAULT_TIMEZONE
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz}")


def as_local(value: DateLike, tz: TimezoneLike = None) -> datetime:
    """
    Express a date or datetime in the target timezone.

    Naive datetimes are taken to already be local to the target timezone;
    a bare date means local midnight.
    """
    zone = resolve_timezone(tz)
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=zone)
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def end_of_day(value: DateLike, tz: TimezoneLike = None) -> datetime:
    """23:59:59.999 on the local calendar day of `value`."""
    local = as_local(value, tz)
    return local.replace(
        hour=END_OF_DAY.hour,
        minute=END_OF_DAY.minute,
        second=END_OF_DAY.second,
        microsecond=END_OF_DAY.microsecond,
    )


def _parse_unit(recurrence_unit: Union[RecurrenceUnit, str]) -> RecurrenceUnit:
    try:
        return RecurrenceUnit(recurrence_unit)
    except ValueError:
        raise ValidationError(f"Unknown recurrence unit: {recurrence_unit}")


def _check_interval(interval: int) -> None:
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ValidationError("Interval must be a whole number")
    if not MIN_INTERVAL <= interval <= MAX_INTERVAL:
        raise ValidationError(
            f"Interval must be between {MIN_INTERVAL} and {MAX_INTERVAL}"
        )


def calculate_next_occurrence(
    scheduled_date: DateLike,
    recurrence_unit: Union[RecurrenceUnit, str],
    interval: int,
    tz: TimezoneLike = None,
) -> datetime:
    """
    Add `interval` days, weeks or months, then move to the end of that day.

    Args:
        scheduled_date: Current occurrence
        recurrence_unit: daily, weekly or monthly
        interval: Number of units to add (1..365)
        tz: Target timezone (IANA name or tzinfo); defaults to DEFAULT_TIMEZONE

    Returns:
        Timezone-aware datetime at 23:59:59.999 local time.
    """
    unit = _parse_unit(recurrence_unit)
    _check_interval(interval)
    local = as_local(scheduled_date, tz)

    if unit == RecurrenceUnit.DAILY:
        shifted = local + timedelta(days=interval)
    elif unit == RecurrenceUnit.WEEKLY:
        shifted = local + timedelta(weeks=interval)
    else:
        shifted = local + relativedelta(months=interval)

    return end_of_day(shifted, tz)


def select_due_date(
    last_created_at: Optional[datetime],
    now: datetime,
    tz: TimezoneLike = None,
) -> datetime:
    """
    Due date for a newly auto-created recurring chore.

    - No prior chore from the template: end of today.
    - Prior chore created today (local): end of tomorrow.
    - Prior chore from an earlier day: end of today.
    """
    now_local = as_local(now, tz)
    if last_created_at is None:
        return end_of_day(now_local, tz)

    if as_local(last_created_at, tz).date() == now_local.date():
        return end_of_day(now_local + timedelta(days=1), tz)

    return end_of_day(now_local, tz)


def next_creation_after(
    base: DateLike,
    recurrence_unit: Union[RecurrenceUnit, str],
    interval: int,
    now: datetime,
    tz: TimezoneLike = None,
) -> datetime:
    """
    Advance a template schedule from `base` until it lies after `now`.

    A schedule that has fallen too far behind restarts from `now`.
    """
    now_local = as_local(now, tz)
    result = calculate_next_occurrence(base, recurrence_unit, interval, tz)

    iterations = 0
    while result <= now_local:
        iterations += 1
        if iterations >= MAX_DATE_CALCULATION_ITERATIONS:
            logger.warning(
                "schedule_catch_up_limit_reached",
                base=str(base),
                recurrence_unit=str(recurrence_unit),
                interval=interval,
            )
            return calculate_next_occurrence(now_local, recurrence_unit, interval, tz)
        result = calculate_next_occurrence(result, recurrence_unit, interval, tz)

    return result


def is_template_due(
    next_creation_date: Optional[datetime],
    now: datetime,
    tz: TimezoneLike = None,
) -> bool:
    """A template with no scheduled date is always due."""
    if next_creation_date is None:
        return True
    return as_local(next_creation_date, tz) <= as_local(now, tz)

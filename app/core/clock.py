"""Time helpers.

All datetimes are persisted as naive UTC. Calendar days, opening hours and the
availability grid are expressed in the clinic's local timezone.
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.config import settings


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def clinic_tz() -> ZoneInfo:
    return ZoneInfo(settings.clinic_timezone)


def to_utc_naive(value: datetime) -> datetime:
    """Normalize an incoming datetime to naive UTC.

    Naive input is interpreted as clinic local time.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=clinic_tz())
    return value.astimezone(UTC).replace(tzinfo=None)


def to_clinic_time(value: datetime) -> datetime:
    """Convert a stored naive UTC datetime to aware clinic local time."""
    return value.replace(tzinfo=UTC).astimezone(clinic_tz())


def clinic_date(value: datetime) -> date:
    """Calendar day (clinic local) of a stored naive UTC datetime."""
    return to_clinic_time(value).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Naive UTC [start, end) of a clinic local calendar day."""
    tz = clinic_tz()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start.astimezone(UTC).replace(tzinfo=None),
        end.astimezone(UTC).replace(tzinfo=None),
    )


def clinic_wall_time(day: date, hour: int, minute: int = 0) -> datetime:
    """Naive UTC instant of a wall-clock time on a clinic local day."""
    if hour == 24:
        local = datetime.combine(day + timedelta(days=1), time(0, minute), tzinfo=clinic_tz())
    else:
        local = datetime.combine(day, time(hour, minute), tzinfo=clinic_tz())
    return local.astimezone(UTC).replace(tzinfo=None)


def subtract_months(value: datetime, months: int) -> datetime:
    """Shift a datetime back by calendar months, clamping the day."""
    month_index = value.month - 1 - months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    for day in (value.day, 30, 29, 28):
        try:
            return value.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return value.replace(year=year, month=month, day=28)


def parse_utc(value: str) -> datetime:
    """Parse an ISO 8601 string from a payload into naive UTC.

    Naive strings are taken as UTC, the format every service stores.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed

# reservation_engine/domain/timing.py
"""
Wall-clock rules for bookings.

A booking stores a calendar date plus start/end times of day, expressed in the
service time zone. Anything compared against "now" is converted to UTC first.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from reservation_engine.domain.exceptions import (
    InvalidDuration,
    InvalidPartySize,
    InvalidTimeRange,
    TooEarly,
    TooLate,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime | None) -> datetime:
    """Return ``moment`` as an aware UTC datetime, defaulting to now."""
    if moment is None:
        return utc_now()
    if moment.tzinfo is None:
        raise ValueError("Naive datetimes are not accepted; attach a timezone")
    return moment.astimezone(timezone.utc)


def to_calendar_date(value: date | datetime) -> date:
    """Calendar-date component of ``value``, taken after normalizing to UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def parse_start_time(raw: str | time) -> time:
    if isinstance(raw, time):
        return raw.replace(second=0, microsecond=0)
    text = (raw or "").strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise InvalidTimeRange(f"Invalid start time {raw!r}; expected HH:MM")


def validate_duration(duration_hours: int, minimum: int, maximum: int) -> None:
    if not minimum <= duration_hours <= maximum:
        raise InvalidDuration(
            f"Duration must be between {minimum} and {maximum} hours"
        )


def validate_party_size(party_size: int, minimum: int, maximum: int) -> None:
    if not minimum <= party_size <= maximum:
        raise InvalidPartySize(
            f"Party size must be between {minimum} and {maximum} guests"
        )


def compute_end_time(start_time: time, duration_hours: int) -> time:
    """
    End of the half-open interval ``[start, start + duration)``.

    Intervals may not run past midnight: end must be later than start on
    the same calendar day.
    """
    start_dt = datetime.combine(date.min, start_time)
    end_dt = start_dt + timedelta(hours=duration_hours)
    if end_dt.date() != start_dt.date():
        raise InvalidTimeRange(
            f"A {duration_hours}h booking starting at {start_time:%H:%M} runs past midnight"
        )
    return end_dt.time()


def validate_interval(start_time: time, end_time: time) -> None:
    if end_time <= start_time:
        raise InvalidTimeRange("End time must be after start time")


def booking_datetime(booking_date: date, start_time: time, tz: ZoneInfo) -> datetime:
    """Aware UTC instant at which a booking starts."""
    local = datetime.combine(booking_date, start_time, tzinfo=tz)
    return local.astimezone(timezone.utc)


def check_in_window(
    starts_at: datetime,
    early_hours: int,
    late_hours: int,
) -> tuple[datetime, datetime]:
    return (
        starts_at - timedelta(hours=early_hours),
        starts_at + timedelta(hours=late_hours),
    )


def ensure_within_check_in_window(
    starts_at: datetime,
    now: datetime,
    early_hours: int,
    late_hours: int,
) -> None:
    opens_at, closes_at = check_in_window(starts_at, early_hours, late_hours)
    if now < opens_at:
        raise TooEarly(
            f"Check-in opens at {opens_at.isoformat()}"
        )
    if now > closes_at:
        raise TooLate(
            f"Check-in closed at {closes_at.isoformat()}"
        )

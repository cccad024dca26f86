from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from reservation_engine.domain.exceptions import (
    InvalidDuration,
    InvalidPartySize,
    InvalidTimeRange,
    TooEarly,
    TooLate,
)
from reservation_engine.domain.timing import (
    booking_datetime,
    compute_end_time,
    ensure_utc,
    ensure_within_check_in_window,
    parse_start_time,
    to_calendar_date,
    validate_duration,
    validate_party_size,
)

BANGKOK = ZoneInfo("Asia/Bangkok")


def test_parse_start_time_accepts_hh_mm():
    assert parse_start_time("19:00") == time(19, 0)
    assert parse_start_time(" 07:30:00 ") == time(7, 30)


@pytest.mark.parametrize("raw", ["7pm", "25:00", "", "19"])
def test_parse_start_time_rejects_garbage(raw):
    with pytest.raises(InvalidTimeRange) as info:
        parse_start_time(raw)

    assert info.value.field == "start_time"


def test_end_time_is_start_plus_duration():
    assert compute_end_time(time(19, 0), 2) == time(21, 0)


def test_interval_may_not_cross_midnight():
    with pytest.raises(InvalidTimeRange):
        compute_end_time(time(23, 0), 2)


def test_duration_and_party_size_ranges():
    validate_duration(1, 1, 5)
    validate_duration(5, 1, 5)
    with pytest.raises(InvalidDuration):
        validate_duration(6, 1, 5)

    validate_party_size(50, 1, 50)
    with pytest.raises(InvalidPartySize):
        validate_party_size(0, 1, 50)


def test_booking_datetime_is_utc():
    starts_at = booking_datetime(date(2025, 1, 10), time(19, 0), BANGKOK)

    assert starts_at == datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
    assert starts_at.tzinfo == timezone.utc


def test_naive_now_is_rejected():
    with pytest.raises(ValueError):
        ensure_utc(datetime(2025, 1, 10, 12, 0))


def test_calendar_date_is_taken_after_utc_normalization():
    late_evening_bangkok = datetime(2025, 1, 10, 2, 0, tzinfo=BANGKOK)

    assert to_calendar_date(late_evening_bangkok) == date(2025, 1, 9)
    assert to_calendar_date(date(2025, 1, 10)) == date(2025, 1, 10)


def test_check_in_window_bounds_are_inclusive():
    starts_at = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)

    ensure_within_check_in_window(starts_at, starts_at - timedelta(hours=1), 1, 3)
    ensure_within_check_in_window(starts_at, starts_at + timedelta(hours=3), 1, 3)

    with pytest.raises(TooEarly):
        ensure_within_check_in_window(
            starts_at, starts_at - timedelta(hours=1, seconds=1), 1, 3
        )
    with pytest.raises(TooLate):
        ensure_within_check_in_window(
            starts_at, starts_at + timedelta(hours=3, seconds=1), 1, 3
        )

# reservation_engine/application/sweeps.py
"""
Periodic jobs over confirmed bookings.

Each sweep is a function of the store state and ``now`` and runs in its own
transaction. They are safe to run repeatedly: only rows still in the
qualifying state are touched, so a second run finds nothing to do.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from reservation_engine.application.booking_service import safe_notify
from reservation_engine.application.ports import BookingNotifier
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.state_machine import BookingStateMachine, BookingStatus
from reservation_engine.domain.timing import booking_datetime, ensure_utc
from reservation_engine.infrastructure.db.models import Booking
from reservation_engine.infrastructure.db.session import atomic
from reservation_engine.infrastructure.repositories.booking_repository import (
    BookingRepository,
)

logger = logging.getLogger(__name__)


def run_no_show_sweep(
    db: Session,
    notifier: BookingNotifier,
    settings: ReservationSettings,
    now: datetime | None = None,
) -> list[Booking]:
    """Flag confirmed bookings that started more than the grace period ago."""
    current = ensure_utc(now)
    cutoff = current - timedelta(minutes=settings.no_show_grace_minutes)
    tz = settings.tz
    flagged: list[Booking] = []

    with atomic(db):
        candidates = BookingRepository(db).list_confirmed_on_or_before(
            cutoff.astimezone(tz).date()
        )
        for booking in candidates:
            if booking_datetime(booking.booking_date, booking.start_time, tz) > cutoff:
                continue
            BookingStateMachine.validate_transition(booking.status, BookingStatus.NO_SHOW)
            booking.status = BookingStatus.NO_SHOW
            booking.modified_at = current
            flagged.append(booking)

            safe_notify(
                db,
                "no-show",
                booking.booking_code,
                lambda booking=booking: notifier.notify_admin(
                    f"No-show: booking {booking.booking_code} on "
                    f"{booking.booking_date:%Y-%m-%d} at {booking.start_time:%H:%M}",
                    dedupe_key=f"booking:{booking.id}:no_show",
                ),
            )

    logger.info("No-show sweep at %s flagged %s bookings", current.isoformat(), len(flagged))
    return flagged


def run_reminder_sweep(
    db: Session,
    notifier: BookingNotifier,
    settings: ReservationSettings,
    now: datetime | None = None,
) -> list[Booking]:
    """Remind guests whose confirmed booking starts within the lead time."""
    current = ensure_utc(now)
    horizon = current + timedelta(hours=settings.reminder_lead_hours)
    tz = settings.tz
    reminded: list[Booking] = []

    with atomic(db):
        candidates = BookingRepository(db).list_unreminded_between(
            current.astimezone(tz).date(),
            horizon.astimezone(tz).date(),
        )
        for booking in candidates:
            starts_at = booking_datetime(booking.booking_date, booking.start_time, tz)
            if not current < starts_at <= horizon:
                continue
            booking.reminder_sent = True
            reminded.append(booking)

            safe_notify(
                db,
                "reminder",
                booking.booking_code,
                lambda booking=booking: notifier.notify_reminder(booking),
            )

    logger.info("Reminder sweep at %s reminded %s bookings", current.isoformat(), len(reminded))
    return reminded

# reservation_engine/infrastructure/notifications/outbox_notifier.py

from uuid import uuid4

from sqlalchemy.orm import Session

from reservation_engine.infrastructure.db.models import Booking
from reservation_engine.infrastructure.repositories.outbox_repository import (
    OutboxRepository,
)


def _booking_payload(booking: Booking) -> dict:
    return {
        "booking_id": booking.id,
        "booking_code": booking.booking_code,
        "user_id": booking.user_id,
        "table_id": booking.table_id,
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "end_time": booking.end_time.strftime("%H:%M"),
        "party_size": booking.party_size,
        "status": booking.status.value,
        "deposit_amount": str(booking.deposit_amount),
    }


class OutboxNotifier:
    """
    Hands notifications to delivery workers through the outbox table.
    Events are written in the caller's transaction, so they only become
    visible if the booking change commits.
    """

    def __init__(self, db: Session):
        self.outbox = OutboxRepository(db)

    def _booking_event(self, booking: Booking, event_type: str, suffix: str) -> None:
        self.outbox.add_event(
            aggregate_type="booking",
            aggregate_id=str(booking.id),
            event_type=event_type,
            payload=_booking_payload(booking),
            dedupe_key=f"booking:{booking.id}:{suffix}",
        )

    def notify_confirmation(self, booking: Booking) -> None:
        self._booking_event(booking, "BOOKING_CONFIRMED", "confirmed")

    def notify_reminder(self, booking: Booking) -> None:
        self._booking_event(booking, "BOOKING_REMINDER", "reminder")

    def notify_cancellation(self, booking: Booking) -> None:
        self._booking_event(booking, "BOOKING_CANCELLED", "cancelled")

    def notify_admin(self, text: str, dedupe_key: str | None = None) -> None:
        key = dedupe_key or str(uuid4())
        self.outbox.add_event(
            aggregate_type="admin",
            aggregate_id=key[:36],
            event_type="ADMIN_NOTIFICATION",
            payload={"text": text},
            dedupe_key=f"admin:{key}",
        )

# reservation_engine/infrastructure/repositories/booking_repository.py

from datetime import date, time

from sqlalchemy import ColumnElement, Select, exists, or_, select
from sqlalchemy.orm import Session

from reservation_engine.domain.state_machine import BookingStatus
from reservation_engine.infrastructure.db.models import Booking, Payment


def overlapping_bookings(
    table_id: int | ColumnElement[int],
    booking_date: date,
    start_time: time,
    end_time: time,
    exclude_booking_id: int | None = None,
) -> Select:
    """
    Non-cancelled bookings on the same table and date whose half-open
    interval ``[start, end)`` overlaps the candidate one.

    ``table_id`` may be a column so the query can be correlated.
    """
    stmt = (
        select(Booking.id)
        .where(Booking.table_id == table_id)
        .where(Booking.booking_date == booking_date)
        .where(Booking.status != BookingStatus.CANCELLED)
        .where(Booking.start_time < end_time)
        .where(Booking.end_time > start_time)
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    return stmt


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: int,
        lock: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_code(
        self,
        booking_code: str,
        lock: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.booking_code == booking_code)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def code_exists(self, booking_code: str) -> bool:
        stmt = select(exists().where(Booking.booking_code == booking_code))
        return bool(self.db.execute(stmt).scalar())

    def has_overlap(
        self,
        table_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
        exclude_booking_id: int | None = None,
    ) -> bool:
        stmt = select(
            overlapping_bookings(
                table_id,
                booking_date,
                start_time,
                end_time,
                exclude_booking_id,
            ).exists()
        )
        return bool(self.db.execute(stmt).scalar())

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def list_for_user(self, user_id: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.booking_date.desc(), Booking.start_time.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def search(
        self,
        status: BookingStatus | None = None,
        booking_date: date | None = None,
        term: str | None = None,
        limit: int = 100,
    ) -> list[Booking]:
        stmt = select(Booking)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        if booking_date is not None:
            stmt = stmt.where(Booking.booking_date == booking_date)
        if term:
            pattern = f"%{term.strip()}%"
            stmt = stmt.where(
                or_(
                    Booking.booking_code.ilike(pattern),
                    Booking.user_id.ilike(pattern),
                )
            )
        stmt = stmt.order_by(Booking.booking_date.desc(), Booking.start_time).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def list_confirmed_on_or_before(self, last_date: date) -> list[Booking]:
        """Confirmed bookings up to ``last_date``, locked for a sweep."""
        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .where(Booking.booking_date <= last_date)
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_unreminded_between(self, first_date: date, last_date: date) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .where(Booking.reminder_sent.is_(False))
            .where(Booking.booking_date >= first_date)
            .where(Booking.booking_date <= last_date)
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())

    # -----------------------------
    # Payments
    # -----------------------------
    def get_payment(self, booking_id: int, lock: bool = False) -> Payment | None:
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_payment_by_payment_id(self, payment_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.payment_id == payment_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.flush()
        return payment

# reservation_engine/application/booking_service.py

import json
import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy.orm import Session

from reservation_engine.application.availability_service import (
    AvailabilityService,
    ConflictChecker,
)
from reservation_engine.application.ports import BookingNotifier, DepositGateway
from reservation_engine.application.promo_service import PromoService
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import (
    CancellationWindowClosed,
    ConflictError,
    DepositFailed,
    DuplicateBookingCode,
    InvalidStateTransitionError,
    NotFoundError,
    PromoInvalid,
    TableNoLongerAvailable,
    ValidationError,
)
from reservation_engine.domain.pricing import ZERO, quote_booking, refund_for
from reservation_engine.domain.state_machine import (
    ACTIVE_STATUSES,
    CANCELLABLE_STATUSES,
    BookingStateMachine,
    BookingStatus,
    PaymentStatus,
)
from reservation_engine.domain.timing import (
    booking_datetime,
    ensure_utc,
    ensure_within_check_in_window,
    to_calendar_date,
    validate_interval,
    validate_party_size,
)
from reservation_engine.infrastructure.db.models import Booking, DiningTable, Payment
from reservation_engine.infrastructure.db.session import atomic
from reservation_engine.infrastructure.repositories.booking_repository import (
    BookingRepository,
)
from reservation_engine.infrastructure.repositories.table_repository import (
    TableRepository,
)

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 50


def safe_notify(
    db: Session,
    action: str,
    booking_code: str,
    send: Callable[[], None],
) -> None:
    """
    Notifications are best effort; a failure never fails the booking operation.

    The booking's own changes are flushed first so their errors still
    propagate. The notifier then runs inside a savepoint, so a failed outbox
    insert only rolls back itself.
    """
    db.flush()
    try:
        with db.begin_nested():
            send()
    except Exception:
        logger.exception("Failed to send %s notification for booking %s", action, booking_code)


@dataclass
class BookingChanges:
    """Fields an admin may edit. ``None`` leaves a field as it is."""

    table_id: int | None = None
    booking_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    party_size: int | None = None
    status: BookingStatus | None = None
    special_requests: str | None = None


class BookingService:
    """Application service coordinating the booking lifecycle."""

    def __init__(
        self,
        db: Session,
        settings: ReservationSettings,
        deposit_gateway: DepositGateway,
        notifier: BookingNotifier,
    ):
        self.db = db
        self.settings = settings
        self.deposit_gateway = deposit_gateway
        self.notifier = notifier
        self.booking_repository = BookingRepository(db)
        self.table_repository = TableRepository(db)
        self.availability = AvailabilityService(db, settings)
        self.conflicts = ConflictChecker(db)
        self.promos = PromoService(db)

    # -----------------------------
    # Create
    # -----------------------------
    def create_booking(
        self,
        user_id: str,
        branch_id: int,
        booking_date: date | datetime,
        start_time: str | time,
        duration_hours: int,
        party_size: int,
        table_id: int,
        promo_code: str | None = None,
        special_requests: str | None = None,
        pre_order_items: list[dict] | None = None,
        zone: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        current = ensure_utc(now)
        if not user_id or not user_id.strip():
            raise ValidationError("A user id is required", field="user_id")
        start, end = self.availability.resolve_slot(start_time, duration_hours, party_size)
        calendar_date = to_calendar_date(booking_date)
        requests = self._clean_requests(special_requests)

        with atomic(self.db):
            table = self.table_repository.lock_table(table_id)
            if table is None or table.branch_id != branch_id:
                raise NotFoundError("Table", table_id)

            free = self.availability.find_available_tables(
                branch_id=branch_id,
                booking_date=calendar_date,
                start_time=start,
                duration_hours=duration_hours,
                party_size=party_size,
                zone=zone,
            )
            if all(candidate.id != table.id for candidate in free):
                raise TableNoLongerAvailable(table.id)

            applied_code, discount = self._redeem_promo(promo_code, table, current)
            quote = quote_booking(
                minimum_spend=table.minimum_spend,
                base_price=table.base_price,
                discount=discount,
                deposit_rate=self.settings.deposit_rate,
            )

            booking = Booking(
                booking_code=self._generate_code(current),
                user_id=user_id.strip(),
                table_id=table.id,
                booking_date=calendar_date,
                start_time=start,
                end_time=end,
                party_size=party_size,
                status=BookingStatus.PENDING,
                total_amount=quote.total_amount,
                deposit_amount=quote.deposit_amount,
                discount_amount=quote.discount,
                promo_code=applied_code,
                special_requests=requests,
                pre_order_items=self._encode_preorder(pre_order_items),
                reminder_sent=False,
                created_at=current,
            )
            self.booking_repository.add(booking)

            if quote.deposit_amount > ZERO:
                self._open_deposit(booking)

            safe_notify(
                self.db,
                "new booking",
                booking.booking_code,
                lambda: self.notifier.notify_admin(
                    f"New booking {booking.booking_code}: table {table.table_number}, "
                    f"{calendar_date:%Y-%m-%d} {start:%H:%M}-{end:%H:%M}, {party_size} guests",
                    dedupe_key=f"booking:{booking.id}:created",
                ),
            )

        logger.info(
            "Created booking %s table=%s date=%s %s-%s total=%s deposit=%s",
            booking.booking_code,
            table.id,
            calendar_date,
            start,
            end,
            booking.total_amount,
            booking.deposit_amount,
        )
        return booking

    def _redeem_promo(
        self,
        promo_code: str | None,
        table: DiningTable,
        now: datetime,
    ) -> tuple[str | None, Decimal]:
        if not promo_code or not promo_code.strip():
            return None, ZERO
        base_spend = table.minimum_spend + table.base_price
        try:
            promo, discount = self.promos.redeem(promo_code, base_spend, now)
        except PromoInvalid as exc:
            logger.info("promo_rejected code=%s reason=%s", exc.code, exc.reason)
            return None, ZERO
        return promo.code, discount

    def _generate_code(self, now: datetime) -> str:
        local_day = now.astimezone(self.settings.tz).strftime("%Y%m%d")
        prefix = f"{self.settings.booking_code_prefix}{local_day}"
        for _ in range(MAX_CODE_ATTEMPTS):
            code = f"{prefix}{random.randint(1000, 9999)}"
            if not self.booking_repository.code_exists(code):
                return code
        raise DuplicateBookingCode(f"Could not find a free booking code for {local_day}")

    def _clean_requests(self, text: str | None) -> str | None:
        if text is None or not text.strip():
            return None
        cleaned = text.strip()
        limit = self.settings.special_requests_max_length
        if len(cleaned) > limit:
            raise ValidationError(
                f"Special requests are limited to {limit} characters",
                field="special_requests",
            )
        return cleaned

    @staticmethod
    def _encode_preorder(items: list[dict] | None) -> str | None:
        if not items:
            return None
        if not isinstance(items, list):
            raise ValidationError("Pre-order items must be a list", field="pre_order_items")
        return json.dumps(items, default=str)

    def _open_deposit(self, booking: Booking) -> Payment:
        try:
            order_id = self.deposit_gateway.create_deposit(booking.id, booking.deposit_amount)
        except DepositFailed:
            raise
        except Exception as exc:
            logger.exception("Deposit creation failed for booking %s", booking.booking_code)
            raise DepositFailed(
                f"Could not create a deposit for booking {booking.booking_code}"
            ) from exc

        return self.booking_repository.add_payment(
            Payment(
                booking_id=booking.id,
                provider=self.deposit_gateway.provider,
                order_id=order_id,
                amount=booking.deposit_amount,
                currency=self.settings.payment_currency,
                status=PaymentStatus.PENDING,
                payment_date=booking.created_at,
            )
        )

    # -----------------------------
    # Payment confirmation
    # -----------------------------
    def confirm_payment(
        self,
        booking_id: int,
        order_id: str,
        payment_id: str,
        signature: str,
        now: datetime | None = None,
    ) -> Booking:
        current = ensure_utc(now)
        self.deposit_gateway.verify_payment(order_id, payment_id, signature)

        with atomic(self.db):
            booking = self._get_locked(booking_id)
            payment = self.booking_repository.get_payment(booking.id, lock=True)
            if payment is None or payment.order_id != order_id:
                raise ConflictError(
                    f"Order {order_id} does not belong to booking {booking.booking_code}"
                )
            used_by = self.booking_repository.get_payment_by_payment_id(payment_id)
            if used_by is not None and used_by.booking_id != booking.id:
                raise ConflictError(f"Payment {payment_id} was already used for another booking")

            if booking.status == BookingStatus.CONFIRMED:
                self._record_payment(payment, payment_id, current)
                logger.info("Booking %s already confirmed; payment metadata updated", booking.booking_code)
                return booking

            self._transition(booking, BookingStatus.CONFIRMED)
            booking.modified_at = current
            self._record_payment(payment, payment_id, current)

            safe_notify(
                self.db,
                "confirmation",
                booking.booking_code,
                lambda: self.notifier.notify_confirmation(booking),
            )
            safe_notify(
                self.db,
                "admin confirmation",
                booking.booking_code,
                lambda: self.notifier.notify_admin(
                    f"Deposit paid for booking {booking.booking_code}",
                    dedupe_key=f"booking:{booking.id}:paid",
                ),
            )

        logger.info("Confirmed booking %s with payment %s", booking.booking_code, payment_id)
        return booking

    @staticmethod
    def _record_payment(payment: Payment, payment_id: str, now: datetime) -> None:
        payment.payment_id = payment_id
        payment.status = PaymentStatus.COMPLETED
        payment.payment_date = now

    # -----------------------------
    # Check-in / check-out
    # -----------------------------
    def check_in(self, booking_code: str, now: datetime | None = None) -> Booking:
        current = ensure_utc(now)
        with atomic(self.db):
            booking = self._get_locked_by_code(booking_code)
            BookingStateMachine.validate_transition(booking.status, BookingStatus.CHECKED_IN)

            starts_at = booking_datetime(booking.booking_date, booking.start_time, self.settings.tz)
            ensure_within_check_in_window(
                starts_at,
                current,
                self.settings.check_in_early_hours,
                self.settings.check_in_late_hours,
            )

            self._transition(booking, BookingStatus.CHECKED_IN)
            booking.check_in_time = current
            booking.modified_at = current

            safe_notify(
                self.db,
                "check-in",
                booking.booking_code,
                lambda: self.notifier.notify_admin(
                    f"Check-in for booking {booking.booking_code}",
                    dedupe_key=f"booking:{booking.id}:checked_in",
                ),
            )

        logger.info("Checked in booking %s", booking.booking_code)
        return booking

    def check_out(self, booking_code: str, now: datetime | None = None) -> Booking:
        current = ensure_utc(now)
        with atomic(self.db):
            booking = self._get_locked_by_code(booking_code)
            self._transition(booking, BookingStatus.COMPLETED)
            booking.check_out_time = current
            booking.modified_at = current

        logger.info("Checked out booking %s", booking.booking_code)
        return booking

    # -----------------------------
    # Cancellation
    # -----------------------------
    def cancel_by_customer(
        self,
        booking_id: int,
        user_id: str,
        now: datetime | None = None,
    ) -> Booking:
        current = ensure_utc(now)
        with atomic(self.db):
            booking = self.booking_repository.get_by_id(booking_id, lock=True)
            if booking is None or booking.user_id != user_id:
                raise NotFoundError("Booking", booking_id)
            self._ensure_cancellable(booking)

            starts_at = booking_datetime(booking.booking_date, booking.start_time, self.settings.tz)
            notice = timedelta(hours=self.settings.cancellation_notice_hours)
            if starts_at - current < notice:
                raise CancellationWindowClosed(
                    f"Bookings can only be cancelled at least "
                    f"{self.settings.cancellation_notice_hours} hours in advance"
                )

            self._transition(booking, BookingStatus.CANCELLED)
            booking.modified_at = current

            payment = self.booking_repository.get_payment(booking.id, lock=True)
            if payment is not None and payment.status == PaymentStatus.COMPLETED:
                payment.status = PaymentStatus.REFUNDED
                payment.refund_amount = refund_for(booking.deposit_amount, self.settings.refund_rate)
                payment.refund_date = current
                logger.info(
                    "Refund of %s recorded for booking %s",
                    payment.refund_amount,
                    booking.booking_code,
                )

            safe_notify(
                self.db,
                "cancellation",
                booking.booking_code,
                lambda: self.notifier.notify_cancellation(booking),
            )

        logger.info("Customer %s cancelled booking %s", user_id, booking.booking_code)
        return booking

    def cancel_by_staff(self, booking_id: int, now: datetime | None = None) -> Booking:
        """Administrative cancel: no notice window and no automatic refund."""
        current = ensure_utc(now)
        with atomic(self.db):
            booking = self._get_locked(booking_id)
            self._ensure_cancellable(booking)
            self._transition(booking, BookingStatus.CANCELLED)
            booking.modified_at = current

            safe_notify(
                self.db,
                "cancellation",
                booking.booking_code,
                lambda: self.notifier.notify_cancellation(booking),
            )

        logger.info("Staff cancelled booking %s", booking.booking_code)
        return booking

    @staticmethod
    def _ensure_cancellable(booking: Booking) -> None:
        if booking.status not in CANCELLABLE_STATUSES:
            raise InvalidStateTransitionError(
                booking.status.value,
                BookingStatus.CANCELLED.value,
            )

    # -----------------------------
    # Admin edit
    # -----------------------------
    def modify_booking(
        self,
        booking_id: int,
        changes: BookingChanges,
        now: datetime | None = None,
    ) -> Booking:
        current = ensure_utc(now)
        with atomic(self.db):
            booking = self._get_locked(booking_id)

            table_id = changes.table_id if changes.table_id is not None else booking.table_id
            table = self.table_repository.lock_table(table_id)
            if table is None:
                raise NotFoundError("Table", table_id)
            if table.id != booking.table_id:
                self._ensure_can_move_to(booking, table)

            booking_date = (
                to_calendar_date(changes.booking_date)
                if changes.booking_date is not None
                else booking.booking_date
            )
            start = changes.start_time or booking.start_time
            end = changes.end_time or booking.end_time
            validate_interval(start, end)

            party_size = changes.party_size if changes.party_size is not None else booking.party_size
            validate_party_size(party_size, self.settings.min_party_size, self.settings.max_party_size)
            if party_size > table.capacity:
                raise ValidationError(
                    f"Table {table.table_number} seats at most {table.capacity}",
                    field="party_size",
                )

            status = changes.status or booking.status
            slot_changed = (
                table.id != booking.table_id
                or booking_date != booking.booking_date
                or start != booking.start_time
                or end != booking.end_time
            )
            if slot_changed and status in ACTIVE_STATUSES:
                if self.conflicts.has_conflict(
                    table.id, booking_date, start, end, exclude_booking_id=booking.id
                ):
                    raise TableNoLongerAvailable(table.id)

            if status != booking.status:
                self._transition(booking, status)
                if status == BookingStatus.CHECKED_IN:
                    booking.check_in_time = current
                elif status == BookingStatus.COMPLETED:
                    booking.check_out_time = current

            booking.table_id = table.id
            booking.booking_date = booking_date
            booking.start_time = start
            booking.end_time = end
            booking.party_size = party_size
            if changes.special_requests is not None:
                booking.special_requests = self._clean_requests(changes.special_requests)
            if slot_changed:
                booking.reminder_sent = False
            booking.modified_at = current

        logger.info("Modified booking %s", booking.booking_code)
        return booking

    # -----------------------------
    # Reads
    # -----------------------------
    def get_booking(self, booking_id: int) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def get_booking_for_user(self, booking_id: int, user_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None or booking.user_id != user_id:
            raise NotFoundError("Booking", booking_id)
        return booking

    def get_by_code(self, booking_code: str) -> Booking:
        booking = self.booking_repository.get_by_code((booking_code or "").strip())
        if booking is None:
            raise NotFoundError("Booking", booking_code)
        return booking

    def get_payment(self, booking_id: int) -> Payment | None:
        return self.booking_repository.get_payment(booking_id)

    def list_for_user(self, user_id: str) -> list[Booking]:
        return self.booking_repository.list_for_user(user_id)

    def list_bookings(
        self,
        status: BookingStatus | None = None,
        booking_date: date | None = None,
        search: str | None = None,
        limit: int = 100,
    ) -> list[Booking]:
        return self.booking_repository.search(
            status=status,
            booking_date=booking_date,
            term=search,
            limit=max(1, min(limit, 100)),
        )

    # -----------------------------
    # Helpers
    # -----------------------------
    def _get_locked(self, booking_id: int) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, lock=True)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def _ensure_can_move_to(self, booking: Booking, table: DiningTable) -> None:
        """A booking only moves to an active table of its own branch."""
        current_table = self.table_repository.get_by_id(booking.table_id)
        if current_table is not None and current_table.branch_id != table.branch_id:
            raise ValidationError(
                f"Table {table.table_number} belongs to another branch",
                field="table_id",
            )
        if not table.is_active:
            raise TableNoLongerAvailable(table.id)

    def _get_locked_by_code(self, booking_code: str) -> Booking:
        code = (booking_code or "").strip()
        booking = self.booking_repository.get_by_code(code, lock=True)
        if booking is None:
            raise NotFoundError("Booking", code)
        return booking

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)

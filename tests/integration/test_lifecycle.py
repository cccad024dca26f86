from datetime import date, datetime, time, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from reservation_engine.application.booking_service import BookingChanges, BookingService
from reservation_engine.domain.exceptions import (
    CancellationWindowClosed,
    ConflictError,
    DepositFailed,
    InvalidStateTransitionError,
    NotFoundError,
    TableNoLongerAvailable,
    TooEarly,
    TooLate,
    ValidationError,
)
from reservation_engine.domain.state_machine import BookingStatus, PaymentStatus
from reservation_engine.infrastructure.db.models import (
    Booking,
    Branch,
    DiningTable,
    OutboxEvent,
    PromoCode,
)

BANGKOK = ZoneInfo("Asia/Bangkok")
DAY = date(2025, 1, 10)
BOOKED_AT = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def _create(service, table, user_id="user1", start="19:00", **extra):
    return service.create_booking(
        user_id=user_id,
        branch_id=table.branch_id,
        booking_date=DAY,
        start_time=start,
        duration_hours=2,
        party_size=4,
        table_id=table.id,
        now=BOOKED_AT,
        **extra,
    )


def _confirm(service, booking, payment_id="pay_001"):
    return service.confirm_payment(
        booking.id,
        order_id=f"order_{booking.id}",
        payment_id=payment_id,
        signature="valid-signature",
        now=BOOKED_AT,
    )


@pytest.fixture
def promo(db):
    promo = PromoCode(
        code="TAKE20",
        description="20% off",
        discount_percent=Decimal("20"),
        discount_amount=Decimal("0"),
        minimum_spend=Decimal("1000"),
        valid_from=datetime(2024, 12, 1, tzinfo=timezone.utc),
        valid_to=datetime(2025, 1, 31, tzinfo=timezone.utc),
        max_uses=5,
    )
    db.add(promo)
    db.commit()
    return promo


# ---------------------
# CREATE
# ---------------------

def test_create_booking_prices_and_codes(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table, special_requests="  window seat  ")

    assert booking.status == BookingStatus.PENDING
    assert booking.booking_code.startswith("BK20250101")
    assert booking.end_time == time(21, 0)
    assert booking.total_amount == Decimal("2000.00")
    assert booking.deposit_amount == Decimal("600.00")
    assert booking.special_requests == "window seat"


def test_create_booking_applies_promo_and_counts_use(db, booking_service, outdoor_table, promo):
    booking = _create(booking_service, outdoor_table, promo_code=" take20 ")

    assert booking.promo_code == "TAKE20"
    assert booking.discount_amount == Decimal("400.00")
    assert booking.total_amount == Decimal("1600.00")
    assert booking.deposit_amount == Decimal("480.00")
    db.refresh(promo)
    assert promo.current_uses == 1


def test_invalid_promo_does_not_block_booking(db, booking_service, outdoor_table, promo, caplog):
    promo.is_active = False
    db.commit()

    with caplog.at_level("INFO"):
        booking = _create(booking_service, outdoor_table, promo_code="TAKE20")

    assert booking.promo_code is None
    assert booking.total_amount == Decimal("2000.00")
    assert "promo_rejected" in caplog.text
    db.refresh(promo)
    assert promo.current_uses == 0


def test_promo_minimum_spend_applies_at_booking(db, booking_service, make_table, promo):
    cheap = make_table("C1", minimum_spend="500")

    booking = _create(booking_service, cheap, promo_code="TAKE20")

    assert booking.discount_amount == Decimal("0.00")
    db.refresh(promo)
    assert promo.current_uses == 0


def test_deposit_failure_rolls_back_booking_and_promo(db, booking_service, outdoor_table, promo, gateway):
    gateway.error = RuntimeError("gateway down")

    with pytest.raises(DepositFailed):
        _create(booking_service, outdoor_table, promo_code="TAKE20")

    assert db.query(Booking).count() == 0
    db.refresh(promo)
    assert promo.current_uses == 0


def test_second_booking_for_same_slot_conflicts(booking_service, outdoor_table):
    _create(booking_service, outdoor_table)

    with pytest.raises(TableNoLongerAvailable):
        _create(booking_service, outdoor_table, user_id="user2", start="20:00")


def test_table_from_another_branch_is_not_found(booking_service, outdoor_table):
    with pytest.raises(NotFoundError):
        booking_service.create_booking(
            user_id="user1",
            branch_id=outdoor_table.branch_id + 1,
            booking_date=DAY,
            start_time="19:00",
            duration_hours=2,
            party_size=2,
            table_id=outdoor_table.id,
        )


def test_notifier_failure_does_not_fail_booking(booking_service, outdoor_table, notifier):
    notifier.error = RuntimeError("smtp down")

    booking = _create(booking_service, outdoor_table)

    assert booking.id is not None


def test_failed_notification_write_keeps_the_booking(db, settings, gateway, outdoor_table):
    class BrokenOutbox:
        def notify_admin(self, text, dedupe_key=None):
            db.add(
                OutboxEvent(
                    aggregate_type="admin",
                    aggregate_id="x",
                    event_type="ADMIN_NOTIFICATION",
                    payload=None,
                    dedupe_key="broken",
                )
            )
            db.flush()

    service = BookingService(db, settings, gateway, BrokenOutbox())

    booking = _create(service, outdoor_table)

    assert db.query(Booking).filter_by(id=booking.id).count() == 1
    assert db.query(OutboxEvent).count() == 0


def test_special_requests_over_limit_are_rejected(db, booking_service, outdoor_table):
    with pytest.raises(ValidationError) as info:
        _create(booking_service, outdoor_table, special_requests="x" * 1001)

    assert info.value.field == "special_requests"
    assert db.query(Booking).count() == 0

    booking = _create(booking_service, outdoor_table, special_requests="x" * 1000)
    assert len(booking.special_requests) == 1000


# ---------------------
# CONFIRM
# ---------------------

def test_confirm_is_idempotent(booking_service, outdoor_table, notifier):
    booking = _create(booking_service, outdoor_table)

    _confirm(booking_service, booking)
    again = _confirm(booking_service, booking)

    assert again.status == BookingStatus.CONFIRMED
    assert notifier.kinds().count("confirmation") == 1
    assert booking_service.get_payment(booking.id).status == PaymentStatus.COMPLETED


def test_confirm_rejects_foreign_order(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(ConflictError) as info:
        booking_service.confirm_payment(booking.id, "order_other", "pay_9", "valid-signature")

    assert "does not belong" in str(info.value)


# ---------------------
# CHECK-IN
# ---------------------

def test_check_in_window(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)
    _confirm(booking_service, booking)

    with pytest.raises(TooEarly):
        booking_service.check_in(booking.booking_code, now=datetime(2025, 1, 10, 16, 0, tzinfo=BANGKOK))
    with pytest.raises(TooLate):
        booking_service.check_in(booking.booking_code, now=datetime(2025, 1, 10, 23, 0, tzinfo=BANGKOK))

    checked_in = booking_service.check_in(
        booking.booking_code, now=datetime(2025, 1, 10, 18, 30, tzinfo=BANGKOK)
    )
    assert checked_in.status == BookingStatus.CHECKED_IN
    assert checked_in.check_in_time == datetime(2025, 1, 10, 11, 30, tzinfo=timezone.utc)

    completed = booking_service.check_out(
        booking.booking_code, now=datetime(2025, 1, 10, 21, 0, tzinfo=BANGKOK)
    )
    assert completed.status == BookingStatus.COMPLETED


def test_check_in_window_opens_one_hour_before_start(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)
    _confirm(booking_service, booking)

    with pytest.raises(TooEarly):
        booking_service.check_in(booking.booking_code, now=datetime(2025, 1, 10, 17, 30, tzinfo=BANGKOK))

    checked_in = booking_service.check_in(
        booking.booking_code, now=datetime(2025, 1, 10, 18, 0, tzinfo=BANGKOK)
    )
    assert checked_in.check_in_time == datetime(2025, 1, 10, 11, 0, tzinfo=timezone.utc)


def test_pending_booking_cannot_check_in(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(InvalidStateTransitionError):
        booking_service.check_in(booking.booking_code, now=datetime(2025, 1, 10, 19, 0, tzinfo=BANGKOK))


def test_unknown_code_cannot_check_in(booking_service):
    with pytest.raises(NotFoundError):
        booking_service.check_in("BK000000000000")


# ---------------------
# CANCEL
# ---------------------

def test_cancel_exactly_24_hours_ahead_refunds_70_percent(booking_service, outdoor_table, notifier):
    booking = _create(booking_service, outdoor_table)
    _confirm(booking_service, booking)

    cancelled = booking_service.cancel_by_customer(
        booking.id, "user1", now=datetime(2025, 1, 9, 19, 0, tzinfo=BANGKOK)
    )

    assert cancelled.status == BookingStatus.CANCELLED
    payment = booking_service.get_payment(booking.id)
    assert payment.status == PaymentStatus.REFUNDED
    assert payment.refund_amount == Decimal("420.00")
    assert payment.refund_date is not None
    assert "cancellation" in notifier.kinds()


def test_cancel_inside_notice_window_fails(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(CancellationWindowClosed):
        booking_service.cancel_by_customer(
            booking.id, "user1", now=datetime(2025, 1, 9, 19, 0, 1, tzinfo=BANGKOK)
        )


def test_cancel_of_pending_booking_has_no_refund(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    booking_service.cancel_by_customer(booking.id, "user1", now=BOOKED_AT)

    assert booking_service.get_payment(booking.id).status == PaymentStatus.PENDING


def test_customer_cannot_cancel_someone_elses_booking(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(NotFoundError):
        booking_service.cancel_by_customer(booking.id, "intruder", now=BOOKED_AT)


def test_staff_cancel_ignores_notice_window(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)
    _confirm(booking_service, booking)

    cancelled = booking_service.cancel_by_staff(
        booking.id, now=datetime(2025, 1, 10, 18, 0, tzinfo=BANGKOK)
    )

    assert cancelled.status == BookingStatus.CANCELLED
    assert booking_service.get_payment(booking.id).status == PaymentStatus.COMPLETED


def test_cancelled_slot_can_be_booked_again(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)
    booking_service.cancel_by_staff(booking.id)

    rebooked = _create(booking_service, outdoor_table, user_id="user2")

    assert rebooked.status == BookingStatus.PENDING


def test_checked_in_booking_cannot_be_cancelled(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)
    _confirm(booking_service, booking)
    booking_service.check_in(booking.booking_code, now=datetime(2025, 1, 10, 19, 0, tzinfo=BANGKOK))

    with pytest.raises(InvalidStateTransitionError):
        booking_service.cancel_by_staff(booking.id)


# ---------------------
# ADMIN EDIT
# ---------------------

def test_modify_moves_booking_and_stamps_time(booking_service, outdoor_table, make_table):
    other = make_table("T2", zone="Outdoor", capacity=6)
    booking = _create(booking_service, outdoor_table)
    edited_at = datetime(2025, 1, 5, 8, 0, tzinfo=timezone.utc)

    moved = booking_service.modify_booking(
        booking.id,
        BookingChanges(table_id=other.id, start_time=time(20, 0), end_time=time(22, 0)),
        now=edited_at,
    )

    assert moved.table_id == other.id
    assert moved.start_time == time(20, 0)
    assert moved.modified_at == edited_at


def test_modify_rejects_overlap_with_another_booking(booking_service, outdoor_table):
    first = _create(booking_service, outdoor_table, start="12:00")
    _create(booking_service, outdoor_table, user_id="user2", start="19:00")

    with pytest.raises(TableNoLongerAvailable):
        booking_service.modify_booking(
            first.id, BookingChanges(start_time=time(18, 0), end_time=time(20, 0))
        )

    shifted = booking_service.modify_booking(
        first.id, BookingChanges(start_time=time(13, 0), end_time=time(15, 0))
    )
    assert shifted.start_time == time(13, 0)


def test_modify_cannot_move_booking_to_another_branch(db, booking_service, outdoor_table):
    other_branch = Branch(name="Sukhumvit", address="15 Sukhumvit Soi 11", is_active=True)
    db.add(other_branch)
    db.commit()
    foreign = DiningTable(
        branch_id=other_branch.id,
        table_number="S1",
        zone="Outdoor",
        table_type="Standard",
        capacity=6,
        minimum_spend=Decimal("0"),
        base_price=Decimal("0"),
        is_active=True,
    )
    db.add(foreign)
    db.commit()
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(ValidationError) as info:
        booking_service.modify_booking(booking.id, BookingChanges(table_id=foreign.id))

    assert info.value.field == "table_id"
    db.refresh(booking)
    assert booking.table_id == outdoor_table.id


def test_modify_cannot_move_booking_to_inactive_table(booking_service, outdoor_table, make_table):
    retired = make_table("T9", zone="Outdoor", capacity=6, is_active=False)
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(TableNoLongerAvailable):
        booking_service.modify_booking(booking.id, BookingChanges(table_id=retired.id))


def test_modify_status_must_follow_transitions(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    with pytest.raises(InvalidStateTransitionError):
        booking_service.modify_booking(booking.id, BookingChanges(status=BookingStatus.COMPLETED))

    confirmed = booking_service.modify_booking(
        booking.id, BookingChanges(status=BookingStatus.CONFIRMED)
    )
    assert confirmed.status == BookingStatus.CONFIRMED


def test_list_bookings_filters(booking_service, outdoor_table):
    booking = _create(booking_service, outdoor_table)

    assert booking_service.list_bookings(status=BookingStatus.PENDING) == [booking]
    assert booking_service.list_bookings(search=booking.booking_code[-4:]) == [booking]
    assert booking_service.list_bookings(booking_date=date(2025, 1, 11)) == []
    assert booking_service.list_for_user("user1") == [booking]

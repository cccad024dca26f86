import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError, PendingRollbackError

from reservation_engine.application.booking_service import BookingService
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import (
    StoreError,
    StoreUnavailable,
    TableNoLongerAvailable,
)
from reservation_engine.infrastructure.db.models import Base, Booking, Branch, DiningTable
from reservation_engine.infrastructure.db.session import (
    atomic,
    build_engine,
    build_session_factory,
)
from reservation_engine.infrastructure.repositories.table_repository import TableRepository

DAY = date(2025, 1, 10)
BOOKED_AT = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


class HeldDepositGateway:
    """Parks the booking transaction inside the deposit call until released."""

    provider = "FAKE"

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def create_deposit(self, booking_id, amount):
        self.entered.set()
        self.release.wait(5)
        return f"order_{booking_id}"

    def verify_payment(self, order_id, payment_id, signature):
        return None


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "reservations.db"


@pytest.fixture
def file_engine(db_path):
    engine = build_engine(ReservationSettings(database_url=f"sqlite:///{db_path}"))
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def table_id(file_engine):
    session = build_session_factory(file_engine)()
    try:
        branch = Branch(name="Riverside", address="1 River Road", is_active=True)
        session.add(branch)
        session.flush()
        table = DiningTable(
            branch_id=branch.id,
            table_number="T1",
            zone="Outdoor",
            table_type="Terrace",
            capacity=6,
            minimum_spend=Decimal("2000"),
            base_price=Decimal("0"),
            is_active=True,
        )
        session.add(table)
        session.commit()
        return table.id
    finally:
        session.close()


def _book(service, table_id, user_id):
    return service.create_booking(
        user_id=user_id,
        branch_id=1,
        booking_date=DAY,
        start_time="19:00",
        duration_hours=2,
        party_size=4,
        table_id=table_id,
        now=BOOKED_AT,
    )


def test_concurrent_bookings_of_one_table_admit_one(db_path, file_engine, table_id, notifier):
    settings = ReservationSettings(database_url=f"sqlite:///{db_path}")
    factory = build_session_factory(file_engine)
    held = HeldDepositGateway()
    outcomes = {}

    def run(name, gateway):
        session = factory()
        try:
            outcomes[name] = _book(BookingService(session, settings, gateway, notifier), table_id, name)
        except Exception as exc:
            outcomes[name] = exc
        finally:
            session.close()

    first = threading.Thread(target=run, args=("first", held))
    first.start()
    assert held.entered.wait(5)

    second = threading.Thread(target=run, args=("second", HeldDepositGateway()))
    second.start()
    time.sleep(0.2)
    held.release.set()
    first.join(10)
    second.join(10)

    assert isinstance(outcomes["first"], Booking)
    assert isinstance(outcomes["second"], (TableNoLongerAvailable, StoreUnavailable))

    check = factory()
    try:
        assert check.query(Booking).count() == 1
    finally:
        check.close()


def test_locked_store_times_out_as_unavailable(db_path, file_engine, table_id, gateway, notifier):
    settings = ReservationSettings(
        database_url=f"sqlite:///{db_path}",
        db_statement_timeout_ms=100,
    )
    impatient_engine = build_engine(settings)
    holder = build_session_factory(file_engine)()
    waiter = build_session_factory(impatient_engine)()
    try:
        assert TableRepository(holder).lock_table(table_id) is not None

        with pytest.raises(StoreUnavailable):
            _book(BookingService(waiter, settings, gateway, notifier), table_id, "user1")
    finally:
        holder.rollback()
        holder.close()
        waiter.close()
        impatient_engine.dispose()

    check = build_session_factory(file_engine)()
    try:
        assert check.query(Booking).count() == 0
    finally:
        check.close()


def test_atomic_maps_driver_timeouts_to_store_unavailable(db):
    with pytest.raises(StoreUnavailable):
        with atomic(db):
            raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))


def test_atomic_maps_other_sqlalchemy_errors_to_store_error(db):
    with pytest.raises(StoreError) as info:
        with atomic(db):
            raise PendingRollbackError("transaction was rolled back")

    assert not isinstance(info.value, StoreUnavailable)

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from reservation_engine.api.dependencies import (
    get_db,
    get_deposit_gateway,
    get_notifier,
    get_settings,
)
from reservation_engine.application.booking_service import BookingService
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import PaymentVerificationFailed
from reservation_engine.infrastructure.db.models import Base, Branch, DiningTable
from reservation_engine.infrastructure.db.session import build_session_factory
from reservation_engine.main import create_app

VALID_SIGNATURE = "valid-signature"


class FakeDepositGateway:
    provider = "FAKE"

    def __init__(self):
        self.deposits = []
        self.error: Exception | None = None

    def create_deposit(self, booking_id, amount):
        if self.error is not None:
            raise self.error
        self.deposits.append((booking_id, amount))
        return f"order_{booking_id}"

    def verify_payment(self, order_id, payment_id, signature):
        if signature != VALID_SIGNATURE:
            raise PaymentVerificationFailed(
                "Invalid payment signature", field="razorpay_signature"
            )


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.error: Exception | None = None

    def _record(self, kind, subject):
        if self.error is not None:
            raise self.error
        self.sent.append((kind, subject))

    def notify_confirmation(self, booking):
        self._record("confirmation", booking.booking_code)

    def notify_reminder(self, booking):
        self._record("reminder", booking.booking_code)

    def notify_cancellation(self, booking):
        self._record("cancellation", booking.booking_code)

    def notify_admin(self, text, dedupe_key=None):
        self._record("admin", text)

    def kinds(self):
        return [kind for kind, _ in self.sent]


@pytest.fixture
def settings():
    return ReservationSettings(database_url="sqlite://")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeDepositGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def booking_service(db, settings, gateway, notifier):
    return BookingService(db, settings, gateway, notifier)


@pytest.fixture
def branch(db):
    branch = Branch(name="Riverside", address="1 River Road", is_active=True)
    db.add(branch)
    db.commit()
    return branch


@pytest.fixture
def make_table(db, branch):
    def _make(number, zone="Indoor", capacity=4, minimum_spend="0", **extra):
        table = DiningTable(
            branch_id=branch.id,
            table_number=number,
            zone=zone,
            table_type=extra.get("table_type", "Standard"),
            capacity=capacity,
            minimum_spend=Decimal(minimum_spend),
            base_price=Decimal(extra.get("base_price", "0")),
            is_active=extra.get("is_active", True),
        )
        db.add(table)
        db.commit()
        return table

    return _make


@pytest.fixture
def outdoor_table(make_table):
    return make_table("T1", zone="Outdoor", capacity=6, minimum_spend="2000")


@pytest.fixture
def client(session_factory, settings, gateway, notifier):
    app = create_app(settings)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_deposit_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    return TestClient(app)

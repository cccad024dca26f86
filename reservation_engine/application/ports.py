# reservation_engine/application/ports.py
"""Collaborators the booking core calls but does not implement."""

from decimal import Decimal
from typing import Protocol

from reservation_engine.infrastructure.db.models import Booking


class DepositGateway(Protocol):

    provider: str

    def create_deposit(self, booking_id: int, amount: Decimal) -> str:
        """Open a deposit for the booking and return the provider's order id."""

    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> None:
        """Raise PaymentVerificationFailed if the signature does not match."""


class BookingNotifier(Protocol):

    def notify_confirmation(self, booking: Booking) -> None: ...

    def notify_reminder(self, booking: Booking) -> None: ...

    def notify_cancellation(self, booking: Booking) -> None: ...

    def notify_admin(self, text: str, dedupe_key: str | None = None) -> None: ...

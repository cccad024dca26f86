# reservation_engine/infrastructure/payments/razorpay_gateway.py

import logging
from decimal import Decimal

import razorpay

from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import (
    DepositFailed,
    PaymentVerificationFailed,
)
from reservation_engine.domain.pricing import to_minor_units

logger = logging.getLogger(__name__)


class RazorpayDepositGateway:
    """Deposit collaborator backed by Razorpay orders."""

    provider = "RAZORPAY"

    def __init__(self, client: razorpay.Client | None, currency: str):
        self.client = client
        self.currency = currency

    @classmethod
    def from_settings(cls, settings: ReservationSettings) -> "RazorpayDepositGateway":
        client = None
        if settings.razorpay_key_id and settings.razorpay_key_secret:
            client = razorpay.Client(
                auth=(settings.razorpay_key_id, settings.razorpay_key_secret)
            )
        else:
            logger.warning("Razorpay keys not configured; deposits will be refused")
        return cls(client=client, currency=settings.payment_currency)

    def _require_client(self) -> razorpay.Client:
        if self.client is None:
            raise DepositFailed(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return self.client

    def create_deposit(self, booking_id: int, amount: Decimal) -> str:
        order = self._require_client().order.create(
            {
                "amount": to_minor_units(amount),
                "currency": self.currency,
                "receipt": str(booking_id),
            }
        )
        order_id = order.get("id")
        if not order_id:
            raise DepositFailed(f"Razorpay returned no order id for booking {booking_id}")
        logger.info("Created deposit order %s for booking %s", order_id, booking_id)
        return order_id

    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> None:
        try:
            self._require_client().utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError as exc:
            raise PaymentVerificationFailed(
                "Invalid payment signature", field="razorpay_signature"
            ) from exc

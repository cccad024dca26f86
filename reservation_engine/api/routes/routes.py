import json
import logging
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from reservation_engine.api.dependencies import (
    get_availability_service,
    get_booking_service,
    get_catalog_service,
    get_current_user_id,
    get_db,
    get_promo_service,
    to_http_error,
)
from reservation_engine.api.schemas.schemas import (
    BookingCreate,
    BookingDetailResponse,
    BookingResponse,
    BranchResponse,
    OutboxEventResponse,
    PaymentResponse,
    PreOrderItem,
    PromoValidationResponse,
    RazorpayVerifyRequest,
    TableResponse,
)
from reservation_engine.application.availability_service import AvailabilityService
from reservation_engine.application.booking_service import BookingService
from reservation_engine.application.catalog_service import CatalogService
from reservation_engine.application.promo_service import PromoService
from reservation_engine.domain.exceptions import ReservationError
from reservation_engine.domain.pricing import ZERO
from reservation_engine.domain.promotions import PromoContext, normalize_code
from reservation_engine.domain.timing import utc_now
from reservation_engine.infrastructure.db.models import (
    Booking,
    Branch,
    DiningTable,
    OutboxEvent,
    Payment,
)
from reservation_engine.infrastructure.db.session import atomic
from reservation_engine.infrastructure.repositories.outbox_repository import (
    OutboxRepository,
)


router = APIRouter()
logger = logging.getLogger(__name__)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def branch_response(branch: Branch) -> BranchResponse:
    return BranchResponse(
        id=branch.id,
        name=branch.name,
        address=branch.address,
        phone=branch.phone,
        is_active=branch.is_active,
    )


def table_response(table: DiningTable) -> TableResponse:
    return TableResponse(
        id=table.id,
        branch_id=table.branch_id,
        table_number=table.table_number,
        zone=table.zone,
        table_type=table.table_type,
        capacity=table.capacity,
        minimum_spend=table.minimum_spend,
        base_price=table.base_price,
        is_active=table.is_active,
        notes=table.notes,
    )


def _booking_fields(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "booking_code": booking.booking_code,
        "user_id": booking.user_id,
        "table_id": booking.table_id,
        "booking_date": booking.booking_date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "end_time": booking.end_time.strftime("%H:%M"),
        "party_size": booking.party_size,
        "status": booking.status,
        "total_amount": booking.total_amount,
        "deposit_amount": booking.deposit_amount,
        "discount_amount": booking.discount_amount,
        "promo_code": booking.promo_code,
        "special_requests": booking.special_requests,
        "pre_order_items": [PreOrderItem(**item) for item in booking.preorder],
        "reminder_sent": booking.reminder_sent,
        "created_at": booking.created_at.isoformat(),
        "modified_at": _iso(booking.modified_at),
        "check_in_time": _iso(booking.check_in_time),
        "check_out_time": _iso(booking.check_out_time),
    }


def booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(**_booking_fields(booking))


def _payment_response(payment: Payment | None) -> PaymentResponse | None:
    if payment is None:
        return None
    return PaymentResponse(
        provider=payment.provider,
        order_id=payment.order_id,
        payment_id=payment.payment_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status.value,
        refund_amount=payment.refund_amount,
        refund_date=_iso(payment.refund_date),
    )


def booking_detail(booking: Booking, payment: Payment | None) -> BookingDetailResponse:
    return BookingDetailResponse(
        **_booking_fields(booking),
        payment=_payment_response(payment),
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        payload=json.loads(item.payload),
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )


@router.get("/health")
def health():
    return {"message": "Table Reservation Engine is running"}


# -----------------------------
# Outbox
# -----------------------------
@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: int,
    db: Session = Depends(get_db),
):
    repository = OutboxRepository(db)
    try:
        with atomic(db):
            item = repository.get_by_id(event_id)
            if not item:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Outbox event not found",
                )
            repository.mark_published(item, utc_now())
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return _outbox_response(item)


# -----------------------------
# Catalog
# -----------------------------
@router.get("/branches", response_model=list[BranchResponse])
def list_branches(catalog: CatalogService = Depends(get_catalog_service)):
    return [branch_response(branch) for branch in catalog.list_branches()]


@router.get("/branches/{branch_id}/tables", response_model=list[TableResponse])
def list_branch_tables(
    branch_id: int,
    catalog: CatalogService = Depends(get_catalog_service),
):
    try:
        tables = catalog.list_tables(branch_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return [table_response(table) for table in tables]


@router.get("/branches/{branch_id}/availability", response_model=list[TableResponse])
def find_available_tables(
    branch_id: int,
    booking_date: date,
    start_time: str,
    duration_hours: int,
    party_size: int,
    zone: str | None = None,
    catalog: CatalogService = Depends(get_catalog_service),
    availability: AvailabilityService = Depends(get_availability_service),
):
    try:
        catalog.get_branch(branch_id)
        tables = availability.find_available_tables(
            branch_id=branch_id,
            booking_date=booking_date,
            start_time=start_time,
            duration_hours=duration_hours,
            party_size=party_size,
            zone=zone,
        )
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return [table_response(table) for table in tables]


# -----------------------------
# Promos
# -----------------------------
@router.get("/promos/validate", response_model=PromoValidationResponse)
def validate_promo(
    code: str,
    base_spend: Decimal | None = None,
    booking_date: date | None = None,
    zone: str | None = None,
    table_type: str | None = None,
    promos: PromoService = Depends(get_promo_service),
):
    context = None
    if base_spend is not None:
        context = PromoContext(
            base_spend=base_spend,
            booking_date=booking_date,
            zone=zone,
            table_type=table_type,
        )
    promo, reason = promos.evaluate(code, context)
    if promo is None:
        logger.info("promo_rejected code=%s reason=%s", normalize_code(code), reason.value)
        return PromoValidationResponse(
            code=normalize_code(code),
            valid=False,
            reason=reason.value,
            description=None,
            discount=ZERO,
        )

    discount = promos.compute_discount(promo, base_spend) if base_spend is not None else ZERO
    return PromoValidationResponse(
        code=promo.code,
        valid=True,
        reason=None,
        description=promo.description,
        discount=discount,
    )


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingDetailResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.create_booking(
            user_id=user_id,
            branch_id=request.branch_id,
            booking_date=request.booking_date,
            start_time=request.start_time,
            duration_hours=request.duration_hours,
            party_size=request.party_size,
            table_id=request.table_id,
            promo_code=request.promo_code,
            special_requests=request.special_requests,
            pre_order_items=(
                [item.model_dump(mode="json") for item in request.pre_order_items]
                if request.pre_order_items
                else None
            ),
            zone=request.zone,
        )
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))


@router.get("/bookings/mine", response_model=list[BookingResponse])
def list_my_bookings(
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    return [booking_response(booking) for booking in service.list_for_user(user_id)]


@router.get("/bookings/{booking_id}", response_model=BookingDetailResponse)
def get_booking(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.get_booking_for_user(booking_id, user_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))


@router.post("/bookings/{booking_id}/verify", response_model=BookingDetailResponse)
def verify_booking_payment(
    booking_id: int,
    request: RazorpayVerifyRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.confirm_payment(
            booking_id=booking_id,
            order_id=request.razorpay_order_id,
            payment_id=request.razorpay_payment_id,
            signature=request.razorpay_signature,
        )
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingDetailResponse)
def cancel_booking(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.cancel_by_customer(booking_id, user_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from reservation_engine.api.dependencies import (
    get_booking_service,
    get_catalog_service,
    get_db,
    get_notifier,
    get_promo_service,
    get_settings,
    to_http_error,
)
from reservation_engine.api.routes.routes import (
    booking_detail,
    booking_response,
    branch_response,
    table_response,
)
from reservation_engine.api.schemas.schemas import (
    BookingCodeRequest,
    BookingDetailResponse,
    BookingResponse,
    BookingUpdate,
    BranchCreate,
    BranchResponse,
    PromoCreate,
    PromoResponse,
    SweepResponse,
    TableCreate,
    TableFields,
    TableResponse,
)
from reservation_engine.application.booking_service import BookingChanges, BookingService
from reservation_engine.application.catalog_service import CatalogService, TableDraft
from reservation_engine.application.ports import BookingNotifier
from reservation_engine.application.promo_service import PromoDraft, PromoService
from reservation_engine.application.sweeps import run_no_show_sweep, run_reminder_sweep
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import ReservationError
from reservation_engine.domain.state_machine import BookingStatus
from reservation_engine.domain.timing import ensure_utc
from reservation_engine.infrastructure.db.models import PromoCode


admin_router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


def _promo_response(promo: PromoCode) -> PromoResponse:
    return PromoResponse(
        id=promo.id,
        code=promo.code,
        description=promo.description,
        discount_percent=promo.discount_percent,
        discount_amount=promo.discount_amount,
        minimum_spend=promo.minimum_spend,
        valid_from=promo.valid_from.isoformat(),
        valid_to=promo.valid_to.isoformat(),
        max_uses=promo.max_uses,
        current_uses=promo.current_uses,
        applicable_days=sorted(promo.applicable_days),
        applicable_zones=sorted(promo.applicable_zones),
        applicable_table_types=sorted(promo.applicable_table_types),
        is_active=promo.is_active,
    )


def _table_draft(request: TableFields) -> TableDraft:
    return TableDraft(
        zone=request.zone,
        table_type=request.table_type,
        capacity=request.capacity,
        minimum_spend=request.minimum_spend,
        base_price=request.base_price,
        is_active=request.is_active,
        notes=request.notes,
    )


def _promo_draft(request: PromoCreate) -> PromoDraft:
    return PromoDraft(
        code=request.code,
        description=request.description,
        valid_from=request.valid_from,
        valid_to=request.valid_to,
        max_uses=request.max_uses,
        discount_percent=request.discount_percent,
        discount_amount=request.discount_amount,
        minimum_spend=request.minimum_spend,
        applicable_days=request.applicable_days,
        applicable_zones=request.applicable_zones,
        applicable_table_types=request.applicable_table_types,
        is_active=request.is_active,
    )


# -----------------------------
# Bookings
# -----------------------------
@admin_router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(
    status_filter: BookingStatus | None = None,
    booking_date: date | None = None,
    search: str | None = None,
    limit: int = 100,
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.list_bookings(
        status=status_filter,
        booking_date=booking_date,
        search=search,
        limit=limit,
    )
    return [booking_response(booking) for booking in bookings]


@admin_router.get("/bookings/{booking_id}", response_model=BookingDetailResponse)
def get_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.get_booking(booking_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))


@admin_router.patch("/bookings/{booking_id}", response_model=BookingDetailResponse)
def update_booking(
    booking_id: int,
    request: BookingUpdate,
    service: BookingService = Depends(get_booking_service),
):
    changes = BookingChanges(**request.model_dump(exclude_unset=True))
    try:
        booking = service.modify_booking(booking_id, changes)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))


@admin_router.post("/bookings/{booking_id}/cancel", response_model=BookingDetailResponse)
def cancel_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.cancel_by_staff(booking_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_detail(booking, service.get_payment(booking.id))


@admin_router.post("/check-in", response_model=BookingResponse)
def check_in(
    request: BookingCodeRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.check_in(request.booking_code)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_response(booking)


@admin_router.post("/check-out", response_model=BookingResponse)
def check_out(
    request: BookingCodeRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.check_out(request.booking_code)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return booking_response(booking)


# -----------------------------
# Branches and tables
# -----------------------------
@admin_router.get("/branches", response_model=list[BranchResponse])
def list_branches(catalog: CatalogService = Depends(get_catalog_service)):
    return [branch_response(branch) for branch in catalog.list_branches(include_inactive=True)]


@admin_router.post("/branches", response_model=BranchResponse, status_code=status.HTTP_201_CREATED)
def create_branch(
    request: BranchCreate,
    catalog: CatalogService = Depends(get_catalog_service),
):
    try:
        branch = catalog.create_branch(request.name, request.address, request.phone)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return branch_response(branch)


@admin_router.get("/branches/{branch_id}/tables", response_model=list[TableResponse])
def list_tables(
    branch_id: int,
    catalog: CatalogService = Depends(get_catalog_service),
):
    try:
        tables = catalog.list_tables(branch_id, include_inactive=True)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return [table_response(table) for table in tables]


@admin_router.post(
    "/branches/{branch_id}/tables",
    response_model=TableResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_table(
    branch_id: int,
    request: TableCreate,
    catalog: CatalogService = Depends(get_catalog_service),
):
    try:
        table = catalog.create_table(branch_id, request.table_number, _table_draft(request))
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return table_response(table)


@admin_router.put("/tables/{table_id}", response_model=TableResponse)
def update_table(
    table_id: int,
    request: TableFields,
    catalog: CatalogService = Depends(get_catalog_service),
):
    try:
        table = catalog.update_table(table_id, _table_draft(request))
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return table_response(table)


@admin_router.delete("/tables/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_table(
    table_id: int,
    catalog: CatalogService = Depends(get_catalog_service),
):
    try:
        catalog.delete_table(table_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc


# -----------------------------
# Promo codes
# -----------------------------
@admin_router.get("/promos", response_model=list[PromoResponse])
def list_promos(promos: PromoService = Depends(get_promo_service)):
    return [_promo_response(promo) for promo in promos.list_promos()]


@admin_router.post("/promos", response_model=PromoResponse, status_code=status.HTTP_201_CREATED)
def create_promo(
    request: PromoCreate,
    promos: PromoService = Depends(get_promo_service),
):
    try:
        promo = promos.create_promo(_promo_draft(request))
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return _promo_response(promo)


@admin_router.put("/promos/{promo_id}", response_model=PromoResponse)
def update_promo(
    promo_id: int,
    request: PromoCreate,
    promos: PromoService = Depends(get_promo_service),
):
    try:
        promo = promos.update_promo(promo_id, _promo_draft(request))
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return _promo_response(promo)


@admin_router.post("/promos/{promo_id}/toggle", response_model=PromoResponse)
def toggle_promo(
    promo_id: int,
    promos: PromoService = Depends(get_promo_service),
):
    try:
        promo = promos.toggle_promo(promo_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return _promo_response(promo)


@admin_router.delete("/promos/{promo_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_promo(
    promo_id: int,
    promos: PromoService = Depends(get_promo_service),
):
    try:
        promos.delete_promo(promo_id)
    except ReservationError as exc:
        raise to_http_error(exc) from exc


# -----------------------------
# Sweeps
# -----------------------------
@admin_router.post("/sweeps/run", response_model=SweepResponse)
def run_sweeps(
    now: datetime | None = None,
    db: Session = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
    settings: ReservationSettings = Depends(get_settings),
):
    try:
        current = ensure_utc(now)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="now must carry a timezone offset",
        ) from exc

    try:
        no_shows = run_no_show_sweep(db, notifier, settings, current)
        reminders = run_reminder_sweep(db, notifier, settings, current)
    except ReservationError as exc:
        raise to_http_error(exc) from exc
    return SweepResponse(
        ran_at=current.isoformat(),
        no_shows=[booking.booking_code for booking in no_shows],
        reminders=[booking.booking_code for booking in reminders],
    )

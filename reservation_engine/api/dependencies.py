# reservation_engine/api/dependencies.py

import logging
from typing import Iterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from reservation_engine.application.availability_service import AvailabilityService
from reservation_engine.application.booking_service import BookingService
from reservation_engine.application.catalog_service import CatalogService
from reservation_engine.application.ports import BookingNotifier, DepositGateway
from reservation_engine.application.promo_service import PromoService
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import (
    ConflictError,
    DepositFailed,
    NotFoundError,
    ReservationError,
    StateError,
    StoreError,
    ValidationError,
)
from reservation_engine.infrastructure.notifications.outbox_notifier import (
    OutboxNotifier,
)

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> ReservationSettings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    # Services own their transactions; the request only owns the session.
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_deposit_gateway(request: Request) -> DepositGateway:
    return request.app.state.deposit_gateway


def get_notifier(db: Session = Depends(get_db)) -> BookingNotifier:
    return OutboxNotifier(db)


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


def to_http_error(exc: ReservationError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "field": exc.field},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ConflictError, StateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, StoreError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Booking store is unavailable. Please retry after some time.",
        )
    if isinstance(exc, DepositFailed):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    logger.error("Unmapped reservation error %s: %s", type(exc).__name__, exc)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def get_booking_service(
    db: Session = Depends(get_db),
    settings: ReservationSettings = Depends(get_settings),
    deposit_gateway: DepositGateway = Depends(get_deposit_gateway),
    notifier: BookingNotifier = Depends(get_notifier),
) -> BookingService:
    return BookingService(db, settings, deposit_gateway, notifier)


def get_catalog_service(
    db: Session = Depends(get_db),
    settings: ReservationSettings = Depends(get_settings),
) -> CatalogService:
    return CatalogService(db, settings)


def get_promo_service(db: Session = Depends(get_db)) -> PromoService:
    return PromoService(db)


def get_availability_service(
    db: Session = Depends(get_db),
    settings: ReservationSettings = Depends(get_settings),
) -> AvailabilityService:
    return AvailabilityService(db, settings)

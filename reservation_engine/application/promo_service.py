# reservation_engine/application/promo_service.py

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from reservation_engine.domain.exceptions import (
    ConflictError,
    NotFoundError,
    PromoDefinitionError,
    PromoInvalid,
    StateError,
)
from reservation_engine.domain.pricing import ZERO, compute_discount, to_money
from reservation_engine.domain.promotions import (
    PromoContext,
    PromoRejection,
    check_basic,
    check_extended,
    check_minimum_spend,
    grants_nothing,
    normalize_code,
    normalize_labels,
)
from reservation_engine.domain.timing import ensure_utc
from reservation_engine.infrastructure.db.models import PromoCode
from reservation_engine.infrastructure.db.session import atomic
from reservation_engine.infrastructure.repositories.promo_repository import (
    PromoRepository,
)

logger = logging.getLogger(__name__)

_WEEKDAYS = {name.casefold(): name for name in calendar.day_name}


@dataclass
class PromoDraft:
    """Admin input for creating or replacing a promo code."""

    code: str
    description: str
    valid_from: date | datetime
    valid_to: date | datetime
    max_uses: int
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    minimum_spend: Decimal = ZERO
    applicable_days: Iterable[str] = field(default_factory=tuple)
    applicable_zones: Iterable[str] = field(default_factory=tuple)
    applicable_table_types: Iterable[str] = field(default_factory=tuple)
    is_active: bool = True


def _start_of(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _end_of(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def _weekdays(values: Iterable[str]) -> frozenset[str]:
    days = set()
    for label in normalize_labels(values):
        day = _WEEKDAYS.get(label.casefold())
        if day is None:
            raise PromoDefinitionError(
                f"Unknown day {label!r}", field="applicable_days"
            )
        days.add(day)
    return frozenset(days)


class PromoService:

    def __init__(self, db: Session):
        self.db = db
        self.promo_repository = PromoRepository(db)

    # -----------------------------
    # Validation
    # -----------------------------
    def evaluate(
        self,
        code: str,
        context: PromoContext | None = None,
        now: datetime | None = None,
    ) -> tuple[PromoCode | None, PromoRejection | None]:
        """
        Run the basic tier, and the extended tier when a context is given.
        Returns the promo and no reason on success, or no promo and the reason.
        """
        current = ensure_utc(now)
        promo = self.promo_repository.get_by_code(normalize_code(code))
        if promo is None:
            return None, PromoRejection.NOT_FOUND
        try:
            check_basic(promo, current)
            if context is not None:
                check_extended(promo, context)
        except PromoInvalid as exc:
            return None, PromoRejection(exc.reason)
        return promo, None

    def validate(
        self,
        code: str,
        context: PromoContext | None = None,
        now: datetime | None = None,
    ) -> PromoCode | None:
        promo, reason = self.evaluate(code, context, now)
        if reason is not None:
            logger.info("promo_rejected code=%s reason=%s", normalize_code(code), reason.value)
        return promo

    def compute_discount(self, promo: PromoCode, base_spend: Decimal) -> Decimal:
        if grants_nothing(promo):
            logger.warning("Promo %s is active but grants no discount", promo.code)
        return compute_discount(base_spend, promo.discount_percent, promo.discount_amount)

    def redeem(
        self,
        code: str,
        base_spend: Decimal,
        now: datetime,
    ) -> tuple[PromoCode, Decimal]:
        """
        Lock the code, check it for a booking and count one use.

        Must run inside the booking's transaction so the increment is
        rolled back with it. Raises PromoInvalid when the code does not apply.
        """
        normalized = normalize_code(code)
        promo = self.promo_repository.lock_by_code(normalized)
        if promo is None:
            raise PromoInvalid(normalized, PromoRejection.NOT_FOUND.value)
        check_basic(promo, now)
        check_minimum_spend(promo, base_spend)

        discount = self.compute_discount(promo, base_spend)
        promo.current_uses += 1
        return promo, discount

    # -----------------------------
    # Admin
    # -----------------------------
    def list_promos(self) -> list[PromoCode]:
        return self.promo_repository.list_all()

    def get_promo(self, promo_id: int) -> PromoCode:
        promo = self.promo_repository.get_by_id(promo_id)
        if promo is None:
            raise NotFoundError("Promo code", promo_id)
        return promo

    def _check_draft(self, draft: PromoDraft) -> tuple[str, datetime, datetime]:
        code = normalize_code(draft.code)
        if not 3 <= len(code) <= 20:
            raise PromoDefinitionError("Promo code must be 3-20 characters", field="code")
        if not (draft.description or "").strip():
            raise PromoDefinitionError("Description is required", field="description")
        if draft.max_uses <= 0:
            raise PromoDefinitionError("max_uses must be greater than 0", field="max_uses")

        has_percent = draft.discount_percent > 0
        has_amount = draft.discount_amount > 0
        if has_percent == has_amount:
            raise PromoDefinitionError(
                "Set exactly one of discount_percent or discount_amount",
                field="discount_percent",
            )
        if not 0 <= draft.discount_percent <= 100:
            raise PromoDefinitionError(
                "discount_percent must be between 0 and 100", field="discount_percent"
            )
        if draft.discount_amount < 0:
            raise PromoDefinitionError(
                "discount_amount cannot be negative", field="discount_amount"
            )
        if draft.minimum_spend < 0:
            raise PromoDefinitionError(
                "minimum_spend cannot be negative", field="minimum_spend"
            )

        try:
            valid_from = _start_of(draft.valid_from)
            valid_to = _end_of(draft.valid_to)
        except ValueError as exc:
            raise PromoDefinitionError(str(exc), field="valid_from") from exc
        if valid_to < valid_from:
            raise PromoDefinitionError(
                "valid_to must not be before valid_from", field="valid_to"
            )
        return code, valid_from, valid_to

    def _apply_draft(
        self,
        promo: PromoCode,
        draft: PromoDraft,
        code: str,
        valid_from: datetime,
        valid_to: datetime,
    ) -> None:
        promo.code = code
        promo.description = draft.description.strip()
        promo.discount_percent = to_money(draft.discount_percent)
        promo.discount_amount = to_money(draft.discount_amount)
        promo.minimum_spend = to_money(draft.minimum_spend)
        promo.valid_from = valid_from
        promo.valid_to = valid_to
        promo.max_uses = draft.max_uses
        promo.applicable_days = _weekdays(draft.applicable_days)
        promo.applicable_zones = normalize_labels(draft.applicable_zones)
        promo.applicable_table_types = normalize_labels(draft.applicable_table_types)
        promo.is_active = draft.is_active

    def create_promo(self, draft: PromoDraft) -> PromoCode:
        code, valid_from, valid_to = self._check_draft(draft)
        with atomic(self.db):
            if self.promo_repository.code_taken(code):
                raise ConflictError(f"Promo code {code} already exists")
            promo = PromoCode(current_uses=0)
            self._apply_draft(promo, draft, code, valid_from, valid_to)
            self.promo_repository.add(promo)

        logger.info("Created promo code %s", promo.code)
        return promo

    def update_promo(self, promo_id: int, draft: PromoDraft) -> PromoCode:
        code, valid_from, valid_to = self._check_draft(draft)
        with atomic(self.db):
            promo = self.get_promo(promo_id)
            if self.promo_repository.code_taken(code, exclude_id=promo.id):
                raise ConflictError(f"Promo code {code} already exists")
            if draft.max_uses < promo.current_uses:
                raise PromoDefinitionError(
                    f"max_uses cannot drop below the {promo.current_uses} uses already made",
                    field="max_uses",
                )
            self._apply_draft(promo, draft, code, valid_from, valid_to)

        logger.info("Updated promo code %s", promo.code)
        return promo

    def toggle_promo(self, promo_id: int) -> PromoCode:
        with atomic(self.db):
            promo = self.get_promo(promo_id)
            promo.is_active = not promo.is_active

        logger.info("Toggled promo %s active=%s", promo.code, promo.is_active)
        return promo

    def delete_promo(self, promo_id: int) -> None:
        with atomic(self.db):
            promo = self.get_promo(promo_id)
            if promo.current_uses > 0:
                raise StateError(
                    f"Promo code {promo.code} has been used and cannot be deleted"
                )
            self.promo_repository.delete(promo)

        logger.info("Deleted promo code %s", promo.code)

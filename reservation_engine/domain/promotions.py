# reservation_engine/domain/promotions.py

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Protocol

from reservation_engine.domain.exceptions import PromoInvalid


class PromoRejection(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    MINIMUM_SPEND_NOT_MET = "MINIMUM_SPEND_NOT_MET"
    DAY_NOT_APPLICABLE = "DAY_NOT_APPLICABLE"
    ZONE_NOT_APPLICABLE = "ZONE_NOT_APPLICABLE"
    TABLE_TYPE_NOT_APPLICABLE = "TABLE_TYPE_NOT_APPLICABLE"


class PromoTerms(Protocol):
    code: str
    is_active: bool
    valid_from: datetime
    valid_to: datetime
    max_uses: int
    current_uses: int
    minimum_spend: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    applicable_days: frozenset[str]
    applicable_zones: frozenset[str]
    applicable_table_types: frozenset[str]


@dataclass(frozen=True)
class PromoContext:
    """Booking details used by the extended validation tier."""

    base_spend: Decimal
    booking_date: date | None = None
    zone: str | None = None
    table_type: str | None = None


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def normalize_labels(values: Iterable[str] | None) -> frozenset[str]:
    return frozenset(v.strip() for v in (values or ()) if v and v.strip())


def _contains(allowed: frozenset[str], value: str) -> bool:
    wanted = value.casefold()
    return any(item.casefold() == wanted for item in allowed)


def check_basic(promo: PromoTerms, now: datetime) -> None:
    """Raises PromoInvalid unless the code is active, in date and under its cap."""
    if not promo.is_active:
        raise PromoInvalid(promo.code, PromoRejection.INACTIVE.value)
    if now < promo.valid_from:
        raise PromoInvalid(promo.code, PromoRejection.NOT_YET_VALID.value)
    if now > promo.valid_to:
        raise PromoInvalid(promo.code, PromoRejection.EXPIRED.value)
    if promo.max_uses > 0 and promo.current_uses >= promo.max_uses:
        raise PromoInvalid(promo.code, PromoRejection.USAGE_LIMIT_REACHED.value)


def check_minimum_spend(promo: PromoTerms, base_spend: Decimal) -> None:
    if base_spend < promo.minimum_spend:
        raise PromoInvalid(promo.code, PromoRejection.MINIMUM_SPEND_NOT_MET.value)


def check_extended(promo: PromoTerms, context: PromoContext) -> None:
    """Spend, weekday, zone and table-type filters. Empty filters allow everything."""
    check_minimum_spend(promo, context.base_spend)

    if promo.applicable_days and context.booking_date is not None:
        weekday = context.booking_date.strftime("%A")
        if not _contains(promo.applicable_days, weekday):
            raise PromoInvalid(promo.code, PromoRejection.DAY_NOT_APPLICABLE.value)

    if promo.applicable_zones and context.zone:
        if not _contains(promo.applicable_zones, context.zone):
            raise PromoInvalid(promo.code, PromoRejection.ZONE_NOT_APPLICABLE.value)

    if promo.applicable_table_types and context.table_type:
        if not _contains(promo.applicable_table_types, context.table_type):
            raise PromoInvalid(
                promo.code, PromoRejection.TABLE_TYPE_NOT_APPLICABLE.value
            )


def grants_nothing(promo: PromoTerms) -> bool:
    return not (promo.discount_percent and promo.discount_percent > 0) and not (
        promo.discount_amount and promo.discount_amount > 0
    )

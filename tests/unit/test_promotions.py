from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from reservation_engine.domain.exceptions import PromoInvalid
from reservation_engine.domain.promotions import (
    PromoContext,
    PromoRejection,
    check_basic,
    check_extended,
    grants_nothing,
    normalize_code,
)

NOW = datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc)


@dataclass
class Terms:
    code: str = "FRIDAY20"
    is_active: bool = True
    valid_from: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)
    valid_to: datetime = datetime(2025, 1, 31, 23, 59, 59, tzinfo=timezone.utc)
    max_uses: int = 10
    current_uses: int = 0
    minimum_spend: Decimal = Decimal("1000")
    discount_percent: Decimal = Decimal("20")
    discount_amount: Decimal = Decimal("0")
    applicable_days: frozenset = field(default_factory=frozenset)
    applicable_zones: frozenset = field(default_factory=frozenset)
    applicable_table_types: frozenset = field(default_factory=frozenset)


def _reason(promo, check):
    with pytest.raises(PromoInvalid) as info:
        check(promo)
    return PromoRejection(info.value.reason)


def test_normalize_code():
    assert normalize_code("  friday20 ") == "FRIDAY20"


def test_basic_tier_accepts_valid_code():
    check_basic(Terms(), NOW)


@pytest.mark.parametrize(
    "terms, reason",
    [
        (Terms(is_active=False), PromoRejection.INACTIVE),
        (Terms(valid_from=datetime(2025, 2, 1, tzinfo=timezone.utc)), PromoRejection.NOT_YET_VALID),
        (Terms(valid_to=datetime(2025, 1, 7, tzinfo=timezone.utc)), PromoRejection.EXPIRED),
        (Terms(max_uses=3, current_uses=3), PromoRejection.USAGE_LIMIT_REACHED),
    ],
)
def test_basic_tier_rejections(terms, reason):
    assert _reason(terms, lambda p: check_basic(p, NOW)) == reason


def test_validity_window_is_inclusive():
    check_basic(Terms(valid_from=NOW, valid_to=NOW), NOW)


def test_zero_max_uses_is_not_a_cap():
    check_basic(Terms(max_uses=0, current_uses=99), NOW)


def test_extended_tier_checks_minimum_spend():
    context = PromoContext(base_spend=Decimal("999.99"))

    assert _reason(Terms(), lambda p: check_extended(p, context)) == PromoRejection.MINIMUM_SPEND_NOT_MET


def test_extended_tier_matches_weekday_case_insensitively():
    terms = Terms(applicable_days=frozenset({"friday"}))
    friday = PromoContext(base_spend=Decimal("2000"), booking_date=date(2025, 1, 10))
    thursday = PromoContext(base_spend=Decimal("2000"), booking_date=date(2025, 1, 9))

    check_extended(terms, friday)
    assert _reason(terms, lambda p: check_extended(p, thursday)) == PromoRejection.DAY_NOT_APPLICABLE


def test_extended_tier_zone_and_table_type_filters():
    terms = Terms(
        applicable_zones=frozenset({"Outdoor"}),
        applicable_table_types=frozenset({"Booth"}),
    )

    check_extended(terms, PromoContext(Decimal("2000"), zone="outdoor", table_type="BOOTH"))
    check_extended(terms, PromoContext(Decimal("2000")))
    assert (
        _reason(terms, lambda p: check_extended(p, PromoContext(Decimal("2000"), zone="VIP")))
        == PromoRejection.ZONE_NOT_APPLICABLE
    )
    assert (
        _reason(
            terms,
            lambda p: check_extended(p, PromoContext(Decimal("2000"), table_type="Bar")),
        )
        == PromoRejection.TABLE_TYPE_NOT_APPLICABLE
    )


def test_empty_filters_allow_everything():
    context = PromoContext(
        base_spend=Decimal("5000"),
        booking_date=date(2025, 1, 12),
        zone="Private",
        table_type="Sofa",
    )
    check_extended(Terms(), context)


def test_inert_promo_grants_nothing():
    assert grants_nothing(Terms(discount_percent=Decimal("0"), discount_amount=Decimal("0")))
    assert not grants_nothing(Terms())

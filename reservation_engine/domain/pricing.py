# reservation_engine/domain/pricing.py

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_discount(base_spend: Decimal, discount_percent: Decimal) -> Decimal:
    discount = to_money(base_spend * Decimal(discount_percent) / Decimal(100))
    return min(discount, to_money(base_spend))


def fixed_discount(base_spend: Decimal, discount_amount: Decimal) -> Decimal:
    return to_money(min(Decimal(base_spend), Decimal(discount_amount)))


def compute_discount(
    base_spend: Decimal,
    discount_percent: Decimal,
    discount_amount: Decimal,
) -> Decimal:
    """
    Percent wins over a fixed amount; both are capped at the base spend.
    A promo with neither yields zero.
    """
    if discount_percent and discount_percent > 0:
        return percent_discount(base_spend, discount_percent)
    if discount_amount and discount_amount > 0:
        return fixed_discount(base_spend, discount_amount)
    return ZERO


def deposit_for(total_amount: Decimal, deposit_rate: Decimal) -> Decimal:
    return to_money(total_amount * deposit_rate)


def refund_for(deposit_amount: Decimal, refund_rate: Decimal) -> Decimal:
    return to_money(deposit_amount * refund_rate)


def to_minor_units(amount: Decimal) -> int:
    """Amount in the smallest currency unit, as payment gateways expect."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Quote:
    total_base: Decimal
    discount: Decimal
    total_amount: Decimal
    deposit_amount: Decimal


def quote_booking(
    minimum_spend: Decimal,
    base_price: Decimal,
    discount: Decimal,
    deposit_rate: Decimal,
) -> Quote:
    total_base = to_money(Decimal(minimum_spend) + Decimal(base_price))
    total_amount = max(ZERO, to_money(total_base - discount))
    return Quote(
        total_base=total_base,
        discount=to_money(discount),
        total_amount=total_amount,
        deposit_amount=deposit_for(total_amount, deposit_rate),
    )

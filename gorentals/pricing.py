# Booking price computation.
# Pure functions over integer cents; percentage maths goes through Decimal and
# rounds half-up to the cent so repeated additions never drift.
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from .enums import InsuranceType, PriceType
from .errors import ValidationFailed

# Platform commission on the rental subtotal. Fixed for every booking.
PLATFORM_FEE_RATE = Decimal("0.15")
# Share of any coupon discount absorbed by the owner's payout
OWNER_DISCOUNT_SHARE = Decimal("0.5")

# Daily insurance prices in cents
INSURANCE_DAILY_CENTS = {
    InsuranceType.NONE: 0,
    InsuranceType.BASIC: 1500,
    InsuranceType.PREMIUM: 2500,
}


def to_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount_cents: int, rate: Decimal) -> int:
    return to_cents(Decimal(amount_cents) * rate)


def format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def day_count(start_date: date, end_date: date) -> int:
    """Whole days spanned by an inclusive range; rejects ranges shorter than a day."""
    days = (end_date - start_date).days + 1
    if days <= 0:
        raise ValidationFailed("end_date must not be before start_date", code="invalid_date_range")
    return days


def date_range(start_date: date, end_date: date) -> List[str]:
    """ISO dates of the inclusive range, in order."""
    return [(start_date + timedelta(days=i)).isoformat() for i in range((end_date - start_date).days + 1)]


@dataclass(frozen=True)
class PricedExtra:
    name: str
    price_cents: int
    price_type: str
    total_cents: int


def price_extras(catalogue: Iterable[Mapping], selected: Sequence[str], days: int) -> List[PricedExtra]:
    """Price the selected extras from a vehicle's catalogue.

    per_day extras cost price * days, flat extras cost price once.
    """
    by_name = {item["name"]: item for item in catalogue}
    priced: List[PricedExtra] = []
    for name in dict.fromkeys(selected):
        item = by_name.get(name)
        if item is None:
            raise ValidationFailed(f"Unknown extra '{name}'", code="unknown_extra")
        price = int(item["price_cents"])
        price_type = item.get("price_type", PriceType.FLAT.value)
        total = price * days if price_type == PriceType.PER_DAY.value else price
        priced.append(PricedExtra(name=name, price_cents=price, price_type=price_type, total_cents=total))
    return priced


def insurance_cost(insurance_type: InsuranceType, days: int) -> int:
    return INSURANCE_DAILY_CENTS[InsuranceType(insurance_type)] * days


@dataclass(frozen=True)
class PriceBreakdown:
    days: int
    subtotal: int
    platform_fee: int
    extras_total: int
    insurance_cost: int
    discount: int
    security_deposit: int
    pre_deposit_total: int
    total: int
    owner_payout: int
    extras: List[PricedExtra] = field(default_factory=list)


def quote(
    price_per_day: int,
    days: int,
    extras_total: int = 0,
    insurance: int = 0,
    discount: int = 0,
    security_deposit: int = 0,
    extras: Optional[List[PricedExtra]] = None,
) -> PriceBreakdown:
    """Turn a day rate and selections into the booking's cost breakdown.

    pre_deposit_total is the amount before the discount; it is the base the
    coupon resolver works against.
    """
    if days <= 0:
        raise ValidationFailed("A booking must span at least one day", code="invalid_date_range")
    subtotal = price_per_day * days
    platform_fee = percent_of(subtotal, PLATFORM_FEE_RATE)
    pre_deposit_total = subtotal + platform_fee + extras_total + insurance
    total = max(pre_deposit_total - discount, 0) + security_deposit
    # Owner absorbs half of the discount; the platform commission is never reduced.
    # Clamped so a large discount on a small booking cannot produce a negative payout.
    owner_payout = max(subtotal - platform_fee + extras_total - percent_of(discount, OWNER_DISCOUNT_SHARE), 0)
    return PriceBreakdown(
        days=days,
        subtotal=subtotal,
        platform_fee=platform_fee,
        extras_total=extras_total,
        insurance_cost=insurance,
        discount=discount,
        security_deposit=security_deposit,
        pre_deposit_total=pre_deposit_total,
        total=total,
        owner_payout=owner_payout,
        extras=list(extras or []),
    )

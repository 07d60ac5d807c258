# Pricing and refund policy: pure arithmetic over integer cents.
from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from gorentals.enums import InsuranceType
from gorentals.errors import ValidationFailed
from gorentals.pricing import date_range, day_count, format_money, insurance_cost, price_extras, quote
from gorentals.refunds import days_until, refund_for_days, refund_quote


def test_rental_without_coupon_matches_reference_figures():
    # $50/day, $100 deposit, 3 days
    pb = quote(5000, 3, security_deposit=10000)
    assert pb.subtotal == 15000
    assert pb.platform_fee == 2250
    assert pb.pre_deposit_total == 17250
    assert pb.total == 27250
    assert pb.owner_payout == 12750


def test_percentage_coupon_discount_is_split_with_owner():
    # 20% of the $172.50 pre-deposit amount
    pb = quote(5000, 3, security_deposit=10000, discount=3450)
    assert pb.total == 23800
    assert pb.owner_payout == 11025


@pytest.mark.parametrize(
    "rate,days,extras,insurance,deposit",
    [(5000, 1, 0, 0, 0), (3333, 7, 1250, 1500 * 7, 25000), (999, 30, 0, 2500 * 30, 100), (12345, 2, 4000, 0, 0)],
)
def test_total_is_sum_of_parts_without_discount(rate, days, extras, insurance, deposit):
    pb = quote(rate, days, extras_total=extras, insurance=insurance, security_deposit=deposit)
    assert pb.total == pb.subtotal + pb.platform_fee + extras + insurance + deposit
    assert pb.subtotal == rate * days


def test_discount_subtracted_once_and_clamped():
    pb = quote(1000, 1, security_deposit=5000, discount=50000)
    # Pre-deposit part cannot go negative; the deposit is still owed
    assert pb.total == 5000
    # Large discount on a small booking does not produce a negative payout
    assert pb.owner_payout == 0


def test_day_count_is_inclusive_and_rejects_reversed_ranges():
    assert day_count(date(2026, 3, 1), date(2026, 3, 1)) == 1
    assert day_count(date(2026, 3, 1), date(2026, 3, 3)) == 3
    with pytest.raises(ValidationFailed):
        day_count(date(2026, 3, 3), date(2026, 3, 1))
    with pytest.raises(ValidationFailed):
        quote(5000, 0)


def test_date_range_lists_every_day():
    assert date_range(date(2026, 2, 27), date(2026, 3, 2)) == ["2026-02-27", "2026-02-28", "2026-03-01", "2026-03-02"]


def test_extras_per_day_and_flat():
    catalogue = [
        {"name": "GPS", "price_cents": 500, "price_type": "per_day"},
        {"name": "Cleaning", "price_cents": 2000, "price_type": "flat"},
    ]
    priced = price_extras(catalogue, ["GPS", "Cleaning", "GPS"], 4)
    assert [(p.name, p.total_cents) for p in priced] == [("GPS", 2000), ("Cleaning", 2000)]
    with pytest.raises(ValidationFailed) as exc:
        price_extras(catalogue, ["Roof box"], 4)
    assert exc.value.code == "unknown_extra"


def test_insurance_daily_rates():
    assert insurance_cost(InsuranceType.NONE, 5) == 0
    assert insurance_cost(InsuranceType.BASIC, 5) == 7500
    assert insurance_cost(InsuranceType.PREMIUM, 2) == 5000


def test_format_money():
    assert format_money(27250) == "$272.50"
    assert format_money(123456789) == "$1,234,567.89"
    assert format_money(-3450) == "-$34.50"


# Refund tiers
@pytest.mark.parametrize(
    "days,amount,percentage",
    [(30, 25000, 100), (7, 25000, 100), (6, 17500, 50), (3, 17500, 50), (2, 10000, 0), (1, 10000, 0), (0, 0, 0), (-2, 0, 0)],
)
def test_refund_tiers(days, amount, percentage):
    q = refund_for_days(days, 15000, 10000)
    assert (q.amount, q.percentage) == (amount, percentage)


def test_days_until_rounds_partial_days_up():
    now = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    assert days_until(date(2026, 10, 21), now) == 5
    assert days_until(date(2026, 10, 17), now) == 1
    assert days_until(date(2026, 10, 16), now) == 0
    # Naive datetimes are read as UTC
    assert days_until(date(2026, 10, 23), datetime(2026, 10, 16, 0, 0)) == 7


def test_unpaid_bookings_refund_nothing():
    now = datetime(2026, 10, 16, tzinfo=timezone.utc)
    for status in ("pending", "approved"):
        q = refund_quote(status, date(2026, 12, 1), 15000, 10000, now)
        assert q.amount == 0 and q.percentage == 0
    assert refund_quote("paid", date(2026, 12, 1), 15000, 10000, now).amount == 25000

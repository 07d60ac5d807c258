# Cancellation refund policy.
# Platform fee, extras and insurance are never refunded; the security deposit is
# returned whenever the cancellation happens at least one day before pickup.
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional

from .enums import BookingStatus
from .pricing import percent_of

# Statuses in which no money has moved yet
UNPAID_STATUSES = {BookingStatus.PENDING, BookingStatus.APPROVED}


@dataclass(frozen=True)
class RefundQuote:
    amount: int
    percentage: int
    days_until_start: Optional[int]


def days_until(start_date: date, now: Optional[datetime] = None) -> int:
    """Ceil of the days between now and the start date's midnight (UTC)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    return math.ceil((start - now).total_seconds() / 86400)


def refund_for_days(days_until_start: int, subtotal: int, security_deposit: int) -> RefundQuote:
    if days_until_start >= 7:
        return RefundQuote(subtotal + security_deposit, 100, days_until_start)
    if days_until_start >= 3:
        return RefundQuote(percent_of(subtotal, Decimal("0.5")) + security_deposit, 50, days_until_start)
    if days_until_start >= 1:
        return RefundQuote(security_deposit, 0, days_until_start)
    return RefundQuote(0, 0, days_until_start)


def refund_quote(
    status: str,
    start_date: date,
    subtotal: int,
    security_deposit: int,
    now: Optional[datetime] = None,
) -> RefundQuote:
    """Refund owed to the renter if the booking were cancelled at `now`."""
    if BookingStatus(status) in UNPAID_STATUSES:
        return RefundQuote(0, 0, None)
    return refund_for_days(days_until(start_date, now), subtotal, security_deposit)

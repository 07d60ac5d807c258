# Coupon resolution and redemption.
# Validation is read-only; redemption (usage counter + audit row) happens once
# per booking when the renter submits the request.
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from . import models
from .enums import DiscountType
from .errors import CouponRejected
from .pricing import format_money, percent_of
from .store import Store

logger = logging.getLogger("gorentals.coupons")


@dataclass(frozen=True)
class AppliedCoupon:
    coupon: models.Coupon
    discount: int


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_discount(coupon: models.Coupon, amount: int) -> int:
    """Discount in cents for `amount`, never exceeding the amount itself."""
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        discount = percent_of(amount, Decimal(coupon.discount_value) / 100)
        if coupon.max_discount_cents is not None:
            discount = min(discount, coupon.max_discount_cents)
    else:
        discount = coupon.discount_value
    return max(min(discount, amount), 0)


def resolve(
    store: Store,
    code: str,
    amount: int,
    vehicle_type: Optional[str],
    user_email: str,
    now: Optional[datetime] = None,
) -> AppliedCoupon:
    """Validate `code` against a candidate pre-discount amount.

    Raises CouponRejected with a reason code when the coupon does not apply.
    """
    now = now or datetime.now(timezone.utc)
    coupon = store.coupons.first({"code": normalize_code(code)})
    if coupon is None:
        raise CouponRejected("Coupon not valid", code="not_found")
    if not coupon.is_active:
        raise CouponRejected("Coupon is no longer active", code="inactive")
    if now < _aware(coupon.valid_from):
        raise CouponRejected("Coupon is not active yet", code="not_started")
    if now > _aware(coupon.valid_until):
        raise CouponRejected("Coupon has expired", code="expired")
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponRejected("Coupon has reached its usage limit", code="usage_limit_reached")

    used_by_user = store.coupon_usages.filter({"coupon_id": coupon.id, "user_email": user_email})
    if len(used_by_user) >= coupon.usage_per_user:
        raise CouponRejected("You have already used this coupon the maximum number of times", code="user_limit_reached")

    allowed_types = coupon.applicable_vehicle_types or []
    if allowed_types and vehicle_type not in allowed_types:
        raise CouponRejected("Coupon does not apply to this vehicle type", code="vehicle_type_not_applicable")
    if coupon.min_booking_cents and amount < coupon.min_booking_cents:
        raise CouponRejected(
            f"Minimum booking amount is {format_money(coupon.min_booking_cents)}",
            code="below_minimum",
        )
    return AppliedCoupon(coupon=coupon, discount=compute_discount(coupon, amount))


def redeem(store: Store, applied: AppliedCoupon, booking: models.Booking) -> models.CouponUsage:
    """Count one use of the coupon for `booking` and write its audit row.

    Both writes form one logical unit: if the audit row cannot be written the
    counter is put back before the error propagates. Redeeming the same
    booking again returns the existing usage. The usage cap is checked again
    against the freshly read counter, so a coupon that filled up after
    `resolve` is refused.
    """
    existing = store.coupon_usages.first({"booking_id": booking.id})
    if existing is not None:
        return existing

    coupon = store.coupons.require(applied.coupon.id)
    before = coupon.used_count or 0
    if coupon.usage_limit is not None and before >= coupon.usage_limit:
        logger.warning("coupon.limit_reached_at_redeem", extra={"coupon_id": coupon.id, "booking_id": booking.id})
        raise CouponRejected("Coupon has reached its usage limit", code="usage_limit_reached")
    store.coupons.update(coupon.id, used_count=before + 1)
    try:
        usage = store.coupon_usages.create(
            coupon_id=coupon.id,
            coupon_code=coupon.code,
            booking_id=booking.id,
            user_email=booking.renter_email,
            discount_cents=applied.discount,
            final_amount_cents=booking.total_cents,
        )
    except Exception:
        logger.exception("coupon.redeem_failed", extra={"coupon_id": coupon.id, "booking_id": booking.id})
        store.coupons.update(coupon.id, used_count=before)
        raise
    logger.info("coupon.redeemed", extra={"coupon_id": coupon.id, "booking_id": booking.id, "discount_cents": applied.discount})
    return usage

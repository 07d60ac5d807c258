# SQLAlchemy ORM models for the rental marketplace documents.
# Keep business logic out of models; the booking engine lives in lifecycle.py and friends.
# Money is stored as integer cents; enum-valued columns store the enum's plain value.
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import declarative_mixin

from .db import Base


def new_id() -> str:
    return uuid4().hex


@declarative_mixin
class TimestampMixin:
    """Common UTC-aware timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Marketplace account.

    Roles:
    - renter: books vehicles
    - owner: lists vehicles and approves/handles bookings
    - admin: moderates bookings and coupons
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False, default="")
    role = Column(String(20), nullable=False, index=True, default="renter")
    phone = Column(String(50), nullable=True)
    total_earnings_cents = Column(Integer, nullable=False, default=0)


class Vehicle(Base, TimestampMixin):
    """Listing created by an owner; pricing fields are snapshotted into each booking."""
    __tablename__ = "vehicles"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), nullable=False, index=True)
    owner_name = Column(String(255), nullable=False, default="")
    owner_email = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    vehicle_type = Column(String(50), nullable=False, index=True)
    location = Column(String(255), nullable=True, index=True)
    photo_url = Column(String(1024), nullable=True)
    price_per_day_cents = Column(Integer, nullable=False)
    security_deposit_cents = Column(Integer, nullable=False, default=0)
    # [{"name": str, "price_cents": int, "price_type": "per_day" | "flat"}]
    extras = Column(JSON, nullable=False, default=list)
    # ISO dates; mutated by approve/cancel and manual calendar edits
    blocked_dates = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    is_available = Column(Boolean, nullable=False, default=True)
    average_rating = Column(Float, nullable=False, default=0.0)
    total_reviews = Column(Integer, nullable=False, default=0)
    total_bookings = Column(Integer, nullable=False, default=0)


class Booking(Base, TimestampMixin):
    """Reservation of a vehicle for an inclusive date range.

    Status transitions:
    pending -> approved -> paid -> active -> completed
       |          |         |       └── cancelled
       |          |         └── cancelled
       |          └── cancelled
       └── rejected / cancelled

    Pricing columns are a snapshot written once at creation; payouts are
    scheduled against the stored owner_payout_cents.
    """
    __tablename__ = "bookings"

    id = Column(String(32), primary_key=True, default=new_id)
    vehicle_id = Column(String(32), nullable=False, index=True)
    vehicle_title = Column(String(255), nullable=False, default="")
    vehicle_photo = Column(String(1024), nullable=True)
    vehicle_type = Column(String(50), nullable=True)
    renter_id = Column(String(32), nullable=False, index=True)
    renter_name = Column(String(255), nullable=False, default="")
    renter_email = Column(String(255), nullable=False)
    owner_id = Column(String(32), nullable=False, index=True)
    owner_name = Column(String(255), nullable=False, default="")
    owner_email = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_days = Column(Integer, nullable=False)
    price_per_day_cents = Column(Integer, nullable=False)
    subtotal_cents = Column(Integer, nullable=False)
    platform_fee_cents = Column(Integer, nullable=False)
    extras_total_cents = Column(Integer, nullable=False, default=0)
    insurance_cost_cents = Column(Integer, nullable=False, default=0)
    discount_cents = Column(Integer, nullable=False, default=0)
    security_deposit_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    owner_payout_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    selected_extras = Column(JSON, nullable=False, default=list)
    insurance_type = Column(String(20), nullable=False, default="none")
    coupon_id = Column(String(32), nullable=True)
    coupon_code = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    payment_status = Column(String(20), nullable=False, default="pending")
    stripe_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    cancelled_by = Column(String(20), nullable=True)
    cancellation_reason = Column(String(1000), nullable=True)
    refund_cents = Column(Integer, nullable=True)
    refund_percentage = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_bookings_vehicle_status", "vehicle_id", "status"),
        Index("ix_bookings_status", "status"),
    )


class Transaction(Base, TimestampMixin):
    """Append-only ledger entry; only `status` changes after creation."""
    __tablename__ = "transactions"

    id = Column(String(32), primary_key=True, default=new_id)
    booking_id = Column(String(32), nullable=False, index=True)
    user_email = Column(String(255), nullable=False, index=True)
    user_role = Column(String(20), nullable=False)
    type = Column(String(20), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False)
    description = Column(String(500), nullable=True)
    vehicle_title = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=new_id)
    user_email = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(String(1000), nullable=False)
    type = Column(String(30), nullable=False)
    booking_id = Column(String(32), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)


class Coupon(Base, TimestampMixin):
    """Discount rule; discount_value is a percent for percentage coupons and cents for fixed ones."""
    __tablename__ = "coupons"

    id = Column(String(32), primary_key=True, default=new_id)
    code = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False, default="")
    description = Column(String(1000), nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Integer, nullable=False)
    max_discount_cents = Column(Integer, nullable=True)
    min_booking_cents = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    usage_limit = Column(Integer, nullable=True)
    usage_per_user = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)
    applicable_vehicle_types = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)


class CouponUsage(Base, TimestampMixin):
    """One row per redemption; exactly one per booking that applied a coupon."""
    __tablename__ = "coupon_usages"

    id = Column(String(32), primary_key=True, default=new_id)
    coupon_id = Column(String(32), nullable=False, index=True)
    coupon_code = Column(String(64), nullable=False)
    booking_id = Column(String(32), nullable=False, index=True)
    user_email = Column(String(255), nullable=False, index=True)
    discount_cents = Column(Integer, nullable=False)
    final_amount_cents = Column(Integer, nullable=False)


class Review(Base, TimestampMixin):
    __tablename__ = "reviews"

    id = Column(String(32), primary_key=True, default=new_id)
    booking_id = Column(String(32), nullable=False, index=True)
    vehicle_id = Column(String(32), nullable=False, index=True)
    owner_id = Column(String(32), nullable=False)
    renter_id = Column(String(32), nullable=False)
    renter_name = Column(String(255), nullable=False, default="")
    rating = Column(Integer, nullable=False)
    comment = Column(String(2000), nullable=True)

# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business rules live in lifecycle.py and friends.
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .enums import DiscountType, InsuranceType, PriceType


def _strip(v):
    if isinstance(v, str):
        v = v.strip()
    return v


# Authentication and user models

# Roles a user may pick at signup; admins are provisioned out of band
SignupRole = Literal["renter", "owner"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field("", max_length=255)
    role: SignupRole = "renter"
    phone: Optional[str] = Field(None, max_length=50)

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class UserRead(BaseModel):
    id: str
    email: EmailStr
    full_name: str
    role: Literal["renter", "owner", "admin"]
    phone: Optional[str] = None
    total_earnings_cents: int = 0

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# OAuth2-style token response bundled with the current user profile
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# Vehicles
class ExtraOption(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    price_cents: int = Field(..., ge=0)
    price_type: PriceType = PriceType.PER_DAY

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class VehicleCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    vehicle_type: str = Field(..., min_length=1, max_length=50)
    location: Optional[str] = Field(None, max_length=255)
    photo_url: Optional[str] = Field(None, max_length=1024)
    price_per_day_cents: int = Field(..., gt=0)
    security_deposit_cents: int = Field(0, ge=0)
    extras: List[ExtraOption] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        # Trim surrounding whitespace before validation
        return _strip(v)

    @field_validator("extras")
    @classmethod
    def unique_extra_names(cls, v: List[ExtraOption]) -> List[ExtraOption]:
        names = [e.name for e in v]
        if len(names) != len(set(names)):
            raise ValueError("extra names must be unique")
        return v


class VehicleRead(BaseModel):
    id: str
    owner_id: str
    owner_name: str
    title: str
    vehicle_type: str
    location: Optional[str] = None
    photo_url: Optional[str] = None
    price_per_day_cents: int
    security_deposit_cents: int
    extras: List[ExtraOption]
    blocked_dates: List[date]
    is_active: bool
    is_available: bool
    average_rating: float
    total_reviews: int
    total_bookings: int

    model_config = ConfigDict(from_attributes=True)


class BlockedDatesUpdate(BaseModel):
    blocked_dates: List[date]


# Bookings
class BookingRequest(BaseModel):
    vehicle_id: str
    start_date: date
    end_date: date
    extras: List[str] = Field(default_factory=list)
    insurance_type: InsuranceType = InsuranceType.NONE
    coupon_code: Optional[str] = Field(None, max_length=64)

    @field_validator("coupon_code", mode="before")
    @classmethod
    def blank_coupon_is_none(cls, v):
        v = _strip(v)
        return v or None


class BookingCreate(BookingRequest):
    notes: Optional[str] = Field(None, max_length=2000)


class SelectedExtra(BaseModel):
    name: str
    price_cents: int
    price_type: PriceType
    total_cents: int


class QuoteResponse(BaseModel):
    days: int
    subtotal_cents: int
    platform_fee_cents: int
    extras_total_cents: int
    insurance_cost_cents: int
    discount_cents: int
    security_deposit_cents: int
    total_cents: int
    owner_payout_cents: int
    extras: List[SelectedExtra]
    coupon_code: Optional[str] = None


class BookingRead(BaseModel):
    id: str
    vehicle_id: str
    vehicle_title: str
    vehicle_photo: Optional[str] = None
    renter_id: str
    renter_name: str
    renter_email: str
    owner_id: str
    owner_name: str
    owner_email: str
    start_date: date
    end_date: date
    total_days: int
    price_per_day_cents: int
    subtotal_cents: int
    platform_fee_cents: int
    extras_total_cents: int
    insurance_cost_cents: int
    discount_cents: int
    security_deposit_cents: int
    total_cents: int
    owner_payout_cents: int
    currency: str = "USD"
    selected_extras: List[SelectedExtra]
    insurance_type: InsuranceType
    coupon_code: Optional[str] = None
    status: Literal["pending", "approved", "rejected", "paid", "active", "completed", "cancelled"]
    payment_status: Literal["pending", "paid", "refunded"]
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_cents: Optional[int] = None
    refund_percentage: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v):
        return _strip(v) or None


class RefundQuoteRead(BaseModel):
    booking_id: str
    amount_cents: int
    percentage: int
    # None while no money has moved (pending/approved)
    days_until_start: Optional[int] = None


class CheckoutRequest(BaseModel):
    success_url: Optional[str] = Field(None, max_length=2048)
    cancel_url: Optional[str] = Field(None, max_length=2048)


class CheckoutResponse(BaseModel):
    session_id: str
    checkout_url: str


# Reviews
class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)

    @field_validator("comment", mode="before")
    @classmethod
    def strip_comment(cls, v):
        return _strip(v) or None


class ReviewRead(BaseModel):
    id: str
    booking_id: str
    vehicle_id: str
    renter_name: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Coupons
class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=64)
    name: str = Field("", max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    discount_type: DiscountType
    # Percent (1-100) for percentage coupons, cents for fixed ones
    discount_value: int = Field(..., gt=0)
    max_discount_cents: Optional[int] = Field(None, gt=0)
    min_booking_cents: int = Field(0, ge=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = Field(None, gt=0)
    usage_per_user: int = Field(1, ge=1)
    applicable_vehicle_types: List[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def upper_code(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
        return v

    @field_validator("discount_value")
    @classmethod
    def percent_in_range(cls, v: int, info) -> int:
        if info.data.get("discount_type") == DiscountType.PERCENTAGE and v > 100:
            raise ValueError("percentage discounts cannot exceed 100")
        return v

    @field_validator("valid_until")
    @classmethod
    def window_is_ordered(cls, v: datetime, info) -> datetime:
        start = info.data.get("valid_from")
        if start is not None and v <= start:
            raise ValueError("valid_until must be after valid_from")
        return v


class CouponRead(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: int
    max_discount_cents: Optional[int] = None
    min_booking_cents: int
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = None
    usage_per_user: int
    used_count: int
    applicable_vehicle_types: List[str]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    amount_cents: int = Field(..., ge=0)
    vehicle_type: Optional[str] = None


class CouponValidateResponse(BaseModel):
    valid: bool
    code: str
    discount_cents: int = 0
    reason: Optional[str] = None
    message: Optional[str] = None


# Notifications
class NotificationRead(BaseModel):
    id: str
    title: str
    message: str
    type: str
    booking_id: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RemindersResponse(BaseModel):
    pickup_reminders: int
    return_reminders: int


# Ledger
class TransactionRead(BaseModel):
    id: str
    booking_id: str
    user_email: str
    user_role: str
    type: str
    amount_cents: int
    currency: str
    status: str
    description: Optional[str] = None
    vehicle_title: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EarningsRead(BaseModel):
    total_earnings_cents: int
    pending_earnings_cents: int
    completed_bookings: int
    average_booking_value_cents: int

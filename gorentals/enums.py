# Closed value sets shared by ORM models, DTOs and the booking engine.
# Members subclass str so they compare equal to (and persist as) their plain values.
from enum import Enum


class UserRole(str, Enum):
    RENTER = "renter"
    OWNER = "owner"
    ADMIN = "admin"


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class Actor(str, Enum):
    """Who is driving a booking transition, relative to that booking."""
    RENTER = "renter"
    OWNER = "owner"
    ADMIN = "admin"
    SYSTEM = "system"


class LedgerRole(str, Enum):
    RENTER = "renter"
    OWNER = "owner"
    PLATFORM = "platform"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    PAYOUT = "payout"
    COMMISSION = "commission"
    DEPOSIT_HOLD = "deposit_hold"
    DEPOSIT_RELEASE = "deposit_release"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    FAILED = "failed"


class NotificationType(str, Enum):
    BOOKING_REQUEST = "booking_request"
    BOOKING_APPROVED = "booking_approved"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_PAID = "booking_paid"
    BOOKING_ACTIVE = "booking_active"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    PICKUP_REMINDER = "pickup_reminder"
    RETURN_REMINDER = "return_reminder"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PriceType(str, Enum):
    PER_DAY = "per_day"
    FLAT = "flat"


class InsuranceType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    PREMIUM = "premium"

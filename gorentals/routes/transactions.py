# Ledger views: a user's transactions and an owner's earnings summary.
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .. import models, schemas
from ..enums import BookingStatus, TransactionStatus, TransactionType, UserRole
from ..store import Store, get_store
from .auth import get_current_user, require_owner

router = APIRouter()


@router.get("/transactions/me", response_model=List[schemas.TransactionRead])
def my_transactions(
    booking_id: Optional[str] = Query(None),
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> List[models.Transaction]:
    """
    The caller's ledger entries, newest first.

    Admins passing booking_id get every entry of that booking, platform commission included.
    """
    if booking_id and user.role == UserRole.ADMIN.value:
        return store.transactions.filter({"booking_id": booking_id}, sort="-created_at")
    criteria = {"user_email": user.email}
    if booking_id:
        criteria["booking_id"] = booking_id
    return store.transactions.filter(criteria, sort="-created_at")


@router.get("/earnings/me", response_model=schemas.EarningsRead)
def my_earnings(store: Store = Depends(get_store), owner: models.User = Depends(require_owner)) -> schemas.EarningsRead:
    payouts = store.transactions.filter({"user_email": owner.email, "type": TransactionType.PAYOUT.value})
    total = sum(t.amount_cents for t in payouts if t.status == TransactionStatus.COMPLETED.value)
    pending = sum(t.amount_cents for t in payouts if t.status == TransactionStatus.PENDING.value)
    completed = store.bookings.filter({"owner_id": owner.id, "status": BookingStatus.COMPLETED.value})
    average = round(total / len(completed)) if completed else 0
    return schemas.EarningsRead(
        total_earnings_cents=total,
        pending_earnings_cents=pending,
        completed_bookings=len(completed),
        average_booking_value_cents=average,
    )

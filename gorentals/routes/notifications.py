from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .. import models, schemas
from ..lifecycle import BookingLifecycle
from ..payments import get_lifecycle
from ..store import Store, get_store
from .auth import get_current_user, require_admin

router = APIRouter()


@router.get("/notifications", response_model=List[schemas.NotificationRead])
def list_notifications(
    unread: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> List[models.Notification]:
    criteria = {"user_email": user.email}
    if unread:
        criteria["is_read"] = False
    return store.notifications.filter(criteria, sort="-created_at", limit=limit)


@router.post("/notifications/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_read(
    notification_id: str,
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> models.Notification:
    notification = store.notifications.require(notification_id)
    if notification.user_email != user.email:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return store.notifications.update(notification.id, is_read=True)


@router.post("/notifications/read-all")
def mark_all_read(store: Store = Depends(get_store), user: models.User = Depends(get_current_user)) -> dict:
    unread = store.notifications.filter({"user_email": user.email, "is_read": False})
    for n in unread:
        store.notifications.update(n.id, is_read=True)
    return {"updated": len(unread)}


@router.post("/admin/reminders", response_model=schemas.RemindersResponse)
def send_reminders(
    today: Optional[date] = Query(None, description="Defaults to the current UTC date"),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    admin: models.User = Depends(require_admin),
) -> schemas.RemindersResponse:
    """Pickup/return reminders for bookings that start or end tomorrow; meant for a daily cron."""
    pickups, returns = lifecycle.send_reminders(today)
    return schemas.RemindersResponse(pickup_reminders=pickups, return_reminders=returns)

# Vehicle listing endpoints: owners publish vehicles and manage their blocked calendar days.
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .. import models, schemas
from ..enums import UserRole
from ..rate_limit import rate_limit
from ..store import Store, get_store
from .auth import get_current_user, require_owner

router = APIRouter()


@router.get("/vehicles", response_model=List[schemas.VehicleRead])
def list_vehicles(
    vehicle_type: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    store: Store = Depends(get_store),
) -> List[models.Vehicle]:
    # Exact-match filters only; active listings, newest first
    criteria: Dict[str, Any] = {"is_active": True}
    if vehicle_type:
        criteria["vehicle_type"] = vehicle_type
    if location:
        criteria["location"] = location
    return store.vehicles.filter(criteria, sort="-created_at")


@router.post(
    "/vehicles",
    response_model=schemas.VehicleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_vehicle(
    payload: schemas.VehicleCreate,
    store: Store = Depends(get_store),
    owner: models.User = Depends(require_owner),
) -> models.Vehicle:
    data = payload.model_dump(mode="json")
    return store.vehicles.create(
        owner_id=owner.id,
        owner_name=owner.full_name,
        owner_email=owner.email,
        **data,
    )


@router.get("/vehicles/{vehicle_id}", response_model=schemas.VehicleRead)
def get_vehicle(vehicle_id: str, store: Store = Depends(get_store)) -> models.Vehicle:
    return store.vehicles.require(vehicle_id)


@router.put("/vehicles/{vehicle_id}/blocked-dates", response_model=schemas.VehicleRead)
def update_blocked_dates(
    vehicle_id: str,
    payload: schemas.BlockedDatesUpdate,
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> models.Vehicle:
    """Replace the vehicle's manually blocked days (deduplicated, sorted)."""
    vehicle = store.vehicles.require(vehicle_id)
    if vehicle.owner_id != user.id and user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    days = sorted({d.isoformat() for d in payload.blocked_dates})
    return store.vehicles.update(vehicle.id, blocked_dates=days)


@router.get("/vehicles/{vehicle_id}/reviews", response_model=List[schemas.ReviewRead])
def list_reviews(vehicle_id: str, store: Store = Depends(get_store)) -> List[models.Review]:
    store.vehicles.require(vehicle_id)
    return store.reviews.filter({"vehicle_id": vehicle_id}, sort="-created_at")

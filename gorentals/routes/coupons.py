# Coupon endpoints: admin management plus a renter-side validation preview.
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from .. import coupons, models, schemas
from ..errors import CouponRejected
from ..store import Store, get_store
from .auth import get_current_user, require_admin

router = APIRouter()


@router.post("/coupons", response_model=schemas.CouponRead, status_code=status.HTTP_201_CREATED)
def create_coupon(
    payload: schemas.CouponCreate,
    store: Store = Depends(get_store),
    admin: models.User = Depends(require_admin),
) -> models.Coupon:
    if store.coupons.first({"code": payload.code}) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Coupon code already exists")
    data = payload.model_dump()
    data["discount_type"] = payload.discount_type.value
    return store.coupons.create(**data, used_count=0, is_active=True)


@router.get("/coupons", response_model=List[schemas.CouponRead])
def list_coupons(store: Store = Depends(get_store), admin: models.User = Depends(require_admin)) -> List[models.Coupon]:
    return store.coupons.list(sort="-created_at")


@router.post("/coupons/{coupon_id}/deactivate", response_model=schemas.CouponRead)
def deactivate_coupon(
    coupon_id: str,
    store: Store = Depends(get_store),
    admin: models.User = Depends(require_admin),
) -> models.Coupon:
    store.coupons.require(coupon_id)
    return store.coupons.update(coupon_id, is_active=False)


@router.post("/coupons/validate", response_model=schemas.CouponValidateResponse)
def validate_coupon(
    payload: schemas.CouponValidateRequest,
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> schemas.CouponValidateResponse:
    """Preview a coupon against an amount; rejections come back as a reason, not an error."""
    code = coupons.normalize_code(payload.code)
    try:
        applied = coupons.resolve(store, code, payload.amount_cents, payload.vehicle_type, user.email)
    except CouponRejected as exc:
        return schemas.CouponValidateResponse(valid=False, code=code, reason=exc.code, message=exc.message)
    return schemas.CouponValidateResponse(valid=True, code=code, discount_cents=applied.discount)

# Booking endpoints: quote, request, owner decisions, handover/return, cancellation,
# checkout, reviews and invoices. State rules live in lifecycle.BookingLifecycle.
from __future__ import annotations

from dataclasses import asdict
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from .. import models, schemas
from ..enums import BookingStatus, PaymentStatus
from ..invoices import invoice_number, render_invoice
from ..lifecycle import BookingLifecycle, actor_for
from ..payments import PUBLIC_BASE_URL, get_lifecycle
from ..pricing import PriceBreakdown
from ..rate_limit import rate_limit
from ..store import Store, get_store
from .auth import get_current_user

router = APIRouter()


def _quote_response(pb: PriceBreakdown, coupon_code: Optional[str] = None) -> schemas.QuoteResponse:
    return schemas.QuoteResponse(
        days=pb.days,
        subtotal_cents=pb.subtotal,
        platform_fee_cents=pb.platform_fee,
        extras_total_cents=pb.extras_total,
        insurance_cost_cents=pb.insurance_cost,
        discount_cents=pb.discount,
        security_deposit_cents=pb.security_deposit,
        total_cents=pb.total,
        owner_payout_cents=pb.owner_payout,
        extras=[schemas.SelectedExtra(**asdict(e)) for e in pb.extras],
        coupon_code=coupon_code,
    )


def _party_booking(store: Store, booking_id: str, user: models.User) -> models.Booking:
    booking = store.bookings.require(booking_id)
    actor_for(user, booking)  # raises Forbidden for outsiders
    return booking


@router.post("/bookings/quote", response_model=schemas.QuoteResponse)
def quote_booking(
    payload: schemas.BookingRequest,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> schemas.QuoteResponse:
    """Price a prospective booking, coupon included, without writing anything."""
    vehicle = lifecycle.store.vehicles.require(payload.vehicle_id)
    priced = lifecycle.price_request(
        vehicle,
        payload.start_date,
        payload.end_date,
        payload.extras,
        payload.insurance_type,
        payload.coupon_code,
        user.email,
    )
    code = priced.applied_coupon.coupon.code if priced.applied_coupon else None
    return _quote_response(priced.breakdown, code)


@router.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("booking"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return lifecycle.request(
        user,
        payload.vehicle_id,
        payload.start_date,
        payload.end_date,
        extras=payload.extras,
        insurance=payload.insurance_type,
        coupon_code=payload.coupon_code,
        notes=payload.notes,
    )


@router.get("/bookings/me", response_model=List[schemas.BookingRead])
def list_my_bookings(
    role: Literal["renter", "owner"] = Query("renter"),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> List[models.Booking]:
    """
    The caller's bookings, newest first.

    role=renter lists trips the caller booked; role=owner lists requests for the caller's vehicles.
    """
    criteria = {"renter_id": user.id} if role == "renter" else {"owner_id": user.id}
    if status_filter is not None:
        criteria["status"] = status_filter.value
    return store.bookings.filter(criteria, sort="-created_at")


@router.get("/bookings/{booking_id}", response_model=schemas.BookingRead)
def get_booking(
    booking_id: str,
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return _party_booking(store, booking_id, user)


@router.post("/bookings/{booking_id}/approve", response_model=schemas.BookingRead)
def approve_booking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    booking = lifecycle.store.bookings.require(booking_id)
    return lifecycle.approve(actor_for(user, booking), booking_id)


@router.post("/bookings/{booking_id}/reject", response_model=schemas.BookingRead)
def reject_booking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    booking = lifecycle.store.bookings.require(booking_id)
    return lifecycle.reject(actor_for(user, booking), booking_id)


@router.post("/bookings/{booking_id}/activate", response_model=schemas.BookingRead)
def activate_booking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    booking = lifecycle.store.bookings.require(booking_id)
    return lifecycle.activate(actor_for(user, booking), booking_id)


@router.post("/bookings/{booking_id}/complete", response_model=schemas.BookingRead)
def complete_booking(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    booking = lifecycle.store.bookings.require(booking_id)
    return lifecycle.complete(actor_for(user, booking), booking_id)


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def cancel_booking(
    booking_id: str,
    payload: Optional[schemas.CancelRequest] = None,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    booking = lifecycle.store.bookings.require(booking_id)
    reason = payload.reason if payload else None
    return lifecycle.cancel(actor_for(user, booking), booking_id, reason=reason)


@router.get("/bookings/{booking_id}/refund-quote", response_model=schemas.RefundQuoteRead)
def refund_quote(
    booking_id: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> schemas.RefundQuoteRead:
    """What the renter would get back if the booking were cancelled now."""
    booking = _party_booking(lifecycle.store, booking_id, user)
    q = lifecycle.refund_preview(booking)
    return schemas.RefundQuoteRead(
        booking_id=booking.id,
        amount_cents=q.amount,
        percentage=q.percentage,
        days_until_start=q.days_until_start,
    )


@router.post("/bookings/{booking_id}/checkout", response_model=schemas.CheckoutResponse)
def checkout(
    booking_id: str,
    payload: Optional[schemas.CheckoutRequest] = None,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> schemas.CheckoutResponse:
    success_url = (payload and payload.success_url) or f"{PUBLIC_BASE_URL}/bookings/{booking_id}?payment=success"
    cancel_url = (payload and payload.cancel_url) or f"{PUBLIC_BASE_URL}/bookings/{booking_id}?payment=cancelled"
    session_id, url = lifecycle.checkout(user, booking_id, success_url, cancel_url)
    return schemas.CheckoutResponse(session_id=session_id, checkout_url=url)


@router.post(
    "/bookings/{booking_id}/review",
    response_model=schemas.ReviewRead,
    status_code=status.HTTP_201_CREATED,
)
def review_booking(
    booking_id: str,
    payload: schemas.ReviewCreate,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    user: models.User = Depends(get_current_user),
) -> models.Review:
    return lifecycle.review(user, booking_id, payload.rating, payload.comment)


@router.get("/bookings/{booking_id}/invoice")
def download_invoice(
    booking_id: str,
    store: Store = Depends(get_store),
    user: models.User = Depends(get_current_user),
) -> Response:
    booking = _party_booking(store, booking_id, user)
    if booking.payment_status == PaymentStatus.PENDING.value:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No invoice before payment")
    return Response(
        content=render_invoice(booking),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{invoice_number(booking)}.pdf"'},
    )

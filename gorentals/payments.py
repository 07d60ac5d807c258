# Payments module: Stripe Checkout, refunds and the settlement webhook.
# When STRIPE_SECRET_KEY is blank, checkout and refunds run in deterministic offline
# mode (synthetic ids, no network) for local development and CI. The webhook only
# needs STRIPE_WEBHOOK_SECRET and rejects every delivery when it is missing.
from __future__ import annotations

import logging
import os
from typing import Any, Optional, Tuple

import stripe
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse

from . import models
from .lifecycle import BookingLifecycle
from .notifications import Dispatcher
from .store import Store, get_store

logger = logging.getLogger("gorentals.payments")

router = APIRouter()

# Environment configuration (blank values switch Stripe features to offline mode)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "").strip()
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5173").rstrip("/")


def stripe_enabled() -> bool:
    return bool(STRIPE_SECRET_KEY)


def _init_stripe() -> None:
    if not stripe_enabled():
        raise RuntimeError("Stripe not enabled (STRIPE_SECRET_KEY not set)")
    stripe.api_key = STRIPE_SECRET_KEY


def _field(obj: Any, key: str) -> Any:
    """Bracket access on Stripe objects and plain dicts; None when the key is absent."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


class PaymentGateway:
    """Thin wrapper over the Stripe calls the booking engine needs."""

    def create_checkout_session(self, booking: models.Booking, success_url: str, cancel_url: str) -> Tuple[str, str]:
        """
        Create a Checkout Session and return (session_id, checkout_url).

        Line items: the rental (subtotal, service fee, extras and insurance,
        less any discount) and the refundable security deposit.
        """
        if not stripe_enabled():
            session_id = f"cs_test_{booking.id}"
            return session_id, f"{PUBLIC_BASE_URL}/checkout/{session_id}"

        _init_stripe()
        currency = booking.currency.lower()
        line_items = [
            {
                "price_data": {
                    "currency": currency,
                    "unit_amount": booking.total_cents - booking.security_deposit_cents,
                    "product_data": {
                        "name": f"Rental: {booking.vehicle_title}",
                        "description": f"{booking.start_date.isoformat()} to {booking.end_date.isoformat()} ({booking.total_days} days)",
                    },
                },
                "quantity": 1,
            }
        ]
        if booking.security_deposit_cents > 0:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": booking.security_deposit_cents,
                        "product_data": {
                            "name": "Security deposit (refundable)",
                            "description": "Returned when the rental completes",
                        },
                    },
                    "quantity": 1,
                }
            )
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=line_items,
            customer_email=booking.renter_email,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "booking_id": booking.id,
                "renter_email": booking.renter_email,
                "owner_email": booking.owner_email,
                "vehicle_id": booking.vehicle_id,
            },
        )
        logger.info("checkout.created", extra={"booking_id": booking.id, "session_id": session["id"]})
        return session["id"], session["url"]

    def refund(self, booking: models.Booking, amount_cents: int) -> str:
        """Refund part or all of the booking's payment; returns the refund id."""
        if not stripe_enabled():
            return f"re_test_{booking.id}"

        if not booking.stripe_payment_intent_id:
            raise RuntimeError("Booking has no payment intent to refund")
        _init_stripe()
        refund = stripe.Refund.create(
            payment_intent=booking.stripe_payment_intent_id,
            amount=int(amount_cents),
            reason="requested_by_customer",
            metadata={"booking_id": booking.id},
            # Same booking -> same refund, whatever the retry count
            idempotency_key=f"refund:{booking.id}",
        )
        logger.info("refund.created", extra={"booking_id": booking.id, "refund_id": refund["id"], "amount_cents": amount_cents})
        return refund["id"]


def get_gateway() -> PaymentGateway:
    return PaymentGateway()


def get_lifecycle(store: Store = Depends(get_store), gateway: PaymentGateway = Depends(get_gateway)) -> BookingLifecycle:
    """FastAPI dependency: the booking engine bound to the request's store."""
    return BookingLifecycle(store, Dispatcher(store), gateway)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/payments/webhook")
async def stripe_webhook(
    request: Request,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """
    Verify the Stripe signature and settle `checkout.session.completed` events.

    - 400 {"error": "Invalid signature"}: secret missing or verification failed
    - 404 {"error": "Booking not found"}: metadata does not point at a booking
    - 500 {"error": ...}: settlement failed; Stripe will redeliver
    - 200 {"received": true, "status": ...}: settled, duplicate or ignored
    """
    payload = await request.body()
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("webhook.secret_missing")
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid signature")
    try:
        event = stripe.Webhook.construct_event(
            payload=payload.decode("utf-8"),
            sig_header=stripe_signature,
            secret=STRIPE_WEBHOOK_SECRET,
        )
    except Exception as exc:
        logger.warning("webhook.invalid_signature: %s", exc)
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid signature")

    event_type = _field(event, "type") or ""
    if event_type != "checkout.session.completed":
        return {"received": True, "status": "ignored"}

    session = _field(_field(event, "data"), "object")
    booking_id = _field(_field(session, "metadata"), "booking_id")
    if not booking_id or lifecycle.store.bookings.get(booking_id) is None:
        logger.warning("webhook.booking_not_found", extra={"booking_id": booking_id, "event_id": _field(event, "id")})
        return _error(status.HTTP_404_NOT_FOUND, "Booking not found")

    try:
        outcome = lifecycle.settle_payment(
            booking_id,
            payment_intent_id=_field(session, "payment_intent"),
            session_id=_field(session, "id"),
        )
    except Exception as exc:
        logger.exception("webhook.settlement_failed", extra={"booking_id": booking_id})
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"received": True, "status": outcome}

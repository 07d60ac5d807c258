# Booking API test suite: request/approve/pay/handover/complete flow, conflicts, cancellation and authorization.
from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import date, timedelta
from typing import Tuple

from fastapi.testclient import TestClient

from gorentals import models, payments
from gorentals.db import SessionLocal


# Helper: create a user and return (access_token, user JSON)
def signup(client: TestClient, email: str, role: str = "renter", name: str = "") -> Tuple[str, dict]:
    r = client.post("/auth/signup", json={"email": email, "password": "changeme123", "role": role, "full_name": name})
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


# Convenience header for authenticated requests
def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def make_admin(client: TestClient, email: str) -> str:
    token, _ = signup(client, email)
    with SessionLocal() as db:
        db.query(models.User).filter(models.User.email == email).update({"role": "admin"})
        db.commit()
    return token


def create_vehicle(client: TestClient, token: str, **overrides) -> dict:
    payload = {
        "title": "Toyota Corolla 2022",
        "vehicle_type": "car",
        "location": "Lisbon",
        "price_per_day_cents": 5000,
        "security_deposit_cents": 10000,
        "extras": [
            {"name": "GPS", "price_cents": 500, "price_type": "per_day"},
            {"name": "Child seat", "price_cents": 1500, "price_type": "flat"},
        ],
    }
    payload.update(overrides)
    r = client.post("/api/v1/vehicles", headers=auth_headers(token), json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def days_ahead(n: int) -> str:
    return (date.today() + timedelta(days=n)).isoformat()


def request_booking(client: TestClient, token: str, vehicle_id: str, start: int = 30, end: int = 32, **extra):
    body = {"vehicle_id": vehicle_id, "start_date": days_ahead(start), "end_date": days_ahead(end), **extra}
    return client.post("/api/v1/bookings", headers=auth_headers(token), json=body)


def deliver_checkout_completed(client: TestClient, booking_id: str, payment_intent: str = "pi_test_1"):
    payload = json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "payment_intent": payment_intent,
            "metadata": {"booking_id": booking_id},
        }},
    })
    ts = int(time.time())
    sig = hmac.new(payments.STRIPE_WEBHOOK_SECRET.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"},
    )


def approved_booking(client: TestClient) -> Tuple[str, str, dict, dict]:
    owner_token, _ = signup(client, "owner@example.com", "owner", "Olivia Owner")
    renter_token, _ = signup(client, "renter@example.com", "renter", "Ryan Renter")
    vehicle = create_vehicle(client, owner_token)
    r = request_booking(client, renter_token, vehicle["id"])
    assert r.status_code == 201, r.text
    booking = r.json()
    r = client.post(f"/api/v1/bookings/{booking['id']}/approve", headers=auth_headers(owner_token))
    assert r.status_code == 200, r.text
    return owner_token, renter_token, vehicle, r.json()


def test_quote_prices_extras_insurance_and_deposit(client: TestClient):
    owner_token, _ = signup(client, "owner@example.com", "owner")
    renter_token, _ = signup(client, "renter@example.com")
    vehicle = create_vehicle(client, owner_token)

    r = client.post(
        "/api/v1/bookings/quote",
        headers=auth_headers(renter_token),
        json={
            "vehicle_id": vehicle["id"],
            "start_date": days_ahead(30),
            "end_date": days_ahead(32),
            "extras": ["GPS", "Child seat"],
            "insurance_type": "basic",
        },
    )
    assert r.status_code == 200, r.text
    q = r.json()
    assert q["days"] == 3
    assert (q["subtotal_cents"], q["platform_fee_cents"]) == (15000, 2250)
    assert q["extras_total_cents"] == 500 * 3 + 1500
    assert q["insurance_cost_cents"] == 4500
    assert q["total_cents"] == 15000 + 2250 + 3000 + 4500 + 10000
    assert q["owner_payout_cents"] == 15000 - 2250 + 3000
    # Quoting writes nothing
    assert client.get("/api/v1/bookings/me", headers=auth_headers(renter_token)).json() == []


def test_request_approve_and_list(client: TestClient):
    owner_token, renter_token, vehicle, booking = approved_booking(client)
    assert booking["status"] == "approved"
    assert (booking["total_cents"], booking["owner_payout_cents"]) == (27250, 12750)

    v = client.get(f"/api/v1/vehicles/{vehicle['id']}").json()
    assert v["blocked_dates"] == [days_ahead(30), days_ahead(31), days_ahead(32)]

    mine = client.get("/api/v1/bookings/me", headers=auth_headers(renter_token)).json()
    assert [b["id"] for b in mine] == [booking["id"]]
    owned = client.get("/api/v1/bookings/me?role=owner&status=approved", headers=auth_headers(owner_token)).json()
    assert [b["id"] for b in owned] == [booking["id"]]


def test_overlapping_request_conflicts_after_approval(client: TestClient):
    _, _, vehicle, _ = approved_booking(client)
    other_token, _ = signup(client, "other@example.com")
    r = request_booking(client, other_token, vehicle["id"], start=32, end=34)
    assert r.status_code == 409, r.text
    assert r.json()["code"] == "dates_unavailable"
    # Adjacent, non-overlapping range is fine
    r = request_booking(client, other_token, vehicle["id"], start=33, end=34)
    assert r.status_code == 201, r.text


def test_illegal_moves_and_wrong_actors(client: TestClient):
    owner_token, renter_token, _, booking = approved_booking(client)
    bid = booking["id"]

    # Handover before payment and approving twice are both illegal moves
    r = client.post(f"/api/v1/bookings/{bid}/activate", headers=auth_headers(renter_token))
    assert r.status_code == 409, r.text
    r = client.post(f"/api/v1/bookings/{bid}/approve", headers=auth_headers(owner_token))
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_transition"

    outsider_token, _ = signup(client, "outsider@example.com")
    r = client.get(f"/api/v1/bookings/{bid}", headers=auth_headers(outsider_token))
    assert r.status_code == 403
    r = client.post(f"/api/v1/bookings/{bid}/cancel", headers=auth_headers(outsider_token))
    assert r.status_code == 403

    r = client.get(f"/api/v1/bookings/{bid}")
    assert r.status_code == 401


def test_pending_request_renter_cannot_approve(client: TestClient):
    owner_token, _ = signup(client, "owner@example.com", "owner")
    renter_token, _ = signup(client, "renter@example.com")
    vehicle = create_vehicle(client, owner_token)
    booking = request_booking(client, renter_token, vehicle["id"]).json()
    r = client.post(f"/api/v1/bookings/{booking['id']}/approve", headers=auth_headers(renter_token))
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"
    r = client.post(f"/api/v1/bookings/{booking['id']}/reject", headers=auth_headers(owner_token))
    assert r.json()["status"] == "rejected"


def test_full_rental_flow_to_completion_and_review(client: TestClient):
    owner_token, renter_token, vehicle, booking = approved_booking(client)
    bid = booking["id"]

    r = client.post(f"/api/v1/bookings/{bid}/checkout", headers=auth_headers(renter_token))
    assert r.status_code == 200, r.text
    assert r.json()["session_id"] == f"cs_test_{bid}"

    assert deliver_checkout_completed(client, bid).json() == {"received": True, "status": "paid"}
    paid = client.get(f"/api/v1/bookings/{bid}", headers=auth_headers(renter_token)).json()
    assert (paid["status"], paid["payment_status"]) == ("paid", "paid")

    invoice = client.get(f"/api/v1/bookings/{bid}/invoice", headers=auth_headers(renter_token))
    assert invoice.status_code == 200
    assert invoice.headers["content-type"] == "application/pdf"
    assert invoice.content.startswith(b"%PDF")

    assert client.post(f"/api/v1/bookings/{bid}/activate", headers=auth_headers(owner_token)).json()["status"] == "active"
    assert client.post(f"/api/v1/bookings/{bid}/complete", headers=auth_headers(owner_token)).json()["status"] == "completed"

    earnings = client.get("/api/v1/earnings/me", headers=auth_headers(owner_token)).json()
    assert earnings == {
        "total_earnings_cents": 12750,
        "pending_earnings_cents": 0,
        "completed_bookings": 1,
        "average_booking_value_cents": 12750,
    }
    me = client.get("/auth/me", headers=auth_headers(owner_token)).json()
    assert me["total_earnings_cents"] == 12750

    ledger = client.get("/api/v1/transactions/me", headers=auth_headers(renter_token)).json()
    assert sorted(t["type"] for t in ledger) == ["deposit_hold", "deposit_release", "payment"]

    r = client.post(f"/api/v1/bookings/{bid}/review", headers=auth_headers(renter_token), json={"rating": 5, "comment": "Great"})
    assert r.status_code == 201, r.text
    v = client.get(f"/api/v1/vehicles/{vehicle['id']}").json()
    assert (v["average_rating"], v["total_reviews"], v["total_bookings"]) == (5.0, 1, 1)
    reviews = client.get(f"/api/v1/vehicles/{vehicle['id']}/reviews").json()
    assert [rv["rating"] for rv in reviews] == [5]


def test_cancel_paid_booking_far_ahead_refunds_in_full(client: TestClient):
    owner_token, renter_token, vehicle, booking = approved_booking(client)
    bid = booking["id"]
    deliver_checkout_completed(client, bid)

    quote = client.get(f"/api/v1/bookings/{bid}/refund-quote", headers=auth_headers(renter_token)).json()
    assert (quote["amount_cents"], quote["percentage"]) == (25000, 100)

    r = client.post(f"/api/v1/bookings/{bid}/cancel", headers=auth_headers(renter_token), json={"reason": "Flight cancelled"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert (data["status"], data["payment_status"], data["refund_cents"]) == ("cancelled", "refunded", 25000)
    assert client.get(f"/api/v1/vehicles/{vehicle['id']}").json()["blocked_dates"] == []

    notes = client.get("/api/v1/notifications?unread=true", headers=auth_headers(owner_token)).json()
    assert "booking_cancelled" in [n["type"] for n in notes]


def test_notifications_mark_read(client: TestClient):
    owner_token, _, _, _ = approved_booking(client)
    notes = client.get("/api/v1/notifications", headers=auth_headers(owner_token)).json()
    assert [n["type"] for n in notes] == ["booking_request"]

    r = client.post(f"/api/v1/notifications/{notes[0]['id']}/read", headers=auth_headers(owner_token))
    assert r.json()["is_read"] is True
    assert client.get("/api/v1/notifications?unread=true", headers=auth_headers(owner_token)).json() == []
    assert client.post("/api/v1/notifications/read-all", headers=auth_headers(owner_token)).json() == {"updated": 0}


def test_coupon_admin_and_validation(client: TestClient):
    admin_token = make_admin(client, "admin@example.com")
    renter_token, _ = signup(client, "renter@example.com")
    coupon = {
        "code": "summer20",
        "discount_type": "percentage",
        "discount_value": 20,
        "valid_from": "2020-01-01T00:00:00Z",
        "valid_until": "2099-01-01T00:00:00Z",
    }
    assert client.post("/api/v1/coupons", headers=auth_headers(renter_token), json=coupon).status_code == 403
    r = client.post("/api/v1/coupons", headers=auth_headers(admin_token), json=coupon)
    assert r.status_code == 201, r.text
    assert r.json()["code"] == "SUMMER20"

    ok = client.post(
        "/api/v1/coupons/validate",
        headers=auth_headers(renter_token),
        json={"code": "Summer20", "amount_cents": 17250, "vehicle_type": "car"},
    ).json()
    assert (ok["valid"], ok["discount_cents"]) == (True, 3450)

    client.post(f"/api/v1/coupons/{r.json()['id']}/deactivate", headers=auth_headers(admin_token))
    bad = client.post(
        "/api/v1/coupons/validate",
        headers=auth_headers(renter_token),
        json={"code": "SUMMER20", "amount_cents": 17250},
    ).json()
    assert (bad["valid"], bad["reason"]) == (False, "inactive")


def test_reminders_require_admin(client: TestClient):
    renter_token, _ = signup(client, "renter@example.com")
    assert client.post("/api/v1/admin/reminders", headers=auth_headers(renter_token)).status_code == 403
    admin_token = make_admin(client, "admin@example.com")
    r = client.post("/api/v1/admin/reminders", headers=auth_headers(admin_token))
    assert r.json() == {"pickup_reminders": 0, "return_reminders": 0}

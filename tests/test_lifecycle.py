# Booking engine against the in-memory store: request -> approve -> settle -> activate -> complete,
# cancellation refunds, reviews, reminders and partial-failure reporting.
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from gorentals.enums import Actor
from gorentals.errors import AlreadyExists, DatesUnavailable, StepFailed, ValidationFailed
from gorentals.invoices import render_invoice
from gorentals.lifecycle import BookingLifecycle
from gorentals.notifications import Dispatcher, Mailer
from gorentals.payments import PaymentGateway

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
# Three inclusive days, five days after NOW
START, END = date(2026, 10, 21), date(2026, 10, 23)


class RecordingMailer(Mailer):
    def __init__(self) -> None:
        super().__init__(host="")
        self.sent = []

    def send(self, to, subject, body, attachments=()):
        self.sent.append({"to": to, "subject": subject, "attachments": list(attachments)})


def seed(store, deposit: int = 10000):
    owner = store.users.create(email="owner@example.com", password_hash="x", full_name="Olivia Owner", role="owner")
    renter = store.users.create(email="renter@example.com", password_hash="x", full_name="Ryan Renter", role="renter")
    vehicle = store.vehicles.create(
        owner_id=owner.id,
        owner_name=owner.full_name,
        owner_email=owner.email,
        title="Toyota Corolla 2022",
        vehicle_type="car",
        price_per_day_cents=5000,
        security_deposit_cents=deposit,
    )
    return owner, renter, vehicle


def make_engine(store, mailer=None) -> BookingLifecycle:
    return BookingLifecycle(store, Dispatcher(store, mailer or RecordingMailer()), PaymentGateway())


def txn(store, booking_id, type):
    items = store.transactions.filter({"booking_id": booking_id, "type": type})
    assert len(items) == 1, items
    return items[0]


def paid_booking(store, lc, renter, vehicle):
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    lc.approve(Actor.OWNER, b.id)
    assert lc.settle_payment(b.id, "pi_123", "cs_123") == "paid"
    return store.bookings.get(b.id)


def test_request_creates_pending_booking_and_notifies_owner(store):
    owner, renter, vehicle = seed(store)
    mailer = RecordingMailer()
    lc = make_engine(store, mailer)

    b = lc.request(renter, vehicle.id, START, END, notes="Airport pickup", now=NOW)

    assert b.status == "pending"
    assert b.payment_status == "pending"
    assert (b.total_days, b.subtotal_cents, b.platform_fee_cents) == (3, 15000, 2250)
    assert (b.total_cents, b.owner_payout_cents) == (27250, 12750)
    # Pending requests do not hold dates
    assert store.vehicles.get(vehicle.id).blocked_dates == []
    notes = store.notifications.filter({"user_email": owner.email})
    assert [n.type for n in notes] == ["booking_request"]
    assert mailer.sent[0]["to"] == owner.email


def test_request_rejects_own_vehicle_past_dates_and_blocked_days(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    with pytest.raises(ValidationFailed):
        lc.request(owner, vehicle.id, START, END, now=NOW)
    with pytest.raises(ValidationFailed):
        lc.request(renter, vehicle.id, date(2026, 10, 1), date(2026, 10, 3), now=NOW)
    store.vehicles.update(vehicle.id, blocked_dates=["2026-10-22"])
    with pytest.raises(DatesUnavailable):
        lc.request(renter, vehicle.id, START, END, now=NOW)
    assert store.bookings.list() == []


def test_approval_blocks_dates_and_rechecks_overlap(store):
    owner, renter, vehicle = seed(store)
    other = store.users.create(email="other@example.com", password_hash="x", full_name="Otto", role="renter")
    lc = make_engine(store)

    first = lc.request(renter, vehicle.id, START, END, now=NOW)
    # Competing pending request for overlapping dates is accepted...
    second = lc.request(other, vehicle.id, END, END + timedelta(days=2), now=NOW)

    lc.approve(Actor.OWNER, first.id)
    assert sorted(store.vehicles.get(vehicle.id).blocked_dates) == ["2026-10-21", "2026-10-22", "2026-10-23"]
    assert store.notifications.filter({"user_email": renter.email, "type": "booking_approved"})

    # ...but cannot be approved once the first one holds the dates
    with pytest.raises(DatesUnavailable):
        lc.approve(Actor.OWNER, second.id)
    assert store.bookings.get(second.id).status == "pending"

    # New requests on held dates are refused outright
    with pytest.raises(DatesUnavailable):
        lc.request(other, vehicle.id, START, START, now=NOW)


def test_approval_refuses_days_blocked_after_the_request(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    store.vehicles.update(vehicle.id, blocked_dates=["2026-10-22"])

    with pytest.raises(DatesUnavailable):
        lc.approve(Actor.OWNER, b.id)
    assert store.bookings.get(b.id).status == "pending"
    assert store.vehicles.get(vehicle.id).blocked_dates == ["2026-10-22"]


def test_invoice_renders_names_outside_latin1(store):
    owner, renter, vehicle = seed(store)
    store.users.update(renter.id, full_name="Łukasz Żółć")
    store.vehicles.update(vehicle.id, title="Škoda Octavia \u2014 kombi")
    lc = make_engine(store)
    b = paid_booking(store, lc, store.users.get(renter.id), store.vehicles.get(vehicle.id))

    pdf = render_invoice(b)

    assert pdf.startswith(b"%PDF")


def test_settlement_writes_ledger_invoice_and_notifications(store):
    owner, renter, vehicle = seed(store)
    mailer = RecordingMailer()
    lc = make_engine(store, mailer)
    b = paid_booking(store, lc, renter, vehicle)

    assert (b.status, b.payment_status, b.stripe_payment_intent_id) == ("paid", "paid", "pi_123")
    payment = txn(store, b.id, "payment")
    payout = txn(store, b.id, "payout")
    commission = txn(store, b.id, "commission")
    hold = txn(store, b.id, "deposit_hold")
    assert (payment.amount_cents, payment.status, payment.user_email) == (27250, "completed", renter.email)
    assert (payout.amount_cents, payout.status, payout.user_email) == (12750, "pending", owner.email)
    assert (commission.amount_cents, commission.user_role, commission.user_email) == (2250, "platform", "platform@gorentals.com")
    assert (hold.amount_cents, hold.status) == (10000, "pending")

    receipt = [m for m in mailer.sent if m["to"] == renter.email and m["attachments"]]
    assert len(receipt) == 1
    assert receipt[0]["attachments"][0].content.startswith(b"%PDF")
    assert store.notifications.filter({"user_email": renter.email, "type": "booking_paid"})
    assert store.notifications.filter({"user_email": owner.email, "type": "booking_paid"})


def test_settlement_is_idempotent(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = paid_booking(store, lc, renter, vehicle)
    assert lc.settle_payment(b.id, "pi_123", "cs_123") == "already_settled"
    assert len(store.transactions.filter({"booking_id": b.id})) == 4


def test_settlement_ignores_bookings_not_awaiting_payment(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    assert lc.settle_payment(b.id, "pi_1") == "invalid_status"
    assert store.bookings.get(b.id).status == "pending"
    assert store.transactions.list() == []


def test_settlement_without_deposit_writes_three_entries(store):
    owner, renter, vehicle = seed(store, deposit=0)
    lc = make_engine(store)
    b = paid_booking(store, lc, renter, vehicle)
    types = sorted(t.type for t in store.transactions.filter({"booking_id": b.id}))
    assert types == ["commission", "payment", "payout"]


def test_cancel_paid_booking_five_days_before_start(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = paid_booking(store, lc, renter, vehicle)

    cancelled = lc.cancel(Actor.RENTER, b.id, reason="Plans changed", now=NOW)

    assert cancelled.status == "cancelled"
    assert (cancelled.refund_cents, cancelled.refund_percentage) == (17500, 50)
    assert (cancelled.cancelled_by, cancelled.cancellation_reason) == ("renter", "Plans changed")
    assert cancelled.payment_status == "refunded"
    assert txn(store, b.id, "payment").status == "refunded"
    assert txn(store, b.id, "payout").status == "cancelled"
    assert txn(store, b.id, "deposit_hold").status == "cancelled"
    refund = txn(store, b.id, "refund")
    assert (refund.amount_cents, refund.status, refund.user_email) == (17500, "completed", renter.email)
    assert store.vehicles.get(vehicle.id).blocked_dates == []
    assert store.notifications.filter({"user_email": owner.email, "type": "booking_cancelled"})


def test_cancel_approved_booking_refunds_nothing_and_releases_dates(store):
    owner, renter, vehicle = seed(store)
    store.vehicles.update(vehicle.id, blocked_dates=["2026-12-24"])
    lc = make_engine(store)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    lc.approve(Actor.OWNER, b.id)

    cancelled = lc.cancel(Actor.OWNER, b.id, now=NOW)

    assert (cancelled.refund_cents, cancelled.payment_status, cancelled.cancelled_by) == (0, "pending", "owner")
    assert store.transactions.list() == []
    # Manual blocks outside the booking survive
    assert store.vehicles.get(vehicle.id).blocked_dates == ["2026-12-24"]
    assert store.notifications.filter({"user_email": renter.email, "type": "booking_cancelled"})


def test_cancel_close_to_start_keeps_payment_but_returns_deposit(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = paid_booking(store, lc, renter, vehicle)
    cancelled = lc.cancel(Actor.RENTER, b.id, now=datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))
    assert (cancelled.refund_cents, cancelled.refund_percentage) == (10000, 0)
    assert txn(store, b.id, "payment").status == "refunded"


def test_complete_releases_payout_and_deposit(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = paid_booking(store, lc, renter, vehicle)
    lc.activate(Actor.OWNER, b.id)
    done = lc.complete(Actor.OWNER, b.id)

    assert done.status == "completed"
    assert store.users.get(owner.id).total_earnings_cents == 12750
    assert store.vehicles.get(vehicle.id).total_bookings == 1
    assert txn(store, b.id, "payout").status == "completed"
    assert txn(store, b.id, "deposit_hold").status == "completed"
    release = txn(store, b.id, "deposit_release")
    assert (release.amount_cents, release.status) == (10000, "completed")


def test_review_recomputes_rating_from_all_reviews(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    store.reviews.create(booking_id="old", vehicle_id=vehicle.id, owner_id=owner.id, renter_id="someone", rating=2)
    b = paid_booking(store, lc, renter, vehicle)
    with pytest.raises(ValidationFailed):
        lc.review(renter, b.id, 5)
    lc.activate(Actor.OWNER, b.id)
    lc.complete(Actor.OWNER, b.id)

    lc.review(renter, b.id, 4, "Clean car")

    v = store.vehicles.get(vehicle.id)
    assert (v.average_rating, v.total_reviews) == (3.0, 2)
    with pytest.raises(AlreadyExists):
        lc.review(renter, b.id, 5)


def test_failed_ledger_write_reports_completed_steps(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    lc.approve(Actor.OWNER, b.id)
    store.transactions.fail_on["create"] = RuntimeError("store unavailable")

    with pytest.raises(StepFailed) as exc:
        lc.settle_payment(b.id, "pi_9")

    assert exc.value.failed_step == "record_payment"
    assert exc.value.completed_steps == ["mark_paid"]
    # Earlier steps stay applied
    assert store.bookings.get(b.id).status == "paid"


def test_redelivery_after_failed_ledger_write_fills_the_missing_rows(store):
    owner, renter, vehicle = seed(store)
    mailer = RecordingMailer()
    lc = make_engine(store, mailer)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    lc.approve(Actor.OWNER, b.id)
    store.transactions.fail_on["create"] = RuntimeError("store unavailable")
    with pytest.raises(StepFailed):
        lc.settle_payment(b.id, "pi_9", "cs_9")
    assert store.transactions.list() == []

    store.transactions.fail_on.clear()
    assert lc.settle_payment(b.id, "pi_9", "cs_9") == "paid"

    types = sorted(t.type for t in store.transactions.filter({"booking_id": b.id}))
    assert types == ["commission", "deposit_hold", "payment", "payout"]
    assert txn(store, b.id, "payment").stripe_payment_intent_id == "pi_9"
    assert len([m for m in mailer.sent if m["to"] == renter.email and m["attachments"]]) == 1

    # Once complete, further deliveries write nothing
    assert lc.settle_payment(b.id, "pi_9", "cs_9") == "already_settled"
    assert len(store.transactions.filter({"booking_id": b.id})) == 4


def test_payment_for_cancelled_booking_is_logged_as_error(store, caplog):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    lc.approve(Actor.OWNER, b.id)
    lc.cancel(Actor.RENTER, b.id, now=NOW)

    with caplog.at_level("ERROR", logger="gorentals.bookings"):
        assert lc.settle_payment(b.id, "pi_late") == "invalid_status"

    assert [r.message for r in caplog.records if r.levelname == "ERROR"] == ["settlement.paid_after_cancellation"]
    assert store.bookings.get(b.id).status == "cancelled"
    assert store.transactions.list() == []


def test_notification_outage_never_blocks_a_transition(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = lc.request(renter, vehicle.id, START, END, now=NOW)
    store.notifications.fail_on["create"] = RuntimeError("notifications down")

    approved = lc.approve(Actor.OWNER, b.id)

    assert approved.status == "approved"
    assert store.notifications.filter({"type": "booking_approved"}) == []


def test_reminders_for_tomorrows_pickups_and_returns(store):
    owner, renter, vehicle = seed(store)
    lc = make_engine(store)
    b = paid_booking(store, lc, renter, vehicle)

    assert lc.send_reminders(today=START - timedelta(days=1)) == (1, 0)
    assert len(store.notifications.filter({"type": "pickup_reminder"})) == 2

    lc.activate(Actor.OWNER, b.id)
    assert lc.send_reminders(today=END - timedelta(days=1)) == (0, 1)
    assert len(store.notifications.filter({"type": "return_reminder", "user_email": renter.email})) == 1

# Booking lifecycle engine: state machine, transition side effects and payment settlement.
#
# Each operation validates up front, then runs an ordered list of named steps
# against the document store. The store has no multi-document transactions, so
# a failing required step stops the operation and is reported with the steps
# already applied (nothing is rolled back). Notification, email and invoice
# steps are best effort: they are logged on failure and never stop a transition.
from __future__ import annotations

import logging
import os
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING

from . import coupons, models
from .enums import (
    Actor,
    BookingStatus,
    InsuranceType,
    LedgerRole,
    NotificationType,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
    UserRole,
)
from .errors import AlreadyExists, DatesUnavailable, Forbidden, InvalidTransition, StepFailed, ValidationFailed
from .invoices import invoice_number, render_invoice
from .locks import booking_lock, coupon_lock, vehicle_lock
from .notifications import (
    Attachment,
    Dispatcher,
    approved_email,
    cancelled_email,
    new_request_email,
    owner_paid_email,
    receipt_email,
    rejected_email,
    reminder_lines,
)
from .pricing import PriceBreakdown, date_range, day_count, format_money, insurance_cost, price_extras, quote
from .refunds import RefundQuote, refund_quote
from .store import Store

if TYPE_CHECKING:
    from .payments import PaymentGateway

logger = logging.getLogger("gorentals.bookings")

# Ledger account that receives the platform commission
PLATFORM_ACCOUNT_EMAIL = os.getenv("PLATFORM_ACCOUNT_EMAIL", "platform@gorentals.com")

# Legal (from, to) moves and who may drive them
TRANSITIONS: Dict[Tuple[BookingStatus, BookingStatus], FrozenSet[Actor]] = {
    (BookingStatus.PENDING, BookingStatus.APPROVED): frozenset({Actor.OWNER, Actor.ADMIN}),
    (BookingStatus.PENDING, BookingStatus.REJECTED): frozenset({Actor.OWNER, Actor.ADMIN}),
    (BookingStatus.PENDING, BookingStatus.CANCELLED): frozenset({Actor.RENTER, Actor.OWNER}),
    (BookingStatus.APPROVED, BookingStatus.PAID): frozenset({Actor.SYSTEM}),
    (BookingStatus.APPROVED, BookingStatus.CANCELLED): frozenset({Actor.RENTER, Actor.OWNER}),
    (BookingStatus.PAID, BookingStatus.ACTIVE): frozenset({Actor.OWNER, Actor.ADMIN}),
    (BookingStatus.PAID, BookingStatus.CANCELLED): frozenset({Actor.RENTER, Actor.OWNER}),
    (BookingStatus.ACTIVE, BookingStatus.COMPLETED): frozenset({Actor.OWNER, Actor.ADMIN}),
    (BookingStatus.ACTIVE, BookingStatus.CANCELLED): frozenset({Actor.RENTER, Actor.OWNER}),
}

TERMINAL_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED})

# Bookings in these states hold the vehicle's dates
HOLDING_STATUSES = frozenset({BookingStatus.APPROVED, BookingStatus.PAID, BookingStatus.ACTIVE})


def check_transition(current: str, target: BookingStatus, actor: Actor) -> None:
    """Raise InvalidTransition for an illegal move, Forbidden for a wrong actor."""
    allowed = TRANSITIONS.get((BookingStatus(current), BookingStatus(target)))
    if allowed is None:
        raise InvalidTransition(BookingStatus(current).value, BookingStatus(target).value)
    if actor not in allowed:
        raise Forbidden(f"{Actor(actor).value} may not move a booking to {BookingStatus(target).value}")


def actor_for(user: models.User, booking: models.Booking) -> Actor:
    """The caller's role with respect to one booking."""
    if user.id == booking.renter_id:
        return Actor.RENTER
    if user.id == booking.owner_id:
        return Actor.OWNER
    if user.role == UserRole.ADMIN.value:
        return Actor.ADMIN
    raise Forbidden("Not a party to this booking")


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive date ranges share at least one day."""
    return a_start <= b_end and b_start <= a_end


# ----------------
# Saga execution
# ----------------
@dataclass
class Step:
    name: str
    action: Callable[[], Any]
    best_effort: bool = False


def run_steps(operation: str, booking_id: Optional[str], steps: Sequence[Step]) -> List[str]:
    """Run steps in order and return the names of those that completed.

    A failing required step raises StepFailed carrying the completed names;
    a failing best-effort step is logged and skipped.
    """
    completed: List[str] = []
    for step in steps:
        try:
            step.action()
        except Exception as exc:
            if step.best_effort:
                logger.warning(
                    "booking.side_effect_failed",
                    extra={"operation": operation, "step": step.name, "booking_id": booking_id, "error": str(exc)},
                )
                continue
            logger.error(
                "booking.step_failed",
                extra={"operation": operation, "step": step.name, "booking_id": booking_id, "completed": completed},
            )
            raise StepFailed(operation, step.name, completed, exc) from exc
        completed.append(step.name)
    logger.info("booking.%s", operation, extra={"booking_id": booking_id, "steps": completed})
    return completed


@dataclass(frozen=True)
class PricedRequest:
    breakdown: PriceBreakdown
    applied_coupon: Optional[coupons.AppliedCoupon]


class BookingLifecycle:
    """Drives bookings through their states against an injected store, dispatcher and gateway."""

    def __init__(self, store: Store, dispatcher: Dispatcher, gateway: Optional["PaymentGateway"] = None) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.gateway = gateway

    # ----------------
    # Helpers
    # ----------------
    def _notify(self, name: str, email: str, title: str, message: str, kind: NotificationType, booking_id: str) -> Step:
        return Step(name, lambda: self.dispatcher.notify(email, title, message, kind, booking_id), best_effort=True)

    def _email(self, name: str, to: str, subject_body: Callable[[], tuple], attachments: Callable[[], Sequence[Attachment]] = lambda: ()) -> Step:
        def send() -> None:
            subject, body = subject_body()
            self.dispatcher.email(to, subject, body, attachments())
        return Step(name, send, best_effort=True)

    def _set(self, booking_id: str, **fields: Any) -> Callable[[], Any]:
        return lambda: self.store.bookings.update(booking_id, **fields)

    def _transactions(self, booking_id: str, type: TransactionType, status: Optional[TransactionStatus] = None) -> List[models.Transaction]:
        criteria: Dict[str, Any] = {"booking_id": booking_id, "type": type.value}
        if status is not None:
            criteria["status"] = status.value
        return self.store.transactions.filter(criteria)

    def _mark_transactions(self, booking_id: str, type: TransactionType, from_status: TransactionStatus, to_status: TransactionStatus) -> None:
        for txn in self._transactions(booking_id, type, from_status):
            self.store.transactions.update(txn.id, status=to_status.value)

    def _record(self, booking: models.Booking, email: str, role: LedgerRole, type: TransactionType, amount: int, status: TransactionStatus, description: str) -> models.Transaction:
        return self.store.transactions.create(
            booking_id=booking.id,
            user_email=email,
            user_role=role.value,
            type=type.value,
            amount_cents=amount,
            currency=booking.currency,
            status=status.value,
            description=description,
            vehicle_title=booking.vehicle_title,
            stripe_payment_intent_id=booking.stripe_payment_intent_id,
        )

    def ensure_available(self, vehicle: models.Vehicle, start: date, end: date, exclude_booking_id: Optional[str] = None) -> None:
        """Reject the range if it touches a date-holding booking or a manually blocked day."""
        for other in self.store.bookings.filter({"vehicle_id": vehicle.id}):
            if other.id == exclude_booking_id or BookingStatus(other.status) not in HOLDING_STATUSES:
                continue
            if ranges_overlap(start, end, other.start_date, other.end_date):
                raise DatesUnavailable()
        # A pending booking holds no days yet, so any blocked day in its range belongs to someone else
        blocked = set(vehicle.blocked_dates or [])
        if blocked.intersection(date_range(start, end)):
            raise DatesUnavailable()

    def _block_dates(self, booking: models.Booking) -> None:
        vehicle = self.store.vehicles.require(booking.vehicle_id)
        current = list(vehicle.blocked_dates or [])
        missing = [d for d in date_range(booking.start_date, booking.end_date) if d not in current]
        if missing:
            self.store.vehicles.update(vehicle.id, blocked_dates=current + missing)

    def _unblock_dates(self, booking: models.Booking) -> None:
        vehicle = self.store.vehicles.require(booking.vehicle_id)
        released = set(date_range(booking.start_date, booking.end_date))
        current = list(vehicle.blocked_dates or [])
        remaining = [d for d in current if d not in released]
        if len(remaining) != len(current):
            self.store.vehicles.update(vehicle.id, blocked_dates=remaining)

    # ----------------
    # Pricing
    # ----------------
    def price_request(
        self,
        vehicle: models.Vehicle,
        start: date,
        end: date,
        extras: Iterable[str] = (),
        insurance: InsuranceType = InsuranceType.NONE,
        coupon_code: Optional[str] = None,
        user_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PricedRequest:
        days = day_count(start, end)
        priced_extras = price_extras(vehicle.extras or [], list(extras), days)
        extras_total = sum(e.total_cents for e in priced_extras)
        insurance_total = insurance_cost(insurance, days)
        base = quote(
            vehicle.price_per_day_cents,
            days,
            extras_total=extras_total,
            insurance=insurance_total,
            security_deposit=vehicle.security_deposit_cents,
            extras=priced_extras,
        )
        if not coupon_code:
            return PricedRequest(base, None)

        applied = coupons.resolve(self.store, coupon_code, base.pre_deposit_total, vehicle.vehicle_type, user_email or "", now=now)
        breakdown = quote(
            vehicle.price_per_day_cents,
            days,
            extras_total=extras_total,
            insurance=insurance_total,
            discount=applied.discount,
            security_deposit=vehicle.security_deposit_cents,
            extras=priced_extras,
        )
        return PricedRequest(breakdown, applied)

    # ----------------
    # Transitions
    # ----------------
    def request(
        self,
        renter: models.User,
        vehicle_id: str,
        start: date,
        end: date,
        extras: Iterable[str] = (),
        insurance: InsuranceType = InsuranceType.NONE,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> models.Booking:
        """Create a pending booking request for `renter`."""
        now = now or datetime.now(timezone.utc)
        vehicle = self.store.vehicles.require(vehicle_id)
        if not vehicle.is_active or not vehicle.is_available:
            raise ValidationFailed("Vehicle is not available", code="vehicle_unavailable")
        if vehicle.owner_id == renter.id:
            raise ValidationFailed("Owners cannot book their own vehicle", code="own_vehicle")
        if start < now.date():
            raise ValidationFailed("start_date must not be in the past", code="start_in_past")

        coupon_guard = coupon_lock(coupons.normalize_code(coupon_code)) if coupon_code else nullcontext()
        with vehicle_lock(vehicle.id), coupon_guard:
            # Coupon caps are checked under the coupon lock, right before redemption
            priced = self.price_request(vehicle, start, end, extras, insurance, coupon_code, renter.email, now)
            pb = priced.breakdown
            self.ensure_available(vehicle, start, end)

            created: Dict[str, models.Booking] = {}

            def create_booking() -> None:
                created["booking"] = self.store.bookings.create(
                    vehicle_id=vehicle.id,
                    vehicle_title=vehicle.title,
                    vehicle_photo=vehicle.photo_url,
                    vehicle_type=vehicle.vehicle_type,
                    renter_id=renter.id,
                    renter_name=renter.full_name,
                    renter_email=renter.email,
                    owner_id=vehicle.owner_id,
                    owner_name=vehicle.owner_name,
                    owner_email=vehicle.owner_email,
                    start_date=start,
                    end_date=end,
                    total_days=pb.days,
                    price_per_day_cents=vehicle.price_per_day_cents,
                    subtotal_cents=pb.subtotal,
                    platform_fee_cents=pb.platform_fee,
                    extras_total_cents=pb.extras_total,
                    insurance_cost_cents=pb.insurance_cost,
                    discount_cents=pb.discount,
                    security_deposit_cents=pb.security_deposit,
                    total_cents=pb.total,
                    owner_payout_cents=pb.owner_payout,
                    selected_extras=[
                        {"name": e.name, "price_cents": e.price_cents, "price_type": e.price_type, "total_cents": e.total_cents}
                        for e in pb.extras
                    ],
                    insurance_type=InsuranceType(insurance).value,
                    coupon_id=priced.applied_coupon.coupon.id if priced.applied_coupon else None,
                    coupon_code=priced.applied_coupon.coupon.code if priced.applied_coupon else None,
                    status=BookingStatus.PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    notes=notes,
                )

            def booking() -> models.Booking:
                return created["booking"]

            steps = [Step("create_booking", create_booking)]
            if priced.applied_coupon is not None:
                steps.append(Step("redeem_coupon", lambda: coupons.redeem(self.store, priced.applied_coupon, booking())))
            steps += [
                Step(
                    "notify_owner",
                    lambda: self.dispatcher.notify(
                        booking().owner_email,
                        "New booking request",
                        f"{booking().renter_name} wants to rent your {booking().vehicle_title} "
                        f"from {start.isoformat()} to {end.isoformat()}",
                        NotificationType.BOOKING_REQUEST,
                        booking().id,
                    ),
                    best_effort=True,
                ),
                self._email("email_owner", vehicle.owner_email, lambda: new_request_email(booking())),
            ]
            run_steps("request", None, steps)
        return created["booking"]

    def approve(self, actor: Actor, booking_id: str) -> models.Booking:
        b = self.store.bookings.require(booking_id)
        check_transition(b.status, BookingStatus.APPROVED, actor)
        with vehicle_lock(b.vehicle_id):
            vehicle = self.store.vehicles.require(b.vehicle_id)
            self.ensure_available(vehicle, b.start_date, b.end_date, exclude_booking_id=b.id)
            run_steps("approve", b.id, [
                Step("set_status", self._set(b.id, status=BookingStatus.APPROVED.value)),
                Step("block_dates", lambda: self._block_dates(b)),
                self._notify(
                    "notify_renter", b.renter_email, "Booking approved",
                    f"Your request for {b.vehicle_title} was approved. Complete the payment to confirm.",
                    NotificationType.BOOKING_APPROVED, b.id,
                ),
                self._email("email_renter", b.renter_email, lambda: approved_email(b)),
            ])
        return self.store.bookings.require(b.id)

    def reject(self, actor: Actor, booking_id: str) -> models.Booking:
        b = self.store.bookings.require(booking_id)
        check_transition(b.status, BookingStatus.REJECTED, actor)
        run_steps("reject", b.id, [
            Step("set_status", self._set(b.id, status=BookingStatus.REJECTED.value)),
            self._notify(
                "notify_renter", b.renter_email, "Booking rejected",
                f"Your request for {b.vehicle_title} was not approved. Other vehicles are available.",
                NotificationType.BOOKING_REJECTED, b.id,
            ),
            self._email("email_renter", b.renter_email, lambda: rejected_email(b)),
        ])
        return self.store.bookings.require(b.id)

    def activate(self, actor: Actor, booking_id: str) -> models.Booking:
        """Vehicle handed over to the renter."""
        b = self.store.bookings.require(booking_id)
        check_transition(b.status, BookingStatus.ACTIVE, actor)
        run_steps("activate", b.id, [
            Step("set_status", self._set(b.id, status=BookingStatus.ACTIVE.value)),
            self._notify(
                "notify_renter", b.renter_email, "Rental started",
                f"Your rental of {b.vehicle_title} has started. Enjoy the trip!",
                NotificationType.BOOKING_ACTIVE, b.id,
            ),
        ])
        return self.store.bookings.require(b.id)

    def complete(self, actor: Actor, booking_id: str) -> models.Booking:
        """Vehicle returned: release the owner's payout and the renter's deposit."""
        b = self.store.bookings.require(booking_id)
        check_transition(b.status, BookingStatus.COMPLETED, actor)

        def credit_owner() -> None:
            owner = self.store.users.require(b.owner_id)
            self.store.users.update(owner.id, total_earnings_cents=(owner.total_earnings_cents or 0) + b.owner_payout_cents)

        def count_booking() -> None:
            vehicle = self.store.vehicles.require(b.vehicle_id)
            self.store.vehicles.update(vehicle.id, total_bookings=(vehicle.total_bookings or 0) + 1)

        def release_deposit() -> None:
            self._mark_transactions(b.id, TransactionType.DEPOSIT_HOLD, TransactionStatus.PENDING, TransactionStatus.COMPLETED)
            self._record(
                b, b.renter_email, LedgerRole.RENTER, TransactionType.DEPOSIT_RELEASE,
                b.security_deposit_cents, TransactionStatus.COMPLETED,
                f"Security deposit returned - {b.vehicle_title}",
            )

        steps = [
            Step("set_status", self._set(b.id, status=BookingStatus.COMPLETED.value)),
            Step("credit_owner_earnings", credit_owner),
            Step("count_vehicle_booking", count_booking),
            Step("complete_payout", lambda: self._mark_transactions(
                b.id, TransactionType.PAYOUT, TransactionStatus.PENDING, TransactionStatus.COMPLETED)),
        ]
        if b.security_deposit_cents > 0:
            steps.append(Step("release_deposit", release_deposit))
        steps += [
            self._notify(
                "notify_renter", b.renter_email, "Rental completed",
                f"Your rental of {b.vehicle_title} has ended. Don't forget to leave a review!",
                NotificationType.BOOKING_COMPLETED, b.id,
            ),
            self._notify(
                "notify_owner", b.owner_email, "Rental completed",
                f"The rental of {b.vehicle_title} with {b.renter_name} finished successfully.",
                NotificationType.BOOKING_COMPLETED, b.id,
            ),
        ]
        run_steps("complete", b.id, steps)
        return self.store.bookings.require(b.id)

    def refund_preview(self, booking: models.Booking, now: Optional[datetime] = None) -> RefundQuote:
        return refund_quote(booking.status, booking.start_date, booking.subtotal_cents, booking.security_deposit_cents, now)

    def cancel(self, actor: Actor, booking_id: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> models.Booking:
        b = self.store.bookings.require(booking_id)
        check_transition(b.status, BookingStatus.CANCELLED, actor)
        with booking_lock(b.id):
            b = self.store.bookings.require(booking_id)
            check_transition(b.status, BookingStatus.CANCELLED, actor)
            prior = BookingStatus(b.status)
            refund = self.refund_preview(b, now)
            money_moved = prior in (BookingStatus.PAID, BookingStatus.ACTIVE)

            steps: List[Step] = []
            if money_moved and refund.amount > 0 and self.gateway is not None:
                steps.append(Step("provider_refund", lambda: self.gateway.refund(b, refund.amount)))

            status_fields: Dict[str, Any] = dict(
                status=BookingStatus.CANCELLED.value,
                cancelled_by=Actor(actor).value,
                cancellation_reason=reason,
                refund_cents=refund.amount,
                refund_percentage=refund.percentage,
            )
            if money_moved and refund.amount > 0:
                status_fields["payment_status"] = PaymentStatus.REFUNDED.value
            steps.append(Step("set_status", self._set(b.id, **status_fields)))

            if money_moved:
                if refund.amount > 0:
                    steps += [
                        Step("record_refund", lambda: self._record(
                            b, b.renter_email, LedgerRole.RENTER, TransactionType.REFUND, refund.amount,
                            TransactionStatus.COMPLETED, f"Cancellation refund - {b.vehicle_title}",
                        )),
                        Step("mark_payment_refunded", lambda: self._mark_transactions(
                            b.id, TransactionType.PAYMENT, TransactionStatus.COMPLETED, TransactionStatus.REFUNDED)),
                    ]
                steps += [
                    Step("cancel_payout", lambda: self._mark_transactions(
                        b.id, TransactionType.PAYOUT, TransactionStatus.PENDING, TransactionStatus.CANCELLED)),
                    Step("close_deposit_hold", lambda: self._mark_transactions(
                        b.id, TransactionType.DEPOSIT_HOLD, TransactionStatus.PENDING, TransactionStatus.CANCELLED)),
                ]
            if prior in HOLDING_STATUSES:
                steps.append(Step("unblock_dates", lambda: self._unblock_dates(b)))

            by_owner = Actor(actor) == Actor.OWNER
            recipient = b.renter_email if by_owner else b.owner_email
            recipient_name = b.renter_name if by_owner else b.owner_name
            who = "owner" if by_owner else "renter"
            message = f"The booking for {b.vehicle_title} was cancelled by the {who}"
            message += f". Refund: {format_money(refund.amount)}" if refund.amount > 0 else "."
            steps += [
                self._notify("notify_counterparty", recipient, "Booking cancelled", message, NotificationType.BOOKING_CANCELLED, b.id),
                self._email(
                    "email_counterparty", recipient,
                    lambda: cancelled_email(self.store.bookings.require(b.id), who, recipient_name, refund.amount),
                ),
            ]
            run_steps("cancel", b.id, steps)
        return self.store.bookings.require(b.id)

    def _settlement_types(self, booking: models.Booking) -> List[TransactionType]:
        """Ledger rows a settled booking must carry, in write order."""
        types = [TransactionType.PAYMENT, TransactionType.PAYOUT, TransactionType.COMMISSION]
        if booking.security_deposit_cents > 0:
            types.append(TransactionType.DEPOSIT_HOLD)
        return types

    def settle_payment(self, booking_id: str, payment_intent_id: Optional[str], session_id: Optional[str] = None) -> str:
        """Apply a provider-confirmed checkout to an approved booking.

        Returns a short outcome string. Idempotency is keyed on the ledger: a
        delivery for a booking whose settlement rows all exist writes nothing,
        and a redelivery after a partial failure (booking already paid, rows
        missing) writes only the missing rows.
        """
        b = self.store.bookings.require(booking_id)
        with booking_lock(b.id):
            b = self.store.bookings.require(booking_id)
            current = BookingStatus(b.status)
            missing = [t for t in self._settlement_types(b) if not self._transactions(b.id, t)]
            if not missing:
                logger.info("settlement.duplicate", extra={"booking_id": b.id, "payment_intent_id": payment_intent_id})
                return "already_settled"
            resuming = current == BookingStatus.PAID
            if not resuming and current != BookingStatus.APPROVED:
                if current == BookingStatus.CANCELLED:
                    # Money was captured for a booking nobody holds any more; needs a manual refund
                    logger.error(
                        "settlement.paid_after_cancellation",
                        extra={"booking_id": b.id, "payment_intent_id": payment_intent_id, "amount_cents": b.total_cents},
                    )
                else:
                    logger.warning("settlement.invalid_status", extra={"booking_id": b.id, "status": b.status})
                return "invalid_status"
            if resuming:
                logger.warning(
                    "settlement.resumed",
                    extra={"booking_id": b.id, "missing": [t.value for t in missing]},
                )
            else:
                check_transition(b.status, BookingStatus.PAID, Actor.SYSTEM)

            paid_fields: Dict[str, Any] = dict(
                status=BookingStatus.PAID.value,
                payment_status=PaymentStatus.PAID.value,
                stripe_payment_intent_id=payment_intent_id,
            )
            if session_id:
                paid_fields["stripe_session_id"] = session_id
            invoice: Dict[str, bytes] = {}

            def paid() -> models.Booking:
                return self.store.bookings.require(b.id)

            def render() -> None:
                invoice["pdf"] = render_invoice(paid())

            def invoice_attachments() -> Sequence[Attachment]:
                if "pdf" not in invoice:
                    return ()
                return (Attachment(f"invoice-{invoice_number(b)}.pdf", invoice["pdf"]),)

            ledger = {
                TransactionType.PAYMENT: Step("record_payment", lambda: self._record(
                    paid(), b.renter_email, LedgerRole.RENTER, TransactionType.PAYMENT, b.total_cents,
                    TransactionStatus.COMPLETED, f"Rental payment - {b.vehicle_title}",
                )),
                TransactionType.PAYOUT: Step("record_payout", lambda: self._record(
                    paid(), b.owner_email, LedgerRole.OWNER, TransactionType.PAYOUT, b.owner_payout_cents,
                    TransactionStatus.PENDING, f"Rental payout - {b.vehicle_title}",
                )),
                TransactionType.COMMISSION: Step("record_commission", lambda: self._record(
                    paid(), PLATFORM_ACCOUNT_EMAIL, LedgerRole.PLATFORM, TransactionType.COMMISSION, b.platform_fee_cents,
                    TransactionStatus.COMPLETED, f"Commission - {b.vehicle_title}",
                )),
                TransactionType.DEPOSIT_HOLD: Step("record_deposit_hold", lambda: self._record(
                    paid(), b.renter_email, LedgerRole.RENTER, TransactionType.DEPOSIT_HOLD, b.security_deposit_cents,
                    TransactionStatus.PENDING, f"Security deposit - {b.vehicle_title}",
                )),
            }
            steps = [] if resuming else [Step("mark_paid", self._set(b.id, **paid_fields))]
            steps += [ledger[t] for t in missing]
            steps += [
                Step("generate_invoice", render, best_effort=True),
                self._email("email_renter", b.renter_email, lambda: receipt_email(paid()), invoice_attachments),
                self._email("email_owner", b.owner_email, lambda: owner_paid_email(paid())),
                self._notify(
                    "notify_renter", b.renter_email, "Payment confirmed",
                    f"Your payment of {format_money(b.total_cents)} was processed. The owner will contact you soon.",
                    NotificationType.BOOKING_PAID, b.id,
                ),
                self._notify(
                    "notify_owner", b.owner_email, "Payment received",
                    f"{b.renter_name} paid {format_money(b.total_cents)} for {b.vehicle_title}.",
                    NotificationType.BOOKING_PAID, b.id,
                ),
            ]
            run_steps("settle_payment", b.id, steps)
        return "paid"

    def checkout(self, renter: models.User, booking_id: str, success_url: str, cancel_url: str) -> Tuple[str, str]:
        """Open a provider checkout for an approved booking; returns (session_id, checkout_url)."""
        b = self.store.bookings.require(booking_id)
        if b.renter_id != renter.id:
            raise Forbidden("Only the renter can pay for this booking")
        if BookingStatus(b.status) != BookingStatus.APPROVED:
            raise ValidationFailed("The booking must be approved before payment", code="not_approved")
        if self.gateway is None:
            raise ValidationFailed("Payments are not configured", code="payments_unavailable")
        session_id, url = self.gateway.create_checkout_session(b, success_url, cancel_url)
        self.store.bookings.update(b.id, stripe_session_id=session_id)
        return session_id, url

    def review(self, renter: models.User, booking_id: str, rating: int, comment: Optional[str] = None) -> models.Review:
        """Leave the single review allowed per completed booking and refresh the vehicle's rating."""
        b = self.store.bookings.require(booking_id)
        if b.renter_id != renter.id:
            raise Forbidden("Only the renter can review this booking")
        if BookingStatus(b.status) != BookingStatus.COMPLETED:
            raise ValidationFailed("Only completed bookings can be reviewed", code="booking_not_completed")
        if self.store.reviews.first({"booking_id": b.id, "renter_id": renter.id}) is not None:
            raise AlreadyExists("This booking has already been reviewed")

        created: Dict[str, models.Review] = {}

        def create_review() -> None:
            created["review"] = self.store.reviews.create(
                booking_id=b.id,
                vehicle_id=b.vehicle_id,
                owner_id=b.owner_id,
                renter_id=renter.id,
                renter_name=renter.full_name,
                rating=rating,
                comment=comment,
            )

        run_steps("review", b.id, [
            Step("create_review", create_review),
            Step("recompute_rating", lambda: self.recompute_rating(b.vehicle_id)),
        ])
        return created["review"]

    def recompute_rating(self, vehicle_id: str) -> models.Vehicle:
        reviews = self.store.reviews.filter({"vehicle_id": vehicle_id})
        average = round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else 0.0
        return self.store.vehicles.update(vehicle_id, average_rating=average, total_reviews=len(reviews))

    def send_reminders(self, today: Optional[date] = None) -> Tuple[int, int]:
        """Pickup reminders for paid bookings starting tomorrow, return reminders for active ones ending tomorrow."""
        tomorrow = (today or datetime.now(timezone.utc).date()) + timedelta(days=1)
        pickups = [b for b in self.store.bookings.filter({"status": BookingStatus.PAID.value}) if b.start_date == tomorrow]
        returns = [b for b in self.store.bookings.filter({"status": BookingStatus.ACTIVE.value}) if b.end_date == tomorrow]
        for kind, batch in ((NotificationType.PICKUP_REMINDER, pickups), (NotificationType.RETURN_REMINDER, returns)):
            for b in batch:
                steps = [
                    self._notify(f"{kind.value}:{email}", email, title, message, kind, b.id)
                    for email, title, message in reminder_lines(kind, b)
                ]
                run_steps("reminders", b.id, steps)
        return len(pickups), len(returns)

# Outbound side effects: in-app notification records and plain-text email.
# Every call here is best effort from the booking engine's point of view; the
# engine wraps them so failures are logged and never undo a transition.
from __future__ import annotations

import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import List, Optional, Sequence

from . import models
from .enums import NotificationType
from .pricing import format_money
from .store import Store

logger = logging.getLogger("gorentals.notifications")

# SMTP configuration (blank host keeps mail in log-only mode for dev/tests)
SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
MAIL_FROM = os.getenv("MAIL_FROM", "GoRentals <no-reply@gorentals.com>")


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    maintype: str = "application"
    subtype: str = "pdf"


class Mailer:
    """Sends plain-text email over SMTP; logs instead when SMTP_HOST is unset."""

    def __init__(self, host: str = SMTP_HOST, port: int = SMTP_PORT) -> None:
        self.host = host
        self.port = port

    def enabled(self) -> bool:
        return bool(self.host)

    def send(self, to: str, subject: str, body: str, attachments: Sequence[Attachment] = ()) -> None:
        msg = EmailMessage()
        msg["From"] = MAIL_FROM
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        for att in attachments:
            msg.add_attachment(att.content, maintype=att.maintype, subtype=att.subtype, filename=att.filename)

        if not self.enabled():
            logger.info("mail.offline", extra={"to": to, "subject": subject, "attachments": len(attachments)})
            return

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)


class Dispatcher:
    """Creates Notification records and sends email on behalf of the booking engine."""

    def __init__(self, store: Store, mailer: Optional[Mailer] = None) -> None:
        self.store = store
        self.mailer = mailer or Mailer()

    def notify(
        self,
        user_email: str,
        title: str,
        message: str,
        type: NotificationType,
        booking_id: Optional[str] = None,
    ) -> models.Notification:
        return self.store.notifications.create(
            user_email=user_email,
            title=title,
            message=message,
            type=NotificationType(type).value,
            booking_id=booking_id,
            is_read=False,
        )

    def email(self, to: str, subject: str, body: str, attachments: Sequence[Attachment] = ()) -> None:
        self.mailer.send(to, subject, body, attachments)


# ----------------
# Message templates
# ----------------
def _dates(b: models.Booking) -> str:
    return f"{b.start_date.isoformat()} to {b.end_date.isoformat()}"


def new_request_email(b: models.Booking) -> tuple:
    body = (
        f"Hello {b.owner_name},\n\n"
        f"{b.renter_name} wants to rent your {b.vehicle_title}.\n\n"
        f"Dates: {_dates(b)} ({b.total_days} days)\n"
        f"Estimated payout: {format_money(b.owner_payout_cents)}\n"
        + (f"Message from the renter: \"{b.notes}\"\n" if b.notes else "")
        + f"Renter email: {b.renter_email}\n\n"
        "Review the request and approve it so the renter can pay.\n\n"
        "GoRentals\n"
    )
    return f"New booking request - {b.vehicle_title}", body


def approved_email(b: models.Booking) -> tuple:
    body = (
        f"Hello {b.renter_name},\n\n"
        f"The owner approved your request for {b.vehicle_title}.\n\n"
        f"Dates: {_dates(b)} ({b.total_days} days)\n"
        f"Total to pay: {format_money(b.total_cents)}\n\n"
        "Complete the payment to confirm your booking.\n\n"
        "GoRentals\n"
    )
    return f"Booking approved - {b.vehicle_title}", body


def rejected_email(b: models.Booking) -> tuple:
    body = (
        f"Hello {b.renter_name},\n\n"
        f"Unfortunately your request for {b.vehicle_title} ({_dates(b)}) was not approved.\n"
        "Other vehicles are available for your dates.\n\n"
        "GoRentals\n"
    )
    return f"Booking not approved - {b.vehicle_title}", body


def receipt_email(b: models.Booking) -> tuple:
    body = (
        f"Hello {b.renter_name},\n\n"
        "Your payment was processed successfully.\n\n"
        f"Vehicle: {b.vehicle_title}\n"
        f"Dates: {_dates(b)}\n"
        f"Total paid: {format_money(b.total_cents)}\n\n"
        "The owner will contact you to arrange the handover.\n"
        "Your invoice is attached when available.\n\n"
        "GoRentals\n"
    )
    return "Payment confirmed - your booking is ready", body


def owner_paid_email(b: models.Booking) -> tuple:
    body = (
        f"Hello {b.owner_name},\n\n"
        f"You received a payment for {b.vehicle_title}.\n\n"
        f"Renter: {b.renter_name}\n"
        f"Dates: {_dates(b)}\n"
        f"Total: {format_money(b.total_cents)}\n"
        f"Your payout: {format_money(b.owner_payout_cents)} (released when the rental completes)\n\n"
        "Please contact the renter to arrange the handover.\n\n"
        "GoRentals\n"
    )
    return "Payment received - new confirmed booking", body


def cancelled_email(b: models.Booking, cancelled_by: str, recipient_name: str, refund: int) -> tuple:
    lines = [
        f"Hello {recipient_name},\n",
        f"The booking for {b.vehicle_title} ({_dates(b)}) was cancelled by the {cancelled_by}.",
    ]
    if b.cancellation_reason:
        lines.append(f"Reason: {b.cancellation_reason}")
    if refund > 0:
        lines.append(f"Refund: {format_money(refund)}, processed within 5-10 business days.")
    lines.append("\nGoRentals")
    return f"Booking cancelled - {b.vehicle_title}", "\n".join(lines) + "\n"


def reminder_lines(kind: NotificationType, b: models.Booking) -> List[tuple]:
    """(recipient, title, message) pairs for pickup/return reminders."""
    if kind == NotificationType.PICKUP_REMINDER:
        day = b.start_date.strftime("%A %d %B")
        return [
            (b.renter_email, "Pickup reminder", f"Tomorrow ({day}) you pick up {b.vehicle_title}."),
            (b.owner_email, "Handover reminder", f"Tomorrow ({day}) you hand over {b.vehicle_title} to {b.renter_name}."),
        ]
    day = b.end_date.strftime("%A %d %B")
    return [
        (b.renter_email, "Return reminder", f"Your rental of {b.vehicle_title} ends tomorrow ({day}). Please return it on time."),
        (b.owner_email, "Return reminder", f"Tomorrow ({day}) {b.renter_name} returns {b.vehicle_title}."),
    ]

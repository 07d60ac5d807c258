# PDF invoice rendering for paid bookings (fpdf2).
from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

from fpdf import FPDF

from . import models
from .pricing import format_money

# Core PDF fonts only encode Latin-1; names and titles need a Unicode TTF
FONT_FAMILY = "lato"
FONT_PATH = Path(__file__).resolve().parent / "fonts" / "Lato-Regular.ttf"


def invoice_number(booking: models.Booking) -> str:
    return booking.id[:8].upper()


def render_invoice(booking: models.Booking, issued_on: Optional[date] = None) -> bytes:
    """Render the booking's invoice and return the PDF bytes."""
    issued_on = issued_on or date.today()
    pdf = FPDF()
    pdf.add_font(FONT_FAMILY, fname=str(FONT_PATH))
    pdf.add_page()

    # Header band
    pdf.set_fill_color(20, 184, 166)
    pdf.rect(0, 0, 210, 40, style="F")
    pdf.set_text_color(255, 255, 255)
    pdf.set_font(FONT_FAMILY, size=24)
    pdf.text(20, 25, "GoRentals")
    pdf.set_font(FONT_FAMILY, size=10)
    pdf.text(20, 32, "Rental invoice")
    pdf.text(140, 25, f"Invoice #{invoice_number(booking)}")
    pdf.text(140, 32, f"Date: {issued_on.isoformat()}")

    pdf.set_text_color(0, 0, 0)
    pdf.set_xy(20, 50)
    pdf.set_font(FONT_FAMILY, size=12)
    pdf.cell(0, 7, "Billed to:", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font(FONT_FAMILY, size=10)
    pdf.set_x(20)
    pdf.cell(0, 5, booking.renter_name or booking.renter_email, new_x="LMARGIN", new_y="NEXT")
    pdf.set_x(20)
    pdf.cell(0, 5, booking.renter_email, new_x="LMARGIN", new_y="NEXT")

    pdf.ln(5)
    pdf.set_x(20)
    pdf.set_font(FONT_FAMILY, size=12)
    pdf.cell(0, 7, "Owner:", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font(FONT_FAMILY, size=10)
    pdf.set_x(20)
    pdf.cell(0, 5, booking.owner_name or booking.owner_email, new_x="LMARGIN", new_y="NEXT")
    pdf.set_x(20)
    pdf.cell(0, 5, booking.owner_email, new_x="LMARGIN", new_y="NEXT")

    pdf.ln(5)
    pdf.set_x(20)
    pdf.set_font(FONT_FAMILY, size=12)
    pdf.cell(0, 7, "Booking details", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font(FONT_FAMILY, size=10)
    for line in (
        f"Vehicle: {booking.vehicle_title}",
        f"Dates: {booking.start_date.isoformat()} to {booking.end_date.isoformat()} ({booking.total_days} days)",
    ):
        pdf.set_x(20)
        pdf.cell(0, 5, line, new_x="LMARGIN", new_y="NEXT")

    pdf.ln(5)
    rows = [
        (f"Rental ({format_money(booking.price_per_day_cents)} x {booking.total_days} days)", booking.subtotal_cents),
        ("Service fee", booking.platform_fee_cents),
    ]
    if booking.extras_total_cents:
        rows.append(("Extras", booking.extras_total_cents))
    if booking.insurance_cost_cents:
        rows.append((f"Insurance ({booking.insurance_type})", booking.insurance_cost_cents))
    if booking.discount_cents:
        rows.append((f"Discount ({booking.coupon_code})", -booking.discount_cents))
    rows.append(("Security deposit (refundable)", booking.security_deposit_cents))

    for label, cents in rows:
        pdf.set_x(20)
        pdf.cell(130, 6, label)
        pdf.cell(40, 6, format_money(cents), align="R", new_x="LMARGIN", new_y="NEXT")

    pdf.set_x(20)
    pdf.set_font(FONT_FAMILY, size=11)
    pdf.cell(130, 8, "Total")
    pdf.cell(40, 8, format_money(booking.total_cents), align="R", new_x="LMARGIN", new_y="NEXT")

    return bytes(pdf.output())

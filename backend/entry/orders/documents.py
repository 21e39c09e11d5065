"""
Ticket artefacts: QR PNGs and the printable PDF attached to confirmation emails.
"""

from __future__ import annotations

import io
from typing import Iterable

import qrcode
from reportlab.lib.pagesizes import A6, landscape
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from entry.core.money import format_amount


def build_qr_png(data: str, *, box_size: int = 10, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        box_size=box_size,
        border=border,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _event_date_line(event) -> str:
    parts = []
    if event.date_start:
        parts.append(event.date_start.strftime("%a %d %b %Y, %H:%M"))
    if event.doors_time:
        parts.append(f"Doors {event.doors_time}")
    return " | ".join(parts)


def build_tickets_pdf(order, tickets: Iterable, *, org_name: str) -> bytes:
    """One landscape A6 page per ticket, each with its scannable QR code."""
    buf = io.BytesIO()
    pagesize = landscape(A6)
    c = canvas.Canvas(buf, pagesize=pagesize)
    width, height = pagesize
    margin = 8 * mm
    event = order.event

    for ticket in tickets:
        x = margin
        y = height - margin - 4 * mm

        c.setFont("Helvetica-Bold", 13)
        c.drawString(x, y, (event.name or "")[:40])
        y -= 6 * mm

        c.setFont("Helvetica", 8)
        date_line = _event_date_line(event)
        if date_line:
            c.drawString(x, y, date_line)
            y -= 4.5 * mm
        if event.venue_name:
            c.drawString(x, y, event.venue_name[:55])
            y -= 4.5 * mm

        y -= 2 * mm
        c.setFont("Helvetica-Bold", 10)
        ticket_name = ticket.ticket_type.name if ticket.ticket_type else "Ticket"
        c.drawString(x, y, ticket_name[:40])
        y -= 5 * mm

        c.setFont("Helvetica", 8)
        holder = " ".join(
            p for p in [ticket.holder_first_name, ticket.holder_last_name] if p
        )
        if holder:
            c.drawString(x, y, holder[:45])
            y -= 4.5 * mm
        if ticket.merch_size:
            merch_name = (ticket.ticket_type.merch_name if ticket.ticket_type else None) or "Merch"
            c.drawString(x, y, f"{merch_name}: size {ticket.merch_size}")
            y -= 4.5 * mm

        c.setFont("Helvetica", 7)
        c.drawString(x, margin + 5 * mm, f"Order {order.order_number}")
        c.drawString(x, margin, f"{org_name} | {format_amount(order.total, order.currency)}")

        qr_size = 40 * mm
        qr_img = ImageReader(io.BytesIO(build_qr_png(ticket.ticket_code, box_size=6)))
        c.drawImage(qr_img, width - margin - qr_size, height - margin - qr_size, width=qr_size, height=qr_size)
        c.setFont("Courier-Bold", 8)
        c.drawCentredString(width - margin - qr_size / 2, height - margin - qr_size - 4 * mm, ticket.ticket_code)

        c.showPage()

    c.save()
    buf.seek(0)
    return buf.read()

"""
Door scanning and merch collection.

Marking a ticket used is a conditional UPDATE (status must still be valid),
so two scanners hitting the same code at once admit it only once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from entry.core.metrics import TICKET_SCANS_TOTAL
from entry.core.time import utcnow
from entry.models.enums import TicketStatusEnum
from entry.models.orders import Ticket
from entry.tenancy.scoping import scoped_query


logger = logging.getLogger(__name__)

SCAN_VALID = "valid"
SCAN_INVALID = "invalid"
SCAN_ALREADY_USED = "already_used"
SCAN_WRONG_EVENT = "wrong_event"


@dataclass
class ScanResult:
    status: str
    http_status: int
    ticket: Optional[Ticket] = None
    message: Optional[str] = None


def normalize_ticket_code(code: str) -> str:
    return (code or "").strip().upper()


def get_ticket_by_code(db: Session, org_id: int, code: str) -> Optional[Ticket]:
    return scoped_query(db, Ticket, org_id).filter(Ticket.ticket_code == normalize_ticket_code(code)).first()


def ticket_summary(ticket: Ticket, status: str) -> dict[str, Any]:
    name = " ".join(p for p in [ticket.holder_first_name, ticket.holder_last_name] if p) or None
    return {
        "status": status,
        "ticket_code": ticket.ticket_code,
        "ticket_type": ticket.ticket_type.name if ticket.ticket_type else None,
        "holder_name": name,
        "merch_size": ticket.merch_size,
        "merch_collected": bool(ticket.merch_collected),
        "order_number": ticket.order.order_number if ticket.order else None,
        "scanned_at": ticket.scanned_at,
        "scanned_by": ticket.scanned_by,
    }


def scan_ticket(
    db: Session,
    org_id: int,
    code: str,
    *,
    scanned_by: Optional[str] = None,
    location: Optional[str] = None,
    event_id: Optional[int] = None,
) -> ScanResult:
    ticket = get_ticket_by_code(db, org_id, code)
    if ticket is None:
        result = ScanResult(status=SCAN_INVALID, http_status=404, message="Ticket not found")
    elif event_id is not None and ticket.event_id != event_id:
        result = ScanResult(status=SCAN_WRONG_EVENT, http_status=400, ticket=ticket, message="Ticket is for a different event")
    elif ticket.status == TicketStatusEnum.USED:
        result = ScanResult(status=SCAN_ALREADY_USED, http_status=409, ticket=ticket, message="Ticket already scanned")
    elif ticket.status != TicketStatusEnum.VALID:
        result = ScanResult(
            status=ticket.status.value,
            http_status=400,
            ticket=ticket,
            message=f"Ticket is {ticket.status.value}",
        )
    else:
        now = utcnow()
        updated = (
            db.query(Ticket)
            .filter(Ticket.id == ticket.id, Ticket.status == TicketStatusEnum.VALID)
            .update(
                {
                    Ticket.status: TicketStatusEnum.USED,
                    Ticket.scanned_at: now,
                    Ticket.scanned_by: scanned_by,
                    Ticket.scan_location: location,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(ticket)
        if updated:
            result = ScanResult(status=SCAN_VALID, http_status=200, ticket=ticket)
        else:
            result = ScanResult(status=SCAN_ALREADY_USED, http_status=409, ticket=ticket, message="Ticket already scanned")

    TICKET_SCANS_TOTAL.labels(result.status).inc()
    logger.info(
        "ticket.scanned",
        extra={"org_id": org_id, "ticket_code": normalize_ticket_code(code), "outcome": result.status},
    )
    return result


def collect_merch(db: Session, ticket: Ticket) -> Ticket:
    """Raises ValueError when there is nothing (left) to collect."""
    if not ticket.merch_size:
        raise ValueError("This ticket has no merch")
    if ticket.merch_collected:
        raise ValueError("Merch already collected")
    updated = (
        db.query(Ticket)
        .filter(Ticket.id == ticket.id, Ticket.merch_collected.is_(False))
        .update({Ticket.merch_collected: True, Ticket.merch_collected_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    db.refresh(ticket)
    if not updated:
        raise ValueError("Merch already collected")
    return ticket

# Door staff endpoints: scan, merch pickup, guest list. QR images are public
# so the buyer's "view tickets" page can render them from the code alone.

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from entry.core.db import get_db
from entry.crud.events import get_event
from entry.crud.guest_list import add_guest, check_in_guest, guest_list_summary, list_guests, remove_guest
from entry.models.enums import RoleEnum
from entry.models.guest_list import GuestListEntry
from entry.models.organizations import Organization
from entry.orders.documents import build_qr_png
from entry.orders.scanning import collect_merch, get_ticket_by_code, normalize_ticket_code, scan_ticket, ticket_summary
from entry.schemas.tickets import GuestCheckIn, GuestCreate, GuestListResponse, GuestRead, ScanRequest, ScanResponse
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import get_public_org, require_org_context, require_org_role
from entry.tenancy.scoping import get_org_owned_or_404


router = APIRouter(tags=["tickets"])

_any_member = require_org_context()
_admin = require_org_role([RoleEnum.ADMIN])


@router.post("/tickets/{code}/scan", response_model=ScanResponse)
def scan(
    code: str,
    payload: ScanRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    result = scan_ticket(
        db,
        ctx.org_id,
        code,
        scanned_by=payload.scanned_by or ctx.actor,
        location=payload.location,
        event_id=payload.event_id,
    )
    if result.http_status == status.HTTP_200_OK:
        return ticket_summary(result.ticket, result.status)
    content = {"status": result.status, "ticket_code": normalize_ticket_code(code), "error": result.message}
    if result.ticket is not None:
        content = {**ticket_summary(result.ticket, result.status), "error": result.message}
    return JSONResponse(
        status_code=result.http_status,
        content=jsonable_encoder(content),
        headers={"X-Error-Code": result.status},
    )


@router.post("/tickets/{code}/merch", response_model=ScanResponse)
def merch_pickup(
    code: str,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    ticket = get_ticket_by_code(db, ctx.org_id, code)
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    if not ticket.merch_size:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This ticket has no merch")
    try:
        ticket = collect_merch(db, ticket)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return ticket_summary(ticket, ticket.status.value)


@router.get("/tickets/{code}/qr.png")
def ticket_qr(
    code: str,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
):
    ticket = get_ticket_by_code(db, org.id, code)
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return Response(
        content=build_qr_png(ticket.ticket_code),
        media_type="image/png",
        headers={"Cache-Control": "private, max-age=86400"},
    )


def _event_or_404(db: Session, org_id: int, event_id: int):
    event = get_event(db, org_id, event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event


@router.get("/events/{event_id}/guest-list", response_model=GuestListResponse)
def get_guest_list(
    event_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    _event_or_404(db, ctx.org_id, event_id)
    entries = list_guests(db, ctx.org_id, event_id)
    return {"entries": entries, "summary": guest_list_summary(entries)}


@router.post("/events/{event_id}/guest-list", response_model=GuestRead, status_code=status.HTTP_201_CREATED)
def post_guest(
    event_id: int,
    payload: GuestCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    _event_or_404(db, ctx.org_id, event_id)
    return add_guest(db, org_id=ctx.org_id, event_id=event_id, payload=payload.model_dump(), added_by=ctx.actor)


@router.delete("/guest-list/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_guest(
    entry_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    remove_guest(db, get_org_owned_or_404(db, GuestListEntry, ctx.org_id, entry_id))


@router.post("/guest-list/{entry_id}/check-in", response_model=GuestRead)
def guest_check_in(
    entry_id: int,
    payload: GuestCheckIn,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    entry = get_org_owned_or_404(db, GuestListEntry, ctx.org_id, entry_id)
    try:
        return check_in_guest(db, entry, count=payload.count)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

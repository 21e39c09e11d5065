from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from entry.core.db import get_db
from entry.crud.events import (
    archive_ticket_type,
    cancel_event,
    create_event,
    create_ticket_type,
    get_event,
    get_event_by_slug,
    list_events,
    list_ticket_types,
    update_event,
    update_ticket_type,
)
from entry.models.enums import EventStatusEnum, RoleEnum
from entry.models.events import TicketType
from entry.models.organizations import Organization
from entry.orders.visibility import MODE_SEQUENTIAL, is_sold_out, sequential_group_tickets, visible_ticket_types
from entry.schemas.events import (
    EventCreate,
    EventDetail,
    EventRead,
    EventUpdate,
    PublicEvent,
    PublicTicketType,
    TicketTypeCreate,
    TicketTypeRead,
    TicketTypeUpdate,
)
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import get_public_org, require_org_context, require_org_role
from entry.tenancy.scoping import get_org_owned_or_404


router = APIRouter(tags=["events"])

_any_member = require_org_context()
_admin = require_org_role([RoleEnum.ADMIN])


def _event_or_404(db: Session, org_id: int, event_id: int):
    event = get_event(db, org_id, event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event


def _public_ticket(tt: TicketType) -> PublicTicketType:
    item = PublicTicketType.model_validate(tt)
    item.sold_out = is_sold_out(tt)
    return item


@router.get("/events", response_model=list[EventRead])
def get_events(
    status_filter: EventStatusEnum | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_events(db, ctx.org_id, status=status_filter)


@router.post("/events", response_model=EventDetail, status_code=status.HTTP_201_CREATED)
def post_event(
    payload: EventCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    return create_event(db, org_id=ctx.org_id, payload=payload.model_dump())


@router.get("/events/{event_id}", response_model=EventDetail)
def get_event_detail(
    event_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return _event_or_404(db, ctx.org_id, event_id)


@router.patch("/events/{event_id}", response_model=EventDetail)
def patch_event(
    event_id: int,
    payload: EventUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    event = _event_or_404(db, ctx.org_id, event_id)
    return update_event(db, event, changes=payload.model_dump(exclude_unset=True))


@router.delete("/events/{event_id}", response_model=EventRead)
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    # Events with orders are never deleted, only cancelled.
    return cancel_event(db, _event_or_404(db, ctx.org_id, event_id))


@router.get("/events/{event_id}/ticket-types", response_model=list[TicketTypeRead])
def get_ticket_types(
    event_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    _event_or_404(db, ctx.org_id, event_id)
    return list_ticket_types(db, ctx.org_id, event_id)


@router.post(
    "/events/{event_id}/ticket-types",
    response_model=TicketTypeRead,
    status_code=status.HTTP_201_CREATED,
)
def post_ticket_type(
    event_id: int,
    payload: TicketTypeCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    event = _event_or_404(db, ctx.org_id, event_id)
    if payload.min_per_order > payload.max_per_order:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="min_per_order exceeds max_per_order")
    return create_ticket_type(db, event=event, payload=payload.model_dump())


@router.patch("/ticket-types/{ticket_type_id}", response_model=TicketTypeRead)
def patch_ticket_type(
    ticket_type_id: int,
    payload: TicketTypeUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    ticket_type = get_org_owned_or_404(db, TicketType, ctx.org_id, ticket_type_id)
    changes = payload.model_dump(exclude_unset=True)
    capacity = changes.get("capacity")
    if capacity and capacity < (ticket_type.sold or 0):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Capacity cannot be lower than tickets already sold ({ticket_type.sold})",
        )
    return update_ticket_type(db, ticket_type, changes=changes)


@router.delete("/ticket-types/{ticket_type_id}", response_model=TicketTypeRead)
def delete_ticket_type(
    ticket_type_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    ticket_type = get_org_owned_or_404(db, TicketType, ctx.org_id, ticket_type_id)
    return archive_ticket_type(db, ticket_type)


@router.get("/public/events/{slug}", response_model=PublicEvent)
def public_event(
    slug: str,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
):
    event = get_event_by_slug(db, org.id, slug)
    if event is None or event.status not in (EventStatusEnum.LIVE, EventStatusEnum.PAST):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")

    release_mode = event.group_release_mode or {}
    sequential_groups = {
        name: [_public_ticket(tt) for tt in sequential_group_tickets(event.ticket_types, name)]
        for name, mode in release_mode.items()
        if mode == MODE_SEQUENTIAL
    }
    return PublicEvent(
        id=event.id,
        slug=event.slug,
        name=event.name,
        description=event.description,
        venue_name=event.venue_name,
        venue_address=event.venue_address,
        city=event.city,
        date_start=event.date_start,
        date_end=event.date_end,
        doors_time=event.doors_time,
        age_restriction=event.age_restriction,
        currency=event.currency,
        payment_method=event.payment_method,
        ticket_types=[_public_ticket(tt) for tt in visible_ticket_types(event.ticket_types, release_mode)],
        sequential_groups=sequential_groups,
    )

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from entry.core.codes import slugify
from entry.models.enums import EventStatusEnum, TicketTypeStatusEnum
from entry.models.events import Event, TicketType
from entry.tenancy.scoping import scoped_query


def ensure_unique_event_slug(db: Session, org_id: int, base_slug: str, *, exclude_id: Optional[int] = None) -> str:
    slug = base_slug
    suffix = 2
    while True:
        query = scoped_query(db, Event, org_id).filter(Event.slug == slug)
        if exclude_id is not None:
            query = query.filter(Event.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f"{base_slug}-{suffix}"
        suffix += 1


def list_events(db: Session, org_id: int, *, status: str | None = None) -> list[Event]:
    query = scoped_query(db, Event, org_id)
    if status:
        query = query.filter(Event.status == status)
    return query.order_by(Event.date_start.desc(), Event.id.desc()).all()


def get_event(db: Session, org_id: int, event_id: int) -> Event | None:
    return scoped_query(db, Event, org_id).filter(Event.id == event_id).first()


def get_event_by_slug(db: Session, org_id: int, slug: str) -> Event | None:
    return scoped_query(db, Event, org_id).filter(Event.slug == slug).first()


def create_event(db: Session, *, org_id: int, payload: dict) -> Event:
    data = dict(payload)
    data["slug"] = ensure_unique_event_slug(db, org_id, slugify(data.get("slug") or data["name"], fallback="event"))
    if data.get("currency"):
        data["currency"] = data["currency"].upper()
    event = Event(org_id=org_id, **data)
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def update_event(db: Session, event: Event, *, changes: dict) -> Event:
    if changes.get("slug"):
        changes["slug"] = ensure_unique_event_slug(
            db, event.org_id, slugify(changes["slug"], fallback="event"), exclude_id=event.id
        )
    if changes.get("currency"):
        changes["currency"] = changes["currency"].upper()
    for key, value in changes.items():
        setattr(event, key, value)
    db.commit()
    db.refresh(event)
    return event


def cancel_event(db: Session, event: Event) -> Event:
    event.status = EventStatusEnum.CANCELLED
    db.commit()
    db.refresh(event)
    return event


def list_ticket_types(db: Session, org_id: int, event_id: int) -> list[TicketType]:
    return (
        scoped_query(db, TicketType, org_id)
        .filter(TicketType.event_id == event_id)
        .order_by(TicketType.sort_order.asc(), TicketType.id.asc())
        .all()
    )


def get_ticket_types_by_ids(db: Session, org_id: int, ids: list[int]) -> dict[int, TicketType]:
    if not ids:
        return {}
    rows = scoped_query(db, TicketType, org_id).filter(TicketType.id.in_(ids)).all()
    return {row.id: row for row in rows}


def create_ticket_type(db: Session, *, event: Event, payload: dict) -> TicketType:
    data = dict(payload)
    if data.get("sort_order") is None:
        data["sort_order"] = len(list_ticket_types(db, event.org_id, event.id))
    ticket_type = TicketType(org_id=event.org_id, event_id=event.id, **data)
    db.add(ticket_type)
    db.commit()
    db.refresh(ticket_type)
    return ticket_type


def update_ticket_type(db: Session, ticket_type: TicketType, *, changes: dict) -> TicketType:
    for key, value in changes.items():
        setattr(ticket_type, key, value)
    db.commit()
    db.refresh(ticket_type)
    return ticket_type


def archive_ticket_type(db: Session, ticket_type: TicketType) -> TicketType:
    # Sold tickets reference the type, so it is never deleted.
    ticket_type.status = TicketTypeStatusEnum.ARCHIVED
    db.commit()
    db.refresh(ticket_type)
    return ticket_type

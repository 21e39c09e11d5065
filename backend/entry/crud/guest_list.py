from __future__ import annotations

from sqlalchemy.orm import Session

from entry.core.time import utcnow
from entry.models.guest_list import GuestListEntry
from entry.tenancy.scoping import scoped_query


def list_guests(db: Session, org_id: int, event_id: int) -> list[GuestListEntry]:
    return (
        scoped_query(db, GuestListEntry, org_id)
        .filter(GuestListEntry.event_id == event_id)
        .order_by(GuestListEntry.name.asc(), GuestListEntry.id.asc())
        .all()
    )


def add_guest(db: Session, *, org_id: int, event_id: int, payload: dict, added_by: str | None = None) -> GuestListEntry:
    entry = GuestListEntry(org_id=org_id, event_id=event_id, added_by=added_by, **payload)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def remove_guest(db: Session, entry: GuestListEntry) -> None:
    db.delete(entry)
    db.commit()


def check_in_guest(db: Session, entry: GuestListEntry, *, count: int = 1) -> GuestListEntry:
    """Admit up to `count` more people from the entry; never beyond its qty."""
    remaining = max(0, entry.qty - entry.checked_in_count)
    if remaining <= 0:
        raise ValueError("All guests on this entry are already checked in")
    entry.checked_in_count += min(max(count, 1), remaining)
    entry.checked_in = entry.checked_in_count >= entry.qty
    entry.checked_in_at = utcnow()
    db.commit()
    db.refresh(entry)
    return entry


def guest_list_summary(entries: list[GuestListEntry]) -> dict:
    return {
        "entries": len(entries),
        "total_guests": sum(entry.qty for entry in entries),
        "checked_in": sum(entry.checked_in_count for entry in entries),
    }

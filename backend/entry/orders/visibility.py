"""
Sequential release: a group in "sequential" mode reveals one ticket at a time.

Only the first ticket (by sort_order) that is not sold out is shown to buyers.
When it sells out the next one appears. Nothing is scheduled; visibility is
computed from capacity and sold on every read.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from entry.models.enums import TicketTypeStatusEnum


UNGROUPED_KEY = "__ungrouped__"
MODE_ALL = "all"
MODE_SEQUENTIAL = "sequential"


def is_sold_out(ticket_type) -> bool:
    capacity = ticket_type.capacity
    return capacity is not None and capacity > 0 and (ticket_type.sold or 0) >= capacity


def group_key(ticket_type) -> str:
    return ticket_type.group_name or UNGROUPED_KEY


def _status(ticket_type) -> str:
    status = ticket_type.status
    return status.value if isinstance(status, TicketTypeStatusEnum) else str(status)


def _sorted(ticket_types: Iterable) -> list:
    return sorted(ticket_types, key=lambda tt: (tt.sort_order or 0, tt.id or 0))


def visible_ticket_types(ticket_types: Iterable, release_mode: Optional[Mapping[str, str]]) -> list:
    active = _sorted(tt for tt in ticket_types if _status(tt) == TicketTypeStatusEnum.ACTIVE.value)
    if not release_mode:
        return active

    groups: dict[str, list] = {}
    for tt in active:
        groups.setdefault(group_key(tt), []).append(tt)

    visible = []
    for name, members in groups.items():
        if release_mode.get(name, MODE_ALL) != MODE_SEQUENTIAL:
            visible.extend(members)
            continue
        # Sold-out tickets are omitted; the roadmap comes from sequential_group_tickets.
        for tt in members:
            if not is_sold_out(tt):
                visible.append(tt)
                break
    return _sorted(visible)


def sequential_group_tickets(ticket_types: Iterable, group_name: Optional[str]) -> list:
    """Every non-archived ticket in the group, in release order."""
    key = group_name or UNGROUPED_KEY
    return _sorted(
        tt
        for tt in ticket_types
        if group_key(tt) == key and _status(tt) != TicketTypeStatusEnum.ARCHIVED.value
    )


def validate_sequential_purchase(
    ticket_type,
    all_ticket_types: Iterable,
    release_mode: Optional[Mapping[str, str]],
) -> Optional[str]:
    """Error message when `ticket_type` is not released yet, else None."""
    if not release_mode:
        return None
    key = group_key(ticket_type)
    if release_mode.get(key) != MODE_SEQUENTIAL:
        return None

    members = _sorted(
        tt
        for tt in all_ticket_types
        if group_key(tt) == key and _status(tt) == TicketTypeStatusEnum.ACTIVE.value
    )
    for tt in members:
        if tt.id == ticket_type.id:
            break
        if not is_sold_out(tt):
            return f'"{ticket_type.name}" is not yet available. "{tt.name}" must sell out first.'
    return None

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db
from entry.core.rate_limit import rate_limit
from entry.models.enums import CartStatusEnum
from entry.models.organizations import Organization
from entry.orders.carts import cart_stats, capture_cart, list_carts, unsubscribe_cart
from entry.orders.checkout import load_event, validate_items
from entry.schemas.orders import CartCapture, CartRead
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import get_public_org, require_org_context


router = APIRouter(tags=["abandoned-carts"])

_any_member = require_org_context()

capture_limiter = rate_limit("cart_capture", settings.CHECKOUT_RATE_LIMIT, settings.CHECKOUT_RATE_WINDOW_SECONDS)


@router.get("/abandoned-carts", response_model=list[CartRead])
def get_carts(
    status_filter: Optional[CartStatusEnum] = Query(default=None, alias="status"),
    event_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_carts(
        db,
        ctx.org_id,
        status=status_filter,
        event_id=event_id,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/abandoned-carts/stats")
def get_cart_stats(db: Session = Depends(get_db), ctx: RequestContext = Depends(_any_member)):
    return cart_stats(db, ctx.org_id)


@router.post("/abandoned-carts/capture", response_model=CartRead)
def capture(
    payload: CartCapture,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(capture_limiter),
):
    """Checkout calls this once the buyer has typed an email."""
    event = load_event(db, org.id, payload.event_id)
    items = [item.model_dump() for item in payload.items]
    lines, ticket_types = validate_items(db, event, items)
    cart_items = [
        {
            "ticket_type_id": line.ticket_type_id,
            "name": ticket_types[line.ticket_type_id].name,
            "price": float(ticket_types[line.ticket_type_id].price),
            "qty": line.qty,
            "merch_size": line.merch_size,
        }
        for line in lines
    ]
    return capture_cart(
        db,
        org_id=org.id,
        event=event,
        email=payload.email,
        items=cart_items,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )


@router.get("/abandoned-carts/unsubscribe")
def unsubscribe(token: str, db: Session = Depends(get_db)):
    cart = unsubscribe_cart(db, token)
    if cart is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Link not found or expired")
    return {"unsubscribed": True}

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from entry.core.codes import generate_test_payment_ref
from entry.core.db import get_db
from entry.crud.events import get_event
from entry.models.enums import EventStatusEnum, OrderStatusEnum, PaymentMethodEnum, RoleEnum
from entry.orders.checkout import build_quote
from entry.orders.service import (
    CustomerInput,
    PaymentInput,
    create_order,
    export_orders_csv,
    get_order,
    list_orders,
    order_pdf,
    refund_order,
    send_order_confirmation,
)
from entry.schemas.orders import (
    AdminOrderCreate,
    OrderCreateResponse,
    OrderDetail,
    OrderRead,
    RefundRequest,
    RefundResponse,
)
from entry.tenancy.context import RequestContext
from entry.tenancy.dependencies import require_org_context, require_org_role


router = APIRouter(tags=["orders"])

_any_member = require_org_context()
_admin = require_org_role([RoleEnum.ADMIN])


def _order_or_404(db: Session, org_id: int, order_id: int):
    order = get_order(db, org_id, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@router.get("/orders", response_model=list[OrderRead])
def get_orders(
    event_id: Optional[int] = None,
    status_filter: Optional[OrderStatusEnum] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return list_orders(
        db,
        ctx.org_id,
        event_id=event_id,
        status=status_filter,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/orders/export")
def export_orders(
    event_id: Optional[int] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    csv_data = export_orders_csv(db, ctx.org_id, event_id=event_id)
    filename = f"orders-{event_id}.csv" if event_id else "orders.csv"
    return Response(
        content=csv_data,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/orders", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
def create_admin_order(
    payload: AdminOrderCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    """Test, comp and cash-at-door orders. Card payments only come through checkout."""
    event = get_event(db, ctx.org_id, payload.event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    if event.status == EventStatusEnum.CANCELLED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event is cancelled")

    quote = build_quote(db, event, [item.model_dump() for item in payload.items], discount_code=payload.discount_code)
    total_charged = 0.0 if payload.payment_method == PaymentMethodEnum.FREE else quote.total
    result = create_order(
        db,
        ctx.org_id,
        event,
        quote.lines,
        CustomerInput(
            email=payload.customer.email,
            first_name=payload.customer.first_name,
            last_name=payload.customer.last_name,
            phone=payload.customer.phone,
        ),
        PaymentInput(
            method=payload.payment_method,
            ref=payload.payment_ref or generate_test_payment_ref(),
            total_charged=total_charged,
        ),
        vat=quote.vat,
        discount_code=payload.discount_code,
        send_email=payload.send_email,
    )
    return {"order": result.order, "created": result.created}


@router.get("/orders/{order_id}", response_model=OrderDetail)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    return _order_or_404(db, ctx.org_id, order_id)


@router.post("/orders/{order_id}/refund", response_model=RefundResponse)
def refund(
    order_id: int,
    payload: RefundRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_admin),
):
    order = _order_or_404(db, ctx.org_id, order_id)
    return refund_order(db, order, reason=payload.reason, actor=ctx.actor)


@router.post("/orders/{order_id}/resend-email")
def resend_confirmation(
    order_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    order = _order_or_404(db, ctx.org_id, order_id)
    if order.status != OrderStatusEnum.COMPLETED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only completed orders can be resent")
    log = send_order_confirmation(db, order)
    return {"status": log.status.value, "to": log.to_email}


@router.get("/orders/{order_id}/tickets.pdf")
def download_tickets(
    order_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(_any_member),
):
    order = _order_or_404(db, ctx.org_id, order_id)
    return Response(
        content=order_pdf(db, order),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={order.order_number}-tickets.pdf"},
    )

"""
Order creation and refunds.

create_order is the only code path that writes orders, items and tickets.
Checkout confirmation, the Stripe webhook and the admin order route all go
through it, and it is idempotent on the payment reference so the webhook and
the browser confirming the same PaymentIntent end up with one order.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import stripe
from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entry.core.codes import format_order_number, generate_ticket_code, parse_order_sequence
from entry.core.metrics import ORDER_NUMBER_RETRIES_TOTAL, ORDERS_CREATED_TOTAL, REFUNDS_TOTAL
from entry.core.money import DEFAULT_VAT_SETTINGS, calculate_checkout_vat, round_half_up
from entry.core.time import utcnow
from entry.crud.customers import refresh_customer_stats, upsert_customer
from entry.crud.discounts import get_discount_by_code, normalize_code
from entry.crud.events import get_ticket_types_by_ids
from entry.crud.organizations import get_org_by_id
from entry.crud.settings import SETTINGS_VAT, get_setting
from entry.emails import client as email_client
from entry.emails.templates import order_confirmation
from entry.models.abandoned_carts import AbandonedCart
from entry.models.customers import Customer
from entry.models.discounts import Discount
from entry.models.enums import (
    CartStatusEnum,
    OrderStatusEnum,
    PaymentMethodEnum,
    TicketStatusEnum,
)
from entry.models.events import Event, TicketType
from entry.models.orders import Order, OrderItem, Ticket
from entry.orders.documents import build_tickets_pdf
from entry.payments import gateway
from entry.reps.attribution import attribute_sale_to_rep, reverse_rep_attribution
from entry.tenancy.scoping import scoped_query


logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 3


class OrderError(Exception):
    code = "order_error"

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class OrderCreationError(OrderError):
    code = "order_creation_failed"


class RefundError(OrderError):
    code = "refund_failed"


@dataclass
class OrderItemInput:
    ticket_type_id: int
    qty: int
    merch_size: Optional[str] = None


@dataclass
class CustomerInput:
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class PaymentInput:
    method: PaymentMethodEnum
    ref: str
    # Major units actually charged (Stripe amount / 100). None = charge the subtotal.
    total_charged: Optional[float] = None


@dataclass
class OrderResult:
    order: Order
    created: bool
    rep_attribution: Optional[dict[str, Any]] = None
    warnings: list[str] = field(default_factory=list)


def vat_metadata(db: Session, org_id: int, amount: float) -> Optional[dict[str, Any]]:
    """VAT fields for order metadata, or None when the org does not charge VAT."""
    vat_settings = get_setting(db, org_id, SETTINGS_VAT, DEFAULT_VAT_SETTINGS)
    breakdown = calculate_checkout_vat(amount, vat_settings)
    if breakdown is None:
        return None
    return {
        "vat_amount": breakdown.vat,
        "vat_rate": float(vat_settings.get("vat_rate") or 0),
        "vat_inclusive": bool(vat_settings.get("prices_include_vat", True)),
        "vat_number": vat_settings.get("vat_number") or None,
    }


def get_order_by_payment_ref(db: Session, org_id: int, payment_ref: str) -> Optional[Order]:
    return scoped_query(db, Order, org_id).filter(Order.payment_ref == payment_ref).first()


def get_order(db: Session, org_id: int, order_id: int) -> Optional[Order]:
    return scoped_query(db, Order, org_id).filter(Order.id == order_id).first()


def next_order_sequence(db: Session, org_id: int) -> int:
    # Numbers only ever grow, so the newest row holds the highest one.
    latest = (
        scoped_query(db, Order, org_id)
        .with_entities(Order.order_number)
        .order_by(Order.id.desc())
        .limit(1)
        .scalar()
    )
    return parse_order_sequence(latest) + 1


def _unique_ticket_code(db: Session, prefix: str, taken: set[str]) -> str:
    while True:
        code = generate_ticket_code(prefix)
        if code in taken:
            continue
        if db.query(Ticket.id).filter(Ticket.ticket_code == code).first() is None:
            taken.add(code)
            return code


def _normalize_items(items: Iterable[OrderItemInput | Mapping[str, Any]]) -> list[OrderItemInput]:
    normalized = []
    for item in items:
        if isinstance(item, Mapping):
            item = OrderItemInput(
                ticket_type_id=int(item["ticket_type_id"]),
                qty=int(item.get("qty") or 0),
                merch_size=item.get("merch_size"),
            )
        normalized.append(item)
    return normalized


def _insert_order(
    db: Session,
    *,
    org_id: int,
    prefix: str,
    values: dict[str, Any],
    payment_ref: str,
) -> tuple[Order, bool]:
    """
    Insert with a fresh order number, retrying on collisions.

    Returns (order, created). A payment_ref collision means another request
    already created this order, which is returned instead.
    """
    base_sequence = next_order_sequence(db, org_id)
    for attempt in range(MAX_ORDER_NUMBER_ATTEMPTS):
        order = Order(
            org_id=org_id,
            order_number=format_order_number(prefix, base_sequence + attempt),
            payment_ref=payment_ref,
            **values,
        )
        try:
            with db.begin_nested():
                db.add(order)
                db.flush()
        except IntegrityError:
            existing = db.query(Order).filter(Order.payment_ref == payment_ref).first()
            if existing is not None:
                if existing.org_id != org_id:
                    raise OrderCreationError("Payment reference already used", 409)
                return existing, False
            ORDER_NUMBER_RETRIES_TOTAL.inc()
            logger.warning(
                "order.number_collision",
                extra={"org_id": org_id, "order_number": order.order_number, "attempt": attempt + 1},
            )
            continue
        return order, True
    raise OrderCreationError("Could not allocate an order number, please retry", 503)


def _mark_cart_recovered(db: Session, order: Order, email: str) -> None:
    cart = (
        scoped_query(db, AbandonedCart, order.org_id)
        .filter(
            AbandonedCart.event_id == order.event_id,
            AbandonedCart.email == email,
            AbandonedCart.status == CartStatusEnum.ABANDONED,
        )
        .order_by(AbandonedCart.created_at.desc())
        .first()
    )
    if cart is None:
        return
    cart.status = CartStatusEnum.RECOVERED
    cart.recovered_at = utcnow()
    cart.recovered_order_id = order.id


def create_order(
    db: Session,
    org_id: int,
    event: Event,
    items: Iterable[OrderItemInput | Mapping[str, Any]],
    customer: CustomerInput,
    payment: PaymentInput,
    vat: Optional[Mapping[str, Any]] = None,
    discount_code: Optional[str] = None,
    send_email: bool = True,
) -> OrderResult:
    if event.org_id != org_id:
        raise OrderCreationError("Event not found", 404)
    if not payment.ref:
        raise OrderCreationError("Payment reference is required")

    existing = get_order_by_payment_ref(db, org_id, payment.ref)
    if existing is not None:
        return OrderResult(order=existing, created=False)

    lines = _normalize_items(items)
    if not lines:
        raise OrderCreationError("At least one ticket is required")
    if any(line.qty <= 0 for line in lines):
        raise OrderCreationError("Ticket quantities must be positive")
    ticket_types = get_ticket_types_by_ids(db, org_id, [line.ticket_type_id for line in lines])
    for line in lines:
        tt = ticket_types.get(line.ticket_type_id)
        if tt is None or tt.event_id != event.id:
            raise OrderCreationError(f"Unknown ticket type {line.ticket_type_id}")
        if line.merch_size and tt.merch_sizes and line.merch_size not in tt.merch_sizes:
            raise OrderCreationError(f"Invalid size {line.merch_size} for {tt.name}")

    buyer = upsert_customer(
        db,
        org_id=org_id,
        email=customer.email,
        first_name=customer.first_name,
        last_name=customer.last_name,
        phone=customer.phone,
    )

    subtotal = round_half_up(sum(float(ticket_types[line.ticket_type_id].price) * line.qty for line in lines))
    if payment.total_charged is not None:
        total = round_half_up(payment.total_charged)
        fees = round_half_up(max(0.0, total - subtotal))
    else:
        total = subtotal
        fees = 0.0

    discount: Optional[Discount] = get_discount_by_code(db, org_id, discount_code) if discount_code else None
    metadata: dict[str, Any] = {}
    if discount_code:
        metadata["discount_code"] = discount.code if discount else normalize_code(discount_code)
    if vat:
        metadata.update({key: vat.get(key) for key in ("vat_amount", "vat_rate", "vat_inclusive", "vat_number")})

    org = get_org_by_id(db, org_id)
    prefix = org.order_prefix if org else None
    order, created = _insert_order(
        db,
        org_id=org_id,
        prefix=prefix,
        payment_ref=payment.ref,
        values={
            "event_id": event.id,
            "customer_id": buyer.id,
            "status": OrderStatusEnum.COMPLETED,
            "subtotal": subtotal,
            "fees": fees,
            "total": total,
            "currency": (event.currency or "GBP").upper(),
            "payment_method": PaymentMethodEnum(payment.method),
            "metadata_json": metadata,
        },
    )
    if not created:
        db.commit()
        return OrderResult(order=order, created=False)

    taken: set[str] = set()
    ticket_count = 0
    for line in lines:
        tt = ticket_types[line.ticket_type_id]
        order_item = OrderItem(
            org_id=org_id,
            order_id=order.id,
            ticket_type_id=tt.id,
            qty=line.qty,
            unit_price=tt.price,
            merch_size=line.merch_size,
        )
        db.add(order_item)
        db.flush()
        for _ in range(line.qty):
            db.add(
                Ticket(
                    org_id=org_id,
                    order_id=order.id,
                    order_item_id=order_item.id,
                    event_id=event.id,
                    ticket_type_id=tt.id,
                    customer_id=buyer.id,
                    ticket_code=_unique_ticket_code(db, prefix, taken),
                    status=TicketStatusEnum.VALID,
                    holder_first_name=buyer.first_name,
                    holder_last_name=buyer.last_name,
                    holder_email=buyer.email,
                    merch_size=line.merch_size,
                )
            )
        db.query(TicketType).filter(TicketType.id == tt.id).update(
            {TicketType.sold: TicketType.sold + line.qty},
            synchronize_session=False,
        )
        ticket_count += line.qty

    if discount is not None:
        db.query(Discount).filter(Discount.id == discount.id).update(
            {Discount.used_count: Discount.used_count + 1},
            synchronize_session=False,
        )

    db.flush()
    refresh_customer_stats(db, buyer)
    _mark_cart_recovered(db, order, buyer.email)
    db.commit()
    db.refresh(order)

    ORDERS_CREATED_TOTAL.labels(order.payment_method.value).inc()
    logger.info(
        "order.created",
        extra={
            "org_id": org_id,
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_method": order.payment_method.value,
            "tickets": ticket_count,
        },
    )

    result = OrderResult(order=order, created=True)
    if send_email:
        try:
            send_order_confirmation(db, order)
        except Exception:
            db.rollback()
            logger.exception("order.confirmation_failed", extra={"org_id": org_id, "order_id": order.id})
            result.warnings.append("confirmation_email_failed")
    if discount_code:
        result.rep_attribution = attribute_sale_to_rep(
            db,
            order,
            ticket_count=ticket_count,
            discount_code=discount_code,
        )
    return result


def send_order_confirmation(db: Session, order: Order):
    org = get_org_by_id(db, order.org_id)
    org_name = org.name if org else "Entry"
    pdf_bytes = build_tickets_pdf(order, order.tickets, org_name=org_name)
    message = order_confirmation(order, org_name=org_name, pdf_bytes=pdf_bytes)
    if org and org.support_email:
        message.reply_to = org.support_email
    return email_client.send_email(
        db,
        message,
        org_id=order.org_id,
        metadata={"order_id": order.id, "order_number": order.order_number},
    )


def order_pdf(db: Session, order: Order) -> bytes:
    org = get_org_by_id(db, order.org_id)
    return build_tickets_pdf(order, order.tickets, org_name=org.name if org else "Entry")


def _stripe_account_for(db: Session, order: Order) -> Optional[str]:
    if order.event and order.event.stripe_account_id:
        return order.event.stripe_account_id
    org = get_org_by_id(db, order.org_id)
    return org.stripe_account_id if org else None


def refund_order(
    db: Session,
    order: Order,
    *,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
) -> dict[str, Any]:
    """
    Refund at Stripe first, then release the order's tickets and stats.

    A Stripe failure leaves the database untouched. Stripe reporting the
    charge as already refunded is treated as success so a half-finished
    refund can be completed.
    """
    if order.status == OrderStatusEnum.REFUNDED:
        raise RefundError("Order is already refunded", 400)

    if order.payment_method == PaymentMethodEnum.STRIPE and order.payment_ref:
        try:
            gateway.create_refund(payment_intent=order.payment_ref, stripe_account=_stripe_account_for(db, order))
        except gateway.GatewayNotConfigured as exc:
            raise RefundError("Stripe is not configured", 503) from exc
        except stripe.error.StripeError as exc:
            if "already been refunded" not in str(exc).lower():
                logger.warning(
                    "order.refund_stripe_failed",
                    extra={"org_id": order.org_id, "order_id": order.id, "error": str(exc)},
                )
                raise RefundError(f"Stripe refund failed: {exc.user_message or str(exc)}", 502) from exc
            logger.info("order.refund_already_refunded", extra={"org_id": order.org_id, "order_id": order.id})

    now = utcnow()
    order.status = OrderStatusEnum.REFUNDED
    order.refund_reason = reason
    order.refunded_at = now
    order.metadata_json = {**(order.metadata_json or {}), "refunded_by": actor}

    for ticket in order.tickets:
        ticket.status = TicketStatusEnum.CANCELLED
    for item in order.items:
        db.query(TicketType).filter(TicketType.id == item.ticket_type_id).update(
            {
                TicketType.sold: case(
                    (TicketType.sold >= item.qty, TicketType.sold - item.qty),
                    else_=0,
                )
            },
            synchronize_session=False,
        )
    db.flush()
    customer = db.get(Customer, order.customer_id)
    if customer is not None:
        refresh_customer_stats(db, customer)
    rep_reversal = reverse_rep_attribution(db, order)
    db.commit()
    db.refresh(order)

    REFUNDS_TOTAL.labels(order.payment_method.value).inc()
    logger.info(
        "order.refunded",
        extra={"org_id": order.org_id, "order_id": order.id, "rep_reversed": rep_reversal is not None},
    )
    return {"success": True, "rep_reversal": rep_reversal}


def list_orders(
    db: Session,
    org_id: int,
    *,
    event_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Order]:
    query = scoped_query(db, Order, org_id)
    if event_id is not None:
        query = query.filter(Order.event_id == event_id)
    if status:
        query = query.filter(Order.status == status)
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.join(Customer, Customer.id == Order.customer_id).filter(
            or_(
                func.lower(Order.order_number).like(like),
                Customer.email.like(like),
                func.lower(Customer.first_name).like(like),
                func.lower(Customer.last_name).like(like),
            )
        )
    return query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()


EXPORT_COLUMNS = [
    "order_number",
    "order_status",
    "created_at",
    "customer_email",
    "customer_name",
    "ticket_code",
    "ticket_type",
    "ticket_status",
    "merch_size",
    "unit_price",
    "order_total",
    "currency",
    "payment_method",
    "discount_code",
    "scanned_at",
]


def export_orders_csv(db: Session, org_id: int, *, event_id: Optional[int] = None) -> str:
    """One row per ticket so door staff can work from the sheet."""
    orders = list_orders(db, org_id, event_id=event_id, limit=100000)
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for order in orders:
        customer = order.customer
        name = " ".join(p for p in [customer.first_name, customer.last_name] if p) if customer else ""
        prices = {item.id: item.unit_price for item in order.items}
        for ticket in order.tickets:
            writer.writerow(
                [
                    order.order_number,
                    order.status.value,
                    order.created_at.isoformat() if order.created_at else "",
                    customer.email if customer else "",
                    name,
                    ticket.ticket_code,
                    ticket.ticket_type.name if ticket.ticket_type else "",
                    ticket.status.value,
                    ticket.merch_size or "",
                    f"{prices.get(ticket.order_item_id, 0):.2f}",
                    f"{order.total:.2f}",
                    order.currency,
                    order.payment_method.value,
                    (order.metadata_json or {}).get("discount_code") or "",
                    ticket.scanned_at.isoformat() if ticket.scanned_at else "",
                ]
            )
    return buffer.getvalue()

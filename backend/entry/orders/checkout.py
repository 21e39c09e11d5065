"""
Stripe checkout: quote a basket, create the PaymentIntent, and turn a
succeeded PaymentIntent into an order.

The PaymentIntent metadata carries everything create_order needs, so the
webhook can rebuild the order without the browser (backup path when the
buyer closes the tab before confirm-order runs).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from entry.billing.plans import get_org_plan
from entry.core.money import (
    calculate_application_fee,
    from_smallest_unit,
    round_half_up,
    to_smallest_unit,
)
from entry.crud.discounts import discount_amount, validate_discount
from entry.crud.events import get_event, get_ticket_types_by_ids
from entry.models.discounts import Discount
from entry.models.enums import EventStatusEnum, PaymentMethodEnum, TicketTypeStatusEnum
from entry.models.events import Event, TicketType
from entry.models.organizations import Organization
from entry.orders.service import (
    CustomerInput,
    OrderError,
    OrderItemInput,
    OrderResult,
    PaymentInput,
    create_order,
    vat_metadata,
)
from entry.orders.visibility import validate_sequential_purchase
from entry.payments import gateway


logger = logging.getLogger(__name__)


class CheckoutError(OrderError):
    code = "checkout_failed"


@dataclass
class CheckoutQuote:
    event: Event
    lines: list[OrderItemInput]
    ticket_types: dict[int, TicketType]
    subtotal: float
    discount: Optional[Discount] = None
    discount_amount: float = 0.0
    vat: Optional[dict[str, Any]] = None
    total: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def currency(self) -> str:
        return (self.event.currency or "GBP").lower()

    @property
    def amount(self) -> int:
        return to_smallest_unit(self.total)

    def description(self) -> str:
        parts = [f"{line.qty}x {self.ticket_types[line.ticket_type_id].name}" for line in self.lines]
        return f"{self.event.name}: {', '.join(parts)}"


def _lines(items: Iterable[OrderItemInput | Mapping[str, Any]]) -> list[OrderItemInput]:
    lines = []
    for item in items:
        if isinstance(item, Mapping):
            item = OrderItemInput(
                ticket_type_id=int(item["ticket_type_id"]),
                qty=int(item.get("qty") or 0),
                merch_size=item.get("merch_size"),
            )
        lines.append(item)
    return lines


def load_event(db: Session, org_id: int, event_id: int, *, require_stripe: bool = False) -> Event:
    event = get_event(db, org_id, event_id)
    if event is None:
        raise CheckoutError("Event not found", 404)
    if event.status != EventStatusEnum.LIVE:
        raise CheckoutError("This event is not on sale")
    if require_stripe and event.payment_method != PaymentMethodEnum.STRIPE:
        raise CheckoutError("This event does not use Stripe payments")
    return event


def validate_items(db: Session, event: Event, items) -> tuple[list[OrderItemInput], dict[int, TicketType]]:
    """
    Check the basket against what is actually on sale: status, per-order
    limits, capacity, sequential release and merch sizes.
    """
    lines = _lines(items)
    if not lines:
        raise CheckoutError("At least one ticket is required")
    ticket_types = get_ticket_types_by_ids(db, event.org_id, [line.ticket_type_id for line in lines])
    for line in lines:
        tt = ticket_types.get(line.ticket_type_id)
        if tt is None or tt.event_id != event.id:
            raise CheckoutError(f"Ticket type {line.ticket_type_id} not found")
        if tt.status != TicketTypeStatusEnum.ACTIVE:
            raise CheckoutError(f'"{tt.name}" is not available')
        if line.qty < (tt.min_per_order or 1):
            raise CheckoutError(f'Minimum {tt.min_per_order} per order for "{tt.name}"')
        if tt.max_per_order and line.qty > tt.max_per_order:
            raise CheckoutError(f'Maximum {tt.max_per_order} per order for "{tt.name}"')
        if tt.capacity and (tt.sold or 0) + line.qty > tt.capacity:
            available = max(0, tt.capacity - (tt.sold or 0))
            raise CheckoutError(f'Not enough tickets available for "{tt.name}". Available: {available}')
        sequential_error = validate_sequential_purchase(tt, event.ticket_types, event.group_release_mode)
        if sequential_error:
            raise CheckoutError(sequential_error)
        if tt.includes_merch and tt.merch_sizes and line.merch_size not in tt.merch_sizes:
            raise CheckoutError(f'Please choose a size for "{tt.name}"')
    return lines, ticket_types


def build_quote(
    db: Session,
    event: Event,
    items,
    *,
    discount_code: Optional[str] = None,
) -> CheckoutQuote:
    lines, ticket_types = validate_items(db, event, items)
    subtotal = round_half_up(sum(float(ticket_types[line.ticket_type_id].price) * line.qty for line in lines))
    quote = CheckoutQuote(event=event, lines=lines, ticket_types=ticket_types, subtotal=subtotal)

    after_discount = subtotal
    if discount_code:
        discount, error = validate_discount(
            db,
            event.org_id,
            discount_code,
            event_id=event.id,
            subtotal=subtotal,
            currency=quote.currency,
        )
        if discount is None:
            raise CheckoutError(error or "Invalid discount code")
        quote.discount = discount
        quote.discount_amount = discount_amount(subtotal, discount)
        after_discount = round_half_up(subtotal - quote.discount_amount)

    quote.vat = vat_metadata(db, event.org_id, after_discount)
    if quote.vat and not quote.vat["vat_inclusive"]:
        quote.total = round_half_up(after_discount + quote.vat["vat_amount"])
    else:
        quote.total = after_discount
    return quote


def connected_account(org: Organization, event: Event) -> Optional[str]:
    return event.stripe_account_id or org.stripe_account_id or None


def application_fee(db: Session, org: Organization, event: Event, amount: int) -> int:
    if event.platform_fee_percent is not None:
        return calculate_application_fee(amount, event.platform_fee_percent)
    plan = get_org_plan(db, org.id)
    return calculate_application_fee(amount, float(plan["fee_percent"]), int(plan["min_fee"]))


def intent_metadata(org: Organization, quote: CheckoutQuote, customer: CustomerInput) -> dict[str, str]:
    # Stripe metadata values are strings of at most 500 characters.
    metadata = {
        "org_id": str(org.id),
        "event_id": str(quote.event.id),
        "event_slug": quote.event.slug,
        "customer_email": customer.email.lower(),
        "customer_first_name": customer.first_name or "",
        "customer_last_name": customer.last_name or "",
        "customer_phone": customer.phone or "",
        "items_json": json.dumps(
            [
                {"ticket_type_id": line.ticket_type_id, "qty": line.qty, "merch_size": line.merch_size}
                for line in quote.lines
            ],
            separators=(",", ":"),
        ),
    }
    if quote.discount is not None:
        metadata["discount_code"] = quote.discount.code
    if quote.vat:
        metadata["vat_json"] = json.dumps(quote.vat, separators=(",", ":"))
    return metadata


def create_checkout_intent(
    db: Session,
    org: Organization,
    event: Event,
    items,
    customer: CustomerInput,
    *,
    discount_code: Optional[str] = None,
) -> dict[str, Any]:
    quote = build_quote(db, event, items, discount_code=discount_code)
    if quote.amount <= 0:
        raise CheckoutError("Free orders do not go through card checkout")

    account = connected_account(org, event)
    fee = application_fee(db, org, event, quote.amount) if account else None
    try:
        intent = gateway.create_payment_intent(
            amount=quote.amount,
            currency=quote.currency,
            metadata=intent_metadata(org, quote, customer),
            description=quote.description(),
            receipt_email=customer.email.lower(),
            stripe_account=account,
            application_fee_amount=fee,
        )
    except gateway.GatewayNotConfigured as exc:
        raise CheckoutError("Payments are not configured", 503) from exc

    logger.info(
        "checkout.intent_created",
        extra={"org_id": org.id, "event_id": event.id, "amount": quote.amount, "connected": bool(account)},
    )
    return {
        "client_secret": intent.get("client_secret"),
        "payment_intent_id": intent["id"],
        "stripe_account_id": account,
        "amount": quote.amount,
        "currency": quote.currency,
        "subtotal": quote.subtotal,
        "discount_amount": quote.discount_amount,
        "application_fee": fee or 0,
        "vat": quote.vat,
    }


def _metadata_vat(metadata: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    raw = metadata.get("vat_json")
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def order_from_intent(
    db: Session,
    org_id: int,
    intent,
    *,
    event: Optional[Event] = None,
    send_email: bool = True,
) -> OrderResult:
    """
    Create (or fetch) the order for a succeeded PaymentIntent.

    Items, buyer and discount code are read from the intent metadata only,
    so the order always matches what was quoted and paid for.
    """
    metadata = intent.get("metadata") or {}
    if event is None:
        event = get_event(db, org_id, int(metadata.get("event_id") or 0))
        if event is None:
            raise CheckoutError("Event not found", 404)
    try:
        items = json.loads(metadata.get("items_json") or "[]")
    except ValueError as exc:
        raise CheckoutError("PaymentIntent has no readable items") from exc
    customer = CustomerInput(
        email=metadata.get("customer_email") or intent.get("receipt_email") or "",
        first_name=metadata.get("customer_first_name") or None,
        last_name=metadata.get("customer_last_name") or None,
        phone=metadata.get("customer_phone") or None,
    )
    if not customer.email:
        raise CheckoutError("PaymentIntent has no customer email")

    return create_order(
        db,
        org_id,
        event,
        items,
        customer,
        PaymentInput(
            method=PaymentMethodEnum.STRIPE,
            ref=intent["id"],
            total_charged=from_smallest_unit(int(intent.get("amount_received") or intent.get("amount") or 0)),
        ),
        vat=_metadata_vat(metadata),
        discount_code=metadata.get("discount_code") or None,
        send_email=send_email,
    )

# Public checkout endpoints used by the event page.
# Every failure here is recorded as a payment event so the platform health
# dashboard sees checkout problems even when the buyer just gives up.

import logging

import stripe
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from entry.core import db as db_module
from entry.core.config import settings
from entry.core.db import get_db
from entry.core.money import payment_error_message
from entry.core.rate_limit import client_ip, rate_limit
from entry.models.enums import PaymentEventTypeEnum
from entry.models.organizations import Organization
from entry.orders.checkout import (
    CheckoutError,
    connected_account,
    create_checkout_intent,
    load_event,
    order_from_intent,
)
from entry.orders.service import CustomerInput, OrderError
from entry.payments import gateway
from entry.payments.monitor import log_payment_event
from entry.schemas.orders import (
    ClientCheckoutError,
    ConfirmOrderRequest,
    OrderCreateResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
)
from entry.tenancy.dependencies import get_public_org


logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


def _log_rate_limit_hit(request: Request, ip: str) -> None:
    # Runs before the route body, so it gets its own session.
    db = db_module.SessionLocal()
    try:
        log_payment_event(
            db,
            org_id=getattr(request.state, "org_id", None),
            type=PaymentEventTypeEnum.RATE_LIMIT_HIT,
            ip_address=ip,
            metadata={"path": request.url.path},
        )
    finally:
        db.close()


checkout_limiter = rate_limit(
    "checkout",
    settings.CHECKOUT_RATE_LIMIT,
    settings.CHECKOUT_RATE_WINDOW_SECONDS,
    on_block=_log_rate_limit_hit,
)
client_error_limiter = rate_limit(
    "client_checkout_error",
    settings.CLIENT_ERROR_RATE_LIMIT,
    settings.CLIENT_ERROR_RATE_WINDOW_SECONDS,
)


def _customer(payload) -> CustomerInput:
    return CustomerInput(
        email=payload.customer.email,
        first_name=payload.customer.first_name,
        last_name=payload.customer.last_name,
        phone=payload.customer.phone,
    )


def _customer_email(payload):
    customer = getattr(payload, "customer", None)
    return customer.email if customer is not None else None


def _log_checkout_failure(db: Session, request: Request, org: Organization, payload, exc: Exception) -> None:
    # Buyer mistakes (sold out, bad code) are validations; the rest are errors.
    is_validation = isinstance(exc, OrderError) and exc.status_code < 500
    log_payment_event(
        db,
        org_id=org.id,
        type=PaymentEventTypeEnum.CHECKOUT_VALIDATION if is_validation else PaymentEventTypeEnum.CHECKOUT_ERROR,
        event_id=getattr(payload, "event_id", None),
        stripe_payment_intent_id=getattr(payload, "payment_intent_id", None),
        error_code=getattr(exc, "code", None) or type(exc).__name__,
        error_message=str(exc),
        customer_email=_customer_email(payload),
        ip_address=client_ip(request),
        metadata={"path": request.url.path},
    )


@router.post("/checkout/payment-intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: PaymentIntentRequest,
    request: Request,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(checkout_limiter),
):
    try:
        event = load_event(db, org.id, payload.event_id, require_stripe=True)
        return create_checkout_intent(
            db,
            org,
            event,
            [item.model_dump() for item in payload.items],
            _customer(payload),
            discount_code=payload.discount_code,
        )
    except OrderError as exc:
        db.rollback()
        _log_checkout_failure(db, request, org, payload, exc)
        raise
    except stripe.error.StripeError as exc:
        db.rollback()
        _log_checkout_failure(db, request, org, payload, exc)
        raise CheckoutError(exc.user_message or "Payment could not be started", 502) from exc


@router.post("/checkout/confirm-order", response_model=OrderCreateResponse)
def confirm_order(
    payload: ConfirmOrderRequest,
    request: Request,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(checkout_limiter),
):
    """
    Called by the browser once Stripe.js reports success. Idempotent with
    the webhook: whichever arrives first creates the order.
    """
    incomplete = False
    try:
        event = load_event(db, org.id, payload.event_id, require_stripe=True)
        account = connected_account(org, event)
        try:
            intent = gateway.retrieve_payment_intent(payload.payment_intent_id, stripe_account=account)
        except gateway.GatewayNotConfigured as exc:
            raise CheckoutError("Payments are not configured", 503) from exc

        metadata = intent.get("metadata") or {}
        if str(metadata.get("org_id")) != str(org.id) or str(metadata.get("event_id")) != str(event.id):
            raise CheckoutError("Payment does not belong to this event")
        if intent.get("status") != "succeeded":
            log_payment_event(
                db,
                org_id=org.id,
                type=PaymentEventTypeEnum.INCOMPLETE_PAYMENT,
                event_id=event.id,
                stripe_payment_intent_id=payload.payment_intent_id,
                stripe_account_id=account,
                error_code=intent.get("status"),
                customer_email=_customer_email(payload),
                ip_address=client_ip(request),
            )
            incomplete = True
            raise CheckoutError(f"Payment not completed (status: {intent.get('status')})")

        result = order_from_intent(
            db,
            org.id,
            intent,
            event=event,
        )
    except OrderError as exc:
        db.rollback()
        if not incomplete:
            _log_checkout_failure(db, request, org, payload, exc)
        raise
    except stripe.error.StripeError as exc:
        db.rollback()
        _log_checkout_failure(db, request, org, payload, exc)
        raise CheckoutError("Could not verify the payment, please contact support", 502) from exc

    return {"order": result.order, "created": result.created}


@router.post("/payment-events/client", status_code=status.HTTP_202_ACCEPTED)
def report_client_error(
    payload: ClientCheckoutError,
    request: Request,
    db: Session = Depends(get_db),
    org: Organization = Depends(get_public_org),
    _limited=Depends(client_error_limiter),
):
    """Stripe.js errors the server never sees (card element failures, 3DS aborts)."""
    log_payment_event(
        db,
        org_id=org.id,
        type=PaymentEventTypeEnum.CLIENT_CHECKOUT_ERROR,
        event_id=payload.event_id,
        stripe_payment_intent_id=payload.payment_intent_id,
        error_code=payload.decline_code or payload.error_code,
        error_message=payload.error_message,
        customer_email=payload.customer_email,
        ip_address=client_ip(request),
        metadata=payload.context or {},
    )
    return {
        "received": True,
        "message": payment_error_message(
            code=payload.error_code,
            decline_code=payload.decline_code,
            message=payload.error_message,
        ),
    }

# Stripe webhook receiver (platform and Connect endpoints share this route).
# Handlers must be idempotent: Stripe retries anything that is not 2xx and
# confirm-order may already have created the order.

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db
from entry.core.metrics import WEBHOOK_EVENTS_TOTAL
from entry.crud.organizations import get_org_by_id
from entry.models.enums import PaymentEventTypeEnum
from entry.models.payment_events import WebhookEvent
from entry.orders.checkout import order_from_intent
from entry.payments import gateway
from entry.payments.monitor import log_payment_event


logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

HANDLED_EVENTS = ("payment_intent.succeeded", "payment_intent.payment_failed")


def _webhook_secrets() -> list[str]:
    return [s for s in (settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_CONNECT_WEBHOOK_SECRET) if s]


def _construct_event(payload: bytes, sig_header: str):
    secrets = _webhook_secrets()
    for index, secret in enumerate(secrets):
        try:
            return gateway.construct_event(payload, sig_header, secret)
        except stripe.error.SignatureVerificationError:
            if index == len(secrets) - 1:
                raise
    raise stripe.error.SignatureVerificationError("No webhook secret matched", sig_header)


def _org_id_from(data_object) -> int | None:
    hint = (data_object.get("metadata") or {}).get("org_id")
    if not hint or not str(hint).isdigit():
        return None
    return int(hint)


def _already_processed(db: Session, stripe_event_id: str) -> bool:
    return db.query(WebhookEvent.id).filter(WebhookEvent.stripe_event_id == stripe_event_id).first() is not None


def _mark_processed(db: Session, stripe_event_id: str, event_type: str) -> None:
    try:
        with db.begin_nested():
            db.add(WebhookEvent(stripe_event_id=stripe_event_id, event_type=event_type))
            db.flush()
    except IntegrityError:
        # A concurrent delivery of the same event got there first.
        logger.info("stripe_webhook.duplicate_race", extra={"stripe_event_id": stripe_event_id})
    db.commit()


def _handle_payment_succeeded(db: Session, org_id: int, data_object, account: str | None) -> None:
    result = order_from_intent(db, org_id, data_object)
    metadata = data_object.get("metadata") or {}
    log_payment_event(
        db,
        org_id=org_id,
        type=PaymentEventTypeEnum.PAYMENT_SUCCEEDED,
        event_id=result.order.event_id,
        stripe_payment_intent_id=data_object.get("id"),
        stripe_account_id=account,
        customer_email=metadata.get("customer_email"),
        metadata={
            "amount": data_object.get("amount_received") or data_object.get("amount"),
            "currency": data_object.get("currency"),
            "order_id": result.order.id,
            "order_created": result.created,
        },
    )


def _handle_payment_failed(db: Session, org_id: int, data_object, account: str | None) -> None:
    metadata = data_object.get("metadata") or {}
    last_error = data_object.get("last_payment_error") or {}
    event_id = metadata.get("event_id")
    log_payment_event(
        db,
        org_id=org_id,
        type=PaymentEventTypeEnum.PAYMENT_FAILED,
        event_id=int(event_id) if event_id and str(event_id).isdigit() else None,
        stripe_payment_intent_id=data_object.get("id"),
        stripe_account_id=account,
        error_code=last_error.get("decline_code") or last_error.get("code"),
        error_message=last_error.get("message"),
        customer_email=metadata.get("customer_email"),
        metadata={
            "amount": data_object.get("amount"),
            "currency": data_object.get("currency"),
            "decline_code": last_error.get("decline_code"),
            "error_type": last_error.get("type"),
        },
    )


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    if not _webhook_secrets():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Stripe webhook secret is not configured",
        )
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature")
    try:
        event = _construct_event(payload, sig_header)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from exc
    except stripe.error.SignatureVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc

    stripe_event_id = event.get("id")
    event_type = event.get("type") or "unknown"
    data_object = event.get("data", {}).get("object", {})
    account = event.get("account")

    if event_type not in HANDLED_EVENTS:
        WEBHOOK_EVENTS_TOTAL.labels(event_type, "ignored").inc()
        return {"received": True}
    if stripe_event_id and _already_processed(db, stripe_event_id):
        WEBHOOK_EVENTS_TOTAL.labels(event_type, "duplicate").inc()
        return {"received": True, "duplicate": True}

    org_id = _org_id_from(data_object)
    if org_id is None or get_org_by_id(db, org_id) is None:
        # Not one of our checkout intents (or an org that no longer exists).
        WEBHOOK_EVENTS_TOTAL.labels(event_type, "ignored").inc()
        return {"received": True}

    log_payment_event(
        db,
        org_id=org_id,
        type=PaymentEventTypeEnum.WEBHOOK_RECEIVED,
        stripe_payment_intent_id=data_object.get("id"),
        stripe_account_id=account,
        metadata={"stripe_event_id": stripe_event_id, "event_type": event_type},
    )

    try:
        if event_type == "payment_intent.succeeded":
            _handle_payment_succeeded(db, org_id, data_object, account)
        else:
            _handle_payment_failed(db, org_id, data_object, account)
    except Exception as exc:
        db.rollback()
        logger.exception(
            "stripe_webhook.failed",
            extra={"org_id": org_id, "stripe_event_id": stripe_event_id, "event_type": event_type},
        )
        log_payment_event(
            db,
            org_id=org_id,
            type=PaymentEventTypeEnum.WEBHOOK_ERROR,
            stripe_payment_intent_id=data_object.get("id"),
            stripe_account_id=account,
            error_code=getattr(exc, "code", None) or type(exc).__name__,
            error_message=str(exc),
            metadata={"stripe_event_id": stripe_event_id, "event_type": event_type},
        )
        WEBHOOK_EVENTS_TOTAL.labels(event_type, "error").inc()
        # Non-2xx so Stripe retries the delivery.
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Webhook processing failed"},
            headers={"X-Error-Code": "webhook_error"},
        )

    if stripe_event_id:
        _mark_processed(db, stripe_event_id, event_type)
    WEBHOOK_EVENTS_TOTAL.labels(event_type, "processed").inc()
    return {"received": True}

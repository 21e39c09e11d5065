"""
Payment event log.

Every interesting moment in the money path (a failed card, a webhook we
could not process, a connected account that stopped accepting charges)
lands in payment_events. The health dashboard and digest read from there.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from entry.core.metrics import PAYMENT_EVENTS_TOTAL
from entry.core.time import utcnow
from entry.models.enums import PaymentEventTypeEnum, SeverityEnum
from entry.models.payment_events import PaymentEvent
from entry.payments.alerts import send_platform_alert


logger = logging.getLogger(__name__)

SOFT_DECLINE_CODES = {"card_declined", "insufficient_funds", "expired_card"}

_INFO_TYPES = {
    PaymentEventTypeEnum.PAYMENT_SUCCEEDED,
    PaymentEventTypeEnum.WEBHOOK_RECEIVED,
    PaymentEventTypeEnum.CONNECT_ACCOUNT_HEALTHY,
    PaymentEventTypeEnum.CHECKOUT_VALIDATION,
}
_CRITICAL_TYPES = {
    PaymentEventTypeEnum.CHECKOUT_ERROR,
    PaymentEventTypeEnum.WEBHOOK_ERROR,
    PaymentEventTypeEnum.CONNECT_ACCOUNT_UNHEALTHY,
    PaymentEventTypeEnum.SUBSCRIPTION_FAILED,
    PaymentEventTypeEnum.ORPHANED_PAYMENT,
}
_WARNING_TYPES = {
    PaymentEventTypeEnum.CLIENT_CHECKOUT_ERROR,
    PaymentEventTypeEnum.INCOMPLETE_PAYMENT,
    PaymentEventTypeEnum.CONNECT_FALLBACK,
    PaymentEventTypeEnum.RATE_LIMIT_HIT,
}


def derive_severity(event_type: PaymentEventTypeEnum | str, error_code: str | None = None) -> SeverityEnum:
    event_type = PaymentEventTypeEnum(event_type)
    if event_type in _INFO_TYPES:
        return SeverityEnum.INFO
    if event_type == PaymentEventTypeEnum.PAYMENT_FAILED:
        return SeverityEnum.WARNING if error_code in SOFT_DECLINE_CODES else SeverityEnum.CRITICAL
    if event_type in _CRITICAL_TYPES:
        return SeverityEnum.CRITICAL
    if event_type in _WARNING_TYPES:
        return SeverityEnum.WARNING
    return SeverityEnum.INFO


def _alert_lines(entry: PaymentEvent) -> list[str]:
    lines = [
        f"Type: {entry.type.value}",
        f"Org: {entry.org_id if entry.org_id is not None else 'platform'}",
    ]
    if entry.error_code:
        lines.append(f"Error code: {entry.error_code}")
    if entry.error_message:
        lines.append(f"Error: {entry.error_message}")
    if entry.stripe_payment_intent_id:
        lines.append(f"PaymentIntent: {entry.stripe_payment_intent_id}")
    if entry.stripe_account_id:
        lines.append(f"Account: {entry.stripe_account_id}")
    if entry.customer_email:
        lines.append(f"Customer: {entry.customer_email}")
    lines.append(f"Time: {utcnow().isoformat()}Z")
    return lines


def log_payment_event(
    db: Session,
    *,
    org_id: Optional[int],
    type: PaymentEventTypeEnum | str,
    severity: SeverityEnum | str | None = None,
    event_id: Optional[int] = None,
    stripe_payment_intent_id: Optional[str] = None,
    stripe_account_id: Optional[str] = None,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    customer_email: Optional[str] = None,
    ip_address: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[PaymentEvent]:
    """
    Record a payment event and commit. Never raises: a monitoring failure
    must not break the checkout or webhook that reported it.

    Critical events also page the platform owner (throttled per subject).
    """
    try:
        event_type = PaymentEventTypeEnum(type)
        level = SeverityEnum(severity) if severity else derive_severity(event_type, error_code)
        entry = PaymentEvent(
            org_id=org_id,
            type=event_type,
            severity=level,
            event_id=event_id,
            stripe_payment_intent_id=stripe_payment_intent_id,
            stripe_account_id=stripe_account_id,
            error_code=error_code,
            error_message=error_message[:2000] if error_message else None,
            customer_email=customer_email,
            ip_address=ip_address,
            metadata_json=metadata or {},
        )
        db.add(entry)
        db.commit()
    except (SQLAlchemyError, ValueError):
        db.rollback()
        logger.exception("payment_event.log_failed", extra={"org_id": org_id, "type": str(type)})
        return None

    PAYMENT_EVENTS_TOTAL.labels(event_type.value, level.value).inc()
    logger.info(
        "payment_event.logged",
        extra={"org_id": org_id, "type": event_type.value, "severity": level.value},
    )

    if level == SeverityEnum.CRITICAL:
        try:
            send_platform_alert(
                db,
                subject=f"{event_type.value} for org {org_id if org_id is not None else 'platform'}",
                lines=_alert_lines(entry),
            )
        except Exception:
            logger.exception("payment_event.alert_failed", extra={"org_id": org_id})
    return entry


def resolve_payment_event(
    db: Session,
    entry: PaymentEvent,
    *,
    notes: Optional[str] = None,
) -> PaymentEvent:
    entry.resolved = True
    entry.resolved_at = utcnow()
    entry.resolution_notes = notes
    db.commit()
    db.refresh(entry)
    return entry


def resolve_open_events(
    db: Session,
    *,
    org_id: int,
    event_type: PaymentEventTypeEnum,
    notes: str,
) -> int:
    """Resolve every unresolved event of a type for an org. Returns the count."""
    now = utcnow()
    count = (
        db.query(PaymentEvent)
        .filter(
            PaymentEvent.org_id == org_id,
            PaymentEvent.type == event_type,
            PaymentEvent.resolved.is_(False),
        )
        .update(
            {"resolved": True, "resolved_at": now, "resolution_notes": notes},
            synchronize_session=False,
        )
    )
    db.commit()
    return count

"""
Periodic payment digest for the platform owner.

The risk level is a fixed heuristic over failure rate and unresolved
critical events:

    critical  5+ unresolved critical, or >= 25% failures over 5+ payments
    concern   any unresolved critical, webhook/checkout errors, or >= 10% failures
    watch     any failed payment or client-side checkout error
    healthy   otherwise
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.time import utcnow
from entry.emails.client import send_email
from entry.emails.templates import payment_digest
from entry.models.enums import PaymentEventTypeEnum as T
from entry.models.enums import SeverityEnum
from entry.models.events import Event
from entry.models.payment_events import PaymentEvent


logger = logging.getLogger(__name__)

MIN_PAYMENTS_FOR_RATE = 5
TOP_N = 5


def gather_digest_stats(db: Session, period_hours: int, *, now: Optional[datetime] = None) -> dict[str, Any]:
    since = (now or utcnow()) - timedelta(hours=period_hours)
    rows = db.query(PaymentEvent).filter(PaymentEvent.created_at >= since).all()

    succeeded = [row for row in rows if row.type == T.PAYMENT_SUCCEEDED]
    failed = [row for row in rows if row.type == T.PAYMENT_FAILED]
    total = len(succeeded) + len(failed)

    amount_failed = 0
    for row in failed:
        try:
            amount_failed += int((row.metadata_json or {}).get("amount") or 0)
        except (TypeError, ValueError):
            continue

    codes = Counter(row.error_code or "unknown" for row in failed)
    by_event = Counter(row.event_id for row in failed if row.event_id is not None)
    event_names = {}
    if by_event:
        event_names = {
            event.id: event.name
            for event in db.query(Event).filter(Event.id.in_(list(by_event))).all()
        }

    unresolved_critical = (
        db.query(PaymentEvent)
        .filter(PaymentEvent.severity == SeverityEnum.CRITICAL, PaymentEvent.resolved.is_(False))
        .count()
    )

    return {
        "payments_succeeded": len(succeeded),
        "payments_failed": len(failed),
        "failure_rate": len(failed) / total if total else 0.0,
        "total_amount_failed_pence": amount_failed,
        "unique_customers_failed": len({row.customer_email for row in failed if row.customer_email}),
        "checkout_errors": sum(1 for row in rows if row.type == T.CHECKOUT_ERROR),
        "client_checkout_errors": sum(1 for row in rows if row.type == T.CLIENT_CHECKOUT_ERROR),
        "webhook_errors": sum(1 for row in rows if row.type == T.WEBHOOK_ERROR),
        "connect_unhealthy": sum(
            1 for row in rows if row.type == T.CONNECT_ACCOUNT_UNHEALTHY and not row.resolved
        ),
        "orphaned_payments": sum(1 for row in rows if row.type == T.ORPHANED_PAYMENT),
        "unresolved_critical": unresolved_critical,
        "top_decline_codes": [{"code": code, "count": count} for code, count in codes.most_common(TOP_N)],
        "affected_events": [
            {"event": event_names.get(event_id, f"Event {event_id}"), "failures": count}
            for event_id, count in by_event.most_common(TOP_N)
        ],
    }


def assess_risk(stats: dict[str, Any]) -> tuple[str, list[str]]:
    findings: list[str] = []
    total = stats["payments_succeeded"] + stats["payments_failed"]
    rate = stats["failure_rate"]
    rate_counts = total >= MIN_PAYMENTS_FOR_RATE

    if stats["unresolved_critical"]:
        findings.append(f"{stats['unresolved_critical']} unresolved critical event(s) need attention.")
    if rate_counts and rate >= 0.10:
        findings.append(f"Failure rate is {rate * 100:.1f}% across {total} payments.")
    if stats["webhook_errors"]:
        findings.append(f"{stats['webhook_errors']} webhook processing error(s); check for orphaned payments.")
    if stats["checkout_errors"]:
        findings.append(f"{stats['checkout_errors']} server-side checkout error(s).")
    if stats["connect_unhealthy"]:
        findings.append(f"{stats['connect_unhealthy']} connected account(s) reported unhealthy.")
    if stats["orphaned_payments"]:
        findings.append(f"{stats['orphaned_payments']} payment(s) charged without an order.")

    if stats["unresolved_critical"] >= 5 or (rate_counts and rate >= 0.25):
        return "critical", findings
    if (
        stats["unresolved_critical"]
        or stats["webhook_errors"]
        or stats["checkout_errors"]
        or (rate_counts and rate >= 0.10)
    ):
        return "concern", findings
    if stats["payments_failed"] or stats["client_checkout_errors"]:
        if not findings:
            findings.append(f"{stats['payments_failed']} failed payment(s), within normal range.")
        return "watch", findings
    return "healthy", findings or ["No payment issues in this period."]


def run_payment_digest(
    db: Session,
    period_hours: int = 6,
    *,
    send: bool = True,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    stats = gather_digest_stats(db, period_hours, now=now)
    risk_level, findings = assess_risk(stats)
    digest = {
        "generated_at": (now or utcnow()).isoformat(),
        "period_hours": period_hours,
        "risk_level": risk_level,
        "findings": findings,
        "stats": stats,
        "emailed": False,
    }
    if send and settings.PLATFORM_ALERT_EMAIL:
        log = send_email(db, payment_digest(to_email=settings.PLATFORM_ALERT_EMAIL, digest=digest))
        digest["emailed"] = log.status.value == "sent"
    logger.info("payment_digest.generated", extra={"risk_level": risk_level, "period_hours": period_hours})
    return digest

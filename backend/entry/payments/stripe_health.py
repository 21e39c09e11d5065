"""
Connected-account and reconciliation checks, run from cron every ~30 minutes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import stripe
from sqlalchemy.orm import Session

from entry.core.time import utcnow
from entry.crud.organizations import list_connected_orgs
from entry.models.enums import PaymentEventTypeEnum as T
from entry.models.enums import SeverityEnum
from entry.models.orders import Order
from entry.models.payment_events import PaymentEvent
from entry.payments import gateway
from entry.payments.alerts import send_platform_alert
from entry.payments.monitor import log_payment_event, resolve_open_events


logger = logging.getLogger(__name__)

ANOMALY_MIN_PAYMENTS = 5
ANOMALY_ORG_FAILURE_RATE = 0.2
ANOMALY_PLATFORM_FAILURES = 10
ORPHAN_LOOKBACK = timedelta(hours=2)
INCOMPLETE_MIN_AGE = timedelta(minutes=30)
INCOMPLETE_MAX_AGE = timedelta(hours=4)
INFO_RETENTION = timedelta(days=30)
WARNING_RETENTION = timedelta(days=90)


def _requirements_past_due(account) -> list[str]:
    requirements = account.get("requirements") or {}
    return list(requirements.get("past_due") or [])


def check_connected_accounts(db: Session, results: dict[str, Any]) -> None:
    for org in list_connected_orgs(db):
        account_id = org.stripe_account_id
        results["accounts_checked"] += 1
        try:
            account = gateway.retrieve_account(account_id)
        except stripe.error.StripeError as exc:
            results["unhealthy_accounts"].append(account_id)
            log_payment_event(
                db,
                org_id=org.id,
                type=T.CONNECT_ACCOUNT_UNHEALTHY,
                stripe_account_id=account_id,
                error_code="unreachable",
                error_message=str(exc),
            )
            continue

        charges_enabled = bool(account.get("charges_enabled"))
        past_due = _requirements_past_due(account)
        if not charges_enabled or past_due:
            results["unhealthy_accounts"].append(account_id)
            log_payment_event(
                db,
                org_id=org.id,
                type=T.CONNECT_ACCOUNT_UNHEALTHY,
                stripe_account_id=account_id,
                error_message="Charges disabled" if not charges_enabled else f"Past due requirements: {', '.join(past_due)}",
                metadata={"charges_enabled": charges_enabled, "past_due": past_due},
            )
            continue

        was_unhealthy = (
            db.query(PaymentEvent.id)
            .filter(
                PaymentEvent.org_id == org.id,
                PaymentEvent.type == T.CONNECT_ACCOUNT_UNHEALTHY,
                PaymentEvent.resolved.is_(False),
            )
            .first()
        )
        if was_unhealthy:
            results["healthy_recoveries"] += 1
            log_payment_event(
                db,
                org_id=org.id,
                type=T.CONNECT_ACCOUNT_HEALTHY,
                stripe_account_id=account_id,
                error_message="Account recovered: charges enabled and no past due requirements",
            )
            resolve_open_events(
                db,
                org_id=org.id,
                event_type=T.CONNECT_ACCOUNT_UNHEALTHY,
                notes="Auto-resolved by stripe health check",
            )


def detect_anomalies(db: Session, results: dict[str, Any], now: datetime) -> None:
    rows = (
        db.query(PaymentEvent.org_id, PaymentEvent.type)
        .filter(
            PaymentEvent.type.in_((T.PAYMENT_SUCCEEDED, T.PAYMENT_FAILED)),
            PaymentEvent.created_at >= now - timedelta(hours=1),
        )
        .all()
    )
    per_org: dict[Optional[int], dict[str, int]] = defaultdict(lambda: {"succeeded": 0, "failed": 0})
    for org_id, event_type in rows:
        per_org[org_id]["succeeded" if event_type == T.PAYMENT_SUCCEEDED else "failed"] += 1

    platform_failures = 0
    for org_id, stats in per_org.items():
        total = stats["succeeded"] + stats["failed"]
        platform_failures += stats["failed"]
        if total < ANOMALY_MIN_PAYMENTS:
            continue
        rate = stats["failed"] / total
        if rate > ANOMALY_ORG_FAILURE_RATE:
            message = f"Org {org_id}: {rate * 100:.0f}% failure rate ({stats['failed']}/{total}) in last hour"
            results["anomalies"].append(message)
            send_platform_alert(
                db,
                subject=f"High payment failure rate for org {org_id}",
                lines=[message],
                severity="warning",
            )

    if platform_failures > ANOMALY_PLATFORM_FAILURES:
        message = f"Platform-wide: {platform_failures} payment failures in last hour"
        results["anomalies"].append(message)
        send_platform_alert(db, subject="High platform-wide payment failure count", lines=[message])


def reconcile_orphaned_payments(db: Session, results: dict[str, Any], now: datetime) -> None:
    since = now - ORPHAN_LOOKBACK
    successes = (
        db.query(PaymentEvent)
        .filter(
            PaymentEvent.type == T.PAYMENT_SUCCEEDED,
            PaymentEvent.created_at >= since,
            PaymentEvent.stripe_payment_intent_id.isnot(None),
        )
        .all()
    )
    if not successes:
        return
    intent_ids = {row.stripe_payment_intent_id for row in successes}
    with_orders = {
        ref for (ref,) in db.query(Order.payment_ref).filter(Order.payment_ref.in_(intent_ids)).all()
    }
    already_flagged = {
        ref
        for (ref,) in db.query(PaymentEvent.stripe_payment_intent_id)
        .filter(
            PaymentEvent.type == T.ORPHANED_PAYMENT,
            PaymentEvent.stripe_payment_intent_id.in_(intent_ids),
        )
        .all()
    }
    for row in successes:
        intent_id = row.stripe_payment_intent_id
        if intent_id in with_orders or intent_id in already_flagged:
            continue
        already_flagged.add(intent_id)
        results["anomalies"].append(f"Orphaned payment: PI {intent_id} for org {row.org_id}")
        log_payment_event(
            db,
            org_id=row.org_id,
            type=T.ORPHANED_PAYMENT,
            event_id=row.event_id,
            stripe_payment_intent_id=intent_id,
            customer_email=row.customer_email,
            error_message="Payment succeeded but no matching order found; possible webhook failure",
        )


def flag_incomplete_payments(db: Session, results: dict[str, Any], now: datetime) -> None:
    now_ts = now.replace(tzinfo=timezone.utc).timestamp()
    newest = int(now_ts - INCOMPLETE_MIN_AGE.total_seconds())
    oldest = int(now_ts - INCOMPLETE_MAX_AGE.total_seconds())
    intents = []
    for status in ("requires_payment_method", "requires_action"):
        found = gateway.search_payment_intents(
            f'status:"{status}" AND created>{oldest} AND created<{newest}'
        )
        intents.extend(found.get("data") or [])
    if not intents:
        return

    logged = {
        ref
        for (ref,) in db.query(PaymentEvent.stripe_payment_intent_id)
        .filter(
            PaymentEvent.type == T.INCOMPLETE_PAYMENT,
            PaymentEvent.stripe_payment_intent_id.in_([pi["id"] for pi in intents]),
        )
        .all()
    }
    for pi in intents:
        if pi["id"] in logged:
            continue
        meta = pi.get("metadata") or {}
        org_id = meta.get("org_id")
        age_minutes = round((now_ts - pi["created"]) / 60)
        stage = "3DS challenge abandoned" if pi["status"] == "requires_action" else "Checkout abandoned"
        results["incomplete_payments"] += 1
        log_payment_event(
            db,
            org_id=int(org_id) if org_id and str(org_id).isdigit() else None,
            type=T.INCOMPLETE_PAYMENT,
            stripe_payment_intent_id=pi["id"],
            customer_email=meta.get("customer_email"),
            error_code=pi["status"],
            error_message=(
                f"{stage} after {age_minutes}min ({pi['amount'] / 100:.2f} {str(pi['currency']).upper()})"
            ),
            metadata={
                "amount": pi["amount"],
                "currency": pi["currency"],
                "status": pi["status"],
                "age_minutes": age_minutes,
                "event_slug": meta.get("event_slug"),
            },
        )


def purge_old_events(db: Session, results: dict[str, Any], now: datetime) -> None:
    info = (
        db.query(PaymentEvent)
        .filter(PaymentEvent.severity == SeverityEnum.INFO, PaymentEvent.created_at < now - INFO_RETENTION)
        .delete(synchronize_session=False)
    )
    warning = (
        db.query(PaymentEvent)
        .filter(PaymentEvent.severity == SeverityEnum.WARNING, PaymentEvent.created_at < now - WARNING_RETENTION)
        .delete(synchronize_session=False)
    )
    db.commit()
    results["purged"] = {"info": info, "warning": warning}


def run_stripe_health_check(db: Session, *, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    results: dict[str, Any] = {
        "accounts_checked": 0,
        "unhealthy_accounts": [],
        "healthy_recoveries": 0,
        "anomalies": [],
        "incomplete_payments": 0,
        "purged": {"info": 0, "warning": 0},
    }
    if gateway.is_configured():
        check_connected_accounts(db, results)
    detect_anomalies(db, results, now)
    reconcile_orphaned_payments(db, results, now)
    if gateway.is_configured():
        try:
            flag_incomplete_payments(db, results, now)
        except stripe.error.StripeError:
            logger.exception("stripe_health.incomplete_check_failed")
    purge_old_events(db, results, now)
    logger.info(
        "stripe_health.completed",
        extra={
            "accounts_checked": results["accounts_checked"],
            "unhealthy": len(results["unhealthy_accounts"]),
            "anomalies": len(results["anomalies"]),
        },
    )
    return results

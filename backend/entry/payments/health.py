"""
Payment health dashboard: aggregates over payment_events for a time window.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from entry.core.time import utcnow
from entry.models.enums import PaymentEventTypeEnum as T
from entry.models.enums import SeverityEnum
from entry.models.organizations import Organization
from entry.models.payment_events import PaymentEvent


PERIODS = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_PERIOD = "24h"
RECENT_CRITICAL_LIMIT = 50

_ALERT_SEVERITIES = (SeverityEnum.WARNING, SeverityEnum.CRITICAL)


def period_start(period: str | None, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - PERIODS.get(period or DEFAULT_PERIOD, PERIODS[DEFAULT_PERIOD])


def serialize_payment_event(entry: PaymentEvent) -> dict[str, Any]:
    return {
        "id": entry.id,
        "org_id": entry.org_id,
        "type": entry.type.value,
        "severity": entry.severity.value,
        "event_id": entry.event_id,
        "stripe_payment_intent_id": entry.stripe_payment_intent_id,
        "stripe_account_id": entry.stripe_account_id,
        "error_code": entry.error_code,
        "error_message": entry.error_message,
        "customer_email": entry.customer_email,
        "ip_address": entry.ip_address,
        "metadata": entry.metadata_json or {},
        "resolved": entry.resolved,
        "resolved_at": entry.resolved_at.isoformat() if entry.resolved_at else None,
        "resolution_notes": entry.resolution_notes,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _rate(part: int, whole: int) -> float:
    return part / whole if whole > 0 else 0.0


def _amount_from_metadata(meta: dict | None) -> int:
    try:
        return int((meta or {}).get("amount") or 0)
    except (TypeError, ValueError):
        return 0


def build_payment_health(
    db: Session,
    period: str | None = DEFAULT_PERIOD,
    *,
    org_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    since = period_start(period, now)

    def scoped(query):
        if org_id is not None:
            query = query.filter(PaymentEvent.org_id == org_id)
        return query

    in_period = scoped(db.query(PaymentEvent).filter(PaymentEvent.created_at >= since))

    type_counts: dict[T, int] = {
        row_type: count
        for row_type, count in scoped(
            db.query(PaymentEvent.type, func.count(PaymentEvent.id))
            .filter(PaymentEvent.created_at >= since)
            .group_by(PaymentEvent.type)
        ).all()
    }
    severity_counts: dict[SeverityEnum, int] = {
        severity: count
        for severity, count in scoped(
            db.query(PaymentEvent.severity, func.count(PaymentEvent.id))
            .filter(PaymentEvent.created_at >= since, PaymentEvent.resolved.is_(False))
            .group_by(PaymentEvent.severity)
        ).all()
    }
    total_events = sum(type_counts.values())
    unresolved_all_time = scoped(
        db.query(func.count(PaymentEvent.id)).filter(
            PaymentEvent.resolved.is_(False),
            PaymentEvent.severity.in_(_ALERT_SEVERITIES),
        )
    ).scalar() or 0

    succeeded = type_counts.get(T.PAYMENT_SUCCEEDED, 0)
    failed = type_counts.get(T.PAYMENT_FAILED, 0)
    failed_rows = in_period.filter(PaymentEvent.type == T.PAYMENT_FAILED).all()
    amount_failed = sum(_amount_from_metadata(row.metadata_json) for row in failed_rows)

    unhealthy_rows = scoped(
        db.query(PaymentEvent)
        .filter(
            PaymentEvent.type == T.CONNECT_ACCOUNT_UNHEALTHY,
            PaymentEvent.resolved.is_(False),
        )
        .order_by(PaymentEvent.created_at.desc())
    ).all()
    unique_unhealthy = len({row.stripe_account_id for row in unhealthy_rows})
    accounts_query = db.query(func.count(Organization.id)).filter(
        Organization.stripe_account_id.isnot(None),
        Organization.deleted_at.is_(None),
    )
    if org_id is not None:
        accounts_query = accounts_query.filter(Organization.id == org_id)
    total_accounts = accounts_query.scalar() or 0

    webhook_errors = type_counts.get(T.WEBHOOK_ERROR, 0)
    webhook_total = succeeded + failed + webhook_errors

    recent_critical = (
        in_period.filter(PaymentEvent.severity.in_(_ALERT_SEVERITIES))
        .order_by(PaymentEvent.created_at.desc(), PaymentEvent.id.desc())
        .limit(RECENT_CRITICAL_LIMIT)
        .all()
    )

    per_org_rows = scoped(
        db.query(PaymentEvent.org_id, PaymentEvent.type, func.count(PaymentEvent.id))
        .filter(
            PaymentEvent.created_at >= since,
            PaymentEvent.type.in_((T.PAYMENT_SUCCEEDED, T.PAYMENT_FAILED)),
        )
        .group_by(PaymentEvent.org_id, PaymentEvent.type)
    ).all()
    per_org: dict[Optional[int], dict[str, int]] = defaultdict(lambda: {"succeeded": 0, "failed": 0})
    for row_org, row_type, count in per_org_rows:
        per_org[row_org]["succeeded" if row_type == T.PAYMENT_SUCCEEDED else "failed"] += count
    failure_by_org = sorted(
        (
            {
                "org_id": row_org,
                "succeeded": stats["succeeded"],
                "failed": stats["failed"],
                "failure_rate": _rate(stats["failed"], stats["succeeded"] + stats["failed"]),
            }
            for row_org, stats in per_org.items()
        ),
        key=lambda row: row["failure_rate"],
        reverse=True,
    )

    code_counts = Counter(row.error_code or "unknown" for row in failed_rows)
    failure_by_code = [
        {"code": code, "count": count}
        for code, count in sorted(code_counts.items(), key=lambda item: (-item[1], item[0]))
    ]

    # Bucketed in Python so the same code runs on SQLite and Postgres.
    buckets: dict[str, dict[str, int]] = defaultdict(lambda: {"succeeded": 0, "failed": 0, "errors": 0})
    for row_type, severity, created_at in in_period.with_entities(
        PaymentEvent.type, PaymentEvent.severity, PaymentEvent.created_at
    ):
        hour = created_at.replace(minute=0, second=0, microsecond=0).isoformat()
        if row_type == T.PAYMENT_SUCCEEDED:
            buckets[hour]["succeeded"] += 1
        elif row_type == T.PAYMENT_FAILED:
            buckets[hour]["failed"] += 1
        elif severity in _ALERT_SEVERITIES:
            buckets[hour]["errors"] += 1
    hourly_trend = [{"hour": hour, **data} for hour, data in sorted(buckets.items())]

    return {
        "period": period if period in PERIODS else DEFAULT_PERIOD,
        "summary": {
            "total_events": total_events,
            "critical_count": severity_counts.get(SeverityEnum.CRITICAL, 0),
            "warning_count": severity_counts.get(SeverityEnum.WARNING, 0),
            "unresolved_count": unresolved_all_time,
        },
        "payments": {
            "succeeded": succeeded,
            "failed": failed,
            "failure_rate": _rate(failed, succeeded + failed),
            "total_amount_failed_pence": amount_failed,
        },
        "checkout": {
            "errors": type_counts.get(T.CHECKOUT_ERROR, 0),
            "client_errors": type_counts.get(T.CLIENT_CHECKOUT_ERROR, 0),
            "validations": type_counts.get(T.CHECKOUT_VALIDATION, 0),
            "rate_limit_blocks": type_counts.get(T.RATE_LIMIT_HIT, 0),
        },
        "connect": {
            "total_accounts": total_accounts,
            "healthy": max(0, total_accounts - unique_unhealthy),
            "unhealthy": unique_unhealthy,
            "fallbacks": type_counts.get(T.CONNECT_FALLBACK, 0),
            "unhealthy_list": [
                {
                    "org_id": row.org_id,
                    "stripe_account_id": row.stripe_account_id,
                    "error_message": row.error_message,
                    "created_at": row.created_at.isoformat(),
                }
                for row in unhealthy_rows
            ],
        },
        "webhooks": {
            "received": webhook_total,
            "errors": webhook_errors,
            "error_rate": _rate(webhook_errors, webhook_total),
        },
        "reconciliation": {
            "orphaned_payments": type_counts.get(T.ORPHANED_PAYMENT, 0),
            "incomplete_payments": type_counts.get(T.INCOMPLETE_PAYMENT, 0),
        },
        "recent_critical": [serialize_payment_event(row) for row in recent_critical],
        "failure_by_org": failure_by_org,
        "failure_by_code": failure_by_code,
        "hourly_trend": hourly_trend,
    }

"""
Abandoned carts: capture from checkout, the recovery email sequence and
unsubscribe.

The sequence is driven by notification_count: a cart with count == i is
waiting for step i. Disabled steps and unsubscribed buyers still advance the
count so the cart moves through the sequence.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from entry.core.codes import generate_token
from entry.core.config import settings
from entry.core.money import round_half_up
from entry.core.time import utcnow
from entry.crud.customers import get_customer_by_email
from entry.crud.organizations import get_org_by_id
from entry.crud.settings import SETTINGS_ABANDONED_CARTS, get_setting
from entry.crud.users import normalize_email
from entry.emails.client import send_email
from entry.emails.templates import abandoned_cart
from entry.models.abandoned_carts import AbandonedCart
from entry.models.enums import CartStatusEnum, EmailStatusEnum, EventStatusEnum
from entry.models.events import Event
from entry.models.organizations import OrgSetting
from entry.tenancy.scoping import scoped_query


logger = logging.getLogger(__name__)

DEFAULT_AUTOMATION_SETTINGS: dict[str, Any] = {
    "enabled": False,
    "steps": [],
}
PIPELINE_STEPS = 3


def get_automation_settings(db: Session, org_id: int) -> dict[str, Any]:
    return get_setting(db, org_id, SETTINGS_ABANDONED_CARTS, DEFAULT_AUTOMATION_SETTINGS)


def capture_cart(
    db: Session,
    *,
    org_id: int,
    event: Event,
    email: str,
    items: list[dict[str, Any]],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> AbandonedCart:
    """Record (or refresh) the buyer's open cart for this event."""
    normalized = normalize_email(email)
    subtotal = round_half_up(sum(float(item.get("price") or 0) * int(item.get("qty") or 0) for item in items))
    cart = (
        scoped_query(db, AbandonedCart, org_id)
        .filter(
            AbandonedCart.event_id == event.id,
            AbandonedCart.email == normalized,
            AbandonedCart.status == CartStatusEnum.ABANDONED,
        )
        .order_by(AbandonedCart.created_at.desc())
        .first()
    )
    customer = get_customer_by_email(db, org_id, normalized)
    if cart is None:
        cart = AbandonedCart(
            org_id=org_id,
            event_id=event.id,
            email=normalized,
            cart_token=generate_token(),
            status=CartStatusEnum.ABANDONED,
            notification_count=0,
        )
        db.add(cart)
    cart.customer_id = customer.id if customer else None
    cart.first_name = first_name or cart.first_name
    cart.last_name = last_name or cart.last_name
    cart.items = list(items)
    cart.subtotal = subtotal
    cart.currency = (event.currency or settings.DEFAULT_CURRENCY).upper()
    db.commit()
    db.refresh(cart)
    return cart


def get_cart_by_token(db: Session, token: str) -> Optional[AbandonedCart]:
    if not token:
        return None
    return db.query(AbandonedCart).filter(AbandonedCart.cart_token == token).first()


def unsubscribe_cart(db: Session, token: str) -> Optional[AbandonedCart]:
    cart = get_cart_by_token(db, token)
    if cart is None:
        return None
    if cart.unsubscribed_at is None:
        cart.unsubscribed_at = utcnow()
        db.commit()
        db.refresh(cart)
        logger.info("abandoned_cart.unsubscribed", extra={"org_id": cart.org_id, "cart_id": cart.id})
    return cart


def list_carts(
    db: Session,
    org_id: int,
    *,
    status: Optional[str] = None,
    event_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AbandonedCart]:
    query = scoped_query(db, AbandonedCart, org_id)
    if status:
        query = query.filter(AbandonedCart.status == status)
    if event_id is not None:
        query = query.filter(AbandonedCart.event_id == event_id)
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                AbandonedCart.email.like(like),
                func.lower(AbandonedCart.first_name).like(like),
                func.lower(AbandonedCart.last_name).like(like),
            )
        )
    return query.order_by(AbandonedCart.created_at.desc(), AbandonedCart.id.desc()).offset(offset).limit(limit).all()


def cart_stats(db: Session, org_id: int) -> dict[str, Any]:
    rows = (
        scoped_query(db, AbandonedCart, org_id)
        .with_entities(AbandonedCart.status, AbandonedCart.subtotal, AbandonedCart.notification_count)
        .all()
    )
    abandoned = [row for row in rows if row.status == CartStatusEnum.ABANDONED]
    recovered = [row for row in rows if row.status == CartStatusEnum.RECOVERED]
    pipeline = []
    for step in range(1, PIPELINE_STEPS + 1):
        recovered_here = [row for row in recovered if row.notification_count == step]
        pipeline.append(
            {
                "step": step,
                "sent": sum(1 for row in rows if row.notification_count >= step),
                "recovered": len(recovered_here),
                "recovered_value": round_half_up(sum(float(row.subtotal or 0) for row in recovered_here)),
            }
        )
    return {
        "total": len(rows),
        "abandoned": len(abandoned),
        "recovered": len(recovered),
        "expired": sum(1 for row in rows if row.status == CartStatusEnum.EXPIRED),
        "total_value": round_half_up(sum(float(row.subtotal or 0) for row in abandoned)),
        "recovered_value": round_half_up(sum(float(row.subtotal or 0) for row in recovered)),
        "pipeline": pipeline,
        "recovered_without_email": sum(1 for row in recovered if row.notification_count == 0),
    }


def recovery_urls(cart: AbandonedCart, event: Event) -> tuple[str, str]:
    base = settings.APP_BASE_URL.rstrip("/")
    return (
        f"{base}/event/{event.slug}?restore={cart.cart_token}",
        f"{base}/abandoned-carts/unsubscribe?token={cart.cart_token}",
    )


def _bump(cart: AbandonedCart, now: datetime) -> None:
    cart.notification_count = (cart.notification_count or 0) + 1
    cart.notified_at = now


def _expire_stale(db: Session, org_id: int, now: datetime) -> int:
    cutoff = now - timedelta(days=settings.ABANDONED_CART_EXPIRY_DAYS)
    count = (
        db.query(AbandonedCart)
        .filter(
            AbandonedCart.org_id == org_id,
            AbandonedCart.status == CartStatusEnum.ABANDONED,
            AbandonedCart.created_at < cutoff,
        )
        .update({"status": CartStatusEnum.EXPIRED, "updated_at": now}, synchronize_session=False)
    )
    db.commit()
    return count


def _unsubscribed_emails(db: Session, org_id: int) -> set[str]:
    return {
        email.lower()
        for (email,) in db.query(AbandonedCart.email).filter(
            AbandonedCart.org_id == org_id,
            AbandonedCart.unsubscribed_at.isnot(None),
        )
    }


def process_org_carts(db: Session, org_id: int, automation: dict[str, Any], summary: dict[str, int], now: datetime) -> None:
    summary["expired"] += _expire_stale(db, org_id, now)
    unsubscribed = _unsubscribed_emails(db, org_id)
    org = get_org_by_id(db, org_id)
    org_name = org.name if org else "Entry"

    for index, step in enumerate(automation.get("steps") or []):
        delay = timedelta(minutes=int(step.get("delay_minutes") or 0))
        carts = (
            db.query(AbandonedCart)
            .filter(
                AbandonedCart.org_id == org_id,
                AbandonedCart.status == CartStatusEnum.ABANDONED,
                AbandonedCart.notification_count == index,
                AbandonedCart.created_at < now - delay,
            )
            .order_by(AbandonedCart.created_at.asc())
            .limit(settings.ABANDONED_CART_BATCH_SIZE)
            .all()
        )
        for cart in carts:
            summary["processed"] += 1
            if cart.email.lower() in unsubscribed or not step.get("enabled", True):
                _bump(cart, now)
                db.commit()
                summary["skipped_disabled"] += 1
                continue

            event = db.get(Event, cart.event_id)
            if event is None:
                _bump(cart, now)
                db.commit()
                summary["failed"] += 1
                continue
            if event.status != EventStatusEnum.LIVE or (event.date_start and event.date_start < now):
                cart.status = CartStatusEnum.EXPIRED
                db.commit()
                summary["expired"] += 1
                continue

            recovery_url, unsubscribe_url = recovery_urls(cart, event)
            message = abandoned_cart(
                cart,
                event=event,
                org_name=org_name,
                step=step,
                recovery_url=recovery_url,
                unsubscribe_url=unsubscribe_url,
            )
            log = send_email(db, message, org_id=org_id, metadata={"cart_id": cart.id, "step": index})
            if log.status != EmailStatusEnum.SENT:
                summary["failed"] += 1
                continue
            _bump(cart, now)
            db.commit()
            summary["sent"] += 1


def run_abandoned_cart_job(db: Session, *, now: Optional[datetime] = None) -> dict[str, int]:
    now = now or utcnow()
    summary = {"expired": 0, "processed": 0, "sent": 0, "skipped_disabled": 0, "failed": 0}
    rows = db.query(OrgSetting).filter(OrgSetting.key == SETTINGS_ABANDONED_CARTS).order_by(OrgSetting.org_id.asc()).all()
    for row in rows:
        automation = {**DEFAULT_AUTOMATION_SETTINGS, **(row.data or {})}
        if not automation.get("enabled") or not automation.get("steps"):
            continue
        try:
            process_org_carts(db, row.org_id, automation, summary, now)
        except Exception:
            db.rollback()
            logger.exception("abandoned_cart.org_failed", extra={"org_id": row.org_id})
            summary["failed"] += 1
    logger.info("abandoned_cart.run_complete", extra=summary)
    return summary

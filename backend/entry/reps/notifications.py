"""
In-app notifications and emails for reps.

Both are side effects of something that already happened (a sale, a review,
a level-up), so email failures are logged and swallowed.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from entry.crud.organizations import get_org_by_id
from entry.crud.settings import SETTINGS_REPS, get_setting
from entry.emails.client import send_email
from entry.emails.templates import rep_email
from entry.models.reps import Rep, RepNotification


logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    *,
    rep: Rep,
    type: str,
    title: str,
    body: str | None = None,
    link: str | None = None,
    metadata: Optional[dict[str, Any]] = None,
) -> RepNotification:
    notification = RepNotification(
        org_id=rep.org_id,
        rep_id=rep.id,
        type=type,
        title=title,
        body=body,
        link=link,
        metadata_json=metadata or {},
    )
    db.add(notification)
    return notification


def list_notifications(db: Session, rep: Rep, *, unread_only: bool = False, limit: int = 50) -> list[RepNotification]:
    query = db.query(RepNotification).filter(
        RepNotification.org_id == rep.org_id,
        RepNotification.rep_id == rep.id,
    )
    if unread_only:
        query = query.filter(RepNotification.read.is_(False))
    return query.order_by(RepNotification.created_at.desc(), RepNotification.id.desc()).limit(limit).all()


def mark_notifications_read(db: Session, rep: Rep, ids: Optional[list[int]] = None) -> int:
    query = db.query(RepNotification).filter(
        RepNotification.org_id == rep.org_id,
        RepNotification.rep_id == rep.id,
        RepNotification.read.is_(False),
    )
    if ids:
        query = query.filter(RepNotification.id.in_(ids))
    count = query.update({"read": True}, synchronize_session=False)
    db.commit()
    return count


def send_rep_email(db: Session, rep: Rep, kind: str, data: dict[str, Any]) -> None:
    """Fire-and-forget: never raises."""
    try:
        org = get_org_by_id(db, rep.org_id)
        rep_settings = get_setting(db, rep.org_id, SETTINGS_REPS, {"email_from_name": "Entry Reps"})
        message = rep_email(
            kind,
            rep=rep,
            org_name=org.name if org else "Entry",
            data=data,
            from_name=rep_settings.get("email_from_name"),
        )
        if message is None:
            logger.warning("rep_email.unknown_kind", extra={"kind": kind, "org_id": rep.org_id})
            return
        send_email(db, message, org_id=rep.org_id, metadata={"rep_id": rep.id, "kind": kind})
    except Exception:
        db.rollback()
        logger.exception("rep_email.failed", extra={"kind": kind, "org_id": rep.org_id})

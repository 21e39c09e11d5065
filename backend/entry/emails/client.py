from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import resend
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.metrics import EMAILS_TOTAL
from entry.models.email_logs import EmailLog
from entry.models.enums import EmailStatusEnum


logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html: str
    text: str
    template: str
    from_name: Optional[str] = None
    reply_to: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)


def _from_header(from_name: Optional[str]) -> str:
    return f"{from_name or settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>"


def _deliver(message: OutgoingEmail) -> Optional[str]:
    resend.api_key = settings.RESEND_API_KEY
    params: dict[str, Any] = {
        "from": _from_header(message.from_name),
        "to": [message.to],
        "subject": message.subject,
        "html": message.html,
        "text": message.text,
    }
    if message.reply_to:
        params["reply_to"] = message.reply_to
    if message.attachments:
        params["attachments"] = [
            {"filename": a.filename, "content": list(a.content), "content_type": a.content_type}
            for a in message.attachments
        ]
    result = resend.Emails.send(params)
    if isinstance(result, dict):
        return result.get("id")
    return getattr(result, "id", None)


def send_email(
    db: Session,
    message: OutgoingEmail,
    *,
    org_id: int | None = None,
    metadata: dict | None = None,
) -> EmailLog:
    """
    Send through Resend and record the outcome. Never raises on provider
    failure; callers are fire-and-forget side effects of a committed write.
    """
    status = EmailStatusEnum.SENT
    provider_id = None
    error = None
    if not settings.RESEND_API_KEY:
        status = EmailStatusEnum.SKIPPED
        error = "RESEND_API_KEY not configured"
        logger.warning("email.skipped", extra={"template": message.template, "org_id": org_id})
    else:
        try:
            provider_id = _deliver(message)
        except Exception as exc:
            status = EmailStatusEnum.FAILED
            error = str(exc)[:500]
            logger.exception("email.failed", extra={"template": message.template, "org_id": org_id})

    EMAILS_TOTAL.labels(message.template, status.value).inc()
    entry = EmailLog(
        org_id=org_id,
        to_email=message.to,
        template=message.template,
        subject=message.subject,
        status=status,
        provider_id=provider_id,
        error=error,
        metadata_json=metadata or None,
    )
    db.add(entry)
    db.commit()
    return entry

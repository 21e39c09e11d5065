"""
Platform alert emails for critical payment and health events.

Alerts go to PLATFORM_ALERT_EMAIL and are throttled per subject so a burst
of identical failures produces one email per cooldown window.
"""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Optional

from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.emails.client import send_email
from entry.emails.templates import platform_alert


logger = logging.getLogger(__name__)

_cooldowns: dict[str, float] = {}
_lock = Lock()


def _claim_cooldown(subject: str, now: float) -> bool:
    window = settings.ALERT_COOLDOWN_MINUTES * 60
    with _lock:
        expires_at = _cooldowns.get(subject)
        if expires_at and now < expires_at:
            return False
        _cooldowns[subject] = now + window
        return True


def reset_cooldowns() -> None:
    with _lock:
        _cooldowns.clear()


def send_platform_alert(
    db: Session,
    *,
    subject: str,
    lines: list[str],
    severity: str = "critical",
    now: Optional[float] = None,
) -> bool:
    """Returns True when an email was handed to the provider."""
    if not settings.PLATFORM_ALERT_EMAIL:
        logger.warning("platform_alert.not_configured", extra={"subject": subject})
        return False
    if not _claim_cooldown(subject, time.monotonic() if now is None else now):
        return False
    prefix = "[CRITICAL]" if severity == "critical" else "[WARNING]"
    message = platform_alert(
        to_email=settings.PLATFORM_ALERT_EMAIL,
        subject=f"{prefix} {subject}",
        lines=lines,
    )
    log = send_email(db, message, metadata={"severity": severity})
    return log.status.value == "sent"

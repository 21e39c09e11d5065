from __future__ import annotations

import re
import secrets
import string

from entry.core.config import settings


TICKET_CODE_ALPHABET = string.ascii_uppercase + string.digits
TICKET_CODE_LENGTH = 8
ORDER_SEQUENCE_WIDTH = 5


def slugify(name: str, *, fallback: str = "org") -> str:
    slug = name.strip().lower()
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug or fallback


def normalize_prefix(prefix: str | None) -> str:
    cleaned = re.sub(r"[^A-Z0-9]", "", (prefix or "").upper())
    return cleaned or settings.DEFAULT_ORDER_PREFIX


def format_order_number(prefix: str, sequence: int) -> str:
    return f"{normalize_prefix(prefix)}-{sequence:0{ORDER_SEQUENCE_WIDTH}d}"


def parse_order_sequence(order_number: str | None) -> int:
    """Trailing integer of an order number, or 0 when it has none."""
    if not order_number:
        return 0
    match = re.search(r"(\d+)$", order_number)
    return int(match.group(1)) if match else 0


def generate_ticket_code(prefix: str | None = None) -> str:
    body = "".join(secrets.choice(TICKET_CODE_ALPHABET) for _ in range(TICKET_CODE_LENGTH))
    return f"{normalize_prefix(prefix)}-{body}"


def generate_token(nbytes: int = 24) -> str:
    return secrets.token_urlsafe(nbytes)


def generate_test_payment_ref() -> str:
    return f"TEST-{secrets.token_hex(8).upper()}"


def rep_discount_code(first_name: str | None, event_slug: str | None) -> str:
    """FIRSTNAME-EVENTSLUG style code, uppercased and stripped to A-Z0-9."""
    name = re.sub(r"[^A-Z0-9]", "", (first_name or "REP").upper())[:12] or "REP"
    event = re.sub(r"[^A-Z0-9]", "", (event_slug or "").upper())[:12]
    return f"{name}{event}" if event else name

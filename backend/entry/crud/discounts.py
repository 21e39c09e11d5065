from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from entry.core.money import format_amount, round_half_up
from entry.core.time import utcnow
from entry.models.discounts import Discount
from entry.models.enums import DiscountStatusEnum, DiscountTypeEnum
from entry.tenancy.scoping import scoped_query


def normalize_code(code: str) -> str:
    return code.strip().upper()


def get_discount_by_code(db: Session, org_id: int, code: str) -> Discount | None:
    if not code or not code.strip():
        return None
    return scoped_query(db, Discount, org_id).filter(Discount.code == normalize_code(code)).first()


def list_discounts(db: Session, org_id: int) -> list[Discount]:
    return scoped_query(db, Discount, org_id).order_by(Discount.created_at.desc(), Discount.id.desc()).all()


def code_exists(db: Session, org_id: int, code: str, *, exclude_id: int | None = None) -> bool:
    query = scoped_query(db, Discount, org_id).filter(Discount.code == normalize_code(code))
    if exclude_id is not None:
        query = query.filter(Discount.id != exclude_id)
    return db.query(query.exists()).scalar()


def create_discount(db: Session, *, org_id: int, payload: dict, commit: bool = True) -> Discount:
    data = dict(payload)
    data["code"] = normalize_code(data["code"])
    discount = Discount(org_id=org_id, **data)
    db.add(discount)
    if commit:
        db.commit()
        db.refresh(discount)
    else:
        db.flush()
    return discount


def update_discount(db: Session, discount: Discount, *, changes: dict) -> Discount:
    if changes.get("code"):
        changes["code"] = normalize_code(changes["code"])
    for key, value in changes.items():
        setattr(discount, key, value)
    db.commit()
    db.refresh(discount)
    return discount


def delete_discount(db: Session, discount: Discount) -> None:
    db.delete(discount)
    db.commit()


def validate_discount(
    db: Session,
    org_id: int,
    code: str | None,
    *,
    event_id: int | None = None,
    subtotal: float | None = None,
    currency: str = "gbp",
    now: Optional[datetime] = None,
) -> tuple[Optional[Discount], Optional[str]]:
    """
    Look up an active code and run the checkout checks in order.

    Returns (discount, None) when usable, otherwise (None, buyer-facing reason).
    """
    if not code or not code.strip():
        return None, "Please enter a discount code"
    discount = get_discount_by_code(db, org_id, code)
    if discount is None or discount.status != DiscountStatusEnum.ACTIVE:
        return None, "Invalid discount code"

    now = now or utcnow()
    if discount.starts_at and discount.starts_at > now:
        return None, "This discount code is not yet active"
    if discount.expires_at and discount.expires_at < now:
        return None, "This discount code has expired"
    if discount.max_uses is not None and discount.used_count >= discount.max_uses:
        return None, "This discount code has reached its usage limit"
    if discount.applicable_event_ids and event_id is not None:
        allowed = {int(value) for value in discount.applicable_event_ids}
        if int(event_id) not in allowed:
            return None, "This discount code is not valid for this event"
    if discount.min_order_amount is not None and subtotal is not None and subtotal < discount.min_order_amount:
        return None, f"Minimum order of {format_amount(discount.min_order_amount, currency)} required"
    return discount, None


def discount_amount(subtotal: float, discount: Discount | None) -> float:
    if discount is None or subtotal <= 0:
        return 0.0
    if discount.type == DiscountTypeEnum.PERCENTAGE:
        amount = subtotal * min(float(discount.value), 100.0) / 100
    else:
        amount = float(discount.value)
    return round_half_up(min(amount, subtotal))


def apply_discount(subtotal: float, discount: Discount | None) -> float:
    return round_half_up(max(0.0, subtotal - discount_amount(subtotal, discount)))

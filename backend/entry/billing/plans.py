"""
Platform plans (fee tiers) and per-org plan selection.

The plan only changes what the platform takes as an application fee on
connected-account charges; ticket prices are untouched.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from entry.crud.settings import SETTINGS_PLAN, get_setting, update_setting


DEFAULT_PLAN = "starter"

PLANS: dict[str, dict[str, object]] = {
    "starter": {
        "plan_name": "Starter",
        "description": "Everything you need to start selling tickets.",
        "fee_percent": 3.5,
        "min_fee": 30,
        "monthly_price": 0,
        "card_rate_label": "5% + 50p",
        "trial_days": 0,
        "features": [
            "Unlimited events",
            "Stripe payouts",
            "Abandoned cart emails",
            "Rep program",
        ],
    },
    "pro": {
        "plan_name": "Pro",
        "description": "Lower fees for promoters selling every week.",
        "fee_percent": 2.0,
        "min_fee": 10,
        "monthly_price": 2900,
        "card_rate_label": "3.5% + 30p",
        "trial_days": 14,
        "features": [
            "Everything in Starter",
            "Lower platform fee",
            "Priority support",
        ],
    },
}


def normalize_plan_key(value: str | None) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower()


def get_plans() -> dict[str, dict[str, object]]:
    return {key: {"plan_id": key, **value} for key, value in PLANS.items()}


def get_plan(plan_key: str | None) -> dict[str, object]:
    key = normalize_plan_key(plan_key)
    if key not in PLANS:
        key = DEFAULT_PLAN
    return {"plan_id": key, **PLANS[key]}


def get_org_plan(db: Session, org_id: int) -> dict[str, object]:
    stored = get_setting(db, org_id, SETTINGS_PLAN, {"plan_id": DEFAULT_PLAN})
    return get_plan(stored.get("plan_id"))


def update_org_plan(db: Session, org_id: int, plan_id: str, *, assigned_by: str | None = None) -> dict[str, object]:
    key = normalize_plan_key(plan_id)
    if key not in PLANS:
        raise ValueError(f"Unknown plan: {plan_id}")
    update_setting(db, org_id, SETTINGS_PLAN, {"plan_id": key, "assigned_by": assigned_by})
    return get_plan(key)

from __future__ import annotations

import copy
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entry.models.organizations import OrgSetting


SETTINGS_VAT = "vat"
SETTINGS_REPS = "reps"
SETTINGS_PLAN = "plan"
SETTINGS_ABANDONED_CARTS = "abandoned_cart_automation"


def get_setting_row(db: Session, org_id: int, key: str) -> OrgSetting | None:
    return (
        db.query(OrgSetting)
        .filter(OrgSetting.org_id == org_id, OrgSetting.key == key)
        .first()
    )


def get_setting(db: Session, org_id: int, key: str, default: dict[str, Any] | None = None) -> dict[str, Any]:
    """Stored data merged over a copy of `default` (shallow, top-level keys)."""
    merged = copy.deepcopy(default) if default else {}
    row = get_setting_row(db, org_id, key)
    if row and isinstance(row.data, dict):
        merged.update(row.data)
    return merged


def update_setting(db: Session, org_id: int, key: str, changes: dict[str, Any], *, commit: bool = True) -> dict[str, Any]:
    row = get_setting_row(db, org_id, key)
    if row is None:
        try:
            with db.begin_nested():
                row = OrgSetting(org_id=org_id, key=key, data=dict(changes))
                db.add(row)
        except IntegrityError:
            # Concurrent first write; merge into the row that won.
            row = get_setting_row(db, org_id, key)
            row.data = {**(row.data or {}), **changes}
    else:
        row.data = {**(row.data or {}), **changes}
    if commit:
        db.commit()
        db.refresh(row)
    return dict(row.data)

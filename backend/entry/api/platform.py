from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from entry.api.dependencies import require_platform_owner
from entry.core.db import get_db
from entry.models.payment_events import PaymentEvent
from entry.models.users import User
from entry.payments.health import DEFAULT_PERIOD, PERIODS, build_payment_health, serialize_payment_event
from entry.payments.monitor import resolve_payment_event
from entry.schemas.payments import PaymentEventRead, ResolveRequest


router = APIRouter(prefix="/platform", tags=["platform"])


@router.get("/payment-health")
def payment_health(
    period: str = Query(default=DEFAULT_PERIOD),
    org_id: Optional[int] = None,
    db: Session = Depends(get_db),
    _owner: User = Depends(require_platform_owner()),
):
    if period not in PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"period must be one of {', '.join(PERIODS)}",
        )
    return build_payment_health(db, period, org_id=org_id)


@router.post("/payment-events/{event_id}/resolve", response_model=PaymentEventRead)
def resolve_event(
    event_id: int,
    payload: ResolveRequest,
    db: Session = Depends(get_db),
    owner: User = Depends(require_platform_owner()),
):
    entry = db.get(PaymentEvent, event_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment event not found")
    notes = payload.notes or f"Resolved by {owner.email}"
    return serialize_payment_event(resolve_payment_event(db, entry, notes=notes))

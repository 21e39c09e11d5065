from typing import Any, Optional

from pydantic import BaseModel, Field


class ResolveRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class PaymentEventRead(BaseModel):
    id: int
    org_id: Optional[int] = None
    type: str
    severity: str
    event_id: Optional[int] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_account_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    customer_email: Optional[str] = None
    ip_address: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    resolved: bool
    resolved_at: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[str] = None


class JobResponse(BaseModel):
    status: str = "ok"
    results: dict[str, Any]

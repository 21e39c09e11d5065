from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ScanRequest(BaseModel):
    scanned_by: Optional[str] = None
    location: Optional[str] = None
    event_id: Optional[int] = None


class ScanResponse(BaseModel):
    status: str
    ticket_code: str
    ticket_type: Optional[str] = None
    holder_name: Optional[str] = None
    merch_size: Optional[str] = None
    merch_collected: bool = False
    order_number: Optional[str] = None
    scanned_at: Optional[datetime] = None
    scanned_by: Optional[str] = None


class GuestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    qty: int = Field(default=1, ge=1, le=50)
    notes: Optional[str] = None


class GuestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    qty: int
    notes: Optional[str] = None
    added_by: Optional[str] = None
    checked_in: bool
    checked_in_count: int
    checked_in_at: Optional[datetime] = None


class GuestCheckIn(BaseModel):
    count: int = Field(default=1, ge=1)


class GuestListResponse(BaseModel):
    entries: list[GuestRead]
    summary: dict[str, int]

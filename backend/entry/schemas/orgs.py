from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from entry.models.enums import MembershipStatusEnum, RoleEnum


class OrganizationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    order_prefix: str
    support_email: Optional[str] = None
    stripe_account_id: Optional[str] = None
    created_at: datetime


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    order_prefix: Optional[str] = Field(default=None, max_length=12)
    support_email: Optional[EmailStr] = None
    stripe_account_id: Optional[str] = None


class MemberRead(BaseModel):
    membership_id: int
    user_id: int
    email: str
    full_name: Optional[str] = None
    role: RoleEnum
    status: MembershipStatusEnum
    created_at: datetime


class MemberInvite(BaseModel):
    email: EmailStr
    role: RoleEnum = RoleEnum.STAFF
    full_name: Optional[str] = None


class MemberDeleteResponse(BaseModel):
    success: bool

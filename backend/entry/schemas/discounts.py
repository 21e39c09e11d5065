from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from entry.models.enums import DiscountStatusEnum, DiscountTypeEnum


class DiscountBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    type: DiscountTypeEnum = DiscountTypeEnum.PERCENTAGE
    value: float = Field(..., ge=0)
    status: DiscountStatusEnum = DiscountStatusEnum.ACTIVE
    max_uses: Optional[int] = Field(default=None, ge=1)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    applicable_event_ids: Optional[list[int]] = None
    min_order_amount: Optional[float] = Field(default=None, ge=0)
    rep_id: Optional[int] = None

    @field_validator("code")
    @classmethod
    def clean_code(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not cleaned:
            raise ValueError("code is required")
        return cleaned

    @model_validator(mode="after")
    def check_percentage(self):
        if self.type == DiscountTypeEnum.PERCENTAGE and self.value > 100:
            raise ValueError("percentage discounts cannot exceed 100")
        return self


class DiscountCreate(DiscountBase):
    pass


class DiscountUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = None
    type: Optional[DiscountTypeEnum] = None
    value: Optional[float] = Field(default=None, ge=0)
    status: Optional[DiscountStatusEnum] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    applicable_event_ids: Optional[list[int]] = None
    min_order_amount: Optional[float] = Field(default=None, ge=0)


class DiscountRead(DiscountBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    used_count: int
    created_at: datetime


class DiscountValidateRequest(BaseModel):
    code: Optional[str] = None
    event_id: Optional[int] = None
    subtotal: Optional[float] = None


class PublicDiscount(BaseModel):
    code: str
    type: DiscountTypeEnum
    value: float
    amount_off: Optional[float] = None


class DiscountValidateResponse(BaseModel):
    valid: bool
    discount: Optional[PublicDiscount] = None
    error: Optional[str] = None

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from entry.models.enums import EventStatusEnum, PaymentMethodEnum, TicketTypeStatusEnum


class TicketTypeBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    price: float = Field(default=0, ge=0)
    capacity: Optional[int] = Field(default=None, ge=0)
    status: TicketTypeStatusEnum = TicketTypeStatusEnum.ACTIVE
    sort_order: Optional[int] = None
    group_name: Optional[str] = None
    min_per_order: int = Field(default=1, ge=1)
    max_per_order: int = Field(default=10, ge=1)
    includes_merch: bool = False
    merch_name: Optional[str] = None
    merch_sizes: Optional[list[str]] = None


class TicketTypeCreate(TicketTypeBase):
    pass


class TicketTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    capacity: Optional[int] = Field(default=None, ge=0)
    status: Optional[TicketTypeStatusEnum] = None
    sort_order: Optional[int] = None
    group_name: Optional[str] = None
    min_per_order: Optional[int] = Field(default=None, ge=1)
    max_per_order: Optional[int] = Field(default=None, ge=1)
    includes_merch: Optional[bool] = None
    merch_name: Optional[str] = None
    merch_sizes: Optional[list[str]] = None


class TicketTypeRead(TicketTypeBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    sold: int
    sort_order: int


class PublicTicketType(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    price: float
    group_name: Optional[str] = None
    min_per_order: int
    max_per_order: int
    includes_merch: bool
    merch_name: Optional[str] = None
    merch_sizes: Optional[list[str]] = None
    sold_out: bool = False


def _check_release_modes(value):
    if value is None:
        return value
    for mode in value.values():
        if mode not in {"all", "sequential"}:
            raise ValueError("release mode must be 'all' or 'sequential'")
    return value


class EventBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    status: EventStatusEnum = EventStatusEnum.DRAFT
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    city: Optional[str] = None
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    doors_time: Optional[str] = None
    age_restriction: Optional[str] = None
    currency: str = "GBP"
    payment_method: PaymentMethodEnum = PaymentMethodEnum.STRIPE
    stripe_account_id: Optional[str] = None
    platform_fee_percent: Optional[float] = Field(default=None, ge=0, le=100)
    group_release_mode: Optional[dict[str, str]] = None

    @field_validator("group_release_mode")
    @classmethod
    def check_release_modes(cls, value):
        return _check_release_modes(value)


class EventCreate(EventBase):
    pass


class EventUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    status: Optional[EventStatusEnum] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    city: Optional[str] = None
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    doors_time: Optional[str] = None
    age_restriction: Optional[str] = None
    currency: Optional[str] = None
    payment_method: Optional[PaymentMethodEnum] = None
    stripe_account_id: Optional[str] = None
    platform_fee_percent: Optional[float] = Field(default=None, ge=0, le=100)
    group_release_mode: Optional[dict[str, str]] = None

    @field_validator("group_release_mode")
    @classmethod
    def check_release_modes(cls, value):
        return _check_release_modes(value)


class EventRead(EventBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    created_at: datetime
    updated_at: datetime


class EventDetail(EventRead):
    ticket_types: list[TicketTypeRead] = Field(default_factory=list)


class PublicEvent(BaseModel):
    id: int
    slug: str
    name: str
    description: Optional[str] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    city: Optional[str] = None
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    doors_time: Optional[str] = None
    age_restriction: Optional[str] = None
    currency: str
    payment_method: PaymentMethodEnum
    ticket_types: list[PublicTicketType]
    # group name -> every ticket in release order, for the "coming next" roadmap
    sequential_groups: dict[str, list[PublicTicketType]] = Field(default_factory=dict)

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from entry.models.enums import OrderStatusEnum, PaymentMethodEnum, TicketStatusEnum


class OrderItemIn(BaseModel):
    ticket_type_id: int
    qty: int = Field(..., ge=1, le=100)
    merch_size: Optional[str] = None


class CustomerIn(BaseModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=40)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class PaymentIntentRequest(BaseModel):
    event_id: int
    items: list[OrderItemIn] = Field(..., min_length=1)
    customer: CustomerIn
    discount_code: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    stripe_account_id: Optional[str] = None
    amount: int
    currency: str
    subtotal: float
    discount_amount: float = 0
    application_fee: Optional[int] = None
    vat: Optional[dict[str, Any]] = None


class ConfirmOrderRequest(BaseModel):
    # Items, buyer and discount come from the PaymentIntent metadata.
    # The customer here only labels failure logs.
    payment_intent_id: str
    event_id: int
    customer: Optional[CustomerIn] = None


class AdminOrderCreate(BaseModel):
    event_id: int
    items: list[OrderItemIn] = Field(..., min_length=1)
    customer: CustomerIn
    payment_method: PaymentMethodEnum = PaymentMethodEnum.TEST
    payment_ref: Optional[str] = None
    discount_code: Optional[str] = None
    send_email: bool = True

    @field_validator("payment_method")
    @classmethod
    def no_stripe(cls, value: PaymentMethodEnum) -> PaymentMethodEnum:
        if value == PaymentMethodEnum.STRIPE:
            raise ValueError("Stripe orders are created by checkout")
        return value


class TicketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_code: str
    ticket_type_id: int
    status: TicketStatusEnum
    holder_first_name: Optional[str] = None
    holder_last_name: Optional[str] = None
    holder_email: Optional[str] = None
    merch_size: Optional[str] = None
    merch_collected: bool
    scanned_at: Optional[datetime] = None
    scanned_by: Optional[str] = None


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_type_id: int
    qty: int
    unit_price: float
    merch_size: Optional[str] = None


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    total_orders: int
    total_spent: float
    first_order_at: Optional[datetime] = None
    last_order_at: Optional[datetime] = None


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    event_id: int
    customer_id: int
    status: OrderStatusEnum
    subtotal: float
    fees: float
    total: float
    currency: str
    payment_method: PaymentMethodEnum
    payment_ref: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_json", "metadata"))
    created_at: datetime


class OrderDetail(OrderRead):
    customer: Optional[CustomerRead] = None
    items: list[OrderItemRead] = Field(default_factory=list)
    tickets: list[TicketRead] = Field(default_factory=list)


class OrderCreateResponse(BaseModel):
    order: OrderDetail
    created: bool


class CustomerDetail(CustomerRead):
    orders: list[OrderRead] = Field(default_factory=list)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    success: bool
    rep_reversal: Optional[dict[str, Any]] = None


class ClientCheckoutError(BaseModel):
    event_id: Optional[int] = None
    error_code: Optional[str] = Field(default=None, max_length=100)
    decline_code: Optional[str] = Field(default=None, max_length=100)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    payment_intent_id: Optional[str] = Field(default=None, max_length=255)
    customer_email: Optional[str] = Field(default=None, max_length=320)
    context: Optional[dict[str, Any]] = None


class CartCapture(BaseModel):
    event_id: int
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    items: list[OrderItemIn] = Field(..., min_length=1)


class CartRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    items: list[dict[str, Any]]
    subtotal: float
    currency: str
    status: str
    notification_count: int
    notified_at: Optional[datetime] = None
    recovered_at: Optional[datetime] = None
    recovered_order_id: Optional[int] = None
    unsubscribed_at: Optional[datetime] = None
    created_at: datetime

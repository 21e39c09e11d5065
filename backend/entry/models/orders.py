from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from entry.core.db import Base
from entry.models.enums import (
    OrderStatusEnum,
    PaymentMethodEnum,
    TicketStatusEnum,
    enum_type,
)
from entry.models.mixins import JSON_TYPE, MONEY, TimestampMixin


class Order(TimestampMixin, Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("org_id", "order_number", name="uq_orders_org_order_number"),
        UniqueConstraint("payment_ref", name="uq_orders_payment_ref"),
        Index("ix_orders_org_created", "org_id", "created_at"),
        Index("ix_orders_event_status", "event_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    order_number = Column(String, nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="RESTRICT"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(
        enum_type(OrderStatusEnum, "order_status_enum"),
        nullable=False,
        default=OrderStatusEnum.PENDING,
    )
    subtotal = Column(MONEY, nullable=False, default=0)
    fees = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False, default=0)
    currency = Column(String, nullable=False, default="GBP")
    payment_method = Column(
        enum_type(PaymentMethodEnum, "order_payment_method_enum"),
        nullable=False,
    )
    payment_ref = Column(String, nullable=True)
    refund_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    # discount_code, vat_*, rep_id, rep_points_awarded, ...
    metadata_json = Column("metadata", JSON_TYPE, nullable=False, default=dict)

    event = relationship("Event", lazy="selectin")
    customer = relationship("Customer", lazy="selectin")
    items = relationship("OrderItem", back_populates="order", lazy="selectin")
    tickets = relationship("Ticket", back_populates="order", lazy="selectin", order_by="Ticket.id")


class OrderItem(TimestampMixin, Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id", ondelete="RESTRICT"), nullable=False)
    qty = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    merch_size = Column(String, nullable=True)

    order = relationship("Order", back_populates="items")
    ticket_type = relationship("TicketType", lazy="selectin")


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("ticket_code", name="uq_tickets_code"),
        Index("ix_tickets_event_status", "event_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="RESTRICT"), nullable=False)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id", ondelete="RESTRICT"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    ticket_code = Column(String, nullable=False)
    status = Column(
        enum_type(TicketStatusEnum, "ticket_status_enum"),
        nullable=False,
        default=TicketStatusEnum.VALID,
    )
    holder_first_name = Column(String, nullable=True)
    holder_last_name = Column(String, nullable=True)
    holder_email = Column(String, nullable=True)
    merch_size = Column(String, nullable=True)
    merch_collected = Column(Boolean, nullable=False, default=False)
    merch_collected_at = Column(DateTime, nullable=True)
    scanned_at = Column(DateTime, nullable=True)
    scanned_by = Column(String, nullable=True)
    scan_location = Column(String, nullable=True)

    order = relationship("Order", back_populates="tickets")
    ticket_type = relationship("TicketType", lazy="selectin")

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
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
    EventStatusEnum,
    PaymentMethodEnum,
    TicketTypeStatusEnum,
    enum_type,
)
from entry.models.mixins import JSON_TYPE, MONEY, TimestampMixin


class Event(TimestampMixin, Base):
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("org_id", "slug", name="uq_events_org_slug"),
        Index("ix_events_org_status", "org_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    slug = Column(String, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        enum_type(EventStatusEnum, "event_status_enum"),
        nullable=False,
        default=EventStatusEnum.DRAFT,
    )
    venue_name = Column(String, nullable=True)
    venue_address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    date_start = Column(DateTime, nullable=True)
    date_end = Column(DateTime, nullable=True)
    doors_time = Column(String, nullable=True)
    age_restriction = Column(String, nullable=True)
    currency = Column(String, nullable=False, default="GBP")
    payment_method = Column(
        enum_type(PaymentMethodEnum, "event_payment_method_enum"),
        nullable=False,
        default=PaymentMethodEnum.STRIPE,
    )
    # Overrides the org's connected account when set.
    stripe_account_id = Column(String, nullable=True)
    # Overrides the plan fee when set.
    platform_fee_percent = Column(Float, nullable=True)
    # {"<group name>": "all" | "sequential"}; ungrouped tickets use "__ungrouped__".
    group_release_mode = Column(JSON_TYPE, nullable=True)

    ticket_types = relationship(
        "TicketType",
        back_populates="event",
        lazy="selectin",
        order_by="TicketType.sort_order",
    )


class TicketType(TimestampMixin, Base):
    __tablename__ = "ticket_types"
    __table_args__ = (
        Index("ix_ticket_types_event", "event_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(MONEY, nullable=False, default=0)
    # None or 0 means unlimited.
    capacity = Column(Integer, nullable=True)
    sold = Column(Integer, nullable=False, default=0)
    status = Column(
        enum_type(TicketTypeStatusEnum, "ticket_type_status_enum"),
        nullable=False,
        default=TicketTypeStatusEnum.ACTIVE,
    )
    sort_order = Column(Integer, nullable=False, default=0)
    group_name = Column(String, nullable=True)
    min_per_order = Column(Integer, nullable=False, default=1)
    max_per_order = Column(Integer, nullable=False, default=10)
    includes_merch = Column(Boolean, nullable=False, default=False)
    merch_name = Column(String, nullable=True)
    merch_sizes = Column(JSON_TYPE, nullable=True)

    event = relationship("Event", back_populates="ticket_types")

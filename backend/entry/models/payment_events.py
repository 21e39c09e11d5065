from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from entry.core.db import Base
from entry.core.time import utcnow
from entry.models.enums import PaymentEventTypeEnum, SeverityEnum, enum_type
from entry.models.mixins import JSON_TYPE, TimestampMixin


class PaymentEvent(TimestampMixin, Base):
    __tablename__ = "payment_events"
    __table_args__ = (
        Index("ix_payment_events_created", "created_at"),
        Index("ix_payment_events_type_created", "type", "created_at"),
        Index("ix_payment_events_org_created", "org_id", "created_at"),
        Index("ix_payment_events_severity_resolved", "severity", "resolved"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # Null for platform-level events (e.g. a webhook we could not attribute).
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True)
    type = Column(enum_type(PaymentEventTypeEnum, "payment_event_type_enum"), nullable=False)
    severity = Column(enum_type(SeverityEnum, "payment_event_severity_enum"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    stripe_payment_intent_id = Column(String, nullable=True)
    stripe_account_id = Column(String, nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    customer_email = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON_TYPE, nullable=False, default=dict)
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)


class WebhookEvent(Base):
    """Stripe event ids already processed; redeliveries are acknowledged without work."""

    __tablename__ = "stripe_webhook_events"
    __table_args__ = (
        UniqueConstraint("stripe_event_id", name="uq_stripe_webhook_events_event_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    stripe_event_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    processed_at = Column(DateTime, nullable=False, default=utcnow)

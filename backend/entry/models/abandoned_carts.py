from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint

from entry.core.db import Base
from entry.models.enums import CartStatusEnum, enum_type
from entry.models.mixins import JSON_TYPE, MONEY, TimestampMixin


class AbandonedCart(TimestampMixin, Base):
    __tablename__ = "abandoned_carts"
    __table_args__ = (
        UniqueConstraint("cart_token", name="uq_abandoned_carts_token"),
        Index("ix_abandoned_carts_org_status", "org_id", "status"),
        Index("ix_abandoned_carts_email_event", "email", "event_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    email = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    # [{"ticket_type_id", "name", "qty", "price", "merch_size"}]
    items = Column(JSON_TYPE, nullable=False, default=list)
    subtotal = Column(MONEY, nullable=False, default=0)
    currency = Column(String, nullable=False, default="GBP")
    status = Column(
        enum_type(CartStatusEnum, "abandoned_cart_status_enum"),
        nullable=False,
        default=CartStatusEnum.ABANDONED,
    )
    notification_count = Column(Integer, nullable=False, default=0)
    notified_at = Column(DateTime, nullable=True)
    recovered_at = Column(DateTime, nullable=True)
    recovered_order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    cart_token = Column(String, nullable=False)
    unsubscribed_at = Column(DateTime, nullable=True)

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from entry.core.db import Base
from entry.models.mixins import MONEY, TimestampMixin


class Customer(TimestampMixin, Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_customers_org_email"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    # Always stored lowercased.
    email = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    total_orders = Column(Integer, nullable=False, default=0)
    total_spent = Column(MONEY, nullable=False, default=0)
    first_order_at = Column(DateTime, nullable=True)
    last_order_at = Column(DateTime, nullable=True)

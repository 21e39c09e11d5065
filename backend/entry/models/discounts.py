from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint

from entry.core.db import Base
from entry.models.enums import DiscountStatusEnum, DiscountTypeEnum, enum_type
from entry.models.mixins import JSON_TYPE, MONEY, TimestampMixin


class Discount(TimestampMixin, Base):
    __tablename__ = "discounts"
    __table_args__ = (
        # Codes are stored uppercased so this is effectively case-insensitive.
        UniqueConstraint("org_id", "code", name="uq_discounts_org_code"),
        Index("ix_discounts_rep", "rep_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    code = Column(String, nullable=False)
    description = Column(String, nullable=True)
    type = Column(
        enum_type(DiscountTypeEnum, "discount_type_enum"),
        nullable=False,
        default=DiscountTypeEnum.PERCENTAGE,
    )
    value = Column(MONEY, nullable=False, default=0)
    status = Column(
        enum_type(DiscountStatusEnum, "discount_status_enum"),
        nullable=False,
        default=DiscountStatusEnum.ACTIVE,
    )
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    starts_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    applicable_event_ids = Column(JSON_TYPE, nullable=True)
    min_order_amount = Column(MONEY, nullable=True)
    rep_id = Column(Integer, ForeignKey("reps.id", ondelete="SET NULL"), nullable=True)

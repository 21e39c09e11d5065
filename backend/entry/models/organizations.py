from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from entry.core.db import Base
from entry.models.mixins import JSON_TYPE, TimestampMixin


class Organization(TimestampMixin, Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    order_prefix = Column(String, nullable=False, default="ENTRY")
    support_email = Column(String, nullable=True)
    stripe_account_id = Column(String, nullable=True, index=True)
    deleted_at = Column(DateTime, nullable=True)
    created_by_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    memberships = relationship("Membership", back_populates="organization", lazy="selectin")


class OrgSetting(TimestampMixin, Base):
    """Per-org JSON settings blob keyed by name (vat, reps, plan, ...)."""

    __tablename__ = "org_settings"
    __table_args__ = (
        UniqueConstraint("org_id", "key", name="uq_org_settings_org_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String, nullable=False)
    data = Column(JSON_TYPE, nullable=False, default=dict)


from sqlalchemy import Column, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from entry.core.db import Base
from entry.models.enums import MembershipStatusEnum, RoleEnum, enum_type
from entry.models.mixins import TimestampMixin


class Membership(TimestampMixin, Base):
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_membership_user_org"),
        Index("ix_memberships_org_id", "org_id"),
        Index("ix_memberships_user_id", "user_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    role = Column(enum_type(RoleEnum, "membership_role_enum"), nullable=False)
    status = Column(
        enum_type(MembershipStatusEnum, "membership_status_enum"),
        nullable=False,
        default=MembershipStatusEnum.ACTIVE,
    )
    created_by_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    organization = relationship("Organization", back_populates="memberships", lazy="selectin")
    user = relationship(
        "User",
        back_populates="memberships",
        foreign_keys=[user_id],
        lazy="selectin",
    )

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from entry.core.db import Base
from entry.models.mixins import TimestampMixin


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    is_platform_owner = Column(Boolean, nullable=False, default=False)

    memberships = relationship(
        "Membership",
        back_populates="user",
        lazy="selectin",
        foreign_keys="Membership.user_id",
    )

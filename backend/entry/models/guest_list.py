from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from entry.core.db import Base
from entry.models.mixins import TimestampMixin


class GuestListEntry(TimestampMixin, Base):
    __tablename__ = "guest_list_entries"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    qty = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)
    added_by = Column(String, nullable=True)
    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_count = Column(Integer, nullable=False, default=0)
    checked_in_at = Column(DateTime, nullable=True)

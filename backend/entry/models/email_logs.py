from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from entry.core.db import Base
from entry.models.enums import EmailStatusEnum, enum_type
from entry.models.mixins import JSON_TYPE, TimestampMixin


class EmailLog(TimestampMixin, Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_org_created", "org_id", "created_at"),
        Index("ix_email_logs_template", "template"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True)
    to_email = Column(String, nullable=False)
    template = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    status = Column(enum_type(EmailStatusEnum, "email_status_enum"), nullable=False)
    provider_id = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON_TYPE, nullable=True)

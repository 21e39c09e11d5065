from sqlalchemy import JSON, Column, DateTime, Numeric, event
from sqlalchemy.dialects.postgresql import JSONB

from entry.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")

# Major-unit money (26.50). Floats out so service arithmetic stays simple.
MONEY = Numeric(10, 2, asdecimal=False)


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @staticmethod
    def _touch_updated_at(mapper, connection, target) -> None:
        target.updated_at = utcnow()

    @classmethod
    def __declare_last__(cls) -> None:
        event.listen(cls, "before_update", cls._touch_updated_at)

"""initial schema

Revision ID: 0001a7c3e9b2
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op

from entry.core.db import Base
import entry.models  # noqa: F401

# revision identifiers, used by Alembic.
revision: str = "0001a7c3e9b2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Baseline: the full model metadata at the time of the first release.
    # Later revisions must use explicit op.* calls.
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())

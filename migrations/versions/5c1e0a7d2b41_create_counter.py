"""create counter

Revision ID: 5c1e0a7d2b41
Revises:
Create Date: 2026-10-18 09:12:44.301522

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e0a7d2b41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the singleton counter table."""
    op.create_table(
        "counter",
        sa.Column("slot", sa.Integer(), nullable=False),
        sa.Column("counter_id", sa.String(length=32), nullable=False),
        sa.Column("value", sa.BigInteger(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("value >= 0", name="ck_counter_value_non_negative"),
        sa.PrimaryKeyConstraint("slot"),
        sa.UniqueConstraint("counter_id"),
    )


def downgrade() -> None:
    """Drop the counter table."""
    op.drop_table("counter")

"""create price cache tables

Revision ID: 3c1d9a7e5b20
Revises:
Create Date: 2026-10-18 09:12:41.118305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1d9a7e5b20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "price_snapshots",
        sa.Column("channel_size_sat", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("quotes", sa.JSON(), nullable=False),
        sa.Column("provider_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("channel_size_sat"),
    )
    op.create_table(
        "price_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("channel_size_sat", sa.BigInteger(), nullable=False),
        sa.Column("quotes", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_price_history_recorded_at_desc",
        "price_history",
        [sa.text("recorded_at DESC")],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_price_history_recorded_at_desc", table_name="price_history")
    op.drop_table("price_history")
    op.drop_table("price_snapshots")

"""Add block reason to slots.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add block_reason column."""
    op.add_column("slots", sa.Column("block_reason", sa.Text(), nullable=True))


def downgrade() -> None:
    """Drop block_reason column."""
    with op.batch_alter_table("slots") as batch_op:
        batch_op.drop_column("block_reason")

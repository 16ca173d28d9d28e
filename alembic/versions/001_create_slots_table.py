"""Create slots table.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create slots table."""
    is_postgresql = op.get_bind().dialect.name == "postgresql"

    if is_postgresql:
        # Needed for the uuid = operator inside the GiST exclusion constraint
        op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    op.create_table(
        "slots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("clinician_id", sa.Uuid(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), server_default="open", nullable=False),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("end_time > start_time", name="slots_time_range_check"),
        sa.CheckConstraint(
            "status IN ('open', 'reserved', 'blocked', 'cancelled')",
            name="slots_status_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("idx_slots_clinician_start", "slots", ["clinician_id", "start_time"])

    if is_postgresql:
        # Open and reserved slots of one clinician never intersect
        op.execute(
            """
            ALTER TABLE slots
            ADD CONSTRAINT slots_no_overlap
            EXCLUDE USING gist (
                clinician_id WITH =,
                tstzrange(start_time, end_time, '[)') WITH &&
            )
            WHERE (status IN ('open', 'reserved'))
            """
        )


def downgrade() -> None:
    """Drop slots table."""
    if op.get_bind().dialect.name == "postgresql":
        op.execute("ALTER TABLE slots DROP CONSTRAINT IF EXISTS slots_no_overlap")

    op.drop_index("idx_slots_clinician_start", table_name="slots")
    op.drop_table("slots")

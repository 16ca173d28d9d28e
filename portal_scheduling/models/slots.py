"""Slots table model using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    Table,
    Text,
    Uuid,
)

from portal_scheduling.models.types import UTCDateTime, metadata

SLOT_STATUSES = ("open", "reserved", "blocked", "cancelled")

# Bookable time slots per clinician
slots = Table(
    "slots",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Foreign reference owned by the identity provider
    Column("clinician_id", Uuid, nullable=False),
    Column("start_time", UTCDateTime, nullable=False),
    Column("end_time", UTCDateTime, nullable=False),
    Column("status", Text, nullable=False, server_default="open"),
    # Bumped on every status or time change
    Column("version", Integer, nullable=False, server_default="1"),
    Column("block_reason", Text, nullable=True),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    # Constraints
    CheckConstraint("end_time > start_time", name="slots_time_range_check"),
    CheckConstraint(
        "status IN ('open', 'reserved', 'blocked', 'cancelled')",
        name="slots_status_check",
    ),
    Index("idx_slots_clinician_start", "clinician_id", "start_time"),
)

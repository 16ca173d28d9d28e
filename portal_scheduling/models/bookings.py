"""Bookings table model using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Table,
    Text,
    Uuid,
    false,
)

from portal_scheduling.models.types import UTCDateTime, metadata

BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed")
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed")

# Patient reservations against slots
bookings = Table(
    "bookings",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Ownership / references
    Column("patient_id", Uuid, nullable=False),
    Column("clinician_id", Uuid, nullable=False),
    Column("slot_id", Uuid, ForeignKey("slots.id", ondelete="RESTRICT"), nullable=False),
    # Snapshot of the slot times when booked
    Column("start_time", UTCDateTime, nullable=False),
    Column("end_time", UTCDateTime, nullable=False),
    # Status management
    Column("status", Text, nullable=False, server_default="confirmed"),
    Column("reason_for_visit", Text, nullable=True),
    Column("is_walk_in", Boolean, nullable=False, server_default=false()),
    Column(
        "rescheduled_from_id",
        Uuid,
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
    ),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    Column("cancelled_at", UTCDateTime, nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
        name="bookings_status_check",
    ),
    Index("idx_bookings_patient_id", "patient_id"),
    Index("idx_bookings_clinician_start", "clinician_id", "start_time"),
)

# At most one pending/confirmed booking per slot
Index(
    "uq_bookings_active_slot",
    bookings.c.slot_id,
    unique=True,
    postgresql_where=bookings.c.status.in_(ACTIVE_BOOKING_STATUSES),
    sqlite_where=bookings.c.status.in_(ACTIVE_BOOKING_STATUSES),
)

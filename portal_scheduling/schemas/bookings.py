"""Booking schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BookingStatus(str, Enum):
    """Booking status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class BookingCreate(BaseModel):
    """Schema for booking a slot."""

    model_config = ConfigDict(extra="forbid")

    patient_id: UUID
    clinician_id: UUID
    slot_id: UUID
    reason_for_visit: str | None = Field(None, max_length=500)
    requires_confirmation: bool = Field(
        False,
        description="Create the booking as pending; staff or the clinician confirm it later",
    )


class BookingUpdate(BaseModel):
    """Schema for editing an active booking."""

    model_config = ConfigDict(extra="forbid")

    reason_for_visit: str | None = Field(..., max_length=500)


class BookingReschedule(BaseModel):
    """Schema for moving a booking to another slot."""

    model_config = ConfigDict(extra="forbid")

    new_slot_id: UUID
    reason_for_visit: str | None = Field(
        None,
        max_length=500,
        description="Overrides the original reason when given",
    )


class BookingResponse(BaseModel):
    """Booking as stored."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: UUID
    patient_id: UUID
    clinician_id: UUID
    slot_id: UUID
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    reason_for_visit: str | None = None
    is_walk_in: bool = False
    rescheduled_from_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "BookingResponse":
        """Parse a ``bookings`` row mapping."""
        return cls.model_validate(dict(row._mapping))

    @property
    def is_active(self) -> bool:
        """Whether the booking still holds its slot."""
        return self.status in ACTIVE_STATUSES


class BookingSummaryResponse(BaseModel):
    """Result of booking or rescheduling."""

    booking_id: UUID
    status: BookingStatus
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_booking(cls, booking: BookingResponse) -> "BookingSummaryResponse":
        """Project a booking to its summary shape."""
        return cls(
            booking_id=booking.id,
            status=booking.status,
            start_time=booking.start_time,
            end_time=booking.end_time,
        )


class BookingStatusResponse(BaseModel):
    """Result of a status-only transition such as cancellation."""

    booking_id: UUID
    status: BookingStatus

"""Slot schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from portal_scheduling.core.clinic_time import ensure_utc


class SlotStatus(str, Enum):
    """Slot status enumeration."""

    OPEN = "open"
    RESERVED = "reserved"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class SlotCreate(BaseModel):
    """Schema for creating a new slot."""

    model_config = ConfigDict(extra="forbid")

    clinician_id: UUID
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_timezone(cls, v: datetime) -> datetime:
        """Require an explicit offset and normalize to UTC."""
        return ensure_utc(v)


class SlotUpdate(BaseModel):
    """Schema for moving an open slot to new times."""

    model_config = ConfigDict(extra="forbid")

    start_time: datetime | None = None
    end_time: datetime | None = None
    version: int | None = Field(
        None,
        ge=1,
        description="Version last read by the caller; the update fails if the slot has moved on",
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_timezone(cls, v: datetime | None) -> datetime | None:
        """Require an explicit offset and normalize to UTC."""
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def require_a_time(self) -> "SlotUpdate":
        """At least one bound must change."""
        if self.start_time is None and self.end_time is None:
            raise ValueError("start_time or end_time is required")
        return self


class SlotBlock(BaseModel):
    """Optional details when blocking a slot."""

    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(None, max_length=500)


class SlotResponse(BaseModel):
    """Slot as stored."""

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: UUID
    clinician_id: UUID
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    version: int
    block_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "SlotResponse":
        """Parse a ``slots`` row mapping."""
        return cls.model_validate(dict(row._mapping))


class AvailableSlotResponse(BaseModel):
    """Bookable slot as shown in the booking calendar."""

    slot_id: UUID
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_slot(cls, slot: SlotResponse) -> "AvailableSlotResponse":
        """Project a stored slot to its public calendar shape."""
        return cls(slot_id=slot.id, start_time=slot.start_time, end_time=slot.end_time)

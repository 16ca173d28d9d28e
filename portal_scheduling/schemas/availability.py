"""Availability schemas."""

from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field


class AvailabilityMonthResponse(BaseModel):
    """Day-level availability flags for a booking calendar month."""

    clinician_id: UUID
    year: int
    month: int = Field(..., ge=1, le=12)
    timezone: str
    available_dates: list[date]
    days: dict[date, bool]

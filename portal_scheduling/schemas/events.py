"""Domain events emitted after committed booking transitions."""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from portal_scheduling.schemas.bookings import BookingResponse


class BookingEventBase(BaseModel):
    """Fields shared by every booking event."""

    occurred_at: datetime
    actor_id: UUID | None = None
    booking: BookingResponse


class BookingCreated(BookingEventBase):
    """A patient booked a slot."""

    event_type: Literal["booking.created"] = "booking.created"


class BookingConfirmed(BookingEventBase):
    """A pending booking was confirmed."""

    event_type: Literal["booking.confirmed"] = "booking.confirmed"


class BookingCancelled(BookingEventBase):
    """A booking was cancelled and its slot released."""

    event_type: Literal["booking.cancelled"] = "booking.cancelled"


class BookingCompleted(BookingEventBase):
    """The visit took place."""

    event_type: Literal["booking.completed"] = "booking.completed"


class BookingRescheduled(BookingEventBase):
    """A booking was replaced by a new one on another slot."""

    event_type: Literal["booking.rescheduled"] = "booking.rescheduled"
    previous_booking: BookingResponse


BookingEvent = Annotated[
    BookingCreated | BookingConfirmed | BookingCancelled | BookingCompleted | BookingRescheduled,
    Field(discriminator="event_type"),
]

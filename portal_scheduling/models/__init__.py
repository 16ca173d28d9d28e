"""Database models."""

from portal_scheduling.models.bookings import bookings
from portal_scheduling.models.slots import slots
from portal_scheduling.models.types import metadata

__all__ = [
    "bookings",
    "metadata",
    "slots",
]

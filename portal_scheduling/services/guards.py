"""Conflict and dedup guards shared by the slot store and availability queries."""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from portal_scheduling.core.exceptions import InvalidRangeException, OverlapConflictException
from portal_scheduling.schemas.slots import SlotResponse, SlotStatus

# Statuses that occupy clinician time
BLOCKING_STATUSES = frozenset({SlotStatus.OPEN, SlotStatus.RESERVED})


def ensure_valid_range(start_time: datetime, end_time: datetime) -> None:
    """Reject empty or inverted intervals."""
    if end_time <= start_time:
        raise InvalidRangeException("End time must be after start time")


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open interval intersection: touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def ensure_no_overlap(
    start_time: datetime,
    end_time: datetime,
    existing: Iterable[SlotResponse],
) -> None:
    """
    Reject a candidate interval that intersects an open or reserved slot.

    Args:
        start_time: Candidate start
        end_time: Candidate end
        existing: Slots of the same clinician

    Raises:
        OverlapConflictException: On the first intersecting slot
    """
    for slot in existing:
        if slot.status not in BLOCKING_STATUSES:
            continue
        if intervals_overlap(start_time, end_time, slot.start_time, slot.end_time):
            raise OverlapConflictException(
                f"Time slot overlaps with slot {slot.id} "
                f"({slot.start_time.isoformat()} - {slot.end_time.isoformat()})"
            )


def dedupe_slots(slots: Iterable[SlotResponse]) -> list[SlotResponse]:
    """Drop repeated slot ids (first occurrence wins) and order by start time."""
    seen: dict[UUID, SlotResponse] = {}
    for slot in slots:
        seen.setdefault(slot.id, slot)
    return sorted(seen.values(), key=lambda s: (s.start_time, str(s.id)))

"""Slot store: persistence of clinician time slots."""

from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal_scheduling.core.clinic_time import Clock, ensure_utc, utc_now
from portal_scheduling.core.exceptions import (
    ConflictException,
    InvalidRangeException,
    InvalidTransitionException,
    NotFoundException,
    OverlapConflictException,
    SlotNotOpenException,
    VersionConflictException,
)
from portal_scheduling.models.slots import slots
from portal_scheduling.schemas.slots import SlotResponse, SlotStatus
from portal_scheduling.services.guards import (
    BLOCKING_STATUSES,
    dedupe_slots,
    ensure_no_overlap,
    ensure_valid_range,
)

logger = structlog.get_logger(__name__)

# PostgreSQL exclusion_violation, raised by the overlap constraint
EXCLUSION_VIOLATION = "23P01"


def _to_utc(value: datetime) -> datetime:
    try:
        return ensure_utc(value)
    except ValueError as e:
        raise InvalidRangeException(str(e)) from e


def is_exclusion_violation(error: IntegrityError) -> bool:
    """Check whether an integrity error came from the slot overlap constraint."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == EXCLUSION_VIOLATION


class SlotStore:
    """
    Reads and writes rows of the ``slots`` table.

    The store never commits; callers wrap calls in ``unit_of_work`` so that a
    booking and its slot flip land in the same transaction.
    """

    # Allowed status moves, everything else is rejected
    TRANSITIONS: dict[SlotStatus, frozenset[SlotStatus]] = {
        SlotStatus.OPEN: frozenset({SlotStatus.RESERVED, SlotStatus.BLOCKED, SlotStatus.CANCELLED}),
        SlotStatus.RESERVED: frozenset({SlotStatus.OPEN}),
    }

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        """Initialize store with database session and clock."""
        self.db = db
        self.clock = clock

    async def create_slot(
        self,
        clinician_id: UUID,
        start_time: datetime,
        end_time: datetime,
    ) -> SlotResponse:
        """
        Create an open slot.

        Args:
            clinician_id: Owning clinician
            start_time: Slot start (timezone-aware)
            end_time: Slot end (timezone-aware)

        Returns:
            Created slot

        Raises:
            InvalidRangeException: If the interval is empty, inverted or naive
            OverlapConflictException: If it intersects an open or reserved slot
        """
        start_time = _to_utc(start_time)
        end_time = _to_utc(end_time)
        ensure_valid_range(start_time, end_time)

        existing = await self._find_overlapping(clinician_id, start_time, end_time)
        ensure_no_overlap(start_time, end_time, existing)

        now = self.clock()
        stmt = (
            insert(slots)
            .values(
                id=uuid4(),
                clinician_id=clinician_id,
                start_time=start_time,
                end_time=end_time,
                status=SlotStatus.OPEN.value,
                version=1,
                created_at=now,
                updated_at=now,
            )
            .returning(slots)
        )

        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            if is_exclusion_violation(e):
                raise OverlapConflictException() from e
            raise

        slot = SlotResponse.from_row(result.fetchone())
        logger.info(
            "slot_created",
            slot_id=str(slot.id),
            clinician_id=str(clinician_id),
            start_time=slot.start_time.isoformat(),
        )
        return slot

    async def get_slot(self, slot_id: UUID) -> SlotResponse:
        """
        Get slot by ID.

        Raises:
            NotFoundException: If slot not found
        """
        result = await self.db.execute(select(slots).where(slots.c.id == slot_id))
        row = result.fetchone()

        if not row:
            raise NotFoundException(f"Slot with ID {slot_id} not found")

        return SlotResponse.from_row(row)

    async def list_open_slots(
        self,
        clinician_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[SlotResponse]:
        """
        Open slots starting inside ``[range_start, range_end)``.

        Returns:
            Unique slots ordered by start time
        """
        return await self.list_slots(clinician_id, range_start, range_end, SlotStatus.OPEN)

    async def list_slots(
        self,
        clinician_id: UUID,
        range_start: datetime,
        range_end: datetime,
        status: SlotStatus | None = None,
    ) -> list[SlotResponse]:
        """
        A clinician's slots starting inside ``[range_start, range_end)``.

        Args:
            clinician_id: Clinician whose schedule is read
            range_start: Inclusive lower bound on start time
            range_end: Exclusive upper bound on start time
            status: Optional status filter

        Returns:
            Unique slots ordered by start time
        """
        range_start = _to_utc(range_start)
        range_end = _to_utc(range_end)
        ensure_valid_range(range_start, range_end)

        conditions = [
            slots.c.clinician_id == clinician_id,
            slots.c.start_time >= range_start,
            slots.c.start_time < range_end,
        ]
        if status is not None:
            conditions.append(slots.c.status == status.value)

        stmt = select(slots).where(and_(*conditions)).order_by(slots.c.start_time.asc(), slots.c.id)
        result = await self.db.execute(stmt)

        return dedupe_slots(SlotResponse.from_row(row) for row in result.fetchall())

    async def update_slot_status(
        self,
        slot_id: UUID,
        new_status: SlotStatus,
        block_reason: str | None = None,
    ) -> SlotResponse:
        """
        Move a slot to a new status.

        The write only succeeds if the row still has the status and version
        that were read, so two racing callers cannot both take an open slot.

        Args:
            slot_id: Slot ID
            new_status: Target status
            block_reason: Stored when blocking, ignored otherwise

        Returns:
            Updated slot

        Raises:
            NotFoundException: If slot not found
            InvalidTransitionException: If the move is not allowed
            SlotNotOpenException: If an open slot changed under us
        """
        slot = await self.get_slot(slot_id)

        if new_status not in self.TRANSITIONS.get(slot.status, frozenset()):
            raise InvalidTransitionException(
                f"Slot {slot_id} cannot move from {slot.status.value} to {new_status.value}"
            )

        values = {
            "status": new_status.value,
            "version": slots.c.version + 1,
            "updated_at": self.clock(),
        }
        if new_status == SlotStatus.BLOCKED:
            values["block_reason"] = block_reason

        stmt = (
            update(slots)
            .where(
                and_(
                    slots.c.id == slot_id,
                    slots.c.status == slot.status.value,
                    slots.c.version == slot.version,
                )
            )
            .values(**values)
            .returning(slots)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()

        if row is None:
            logger.info("slot_status_race_lost", slot_id=str(slot_id), target=new_status.value)
            if slot.status == SlotStatus.OPEN:
                raise SlotNotOpenException(f"Slot {slot_id} is no longer open")
            raise InvalidTransitionException(f"Slot {slot_id} was modified concurrently")

        updated = SlotResponse.from_row(row)
        logger.info(
            "slot_status_changed",
            slot_id=str(slot_id),
            old_status=slot.status.value,
            new_status=updated.status.value,
            version=updated.version,
        )
        return updated

    async def update_slot_times(
        self,
        slot_id: UUID,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        expected_version: int | None = None,
    ) -> SlotResponse:
        """
        Move an open slot to new times.

        Missing bounds keep their stored value. The new interval is checked
        against the clinician's other open and reserved slots.

        Args:
            slot_id: Slot ID
            start_time: New start (timezone-aware)
            end_time: New end (timezone-aware)
            expected_version: Version the caller last read

        Returns:
            Updated slot with its version bumped

        Raises:
            NotFoundException: If slot not found
            VersionConflictException: If the slot changed since ``expected_version``
            InvalidTransitionException: If the slot is not open
            InvalidRangeException: If the new interval is empty, inverted or naive
            OverlapConflictException: If it intersects another open or reserved slot
        """
        slot = await self.get_slot(slot_id)

        if expected_version is not None and expected_version != slot.version:
            raise VersionConflictException(
                f"Slot has been modified by another user. Current version: {slot.version}"
            )
        if slot.status != SlotStatus.OPEN:
            raise InvalidTransitionException(
                f"Slot {slot_id} is {slot.status.value}; only open slots can be moved"
            )

        new_start = _to_utc(start_time) if start_time is not None else slot.start_time
        new_end = _to_utc(end_time) if end_time is not None else slot.end_time
        ensure_valid_range(new_start, new_end)

        existing = await self._find_overlapping(slot.clinician_id, new_start, new_end, exclude_id=slot_id)
        ensure_no_overlap(new_start, new_end, existing)

        stmt = (
            update(slots)
            .where(
                and_(
                    slots.c.id == slot_id,
                    slots.c.status == SlotStatus.OPEN.value,
                    slots.c.version == slot.version,
                )
            )
            .values(
                start_time=new_start,
                end_time=new_end,
                version=slots.c.version + 1,
                updated_at=self.clock(),
            )
            .returning(slots)
        )

        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            if is_exclusion_violation(e):
                raise OverlapConflictException(
                    "Updated time slot overlaps with an existing slot for this clinician"
                ) from e
            raise

        row = result.fetchone()
        if row is None:
            raise VersionConflictException(f"Slot {slot_id} was modified concurrently")

        updated = SlotResponse.from_row(row)
        logger.info(
            "slot_times_changed",
            slot_id=str(slot_id),
            start_time=updated.start_time.isoformat(),
            end_time=updated.end_time.isoformat(),
            version=updated.version,
        )
        return updated

    async def delete_slot(self, slot_id: UUID) -> None:
        """
        Remove a slot row.

        Callers make sure no booking references the slot first.

        Raises:
            NotFoundException: If slot not found
            ConflictException: If a booking still references the slot
            VersionConflictException: If the slot changed while deleting
        """
        slot = await self.get_slot(slot_id)

        try:
            result = await self.db.execute(
                delete(slots).where(and_(slots.c.id == slot_id, slots.c.version == slot.version))
            )
        except IntegrityError as e:
            raise ConflictException(f"Slot {slot_id} is referenced by bookings") from e

        if result.rowcount == 0:
            raise VersionConflictException(f"Slot {slot_id} was modified concurrently")

        logger.info("slot_deleted", slot_id=str(slot_id), clinician_id=str(slot.clinician_id))

    async def _find_overlapping(
        self,
        clinician_id: UUID,
        start_time: datetime,
        end_time: datetime,
        exclude_id: UUID | None = None,
    ) -> list[SlotResponse]:
        conditions = [
            slots.c.clinician_id == clinician_id,
            slots.c.status.in_([status.value for status in BLOCKING_STATUSES]),
            slots.c.start_time < end_time,
            slots.c.end_time > start_time,
        ]
        if exclude_id is not None:
            conditions.append(slots.c.id != exclude_id)

        stmt = select(slots).where(and_(*conditions))
        result = await self.db.execute(stmt)
        return [SlotResponse.from_row(row) for row in result.fetchall()]

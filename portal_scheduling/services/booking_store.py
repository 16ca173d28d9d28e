"""Booking store: persistence of patient bookings."""

from datetime import date
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal_scheduling.config import settings
from portal_scheduling.core.clinic_time import Clock, date_range_bounds, utc_now
from portal_scheduling.core.exceptions import (
    AlreadyCancelledException,
    BadRequestException,
    InvalidRangeException,
    InvalidTransitionException,
    NotFoundException,
    SlotNotOpenException,
)
from portal_scheduling.models.bookings import ACTIVE_BOOKING_STATUSES, bookings
from portal_scheduling.schemas.bookings import BookingResponse, BookingStatus
from portal_scheduling.schemas.slots import SlotStatus
from portal_scheduling.services.slot_store import SlotStore

logger = structlog.get_logger(__name__)


class BookingStore:
    """Reads and writes rows of the ``bookings`` table. Never commits."""

    TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
        BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
        BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    }

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        slot_store: SlotStore | None = None,
        clinic_tz: ZoneInfo | None = None,
    ):
        """Initialize store with database session, clock and slot lookups."""
        self.db = db
        self.clock = clock
        self.slot_store = slot_store or SlotStore(db, clock)
        self.clinic_tz = clinic_tz or settings.clinic_tz

    async def create_booking(
        self,
        patient_id: UUID,
        clinician_id: UUID,
        slot_id: UUID,
        reason_for_visit: str | None = None,
        status: BookingStatus = BookingStatus.CONFIRMED,
        rescheduled_from_id: UUID | None = None,
    ) -> BookingResponse:
        """
        Create a booking against an open slot.

        The slot's times are copied onto the booking. The slot itself is not
        touched here.

        Args:
            patient_id: Booking patient
            clinician_id: Clinician the patient expects to see
            slot_id: Slot to book
            reason_for_visit: Optional free text
            status: Initial status, pending or confirmed
            rescheduled_from_id: Booking this one replaces

        Returns:
            Created booking

        Raises:
            NotFoundException: If slot not found
            BadRequestException: If the slot belongs to another clinician
            SlotNotOpenException: If the slot is not open or already held
        """
        slot = await self.slot_store.get_slot(slot_id)

        if slot.clinician_id != clinician_id:
            raise BadRequestException(f"Slot {slot_id} does not belong to clinician {clinician_id}")

        if slot.status != SlotStatus.OPEN:
            raise SlotNotOpenException(
                f"Slot {slot_id} is {slot.status.value} and cannot be booked"
            )

        if await self.has_bookings(slot_id, active_only=True):
            raise SlotNotOpenException(f"Slot {slot_id} already has an active booking")

        now = self.clock()
        stmt = (
            insert(bookings)
            .values(
                id=uuid4(),
                patient_id=patient_id,
                clinician_id=clinician_id,
                slot_id=slot_id,
                start_time=slot.start_time,
                end_time=slot.end_time,
                status=status.value,
                reason_for_visit=reason_for_visit,
                is_walk_in=False,
                rescheduled_from_id=rescheduled_from_id,
                created_at=now,
                updated_at=now,
            )
            .returning(bookings)
        )

        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            # Partial unique index on active bookings per slot
            raise SlotNotOpenException(f"Slot {slot_id} already has an active booking") from e

        return BookingResponse.from_row(result.fetchone())

    async def get_booking(self, booking_id: UUID) -> BookingResponse:
        """
        Get booking by ID.

        Raises:
            NotFoundException: If booking not found
        """
        result = await self.db.execute(select(bookings).where(bookings.c.id == booking_id))
        row = result.fetchone()

        if not row:
            raise NotFoundException(f"Booking with ID {booking_id} not found")

        return BookingResponse.from_row(row)

    async def get_bookings_for_patient(self, patient_id: UUID) -> list[BookingResponse]:
        """All bookings of a patient, any status, earliest first."""
        stmt = (
            select(bookings)
            .where(bookings.c.patient_id == patient_id)
            .order_by(bookings.c.start_time.asc(), bookings.c.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return [BookingResponse.from_row(row) for row in result.fetchall()]

    async def get_bookings_for_clinician(
        self,
        clinician_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[BookingResponse]:
        """
        Bookings of a clinician starting between two clinic-local dates.

        Args:
            clinician_id: Clinician ID
            start_date: First day, inclusive
            end_date: Last day, inclusive

        Returns:
            Bookings of any status, earliest first

        Raises:
            InvalidRangeException: If end_date is before start_date
        """
        if end_date < start_date:
            raise InvalidRangeException("End date must not be before start date")

        range_start, range_end = date_range_bounds(start_date, end_date, self.clinic_tz)
        stmt = (
            select(bookings)
            .where(
                and_(
                    bookings.c.clinician_id == clinician_id,
                    bookings.c.start_time >= range_start,
                    bookings.c.start_time < range_end,
                )
            )
            .order_by(bookings.c.start_time.asc(), bookings.c.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return [BookingResponse.from_row(row) for row in result.fetchall()]

    async def update_booking_status(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
    ) -> BookingResponse:
        """
        Move a booking to a new status.

        Args:
            booking_id: Booking ID
            new_status: Target status

        Returns:
            Updated booking

        Raises:
            NotFoundException: If booking not found
            AlreadyCancelledException: If cancelling a cancelled booking
            InvalidTransitionException: If the move is not allowed
        """
        booking = await self.get_booking(booking_id)
        self._check_transition(booking, new_status)

        now = self.clock()
        values: dict = {"status": new_status.value, "updated_at": now}
        if new_status == BookingStatus.CANCELLED:
            values["cancelled_at"] = now

        stmt = (
            update(bookings)
            .where(
                and_(
                    bookings.c.id == booking_id,
                    bookings.c.status == booking.status.value,
                )
            )
            .values(**values)
            .returning(bookings)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()

        if row is None:
            # Lost a race; report against the status that won
            self._check_transition(await self.get_booking(booking_id), new_status)
            raise InvalidTransitionException(f"Booking {booking_id} was modified concurrently")

        updated = BookingResponse.from_row(row)
        logger.info(
            "booking_status_changed",
            booking_id=str(booking_id),
            old_status=booking.status.value,
            new_status=updated.status.value,
        )
        return updated

    async def update_booking_reason(
        self,
        booking_id: UUID,
        reason_for_visit: str | None,
    ) -> BookingResponse:
        """
        Replace the reason for visit of an active booking.

        Raises:
            NotFoundException: If booking not found
            AlreadyCancelledException: If the booking is cancelled
            InvalidTransitionException: If the booking is completed
        """
        booking = await self.get_booking(booking_id)
        self._check_editable(booking)

        stmt = (
            update(bookings)
            .where(
                and_(
                    bookings.c.id == booking_id,
                    bookings.c.status == booking.status.value,
                )
            )
            .values(reason_for_visit=reason_for_visit, updated_at=self.clock())
            .returning(bookings)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()

        if row is None:
            self._check_editable(await self.get_booking(booking_id))
            raise InvalidTransitionException(f"Booking {booking_id} was modified concurrently")

        logger.info("booking_updated", booking_id=str(booking_id))
        return BookingResponse.from_row(row)

    async def has_bookings(self, slot_id: UUID, active_only: bool = False) -> bool:
        """Whether any booking, or any pending or confirmed one, references the slot."""
        conditions = [bookings.c.slot_id == slot_id]
        if active_only:
            conditions.append(bookings.c.status.in_(ACTIVE_BOOKING_STATUSES))

        result = await self.db.execute(select(bookings.c.id).where(and_(*conditions)).limit(1))
        return result.first() is not None

    def _check_transition(self, booking: BookingResponse, new_status: BookingStatus) -> None:
        if booking.status == BookingStatus.CANCELLED and new_status == BookingStatus.CANCELLED:
            raise AlreadyCancelledException(f"Booking {booking.id} is already cancelled")

        if new_status not in self.TRANSITIONS.get(booking.status, frozenset()):
            raise InvalidTransitionException(
                f"Booking {booking.id} cannot move from {booking.status.value} to {new_status.value}"
            )

    def _check_editable(self, booking: BookingResponse) -> None:
        if booking.status == BookingStatus.CANCELLED:
            raise AlreadyCancelledException(f"Cannot update cancelled booking {booking.id}")
        if not booking.is_active:
            raise InvalidTransitionException(
                f"Cannot update {booking.status.value} booking {booking.id}"
            )

"""Booking service: the only writer of slot and booking status."""

from datetime import date, datetime
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from portal_scheduling.config import settings
from portal_scheduling.core.clinic_time import Clock, date_range_bounds, utc_now
from portal_scheduling.core.exceptions import (
    AlreadyCancelledException,
    ConflictException,
    ForbiddenException,
    InvalidRangeException,
    InvalidTransitionException,
    SlotNotOpenException,
)
from portal_scheduling.database import unit_of_work
from portal_scheduling.schemas.auth import ActorContext, Role
from portal_scheduling.schemas.bookings import BookingResponse, BookingStatus
from portal_scheduling.schemas.events import (
    BookingCancelled,
    BookingCompleted,
    BookingConfirmed,
    BookingCreated,
    BookingEventBase,
    BookingRescheduled,
)
from portal_scheduling.schemas.slots import SlotResponse, SlotStatus
from portal_scheduling.services.booking_store import BookingStore
from portal_scheduling.services.event_publisher import EventPublisher, LogEventPublisher
from portal_scheduling.services.slot_store import SlotStore

logger = structlog.get_logger(__name__)


class BookingService:
    """
    Coordinates slot and booking state in single transactions.

    Every operation takes the caller's ``ActorContext``. ``None`` means a
    trusted internal caller and skips ownership checks. Events go to the
    publisher only after the transaction has committed.
    """

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher | None = None,
        clock: Clock = utc_now,
        clinic_tz: ZoneInfo | None = None,
    ):
        """Initialize service with database session, event sink and clock."""
        self.db = db
        self.publisher = publisher or LogEventPublisher()
        self.clock = clock
        self.clinic_tz = clinic_tz or settings.clinic_tz
        self.slots = SlotStore(db, clock)
        self.bookings = BookingStore(db, clock, slot_store=self.slots, clinic_tz=self.clinic_tz)

    # Slots

    async def create_slot(
        self,
        clinician_id: UUID,
        start_time: datetime,
        end_time: datetime,
        actor: ActorContext | None = None,
    ) -> SlotResponse:
        """
        Publish a new open slot for a clinician.

        Raises:
            ForbiddenException: If the caller may not manage this clinician's slots
            InvalidRangeException: If the interval is empty or inverted
            OverlapConflictException: If it intersects an open or reserved slot
        """
        self._authorize_slot_write(actor, clinician_id)

        async with unit_of_work(self.db):
            return await self.slots.create_slot(clinician_id, start_time, end_time)

    async def block_slot(
        self,
        slot_id: UUID,
        reason: str | None = None,
        actor: ActorContext | None = None,
    ) -> SlotResponse:
        """Take an open slot out of availability, optionally noting why."""
        return await self._change_slot(slot_id, SlotStatus.BLOCKED, actor, block_reason=reason)

    async def cancel_slot(self, slot_id: UUID, actor: ActorContext | None = None) -> SlotResponse:
        """Withdraw an open slot."""
        return await self._change_slot(slot_id, SlotStatus.CANCELLED, actor)

    async def update_slot_times(
        self,
        slot_id: UUID,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        expected_version: int | None = None,
        actor: ActorContext | None = None,
    ) -> SlotResponse:
        """
        Move an open slot to new times.

        Raises:
            NotFoundException: If slot not found
            ForbiddenException: If the caller may not manage this clinician's slots
            VersionConflictException: If the slot changed since ``expected_version``
            InvalidTransitionException: If the slot is not open
            OverlapConflictException: If the new times intersect another slot
        """
        async with unit_of_work(self.db):
            slot = await self.slots.get_slot(slot_id)
            self._authorize_slot_write(actor, slot.clinician_id)
            return await self.slots.update_slot_times(slot_id, start_time, end_time, expected_version)

    async def delete_slot(self, slot_id: UUID, actor: ActorContext | None = None) -> None:
        """
        Delete a slot that has never been booked.

        Slots with booking history are kept; block or cancel them instead.

        Raises:
            NotFoundException: If slot not found
            ForbiddenException: If the caller may not manage this clinician's slots
            ConflictException: If any booking references the slot
        """
        async with unit_of_work(self.db):
            slot = await self.slots.get_slot(slot_id)
            self._authorize_slot_write(actor, slot.clinician_id)

            if await self.bookings.has_bookings(slot_id, active_only=True):
                raise ConflictException(
                    "Cannot delete slot with active bookings. Cancel bookings first or block the slot instead."
                )
            if await self.bookings.has_bookings(slot_id):
                raise ConflictException(
                    f"Slot {slot_id} has booking history and cannot be deleted. Cancel the slot instead."
                )

            await self.slots.delete_slot(slot_id)

    async def get_slot(self, slot_id: UUID, actor: ActorContext | None = None) -> SlotResponse:
        """
        Get slot by ID.

        Callers other than the owning clinician, staff and admins only see
        open slots.

        Raises:
            NotFoundException: If slot not found
            ForbiddenException: If the slot is not open and the caller may not see it
        """
        async with unit_of_work(self.db):
            slot = await self.slots.get_slot(slot_id)

        if slot.status != SlotStatus.OPEN and not _can_see_all_slots(actor, slot.clinician_id):
            raise ForbiddenException("Access denied to this slot")
        return slot

    async def get_clinician_slots(
        self,
        clinician_id: UUID,
        start_date: date,
        end_date: date,
        status: SlotStatus | None = None,
        actor: ActorContext | None = None,
    ) -> list[SlotResponse]:
        """
        A clinician's slots starting between two clinic-local dates, inclusive.

        Only the clinician, staff and admins may list slots of every status.
        Patients use the availability queries instead.

        Raises:
            ForbiddenException: If the caller may not see this clinician's slots
            InvalidRangeException: If end_date is before start_date
        """
        if not _can_see_all_slots(actor, clinician_id):
            raise ForbiddenException("Access denied to this clinician's slots")
        if end_date < start_date:
            raise InvalidRangeException("End date must not be before start date")

        range_start, range_end = date_range_bounds(start_date, end_date, self.clinic_tz)
        async with unit_of_work(self.db):
            return await self.slots.list_slots(clinician_id, range_start, range_end, status)

    # Bookings

    async def book(
        self,
        patient_id: UUID,
        clinician_id: UUID,
        slot_id: UUID,
        reason_for_visit: str | None = None,
        actor: ActorContext | None = None,
        requires_confirmation: bool = False,
    ) -> BookingResponse:
        """
        Book an open slot for a patient.

        The booking and the slot flip to reserved commit together. Of two
        callers racing for one slot exactly one succeeds. A booking that
        requires confirmation starts pending and still holds the slot.

        Args:
            patient_id: Patient the booking is for
            clinician_id: Clinician owning the slot
            slot_id: Slot to book
            reason_for_visit: Optional free text
            actor: Caller
            requires_confirmation: Start as pending instead of confirmed

        Returns:
            Created booking

        Raises:
            ForbiddenException: If the caller may not book for this patient
            NotFoundException: If slot not found
            SlotNotOpenException: If the slot is not open
        """
        if actor is not None:
            if actor.role == Role.PATIENT and actor.user_id != patient_id:
                raise ForbiddenException("Patients can only book for themselves")
            if actor.role == Role.CLINICIAN and actor.user_id != clinician_id:
                raise ForbiddenException("Clinicians can only book their own slots")

        try:
            async with unit_of_work(self.db):
                booking = await self.bookings.create_booking(
                    patient_id=patient_id,
                    clinician_id=clinician_id,
                    slot_id=slot_id,
                    reason_for_visit=reason_for_visit,
                    status=BookingStatus.PENDING if requires_confirmation else BookingStatus.CONFIRMED,
                )
                await self.slots.update_slot_status(slot_id, SlotStatus.RESERVED)
        except SlotNotOpenException as e:
            logger.info("slot_not_open", slot_id=str(slot_id), patient_id=str(patient_id), reason=e.message)
            raise

        logger.info(
            "booking_created",
            booking_id=str(booking.id),
            slot_id=str(slot_id),
            patient_id=str(patient_id),
            clinician_id=str(clinician_id),
            status=booking.status.value,
        )
        await self._emit(BookingCreated(occurred_at=self.clock(), actor_id=_actor_id(actor), booking=booking))
        return booking

    async def cancel(self, booking_id: UUID, actor: ActorContext | None = None) -> BookingResponse:
        """
        Cancel a booking and reopen its slot.

        Raises:
            NotFoundException: If booking not found
            ForbiddenException: If the caller does not own the booking
            AlreadyCancelledException: If the booking is already cancelled
            InvalidTransitionException: If the booking is completed
        """
        async with unit_of_work(self.db):
            booking = await self.bookings.get_booking(booking_id)
            self._authorize_booking_access(actor, booking)

            cancelled = await self.bookings.update_booking_status(booking_id, BookingStatus.CANCELLED)
            await self.slots.update_slot_status(booking.slot_id, SlotStatus.OPEN)

        logger.info("booking_cancelled", booking_id=str(booking_id), slot_id=str(booking.slot_id))
        await self._emit(
            BookingCancelled(occurred_at=self.clock(), actor_id=_actor_id(actor), booking=cancelled)
        )
        return cancelled

    async def reschedule(
        self,
        booking_id: UUID,
        new_slot_id: UUID,
        reason_for_visit: str | None = None,
        actor: ActorContext | None = None,
    ) -> BookingResponse:
        """
        Move a booking to another open slot.

        The old booking is cancelled, its slot reopened, a new confirmed
        booking created on the new slot and that slot reserved, all in one
        transaction. The new booking gets its own id and points back at the
        old one.

        Args:
            booking_id: Booking to move
            new_slot_id: Target slot, possibly of another clinician
            reason_for_visit: Replaces the old reason when given
            actor: Caller

        Returns:
            The new booking

        Raises:
            NotFoundException: If the booking or the new slot is not found
            ForbiddenException: If the caller does not own the booking
            AlreadyCancelledException: If the booking is already cancelled
            InvalidTransitionException: If the booking is completed
            SlotNotOpenException: If the new slot is not open
        """
        try:
            async with unit_of_work(self.db):
                old = await self.bookings.get_booking(booking_id)
                self._authorize_booking_access(actor, old)

                if old.status == BookingStatus.CANCELLED:
                    raise AlreadyCancelledException(f"Booking {booking_id} is already cancelled")
                if not old.is_active:
                    raise InvalidTransitionException(
                        f"Booking {booking_id} is {old.status.value} and cannot be rescheduled"
                    )

                new_slot = await self.slots.get_slot(new_slot_id)
                if new_slot.status != SlotStatus.OPEN:
                    raise SlotNotOpenException(
                        f"Slot {new_slot_id} is {new_slot.status.value} and cannot be booked"
                    )

                previous = await self.bookings.update_booking_status(booking_id, BookingStatus.CANCELLED)
                await self.slots.update_slot_status(old.slot_id, SlotStatus.OPEN)

                booking = await self.bookings.create_booking(
                    patient_id=old.patient_id,
                    clinician_id=new_slot.clinician_id,
                    slot_id=new_slot_id,
                    reason_for_visit=(
                        reason_for_visit if reason_for_visit is not None else old.reason_for_visit
                    ),
                    status=BookingStatus.CONFIRMED,
                    rescheduled_from_id=old.id,
                )
                await self.slots.update_slot_status(new_slot_id, SlotStatus.RESERVED)
        except SlotNotOpenException as e:
            logger.info("slot_not_open", slot_id=str(new_slot_id), booking_id=str(booking_id), reason=e.message)
            raise

        logger.info(
            "booking_rescheduled",
            old_booking_id=str(booking_id),
            new_booking_id=str(booking.id),
            old_slot_id=str(old.slot_id),
            new_slot_id=str(new_slot_id),
        )
        await self._emit(
            BookingRescheduled(
                occurred_at=self.clock(),
                actor_id=_actor_id(actor),
                booking=booking,
                previous_booking=previous,
            )
        )
        return booking

    async def confirm(self, booking_id: UUID, actor: ActorContext | None = None) -> BookingResponse:
        """Confirm a pending booking."""
        if actor is not None and actor.role == Role.PATIENT:
            raise ForbiddenException("Patients cannot confirm bookings")

        async with unit_of_work(self.db):
            booking = await self.bookings.get_booking(booking_id)
            self._authorize_booking_access(actor, booking)
            confirmed = await self.bookings.update_booking_status(booking_id, BookingStatus.CONFIRMED)

        await self._emit(
            BookingConfirmed(occurred_at=self.clock(), actor_id=_actor_id(actor), booking=confirmed)
        )
        return confirmed

    async def complete(self, booking_id: UUID, actor: ActorContext | None = None) -> BookingResponse:
        """Mark a confirmed booking as attended. The slot stays reserved."""
        if actor is not None and actor.role not in (Role.CLINICIAN, Role.ADMIN):
            raise ForbiddenException("Only clinicians and admins can complete bookings")

        async with unit_of_work(self.db):
            booking = await self.bookings.get_booking(booking_id)
            self._authorize_booking_access(actor, booking)
            completed = await self.bookings.update_booking_status(booking_id, BookingStatus.COMPLETED)

        await self._emit(
            BookingCompleted(occurred_at=self.clock(), actor_id=_actor_id(actor), booking=completed)
        )
        return completed

    async def update_booking(
        self,
        booking_id: UUID,
        reason_for_visit: str | None,
        actor: ActorContext | None = None,
    ) -> BookingResponse:
        """
        Edit the reason for visit of a pending or confirmed booking.

        Raises:
            NotFoundException: If booking not found
            ForbiddenException: If the caller does not own the booking
            AlreadyCancelledException: If the booking is cancelled
            InvalidTransitionException: If the booking is completed
        """
        async with unit_of_work(self.db):
            booking = await self.bookings.get_booking(booking_id)
            self._authorize_booking_access(actor, booking)
            return await self.bookings.update_booking_reason(booking_id, reason_for_visit)

    async def get_booking(self, booking_id: UUID, actor: ActorContext | None = None) -> BookingResponse:
        """Get booking by ID."""
        async with unit_of_work(self.db):
            booking = await self.bookings.get_booking(booking_id)
        self._authorize_booking_access(actor, booking)
        return booking

    async def get_patient_bookings(
        self,
        patient_id: UUID,
        actor: ActorContext | None = None,
    ) -> list[BookingResponse]:
        """All bookings of a patient, earliest first."""
        if actor is not None and actor.role == Role.PATIENT and actor.user_id != patient_id:
            raise ForbiddenException("Patients can only list their own bookings")

        async with unit_of_work(self.db):
            return await self.bookings.get_bookings_for_patient(patient_id)

    async def get_clinician_schedule(
        self,
        clinician_id: UUID,
        start_date: date,
        end_date: date,
        actor: ActorContext | None = None,
    ) -> list[BookingResponse]:
        """
        Bookings of a clinician between two clinic-local dates, inclusive.

        Raises:
            InvalidRangeException: If end_date is before start_date
            ForbiddenException: If the caller may not see this schedule
        """
        if actor is not None and not actor.is_privileged:
            if actor.role == Role.PATIENT or actor.user_id != clinician_id:
                raise ForbiddenException("Access denied to this schedule")

        async with unit_of_work(self.db):
            return await self.bookings.get_bookings_for_clinician(clinician_id, start_date, end_date)

    # Internals

    async def _change_slot(
        self,
        slot_id: UUID,
        new_status: SlotStatus,
        actor: ActorContext | None,
        block_reason: str | None = None,
    ) -> SlotResponse:
        async with unit_of_work(self.db):
            slot = await self.slots.get_slot(slot_id)
            self._authorize_slot_write(actor, slot.clinician_id)
            return await self.slots.update_slot_status(slot_id, new_status, block_reason=block_reason)

    @staticmethod
    def _authorize_slot_write(actor: ActorContext | None, clinician_id: UUID) -> None:
        if actor is None or actor.role == Role.ADMIN:
            return
        if actor.role == Role.CLINICIAN and actor.user_id == clinician_id:
            return
        raise ForbiddenException("Only the owning clinician or an admin can manage slots")

    @staticmethod
    def _authorize_booking_access(actor: ActorContext | None, booking: BookingResponse) -> None:
        if actor is None or actor.is_privileged:
            return
        if actor.role == Role.PATIENT and actor.user_id == booking.patient_id:
            return
        if actor.role == Role.CLINICIAN and actor.user_id == booking.clinician_id:
            return
        raise ForbiddenException("Access denied to this booking")

    async def _emit(self, event: BookingEventBase) -> None:
        try:
            await self.publisher.publish(event)
        except Exception as e:
            # Delivery is best effort; the transition is already committed
            logger.warning(
                "event_publish_failed",
                event_type=event.event_type,  # type: ignore[attr-defined]
                booking_id=str(event.booking.id),
                error=str(e),
            )


def _actor_id(actor: ActorContext | None) -> UUID | None:
    return actor.user_id if actor is not None else None


def _can_see_all_slots(actor: ActorContext | None, clinician_id: UUID) -> bool:
    if actor is None or actor.is_privileged:
        return True
    return actor.role == Role.CLINICIAN and actor.user_id == clinician_id

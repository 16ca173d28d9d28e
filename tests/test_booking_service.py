"""Tests for booking, cancellation and rescheduling."""

import asyncio
from datetime import UTC, date, datetime, timedelta
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from portal_scheduling.core.exceptions import (
    AlreadyCancelledException,
    BadRequestException,
    ConflictException,
    ForbiddenException,
    InvalidRangeException,
    InvalidTransitionException,
    NotFoundException,
    OverlapConflictException,
    SlotNotOpenException,
    StoreUnavailableException,
    VersionConflictException,
)
from portal_scheduling.schemas.auth import ActorContext, Role
from portal_scheduling.schemas.bookings import BookingResponse, BookingStatus
from portal_scheduling.schemas.slots import SlotStatus
from portal_scheduling.services.booking_service import BookingService

UTC_ZONE = ZoneInfo("UTC")
NINE = datetime(2024, 1, 10, 9, 0, tzinfo=UTC)
TEN = datetime(2024, 1, 10, 10, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_book_open_slot(service, make_slot, patient_id, clinician_id, publisher):
    """Booking creates a confirmed booking and reserves the slot."""
    slot = await make_slot(NINE)

    booking = await service.book(patient_id, clinician_id, slot.id, reason_for_visit="Checkup")

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.slot_id == slot.id
    assert booking.patient_id == patient_id
    assert booking.start_time == slot.start_time
    assert booking.end_time == slot.end_time
    assert booking.reason_for_visit == "Checkup"
    assert booking.is_walk_in is False
    assert booking.rescheduled_from_id is None

    reserved = await service.get_slot(slot.id)
    assert reserved.status == SlotStatus.RESERVED
    assert reserved.version == slot.version + 1

    assert publisher.event_types == ["booking.created"]
    assert publisher.events[0].booking.id == booking.id


@pytest.mark.asyncio
@pytest.mark.parametrize("slot_status", [SlotStatus.BLOCKED, SlotStatus.CANCELLED])
async def test_book_closed_slot_fails(service, make_slot, patient_id, clinician_id, publisher, slot_status):
    slot = await make_slot(NINE)
    if slot_status == SlotStatus.BLOCKED:
        await service.block_slot(slot.id)
    else:
        await service.cancel_slot(slot.id)

    with pytest.raises(SlotNotOpenException) as exc_info:
        await service.book(patient_id, clinician_id, slot.id)

    assert str(slot.id) in exc_info.value.message
    assert slot_status.value in exc_info.value.message
    assert await service.get_patient_bookings(patient_id) == []
    assert publisher.events == []


@pytest.mark.asyncio
async def test_book_reserved_slot_fails(service, make_slot, clinician_id):
    slot = await make_slot(NINE)
    await service.book(uuid4(), clinician_id, slot.id)

    with pytest.raises(SlotNotOpenException):
        await service.book(uuid4(), clinician_id, slot.id)


@pytest.mark.asyncio
async def test_book_missing_slot(service, patient_id, clinician_id):
    with pytest.raises(NotFoundException):
        await service.book(patient_id, clinician_id, uuid4())


@pytest.mark.asyncio
async def test_book_slot_of_other_clinician(service, make_slot, patient_id):
    slot = await make_slot(NINE)

    with pytest.raises(BadRequestException):
        await service.book(patient_id, uuid4(), slot.id)

    assert (await service.get_slot(slot.id)).status == SlotStatus.OPEN


@pytest.mark.asyncio
async def test_concurrent_booking_has_single_winner(
    session_factory, make_slot, clinician_id, clock, publisher
):
    """Two patients racing for one slot: one booking, one SlotNotOpen."""
    slot = await make_slot(NINE)

    async def attempt(patient):
        async with session_factory() as session:
            racer = BookingService(session, publisher=publisher, clock=clock, clinic_tz=UTC_ZONE)
            return await racer.book(patient, clinician_id, slot.id)

    results = await asyncio.gather(attempt(uuid4()), attempt(uuid4()), return_exceptions=True)

    winners = [result for result in results if isinstance(result, BookingResponse)]
    losers = [result for result in results if isinstance(result, SlotNotOpenException)]
    assert len(winners) == 1
    assert len(losers) == 1

    async with session_factory() as session:
        reader = BookingService(session, clock=clock, clinic_tz=UTC_ZONE)
        schedule = await reader.get_clinician_schedule(clinician_id, date(2024, 1, 10), date(2024, 1, 10))
        stored_slot = await reader.get_slot(slot.id)

    assert [booking.id for booking in schedule] == [winners[0].id]
    assert stored_slot.status == SlotStatus.RESERVED
    assert publisher.event_types == ["booking.created"]


@pytest.mark.asyncio
async def test_cancel_reopens_slot(service, make_slot, patient_id, clinician_id, publisher, clock):
    slot = await make_slot(NINE)
    booking = await service.book(patient_id, clinician_id, slot.id)

    cancelled = await service.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_at == clock()
    assert (await service.get_slot(slot.id)).status == SlotStatus.OPEN
    assert publisher.event_types == ["booking.created", "booking.cancelled"]

    # The slot can be booked again
    again = await service.book(uuid4(), clinician_id, slot.id)
    assert again.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_double_cancel(service, make_slot, patient_id, clinician_id, publisher):
    slot = await make_slot(NINE)
    booking = await service.book(patient_id, clinician_id, slot.id)
    await service.cancel(booking.id)

    with pytest.raises(AlreadyCancelledException):
        await service.cancel(booking.id)

    assert (await service.get_slot(slot.id)).status == SlotStatus.OPEN
    assert publisher.event_types == ["booking.created", "booking.cancelled"]


@pytest.mark.asyncio
async def test_cancel_missing_booking(service):
    with pytest.raises(NotFoundException):
        await service.cancel(uuid4())


@pytest.mark.asyncio
async def test_cancel_completed_booking(service, make_slot, patient_id, clinician_id):
    slot = await make_slot(NINE)
    booking = await service.book(patient_id, clinician_id, slot.id)
    await service.complete(booking.id)

    with pytest.raises(InvalidTransitionException):
        await service.cancel(booking.id)

    assert (await service.get_slot(slot.id)).status == SlotStatus.RESERVED


@pytest.mark.asyncio
async def test_reschedule_moves_booking(service, make_slot, patient_id, clinician_id, publisher):
    """Old booking cancelled, old slot open, new booking confirmed, new slot reserved."""
    first = await make_slot(NINE)
    second = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, first.id, reason_for_visit="Follow-up")

    moved = await service.reschedule(booking.id, second.id)

    assert moved.id != booking.id
    assert moved.rescheduled_from_id == booking.id
    assert moved.slot_id == second.id
    assert moved.status == BookingStatus.CONFIRMED
    assert moved.start_time == TEN
    assert moved.reason_for_visit == "Follow-up"
    assert moved.patient_id == patient_id

    assert (await service.get_booking(booking.id)).status == BookingStatus.CANCELLED
    assert (await service.get_slot(first.id)).status == SlotStatus.OPEN
    assert (await service.get_slot(second.id)).status == SlotStatus.RESERVED

    assert publisher.event_types == ["booking.created", "booking.rescheduled"]
    assert publisher.events[-1].previous_booking.id == booking.id


@pytest.mark.asyncio
async def test_reschedule_overrides_reason(service, make_slot, patient_id, clinician_id):
    first = await make_slot(NINE)
    second = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, first.id, reason_for_visit="Follow-up")

    moved = await service.reschedule(booking.id, second.id, reason_for_visit="Lab results")

    assert moved.reason_for_visit == "Lab results"


@pytest.mark.asyncio
async def test_reschedule_to_other_clinician(service, make_slot, patient_id, clinician_id):
    other_clinician = uuid4()
    first = await make_slot(NINE)
    second = await make_slot(NINE, owner=other_clinician)
    booking = await service.book(patient_id, clinician_id, first.id)

    moved = await service.reschedule(booking.id, second.id)

    assert moved.clinician_id == other_clinician


@pytest.mark.asyncio
async def test_reschedule_to_reserved_slot_changes_nothing(service, make_slot, patient_id, clinician_id):
    first = await make_slot(NINE)
    second = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, first.id)
    await service.book(uuid4(), clinician_id, second.id)

    with pytest.raises(SlotNotOpenException):
        await service.reschedule(booking.id, second.id)

    assert (await service.get_booking(booking.id)).status == BookingStatus.CONFIRMED
    assert (await service.get_slot(first.id)).status == SlotStatus.RESERVED
    assert len(await service.get_patient_bookings(patient_id)) == 1


@pytest.mark.asyncio
async def test_reschedule_to_own_slot_fails(service, make_slot, patient_id, clinician_id):
    slot = await make_slot(NINE)
    booking = await service.book(patient_id, clinician_id, slot.id)

    with pytest.raises(SlotNotOpenException):
        await service.reschedule(booking.id, slot.id)


@pytest.mark.asyncio
async def test_reschedule_failure_rolls_back_everything(
    service, make_slot, patient_id, clinician_id, publisher, monkeypatch
):
    """A failure after the old booking was cancelled leaves no partial state."""
    first = await make_slot(NINE)
    second = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, first.id)

    original = service.slots.update_slot_status

    async def failing_update(slot_id, new_status):
        if slot_id == second.id:
            raise StoreUnavailableException()
        return await original(slot_id, new_status)

    monkeypatch.setattr(service.slots, "update_slot_status", failing_update)

    with pytest.raises(StoreUnavailableException):
        await service.reschedule(booking.id, second.id)

    monkeypatch.undo()

    assert (await service.get_booking(booking.id)).status == BookingStatus.CONFIRMED
    assert (await service.get_slot(first.id)).status == SlotStatus.RESERVED
    assert (await service.get_slot(second.id)).status == SlotStatus.OPEN
    assert [b.id for b in await service.get_patient_bookings(patient_id)] == [booking.id]
    assert publisher.event_types == ["booking.created"]


@pytest.mark.asyncio
async def test_reschedule_cancelled_booking(service, make_slot, patient_id, clinician_id):
    first = await make_slot(NINE)
    second = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, first.id)
    await service.cancel(booking.id)

    with pytest.raises(AlreadyCancelledException):
        await service.reschedule(booking.id, second.id)

    assert (await service.get_slot(second.id)).status == SlotStatus.OPEN


@pytest.mark.asyncio
async def test_confirm_pending_booking(service, make_slot, patient_id, clinician_id, publisher):
    """A booking awaiting confirmation already holds its slot."""
    slot = await make_slot(NINE)

    pending = await service.book(patient_id, clinician_id, slot.id, requires_confirmation=True)

    assert pending.status == BookingStatus.PENDING
    assert (await service.get_slot(slot.id)).status == SlotStatus.RESERVED
    with pytest.raises(SlotNotOpenException):
        await service.book(uuid4(), clinician_id, slot.id)

    confirmed = await service.confirm(pending.id)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert publisher.event_types == ["booking.created", "booking.confirmed"]

    with pytest.raises(InvalidTransitionException):
        await service.confirm(pending.id)


@pytest.mark.asyncio
async def test_complete_keeps_slot_reserved(service, make_slot, patient_id, clinician_id, publisher):
    slot = await make_slot(NINE)
    booking = await service.book(patient_id, clinician_id, slot.id)

    completed = await service.complete(booking.id)

    assert completed.status == BookingStatus.COMPLETED
    assert (await service.get_slot(slot.id)).status == SlotStatus.RESERVED
    assert publisher.event_types == ["booking.created", "booking.completed"]


@pytest.mark.asyncio
async def test_event_failure_does_not_undo_booking(service, make_slot, patient_id, clinician_id, publisher):
    """Sink errors are logged; the committed booking stays."""
    slot = await make_slot(NINE)
    publisher.fail = True

    booking = await service.book(patient_id, clinician_id, slot.id)

    assert (await service.get_booking(booking.id)).status == BookingStatus.CONFIRMED
    assert (await service.get_slot(slot.id)).status == SlotStatus.RESERVED


@pytest.mark.asyncio
async def test_patient_bookings_sorted_by_start(service, make_slot, patient_id, clinician_id):
    later = await make_slot(TEN)
    earlier = await make_slot(NINE)
    await service.book(patient_id, clinician_id, later.id)
    cancelled = await service.book(patient_id, clinician_id, earlier.id)
    await service.cancel(cancelled.id)

    bookings = await service.get_patient_bookings(patient_id)

    assert [b.start_time for b in bookings] == [NINE, TEN]
    assert bookings[0].status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_clinician_schedule_range(service, make_slot, patient_id, clinician_id):
    today = await make_slot(NINE)
    tomorrow = await make_slot(NINE + timedelta(days=1))
    await service.book(patient_id, clinician_id, tomorrow.id)
    await service.book(patient_id, clinician_id, today.id)

    one_day = await service.get_clinician_schedule(clinician_id, date(2024, 1, 10), date(2024, 1, 10))
    two_days = await service.get_clinician_schedule(clinician_id, date(2024, 1, 10), date(2024, 1, 11))

    assert [b.slot_id for b in one_day] == [today.id]
    assert [b.slot_id for b in two_days] == [today.id, tomorrow.id]

    with pytest.raises(InvalidRangeException):
        await service.get_clinician_schedule(clinician_id, date(2024, 1, 11), date(2024, 1, 10))


@pytest.mark.asyncio
async def test_clinician_slots_listing(service, make_slot, clinician_id):
    open_slot = await make_slot(NINE)
    blocked = await make_slot(TEN)
    await service.block_slot(blocked.id)

    everything = await service.get_clinician_slots(clinician_id, date(2024, 1, 10), date(2024, 1, 10))
    only_open = await service.get_clinician_slots(
        clinician_id, date(2024, 1, 10), date(2024, 1, 10), SlotStatus.OPEN
    )

    assert [s.id for s in everything] == [open_slot.id, blocked.id]
    assert [s.id for s in only_open] == [open_slot.id]


@pytest.mark.asyncio
async def test_cancel_reserved_slot_is_rejected(service, make_slot, patient_id, clinician_id):
    slot = await make_slot(NINE)
    await service.book(patient_id, clinician_id, slot.id)

    with pytest.raises(InvalidTransitionException):
        await service.cancel_slot(slot.id)


@pytest.mark.asyncio
async def test_actor_rules(service, make_slot, patient_id, clinician_id):
    patient = ActorContext(user_id=patient_id, role=Role.PATIENT)
    stranger = ActorContext(user_id=uuid4(), role=Role.PATIENT)
    other_clinician = ActorContext(user_id=uuid4(), role=Role.CLINICIAN)
    owner = ActorContext(user_id=clinician_id, role=Role.CLINICIAN)
    staff = ActorContext(user_id=uuid4(), role=Role.STAFF)

    with pytest.raises(ForbiddenException):
        await service.create_slot(clinician_id, NINE, TEN, actor=other_clinician)
    with pytest.raises(ForbiddenException):
        await service.create_slot(clinician_id, NINE, TEN, actor=staff)

    slot = await service.create_slot(clinician_id, NINE, TEN, actor=owner)

    with pytest.raises(ForbiddenException):
        await service.book(patient_id, clinician_id, slot.id, actor=stranger)

    booking = await service.book(patient_id, clinician_id, slot.id, actor=patient)

    with pytest.raises(ForbiddenException):
        await service.cancel(booking.id, actor=stranger)
    with pytest.raises(ForbiddenException):
        await service.get_patient_bookings(patient_id, actor=stranger)
    with pytest.raises(ForbiddenException):
        await service.complete(booking.id, actor=patient)
    with pytest.raises(ForbiddenException):
        await service.get_clinician_schedule(clinician_id, date(2024, 1, 10), date(2024, 1, 10), actor=patient)

    assert (await service.get_booking(booking.id, actor=staff)).id == booking.id
    completed = await service.complete(booking.id, actor=owner)
    assert completed.status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_slot_reads_hide_taken_slots_from_patients(service, make_slot, patient_id, clinician_id):
    booked = await make_slot(NINE)
    open_slot = await make_slot(TEN)
    await service.book(patient_id, clinician_id, booked.id)
    patient = ActorContext(user_id=uuid4(), role=Role.PATIENT)
    owner = ActorContext(user_id=clinician_id, role=Role.CLINICIAN)
    other_clinician = ActorContext(user_id=uuid4(), role=Role.CLINICIAN)
    staff = ActorContext(user_id=uuid4(), role=Role.STAFF)
    day = date(2024, 1, 10)

    for actor in (patient, other_clinician):
        with pytest.raises(ForbiddenException):
            await service.get_clinician_slots(clinician_id, day, day, actor=actor)
        with pytest.raises(ForbiddenException):
            await service.get_slot(booked.id, actor=actor)

    assert (await service.get_slot(open_slot.id, actor=patient)).status == SlotStatus.OPEN
    assert (await service.get_slot(booked.id, actor=owner)).status == SlotStatus.RESERVED
    listed = await service.get_clinician_slots(clinician_id, day, day, actor=staff)
    assert [s.id for s in listed] == [booked.id, open_slot.id]


@pytest.mark.asyncio
async def test_update_slot_times(service, make_slot, clinician_id):
    slot = await make_slot(NINE)
    await make_slot(TEN)

    # Overlapping its own old interval is fine
    moved = await service.update_slot_times(
        slot.id, start_time=NINE + timedelta(minutes=15), expected_version=slot.version
    )

    assert moved.start_time == NINE + timedelta(minutes=15)
    assert moved.end_time == slot.end_time
    assert moved.version == slot.version + 1

    with pytest.raises(OverlapConflictException):
        await service.update_slot_times(slot.id, end_time=TEN + timedelta(minutes=5))
    with pytest.raises(VersionConflictException):
        await service.update_slot_times(slot.id, start_time=NINE, expected_version=slot.version)
    with pytest.raises(InvalidRangeException):
        await service.update_slot_times(slot.id, end_time=NINE)

    stored = await service.get_slot(slot.id)
    assert stored.start_time == moved.start_time
    assert stored.version == moved.version


@pytest.mark.asyncio
async def test_update_slot_times_requires_open_slot(service, make_slot, patient_id, clinician_id):
    slot = await make_slot(NINE)
    await service.book(patient_id, clinician_id, slot.id)

    with pytest.raises(InvalidTransitionException):
        await service.update_slot_times(slot.id, start_time=NINE - timedelta(minutes=30))

    with pytest.raises(ForbiddenException):
        await service.update_slot_times(
            slot.id, start_time=NINE, actor=ActorContext(user_id=uuid4(), role=Role.CLINICIAN)
        )


@pytest.mark.asyncio
async def test_delete_slot(service, make_slot, patient_id, clinician_id):
    unused = await make_slot(NINE)
    booked = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, booked.id)

    await service.delete_slot(unused.id)

    with pytest.raises(NotFoundException):
        await service.get_slot(unused.id)
    with pytest.raises(ConflictException):
        await service.delete_slot(booked.id)

    # Cancelled bookings still pin the slot
    await service.cancel(booking.id)
    with pytest.raises(ConflictException):
        await service.delete_slot(booked.id)
    assert (await service.get_slot(booked.id)).status == SlotStatus.OPEN


@pytest.mark.asyncio
async def test_block_slot_records_reason(service, make_slot):
    slot = await make_slot(NINE)

    blocked = await service.block_slot(slot.id, reason="Conference")

    assert blocked.status == SlotStatus.BLOCKED
    assert blocked.block_reason == "Conference"
    assert (await service.get_slot(slot.id)).block_reason == "Conference"


@pytest.mark.asyncio
async def test_update_booking_reason(service, make_slot, patient_id, clinician_id):
    first = await make_slot(NINE)
    second = await make_slot(TEN)
    booking = await service.book(patient_id, clinician_id, first.id, reason_for_visit="Checkup")
    patient = ActorContext(user_id=patient_id, role=Role.PATIENT)

    updated = await service.update_booking(booking.id, "Persistent cough", actor=patient)

    assert updated.reason_for_visit == "Persistent cough"
    assert updated.status == BookingStatus.CONFIRMED
    with pytest.raises(ForbiddenException):
        await service.update_booking(booking.id, "x", actor=ActorContext(user_id=uuid4(), role=Role.PATIENT))

    await service.complete(booking.id)
    with pytest.raises(InvalidTransitionException):
        await service.update_booking(booking.id, "Too late")

    other = await service.book(patient_id, clinician_id, second.id)
    await service.cancel(other.id)
    with pytest.raises(AlreadyCancelledException):
        await service.update_booking(other.id, "Too late")

"""Tests for day and month availability."""

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from portal_scheduling.core.exceptions import InvalidRangeException, StoreUnavailableException
from portal_scheduling.services.availability import AvailabilityCalculator

UTC_ZONE = ZoneInfo("UTC")
NEW_YORK = ZoneInfo("America/New_York")


def _at(day: int, hour: int) -> datetime:
    return datetime(2024, 1, day, hour, 0, tzinfo=UTC)


@pytest.fixture
def calculator(session_factory, clock) -> AvailabilityCalculator:
    return AvailabilityCalculator(session_factory, clock=clock, clinic_tz=UTC_ZONE, month_strategy="range")


@pytest.mark.asyncio
async def test_available_slots_for_day(calculator, service, make_slot, clinician_id, patient_id):
    """Only open slots of the requested day, ordered by start."""
    afternoon = await make_slot(_at(10, 14))
    morning = await make_slot(_at(10, 9))
    booked = await make_slot(_at(10, 11))
    blocked = await make_slot(_at(10, 12))
    await make_slot(_at(11, 9))
    await service.book(patient_id, clinician_id, booked.id)
    await service.block_slot(blocked.id)

    result = await calculator.get_available_slots(clinician_id, date(2024, 1, 10))

    assert [slot.id for slot in result] == [morning.id, afternoon.id]
    assert len({slot.id for slot in result}) == len(result)


@pytest.mark.asyncio
async def test_available_slots_other_clinician_excluded(calculator, make_slot, clinician_id):
    await make_slot(_at(10, 9), owner=uuid4())

    assert await calculator.get_available_slots(clinician_id, date(2024, 1, 10)) == []


@pytest.mark.asyncio
async def test_available_slots_use_clinic_timezone(session_factory, clock, make_slot, clinician_id):
    """A slot at 02:00 UTC belongs to the previous day in New York."""
    slot = await make_slot(_at(11, 2))
    calculator = AvailabilityCalculator(session_factory, clock=clock, clinic_tz=NEW_YORK)

    on_tenth = await calculator.get_available_slots(clinician_id, date(2024, 1, 10))
    on_eleventh = await calculator.get_available_slots(clinician_id, date(2024, 1, 11))

    assert [s.id for s in on_tenth] == [slot.id]
    assert on_eleventh == []


@pytest.mark.asyncio
async def test_month_excludes_past_days(calculator, make_slot, clinician_id):
    """Today is 2024-01-05; a slot on the 3rd does not count."""
    await make_slot(_at(3, 9))
    await make_slot(_at(10, 9))

    available = await calculator.get_available_dates_in_month(clinician_id, 2024, 1)

    assert available == {date(2024, 1, 10)}


@pytest.mark.asyncio
async def test_month_includes_today(calculator, make_slot, clinician_id):
    await make_slot(_at(5, 16))

    assert await calculator.get_available_dates_in_month(clinician_id, 2024, 1) == {date(2024, 1, 5)}


@pytest.mark.asyncio
async def test_month_ignores_fully_booked_days(calculator, service, make_slot, clinician_id, patient_id):
    booked = await make_slot(_at(12, 9))
    await make_slot(_at(15, 9))
    await service.book(patient_id, clinician_id, booked.id)

    assert await calculator.get_available_dates_in_month(clinician_id, 2024, 1) == {date(2024, 1, 15)}


@pytest.mark.asyncio
async def test_availability_index_covers_whole_month(calculator, make_slot, clinician_id):
    await make_slot(_at(3, 9))
    await make_slot(_at(20, 9))

    index = await calculator.get_availability_index(clinician_id, 2024, 1)

    assert len(index) == 31
    assert list(index) == sorted(index)
    assert index[date(2024, 1, 3)] is False
    assert index[date(2024, 1, 20)] is True
    assert sum(index.values()) == 1


@pytest.mark.asyncio
async def test_past_month_has_no_availability(calculator, make_slot, clinician_id):
    await make_slot(datetime(2023, 12, 20, 9, 0, tzinfo=UTC))

    assert await calculator.get_available_dates_in_month(clinician_id, 2023, 12) == set()


@pytest.mark.asyncio
@pytest.mark.parametrize("month", [0, 13, -1])
async def test_invalid_month(calculator, clinician_id, month):
    with pytest.raises(InvalidRangeException):
        await calculator.get_available_dates_in_month(clinician_id, 2024, month)


@pytest.mark.asyncio
async def test_month_slot_at_local_midnight_boundary(session_factory, clock, make_slot, clinician_id):
    """Month buckets follow clinic-local start dates."""
    await make_slot(datetime(2024, 2, 1, 3, 0, tzinfo=UTC))  # Jan 31, 22:00 in New York
    calculator = AvailabilityCalculator(session_factory, clock=clock, clinic_tz=NEW_YORK)

    january = await calculator.get_available_dates_in_month(clinician_id, 2024, 1)
    february = await calculator.get_available_dates_in_month(clinician_id, 2024, 2)

    assert january == {date(2024, 1, 31)}
    assert february == set()


@pytest.mark.asyncio
async def test_per_day_strategy_matches_range(session_factory, clock, make_slot, clinician_id):
    for day in (3, 8, 10, 31):
        await make_slot(_at(day, 9))

    by_range = AvailabilityCalculator(session_factory, clock=clock, clinic_tz=UTC_ZONE, month_strategy="range")
    by_day = AvailabilityCalculator(session_factory, clock=clock, clinic_tz=UTC_ZONE, month_strategy="per_day")

    expected = {date(2024, 1, 8), date(2024, 1, 10), date(2024, 1, 31)}
    assert await by_range.get_available_dates_in_month(clinician_id, 2024, 1) == expected
    assert await by_day.get_available_dates_in_month(clinician_id, 2024, 1) == expected


@pytest.mark.asyncio
async def test_per_day_failure_counts_as_unavailable(
    session_factory, clock, make_slot, clinician_id, monkeypatch
):
    """One failing day query does not fail the month."""
    await make_slot(_at(10, 9))
    await make_slot(_at(12, 9))
    calculator = AvailabilityCalculator(
        session_factory, clock=clock, clinic_tz=UTC_ZONE, month_strategy="per_day"
    )
    original = calculator.get_available_slots

    async def flaky(clinician, day):
        if day == date(2024, 1, 10):
            raise StoreUnavailableException()
        return await original(clinician, day)

    monkeypatch.setattr(calculator, "get_available_slots", flaky)

    available = await calculator.get_available_dates_in_month(clinician_id, 2024, 1)

    assert available == {date(2024, 1, 12)}


@pytest.mark.asyncio
async def test_slot_spanning_midnight_counts_for_start_day(calculator, make_slot, clinician_id):
    await make_slot(_at(10, 23) + timedelta(minutes=30), minutes=60)

    assert await calculator.get_available_dates_in_month(clinician_id, 2024, 1) == {date(2024, 1, 10)}


@pytest.mark.asyncio
async def test_reschedule_returns_old_slot_to_availability(
    calculator, service, make_slot, clinician_id, patient_id
):
    first = await make_slot(_at(10, 9))
    second = await make_slot(_at(10, 10))
    booking = await service.book(patient_id, clinician_id, first.id)

    before = await calculator.get_available_slots(clinician_id, date(2024, 1, 10))
    await service.reschedule(booking.id, second.id)
    after = await calculator.get_available_slots(clinician_id, date(2024, 1, 10))

    assert [slot.id for slot in before] == [second.id]
    assert [slot.id for slot in after] == [first.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["range", "per_day"])
async def test_last_representable_month(session_factory, clock, clinician_id, strategy):
    calculator = AvailabilityCalculator(session_factory, clock=clock, clinic_tz=UTC_ZONE, month_strategy=strategy)

    with pytest.raises(InvalidRangeException):
        await calculator.get_availability_index(clinician_id, 9999, 12)
    with pytest.raises(InvalidRangeException):
        await calculator.get_available_slots(clinician_id, date(9999, 12, 31))

    index = await calculator.get_availability_index(clinician_id, 9999, 11)
    assert len(index) == 30
    assert not any(index.values())

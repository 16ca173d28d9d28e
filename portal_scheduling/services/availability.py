"""Availability queries over open slots."""

import asyncio
from collections import defaultdict
from datetime import date
from typing import Literal
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal_scheduling.config import settings
from portal_scheduling.core.clinic_time import (
    Clock,
    clinic_today,
    date_range_bounds,
    day_bounds,
    is_past_date,
    local_date,
    month_days,
    utc_now,
)
from portal_scheduling.core.exceptions import InvalidRangeException
from portal_scheduling.database import unit_of_work
from portal_scheduling.schemas.slots import SlotResponse
from portal_scheduling.services.slot_store import SlotStore

logger = structlog.get_logger(__name__)

MonthStrategy = Literal["range", "per_day"]


class AvailabilityCalculator:
    """
    Answers "when can this clinician be booked" in clinic-local days.

    Reads are issued through a session factory so the per-day strategy can run
    its queries concurrently, one session each.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
        clinic_tz: ZoneInfo | None = None,
        month_strategy: MonthStrategy | None = None,
    ):
        """Initialize calculator with session factory, clock and calendar settings."""
        self.session_factory = session_factory
        self.clock = clock
        self.clinic_tz = clinic_tz or settings.clinic_tz
        self.month_strategy = month_strategy or settings.availability_month_strategy

    async def get_available_slots(self, clinician_id: UUID, day: date) -> list[SlotResponse]:
        """
        Open slots starting on a clinic-local day.

        Args:
            clinician_id: Clinician ID
            day: Clinic-local calendar date

        Returns:
            Unique open slots, earliest first
        """
        range_start, range_end = day_bounds(day, self.clinic_tz)
        async with self.session_factory() as session:
            async with unit_of_work(session):
                return await SlotStore(session, self.clock).list_open_slots(
                    clinician_id, range_start, range_end
                )

    async def get_available_dates_in_month(
        self,
        clinician_id: UUID,
        year: int,
        month: int,
    ) -> set[date]:
        """
        Days of a month, today onwards, with at least one open slot.

        Raises:
            InvalidRangeException: If month or year is out of range
        """
        index = await self.get_availability_index(clinician_id, year, month)
        return {day for day, available in index.items() if available}

    async def get_availability_index(
        self,
        clinician_id: UUID,
        year: int,
        month: int,
    ) -> dict[date, bool]:
        """
        Map every day of a month to whether it can still be booked.

        Days before clinic-local today are always False.

        Args:
            clinician_id: Clinician ID
            year: Calendar year
            month: Calendar month, 1 to 12

        Returns:
            Ordered mapping of date to availability

        Raises:
            InvalidRangeException: If month or year is out of range, or the
                month ends past the last representable instant
        """
        if not 1 <= month <= 12:
            raise InvalidRangeException(f"Month must be between 1 and 12, got {month}")
        if not 1 <= year <= 9999:
            raise InvalidRangeException(f"Year out of range: {year}")

        days = month_days(year, month)
        # Rejects months whose last day has no representable end bound
        date_range_bounds(days[0], days[-1], self.clinic_tz)
        today = clinic_today(self.clock, self.clinic_tz)
        candidates = [day for day in days if not is_past_date(day, today)]

        if not candidates:
            available: set[date] = set()
        elif self.month_strategy == "per_day":
            available = await self._scan_per_day(clinician_id, candidates)
        else:
            available = await self._scan_range(clinician_id, candidates)

        logger.debug(
            "availability_month_scanned",
            clinician_id=str(clinician_id),
            year=year,
            month=month,
            strategy=self.month_strategy,
            available_days=len(available),
        )
        return {day: day in available for day in days}

    async def _scan_range(self, clinician_id: UUID, candidates: list[date]) -> set[date]:
        range_start, range_end = date_range_bounds(candidates[0], candidates[-1], self.clinic_tz)
        async with self.session_factory() as session:
            async with unit_of_work(session):
                open_slots = await SlotStore(session, self.clock).list_open_slots(
                    clinician_id, range_start, range_end
                )

        by_day: dict[date, list[SlotResponse]] = defaultdict(list)
        for slot in open_slots:
            by_day[local_date(slot.start_time, self.clinic_tz)].append(slot)

        return {day for day in candidates if by_day.get(day)}

    async def _scan_per_day(self, clinician_id: UUID, candidates: list[date]) -> set[date]:
        results = await asyncio.gather(
            *(self.get_available_slots(clinician_id, day) for day in candidates),
            return_exceptions=True,
        )

        available: set[date] = set()
        for day, result in zip(candidates, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "availability_day_failed",
                    clinician_id=str(clinician_id),
                    day=day.isoformat(),
                    error=str(result),
                )
                continue
            if result:
                available.add(day)

        return available

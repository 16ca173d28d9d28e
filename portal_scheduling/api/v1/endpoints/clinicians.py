"""Clinician schedule and availability endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from portal_scheduling.dependencies import Availability, Bookings, CurrentActor
from portal_scheduling.schemas.availability import AvailabilityMonthResponse
from portal_scheduling.schemas.bookings import BookingResponse
from portal_scheduling.schemas.slots import SlotResponse, SlotStatus

router = APIRouter()


@router.get(
    "/{clinician_id}/schedule",
    response_model=list[BookingResponse],
    status_code=status.HTTP_200_OK,
    tags=["Clinicians"],
    summary="Get clinician schedule",
)
async def get_clinician_schedule(
    clinician_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
    start_date: date = Query(..., description="First clinic-local day, inclusive"),
    end_date: date = Query(..., description="Last clinic-local day, inclusive"),
) -> list[BookingResponse]:
    """
    List a clinician's bookings between two dates.

    Args:
        clinician_id: Clinician ID
        current_actor: Authenticated caller
        service: Booking service
        start_date: First day, inclusive
        end_date: Last day, inclusive

    Returns:
        Bookings of any status ordered by start time
    """
    return await service.get_clinician_schedule(
        clinician_id,
        start_date,
        end_date,
        actor=current_actor,
    )


@router.get(
    "/{clinician_id}/slots",
    response_model=list[SlotResponse],
    status_code=status.HTTP_200_OK,
    tags=["Clinicians"],
    summary="List clinician slots",
)
async def get_clinician_slots(
    clinician_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
    start: date = Query(..., description="First clinic-local day, inclusive"),
    end: date = Query(..., description="Last clinic-local day, inclusive"),
    status_filter: SlotStatus | None = Query(None, alias="status"),
) -> list[SlotResponse]:
    """List a clinician's slots of any status, or of one status. Patients are refused."""
    return await service.get_clinician_slots(clinician_id, start, end, status_filter, actor=current_actor)


@router.get(
    "/{clinician_id}/availability",
    response_model=AvailabilityMonthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Clinicians"],
    summary="Get month availability",
)
async def get_month_availability(
    clinician_id: UUID,
    current_actor: CurrentActor,
    availability: Availability,
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
) -> AvailabilityMonthResponse:
    """
    Day-by-day availability for a booking calendar.

    Days before today in the clinic timezone are never available.
    """
    index = await availability.get_availability_index(clinician_id, year, month)
    return AvailabilityMonthResponse(
        clinician_id=clinician_id,
        year=year,
        month=month,
        timezone=availability.clinic_tz.key,
        available_dates=sorted(day for day, available in index.items() if available),
        days=index,
    )

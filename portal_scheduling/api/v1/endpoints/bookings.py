"""Booking endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from portal_scheduling.dependencies import Bookings, CurrentActor
from portal_scheduling.schemas.bookings import (
    BookingCreate,
    BookingReschedule,
    BookingResponse,
    BookingStatusResponse,
    BookingSummaryResponse,
    BookingUpdate,
)

router = APIRouter()


@router.post(
    "",
    response_model=BookingSummaryResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Bookings"],
    summary="Book a slot",
)
async def create_booking(
    data: BookingCreate,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingSummaryResponse:
    """
    Book an open slot for a patient.

    Args:
        data: Booking request
        current_actor: Authenticated caller
        service: Booking service

    Returns:
        Booking summary, confirmed unless confirmation was requested
    """
    booking = await service.book(
        patient_id=data.patient_id,
        clinician_id=data.clinician_id,
        slot_id=data.slot_id,
        reason_for_visit=data.reason_for_visit,
        actor=current_actor,
        requires_confirmation=data.requires_confirmation,
    )
    return BookingSummaryResponse.from_booking(booking)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    tags=["Bookings"],
    summary="Get booking by ID",
)
async def get_booking(
    booking_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingResponse:
    """Get a booking visible to the caller."""
    return await service.get_booking(booking_id, actor=current_actor)


@router.patch(
    "/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    tags=["Bookings"],
    summary="Update booking",
)
async def update_booking(
    booking_id: UUID,
    data: BookingUpdate,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingResponse:
    """Edit the reason for visit of a pending or confirmed booking."""
    return await service.update_booking(booking_id, data.reason_for_visit, actor=current_actor)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingStatusResponse,
    status_code=status.HTTP_200_OK,
    tags=["Bookings"],
    summary="Cancel booking",
)
async def cancel_booking(
    booking_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingStatusResponse:
    """
    Cancel a booking and reopen its slot.

    Args:
        booking_id: Booking ID
        current_actor: Authenticated caller
        service: Booking service

    Returns:
        Booking ID and its new status
    """
    booking = await service.cancel(booking_id, actor=current_actor)
    return BookingStatusResponse(booking_id=booking.id, status=booking.status)


@router.post(
    "/{booking_id}/reschedule",
    response_model=BookingSummaryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Bookings"],
    summary="Move booking to another slot",
)
async def reschedule_booking(
    booking_id: UUID,
    data: BookingReschedule,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingSummaryResponse:
    """
    Move a booking to another open slot.

    The response carries the new booking's ID.
    """
    booking = await service.reschedule(
        booking_id,
        data.new_slot_id,
        reason_for_visit=data.reason_for_visit,
        actor=current_actor,
    )
    return BookingSummaryResponse.from_booking(booking)


@router.post(
    "/{booking_id}/confirm",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    tags=["Bookings"],
    summary="Confirm pending booking",
)
async def confirm_booking(
    booking_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingResponse:
    """Confirm a pending booking."""
    return await service.confirm(booking_id, actor=current_actor)


@router.post(
    "/{booking_id}/complete",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    tags=["Bookings"],
    summary="Mark booking as completed",
)
async def complete_booking(
    booking_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> BookingResponse:
    """Mark a confirmed booking as attended."""
    return await service.complete(booking_id, actor=current_actor)

"""Slot endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from portal_scheduling.dependencies import Availability, Bookings, CurrentActor
from portal_scheduling.schemas.slots import (
    AvailableSlotResponse,
    SlotBlock,
    SlotCreate,
    SlotResponse,
    SlotUpdate,
)

router = APIRouter()


@router.get(
    "/available",
    response_model=list[AvailableSlotResponse],
    status_code=status.HTTP_200_OK,
    tags=["Slots"],
    summary="List bookable slots for a day",
)
async def get_available_slots(
    current_actor: CurrentActor,
    availability: Availability,
    clinician_id: UUID = Query(...),
    day: date = Query(..., alias="date", description="Clinic-local date"),
) -> list[AvailableSlotResponse]:
    """
    List open slots of a clinician starting on a clinic-local date.

    Args:
        current_actor: Authenticated caller
        availability: Availability calculator
        clinician_id: Clinician ID
        day: Calendar date in the clinic timezone

    Returns:
        Open slots ordered by start time
    """
    open_slots = await availability.get_available_slots(clinician_id, day)
    return [AvailableSlotResponse.from_slot(slot) for slot in open_slots]


@router.post(
    "",
    response_model=SlotResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Slots"],
    summary="Publish a slot",
)
async def create_slot(
    data: SlotCreate,
    current_actor: CurrentActor,
    service: Bookings,
) -> SlotResponse:
    """
    Publish a new open slot.

    Only the owning clinician or an admin may publish slots.
    """
    return await service.create_slot(
        data.clinician_id,
        data.start_time,
        data.end_time,
        actor=current_actor,
    )


@router.get(
    "/{slot_id}",
    response_model=SlotResponse,
    status_code=status.HTTP_200_OK,
    tags=["Slots"],
    summary="Get slot by ID",
)
async def get_slot(
    slot_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> SlotResponse:
    """Get a slot by ID. Patients only see open slots."""
    return await service.get_slot(slot_id, actor=current_actor)


@router.patch(
    "/{slot_id}",
    response_model=SlotResponse,
    status_code=status.HTTP_200_OK,
    tags=["Slots"],
    summary="Move an open slot",
)
async def update_slot(
    slot_id: UUID,
    data: SlotUpdate,
    current_actor: CurrentActor,
    service: Bookings,
) -> SlotResponse:
    """
    Change the times of an open slot.

    Args:
        slot_id: Slot ID
        data: New bounds and, optionally, the version last read
        current_actor: Authenticated caller
        service: Booking service

    Returns:
        Updated slot with its version bumped
    """
    return await service.update_slot_times(
        slot_id,
        start_time=data.start_time,
        end_time=data.end_time,
        expected_version=data.version,
        actor=current_actor,
    )


@router.delete(
    "/{slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Slots"],
    summary="Delete slot",
)
async def delete_slot(
    slot_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> None:
    """Delete a slot that has never been booked."""
    await service.delete_slot(slot_id, actor=current_actor)


@router.post(
    "/{slot_id}/block",
    response_model=SlotResponse,
    status_code=status.HTTP_200_OK,
    tags=["Slots"],
    summary="Block an open slot",
)
async def block_slot(
    slot_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
    data: SlotBlock | None = None,
) -> SlotResponse:
    """Take an open slot out of availability."""
    reason = data.reason if data is not None else None
    return await service.block_slot(slot_id, reason=reason, actor=current_actor)


@router.post(
    "/{slot_id}/cancel",
    response_model=SlotResponse,
    status_code=status.HTTP_200_OK,
    tags=["Slots"],
    summary="Cancel an open slot",
)
async def cancel_slot(
    slot_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> SlotResponse:
    """Withdraw an open slot. Reserved slots must be freed by cancelling the booking first."""
    return await service.cancel_slot(slot_id, actor=current_actor)

"""Patient-facing booking endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from portal_scheduling.dependencies import Bookings, CurrentActor
from portal_scheduling.schemas.bookings import BookingResponse

router = APIRouter()


@router.get(
    "/{patient_id}/bookings",
    response_model=list[BookingResponse],
    status_code=status.HTTP_200_OK,
    tags=["Patients"],
    summary="List patient bookings",
)
async def get_patient_bookings(
    patient_id: UUID,
    current_actor: CurrentActor,
    service: Bookings,
) -> list[BookingResponse]:
    """
    List every booking of a patient, earliest first.

    Patients may only list their own bookings.
    """
    return await service.get_patient_bookings(patient_id, actor=current_actor)

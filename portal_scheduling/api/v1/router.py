"""API v1 router configuration."""

from fastapi import APIRouter

from portal_scheduling.api.v1.endpoints import bookings, clinicians, health, patients, slots

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(slots.router, prefix="/slots", tags=["Slots"])
api_router.include_router(bookings.router, prefix="/bookings", tags=["Bookings"])
api_router.include_router(patients.router, prefix="/patients", tags=["Patients"])
api_router.include_router(clinicians.router, prefix="/clinicians", tags=["Clinicians"])

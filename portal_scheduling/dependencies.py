"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal_scheduling.core.clinic_time import Clock, utc_now
from portal_scheduling.core.security import decode_access_token
from portal_scheduling.database import AsyncSessionLocal, get_db
from portal_scheduling.schemas.auth import ActorContext
from portal_scheduling.services.availability import AvailabilityCalculator
from portal_scheduling.services.booking_service import BookingService
from portal_scheduling.services.event_publisher import EventPublisher, build_event_publisher

# Security; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)

_event_publisher: EventPublisher | None = None


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> ActorContext:
    """
    Build the caller context from the bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Caller identity and role

    Raises:
        HTTPException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise _credentials_error("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise _credentials_error()

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise _credentials_error("Invalid user ID format")

    try:
        return ActorContext(user_id=user_id, role=payload.get("role"))
    except ValidationError:
        raise _credentials_error("Invalid role")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for operations that open their own sessions."""
    return AsyncSessionLocal


def get_clock() -> Clock:
    """Source of the current instant."""
    return utc_now


def get_event_publisher() -> EventPublisher:
    """Process-wide event sink, built on first use."""
    global _event_publisher

    if _event_publisher is None:
        _event_publisher = build_event_publisher()

    return _event_publisher


def get_booking_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> BookingService:
    """Booking service bound to the request's session."""
    return BookingService(db, publisher=publisher, clock=clock)


def get_availability_calculator(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> AvailabilityCalculator:
    """Availability calculator using the configured month strategy."""
    return AvailabilityCalculator(session_factory, clock=clock)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
Bookings = Annotated[BookingService, Depends(get_booking_service)]
Availability = Annotated[AvailabilityCalculator, Depends(get_availability_calculator)]

"""Domain event sinks for notification and audit collaborators."""

import asyncio
from typing import Protocol

import structlog

from portal_scheduling.config import settings
from portal_scheduling.core.redis_client import ChannelPublisher, get_redis_client
from portal_scheduling.schemas.events import BookingEventBase

logger = structlog.get_logger(__name__)


class EventPublisher(Protocol):
    """Anything that can take a committed booking event."""

    async def publish(self, event: BookingEventBase) -> None:
        """Deliver one event."""
        ...


class LogEventPublisher:
    """Writes events to the structured log; the default sink."""

    async def publish(self, event: BookingEventBase) -> None:
        """Log the event with its booking identifiers."""
        logger.info(
            "domain_event",
            event_type=event.event_type,  # type: ignore[attr-defined]
            booking_id=str(event.booking.id),
            slot_id=str(event.booking.slot_id),
            patient_id=str(event.booking.patient_id),
            clinician_id=str(event.booking.clinician_id),
            status=event.booking.status.value,
        )


class RedisEventPublisher:
    """Publishes events as JSON on a Redis channel for downstream consumers."""

    def __init__(self, publisher: ChannelPublisher):
        """Initialize with a channel publisher."""
        self.publisher = publisher

    async def publish(self, event: BookingEventBase) -> None:
        """Serialize and publish the event off the event loop."""
        receivers = await asyncio.to_thread(self.publisher.publish, event.model_dump_json())
        logger.debug(
            "domain_event_published",
            event_type=event.event_type,  # type: ignore[attr-defined]
            channel=self.publisher.channel,
            receivers=receivers,
        )


def build_event_publisher() -> EventPublisher:
    """Create the sink selected by ``EVENT_SINK``."""
    if settings.event_sink == "redis":
        return RedisEventPublisher(ChannelPublisher(get_redis_client(), settings.event_channel))
    return LogEventPublisher()

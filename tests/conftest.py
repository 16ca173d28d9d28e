import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Settings are read at import time; pin the values tests depend on
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./portal_scheduling_dev.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["AVAILABILITY_MONTH_STRATEGY"] = "range"
os.environ["EVENT_SINK"] = "log"
os.environ["LOG_FORMAT"] = "console"

from portal_scheduling.core.security import create_access_token  # noqa: E402
from portal_scheduling.database import build_engine, get_db  # noqa: E402
from portal_scheduling.dependencies import (  # noqa: E402
    get_clock,
    get_event_publisher,
    get_session_factory,
)
from portal_scheduling.main import app  # noqa: E402
from portal_scheduling.models import metadata  # noqa: E402
from portal_scheduling.schemas.events import BookingEventBase  # noqa: E402
from portal_scheduling.schemas.slots import SlotResponse  # noqa: E402
from portal_scheduling.services.booking_service import BookingService  # noqa: E402

# Set TEST_DATABASE_URL to run against PostgreSQL instead of a temp SQLite file
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

# Thursday morning; January 2024 days 1-4 are in the past
FIXED_NOW = datetime(2024, 1, 5, 9, 0, tzinfo=UTC)

UTC_ZONE = ZoneInfo("UTC")


class RecordingPublisher:
    """Event sink that keeps everything it receives."""

    def __init__(self) -> None:
        self.events: list[BookingEventBase] = []
        self.fail = False

    async def publish(self, event: BookingEventBase) -> None:
        if self.fail:
            raise ConnectionError("event sink unreachable")
        self.events.append(event)

    @property
    def event_types(self) -> list[str]:
        return [event.event_type for event in self.events]  # type: ignore[attr-defined]


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh database for one test."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'scheduling_test.db'}"
    engine = build_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def publisher() -> RecordingPublisher:
    """Event sink that records published events."""
    return RecordingPublisher()


@pytest.fixture
def service(db_session: AsyncSession, publisher: RecordingPublisher, clock) -> BookingService:
    """Booking service on the test session."""
    return BookingService(db_session, publisher=publisher, clock=clock, clinic_tz=UTC_ZONE)


@pytest.fixture
def clinician_id() -> UUID:
    return uuid4()


@pytest.fixture
def patient_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_slot(service: BookingService, clinician_id: UUID):
    """Create an open slot for the default clinician."""

    async def _make_slot(
        start_time: datetime,
        minutes: int = 30,
        owner: UUID | None = None,
    ) -> SlotResponse:
        return await service.create_slot(
            owner or clinician_id,
            start_time,
            start_time + timedelta(minutes=minutes),
        )

    return _make_slot


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    publisher: RecordingPublisher,
    clock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers_for() -> Callable[[UUID, str], dict]:
    """Build bearer headers for a user id and role."""

    def _headers(user_id: UUID, role: str) -> dict:
        token = create_access_token(
            data={"sub": str(user_id), "role": role},
            expires_delta=timedelta(minutes=30),
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def patient_headers(auth_headers_for, patient_id: UUID) -> dict:
    return auth_headers_for(patient_id, "patient")


@pytest.fixture
def clinician_headers(auth_headers_for, clinician_id: UUID) -> dict:
    return auth_headers_for(clinician_id, "clinician")


@pytest.fixture
def admin_headers(auth_headers_for) -> dict:
    return auth_headers_for(uuid4(), "admin")

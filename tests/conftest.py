"""
Test configuration and fixtures.

This module sets up the test environment and provides shared fixtures for all
tests: an in-memory SQLite database (aiosqlite), seeded actors, a mocked
mailer and the wired engine components.
"""

import os

# Must be set BEFORE any imports of database.connection or shared.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SYSTEM_ACTOR_EMAIL"] = "concierge@test.local"
os.environ["BUILDING_TIMEZONE"] = "America/Vancouver"
os.environ["EXTRA_HOLIDAY_DATES"] = ""
os.environ["INVOICE_NINJA_WEBHOOK_SECRET"] = ""
os.environ["INTAKE_SHARED_SECRET"] = "intake-secret"
os.environ["FEE_CLASSIFIER_ENABLED"] = "false"
os.environ["RECONCILIATION_ENABLED"] = "false"
os.environ["PAYMENT_REMINDER_ENABLED"] = "false"

from datetime import UTC, datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.models import AuditLog, Base, Booking, BookingStatus, BookingType, NotificationRecipient, User, UserRole
from engine.schemas import BookingRequest
from engine.services.admin_service import AdminService
from engine.services.notification_service import NotificationService
from engine.services.reconciliation_service import ReconciliationService
from engine.system_actor import SystemActor
from engine.transactions.booking_transaction import BookingTransaction
from shared.circuit_breaker import reset_breakers

BUILDING_TZ = ZoneInfo("America/Vancouver")


@pytest.fixture(autouse=True)
def _reset_circuit_breakers():
    """Every test starts with closed breakers."""
    reset_breakers()
    yield
    reset_breakers()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def db_engine():
    """Fresh in-memory database per test, schema created from the models."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def users(session_factory) -> dict[str, User]:
    """System concierge, a second concierge, a council member and a property manager."""
    accounts = {
        "concierge": User(name="Front Desk", email="concierge@test.local", role=UserRole.CONCIERGE),
        "concierge2": User(name="Night Desk", email="night@test.local", role=UserRole.CONCIERGE),
        "council": User(name="Council Member", email="council@test.local", role=UserRole.COUNCIL),
        "manager": User(name="Property Manager", email="pm@test.local", role=UserRole.PROPERTY_MANAGER),
    }
    async with session_factory() as session:
        session.add_all(accounts.values())
        session.add(
            NotificationRecipient(
                name="Council",
                email="council-list@test.local",
                notify_on=["SUBMITTED", "APPROVED", "REJECTED"],
            )
        )
        await session.commit()
    return accounts


@pytest.fixture
def system_actor(users) -> SystemActor:
    return SystemActor(id=users["concierge"].id, email=users["concierge"].email)


# ============================================================================
# Engine components
# ============================================================================


@pytest.fixture
def mailer():
    mock_mailer = AsyncMock()
    mock_mailer.send = AsyncMock(return_value=None)
    return mock_mailer


@pytest.fixture
def notifications(session_factory, mailer) -> NotificationService:
    return NotificationService(session_factory, mailer, building_name="Test Tower")


@pytest.fixture
def booking_transaction(session_factory, notifications, system_actor) -> BookingTransaction:
    return BookingTransaction(
        session_factory,
        notifications,
        system_actor,
        buffer_minutes=60,
        holidays=frozenset(),
    )


@pytest.fixture
def reconciliation(session_factory, notifications, system_actor) -> ReconciliationService:
    return ReconciliationService(session_factory, notifications, system_actor)


@pytest.fixture
def admin_service(session_factory, system_actor) -> AdminService:
    return AdminService(session_factory, system_actor)


@pytest.fixture
def insert_booking(session_factory, system_actor):
    """
    Factory inserting a booking row directly, bypassing admission.

    Defaults: unit 1105, MOVE_IN, Wednesday 2027-03-10 10:00-13:00 building
    time, SUBMITTED, elevator required.
    """

    async def _insert(**overrides) -> Booking:
        start_at = overrides.pop("start_at", datetime(2027, 3, 10, 10, 0, tzinfo=BUILDING_TZ))
        end_at = overrides.pop("end_at", datetime(2027, 3, 10, 13, 0, tzinfo=BUILDING_TZ))
        values = {
            "resident_name": "Jamie Resident",
            "resident_email": "jamie@example.com",
            "unit": "1105",
            "booking_type": BookingType.MOVE_IN,
            "move_date": start_at.astimezone(BUILDING_TZ).date(),
            "start_at": start_at,
            "end_at": end_at,
            "elevator_required": True,
            "status": BookingStatus.SUBMITTED,
            "created_by_id": system_actor.id,
            "created_at": datetime.now(UTC),
        }
        values.update(overrides)
        booking = Booking(**values)
        async with session_factory() as session:
            session.add(booking)
            await session.commit()
            await session.refresh(booking)
        return booking

    return _insert


@pytest.fixture
def booking_request():
    """Factory for admission requests; defaults match insert_booking."""

    def _make(**overrides) -> BookingRequest:
        values = {
            "resident_name": "Jamie Resident",
            "resident_email": "jamie@example.com",
            "unit": "1105",
            "booking_type": BookingType.MOVE_IN,
            "start_at": datetime(2027, 3, 10, 10, 0, tzinfo=BUILDING_TZ),
            "end_at": datetime(2027, 3, 10, 13, 0, tzinfo=BUILDING_TZ),
        }
        values.update(overrides)
        return BookingRequest(**values)

    return _make


@pytest.fixture
def audit_entries(session_factory):
    """Load audit rows, optionally for one booking, oldest first."""

    async def _load(booking_id=None) -> list[AuditLog]:
        async with session_factory() as session:
            stmt = select(AuditLog).order_by(AuditLog.created_at)
            if booking_id is not None:
                stmt = stmt.where(AuditLog.booking_id == booking_id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return _load

"""
Pytest configuration and shared fixtures for the rental fleet engine test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests)
- A lightweight FastAPI app with the lifecycle routers mounted
- Mock data factories for vehicles, customers and reservations
- A configured override gate
"""

from datetime import date, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import bcrypt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from httpx import ASGITransport, AsyncClient
from slowapi.errors import RateLimitExceeded
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import Settings
from core.db import Base, get_db
from exceptions import register_exception_handlers
from middleware.rate_limit import limiter, custom_rate_limit_exceeded
from models import Customer, Driver, OutboxEvent, Reservation, Vehicle
from routers import health, maintenance, metrics, reservations, spares
from routers.deps import get_app_settings
from services.override_gate import OverrideGate
from services.reservation_service import ReservationService
from services.schedule_service import ScheduleService
from services.spare_service import SpareService


# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OVERRIDE_PASSWORD = "fleet-manager-2024"
# Low cost factor keeps the suite fast
OVERRIDE_PASSWORD_HASH = bcrypt.hashpw(OVERRIDE_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")

TODAY = date.today()


def day(offset: int) -> date:
    """Calendar day relative to today."""
    return TODAY + timedelta(days=offset)


@pytest_asyncio.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        override_password_hash=OVERRIDE_PASSWORD_HASH,
        contract_number_warning_threshold=100000,
        open_ended_horizon_days=365,
        spare_assignment_lookahead_days=7,
    )


@pytest.fixture
def override_gate(test_settings) -> OverrideGate:
    return OverrideGate(test_settings.override_password_hash)


@pytest.fixture
def reservation_service(async_db_session, override_gate, test_settings) -> ReservationService:
    return ReservationService(async_db_session, override_gate, test_settings)


@pytest.fixture
def schedule_service(async_db_session) -> ScheduleService:
    return ScheduleService(async_db_session, open_ended_horizon_days=365)


@pytest.fixture
def spare_service(async_db_session, schedule_service) -> SpareService:
    return SpareService(async_db_session, schedule_service)


@pytest_asyncio.fixture
async def test_app(async_db_session, test_settings) -> AsyncGenerator[FastAPI, None]:
    """A lightweight FastAPI app mounting the lifecycle routers, without the outbox worker."""
    async def override_get_db():
        yield async_db_session

    app = FastAPI()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded)
    register_exception_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    for module in (health, metrics, reservations, maintenance, spares):
        app.include_router(module.router)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    limiter.reset()

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client against the test app."""
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client


# Test Data Factories
@pytest_asyncio.fixture
async def test_customer(async_db_session) -> Customer:
    customer = Customer(name="Van Dijk Logistics", email="planning@vandijk.example", phone="+31 10 555 0199")
    async_db_session.add(customer)
    await async_db_session.commit()
    await async_db_session.refresh(customer)
    return customer


@pytest_asyncio.fixture
async def test_driver(async_db_session, test_customer) -> Driver:
    driver = Driver(customer_id=test_customer.id, name="Pieter van Dijk", license_number="NL7654321")
    async_db_session.add(driver)
    await async_db_session.commit()
    await async_db_session.refresh(driver)
    return driver


@pytest.fixture
def make_vehicle(async_db_session):
    """Factory: await make_vehicle(plate, current_mileage=..., availability_status=...)."""
    async def _make(license_plate: str = "AB-123-C", current_mileage: int = 50000, **kwargs) -> Vehicle:
        vehicle = Vehicle(
            license_plate=license_plate,
            brand=kwargs.pop("brand", "Volkswagen"),
            model=kwargs.pop("model", "Crafter"),
            current_mileage=current_mileage,
            current_fuel_level=kwargs.pop("current_fuel_level", "Full"),
            availability_status=kwargs.pop("availability_status", "available"),
            **kwargs
        )
        async_db_session.add(vehicle)
        await async_db_session.commit()
        await async_db_session.refresh(vehicle)
        return vehicle
    return _make


@pytest.fixture
def make_reservation(async_db_session):
    """Factory: await make_reservation(vehicle_id, start, end, status=..., type=..., ...)."""
    async def _make(
        vehicle_id,
        start_date: date,
        end_date=None,
        status: str = "confirmed",
        type: str = "standard",
        **kwargs
    ) -> Reservation:
        reservation = Reservation(
            type=type,
            vehicle_id=vehicle_id,
            start_date=start_date,
            end_date=end_date,
            status=status,
            placeholder_spare=kwargs.pop("placeholder_spare", False),
            **kwargs
        )
        async_db_session.add(reservation)
        await async_db_session.commit()
        await async_db_session.refresh(reservation)
        return reservation
    return _make


@pytest_asyncio.fixture
async def test_vehicle(make_vehicle) -> Vehicle:
    return await make_vehicle("VX-123-B", current_mileage=50000)


@pytest_asyncio.fixture
async def booked_rental(make_reservation, test_vehicle, test_customer, test_driver) -> Reservation:
    """A confirmed rental of ``test_vehicle`` from day 1 to day 8."""
    return await make_reservation(
        test_vehicle.id,
        day(1),
        day(8),
        customer_id=test_customer.id,
        driver_id=test_driver.id,
    )


def pickup_kwargs(**overrides) -> dict:
    """Default pickup inputs for the lifecycle service."""
    data = {
        "contract_number": "2001",
        "pickup_mileage": 50000,
        "fuel_level": "Full",
        "pickup_date": day(1),
    }
    data.update(overrides)
    return data


def pickup_payload(**overrides) -> dict:
    """Default JSON body for POST /reservations/{id}/pickup."""
    data = {
        "contract_number": "2001",
        "pickup_mileage": 50000,
        "fuel_level_pickup": "Full",
        "pickup_date": day(1).isoformat(),
    }
    data.update(overrides)
    return data


async def outbox_event_types(session: AsyncSession, reservation_id: int) -> list:
    result = await session.execute(
        select(OutboxEvent.event_type)
        .where(OutboxEvent.reservation_id == reservation_id)
        .order_by(OutboxEvent.id)
    )
    return list(result.scalars().all())


# Common Test Doubles
@pytest.fixture
def mock_async_session():
    """Provide a reusable AsyncSession-like test double.

    - `add` is a `MagicMock` (synchronous)
    - `flush`, `commit`, `rollback`, `refresh`, `execute`, `get` are `AsyncMock`
    Tests can override `execute.side_effect` / `flush.side_effect` as needed.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    return session

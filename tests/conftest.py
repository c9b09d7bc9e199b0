import asyncio
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from homedispatch.domain.bookings import db_models as booking_db_models  # noqa: F401
from homedispatch.domain.bookings.db_models import Booking
from homedispatch.domain.bookings.statuses import BookingPhase
from homedispatch.domain.catalog.db_models import ServiceOffering
from homedispatch.domain.customers.db_models import Customer
from homedispatch.domain.escrow import db_models as escrow_db_models  # noqa: F401
from homedispatch.domain.providers.db_models import APPLICATION_ACTIVE, Provider
from homedispatch.infra.auth import create_access_token
from homedispatch.infra.db import Base, get_db_session
from homedispatch.infra.locks import InMemoryBookingLocker
from homedispatch.infra.payment_gateway import SimulatedPaymentGateway
from homedispatch.main import app
from homedispatch.settings import settings

SANDTON = [28.0567, -26.1076]
SANDTON_ADDRESS = "12 Rivonia Road, Sandton"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original_username = settings.admin_basic_username
    original_password = settings.admin_basic_password
    original_testing = settings.testing
    original_app_env = settings.app_env
    original_metrics = settings.metrics_enabled
    original_metrics_token = settings.metrics_token
    original_auth_secret_key = settings.auth_secret_key
    original_email_mode = settings.email_mode
    original_webhook_secret = settings.stripe_webhook_secret
    yield
    settings.admin_basic_username = original_username
    settings.admin_basic_password = original_password
    settings.testing = original_testing
    settings.app_env = original_app_env
    settings.metrics_enabled = original_metrics
    settings.metrics_token = original_metrics_token
    settings.auth_secret_key = original_auth_secret_key
    settings.email_mode = original_email_mode
    settings.stripe_webhook_secret = original_webhook_secret


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    settings.email_mode = "off"
    app.state.email_adapter = None
    yield


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def locker():
    return InMemoryBookingLocker(timeout_seconds=5)


@pytest.fixture()
def gateway():
    return SimulatedPaymentGateway()


@pytest.fixture()
def client(async_session_maker, gateway):
    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    original_locker = getattr(app.state, "booking_locker", None)
    app.state.db_session_factory = async_session_maker
    app.state.booking_locker = InMemoryBookingLocker(timeout_seconds=5)
    app.state.payment_gateway = gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
    app.state.booking_locker = original_locker
    app.state.payment_gateway = None
    app.state.stripe_webhook_verifier = None


def bearer_headers(subject: str, role: str) -> dict[str, str]:
    token = create_access_token(subject, role, 30, settings)
    return {"Authorization": f"Bearer {token}"}


async def seed_parties(
    async_session_maker,
    *,
    base_price_cents: int = 50000,
    duration_minutes: int = 60,
    customer_location: list[float] | None = None,
    admin_approved: bool = True,
) -> dict[str, str]:
    """Create one customer, one bookable provider and their service offering."""
    ids = {
        "customer_id": str(uuid.uuid4()),
        "provider_id": str(uuid.uuid4()),
        "service_id": str(uuid.uuid4()),
    }
    now = datetime.now(tz=timezone.utc)
    async with async_session_maker() as session:
        customer = Customer(
            customer_id=ids["customer_id"],
            name="Thandi",
            email=f"customer-{ids['customer_id'][:8]}@example.com",
            rating_count=0,
            created_at=now,
        )
        if customer_location:
            customer.location_lng, customer.location_lat = customer_location
        session.add(customer)
        session.add(
            Provider(
                provider_id=ids["provider_id"],
                name="Sipho Plumbing",
                email=f"provider-{ids['provider_id'][:8]}@example.com",
                is_online=True,
                skills=["plumbing"],
                is_verified=True,
                is_identity_verified=True,
                is_profile_complete=True,
                application_status=APPLICATION_ACTIVE,
                service_area_lng=SANDTON[0],
                service_area_lat=SANDTON[1],
                service_radius_km=25.0,
                rating=4.5,
                rating_count=0,
                experience_years=6,
                created_at=now,
                updated_at=now,
            )
        )
        await session.flush()
        session.add(
            ServiceOffering(
                service_id=ids["service_id"],
                provider_id=ids["provider_id"],
                title="Geyser repair",
                category="plumbing",
                base_price_cents=base_price_cents,
                base_duration_minutes=duration_minutes,
                admin_approved=admin_approved,
                created_at=now,
            )
        )
        await session.commit()
    return ids


async def seed_booking(
    async_session_maker,
    ids: dict[str, str],
    *,
    phase: BookingPhase = BookingPhase.REQUESTED,
    price_cents: int = 65000,
    duration_minutes: int = 60,
    **overrides,
) -> str:
    now = datetime.now(tz=timezone.utc)
    booking_id = str(uuid.uuid4())
    values = dict(
        booking_id=booking_id,
        customer_id=ids["customer_id"],
        provider_id=ids["provider_id"],
        service_id=ids["service_id"],
        phase=phase.value,
        scheduled_for=now + timedelta(days=1),
        estimated_duration_minutes=duration_minutes,
        job_size="medium",
        base_price_cents=50000,
        job_size_multiplier=1.0,
        location_multiplier=1.3,
        calculated_price_cents=price_cents,
        job_site_lng=SANDTON[0],
        job_site_lat=SANDTON[1],
        job_site_address=SANDTON_ADDRESS,
        can_start_job=False,
        sla_breached=False,
        sla_penalty_cents=0,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    async with async_session_maker() as session:
        session.add(Booking(**values))
        await session.commit()
    return booking_id

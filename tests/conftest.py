"""
CivicPulse - Test Configuration

Pytest fixtures and configuration.
"""

import os
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import civicpulse.models  # noqa: F401  (registers every table on Base.metadata)
from civicpulse.database import Base, get_async_session
from civicpulse.models import (
    Addon,
    BillingInterval,
    BillingStatus,
    MandateSubscription,
    MandateSubscriptionStatus,
    Plan,
    PlanAddonAccess,
    Tenant,
    TenantAddon,
)
from main import app


# In-memory SQLite by default; point at a Postgres test database to run
# the row-locking paths for real.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh schema per test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs(TEST_DATABASE_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# CATALOG FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> dict:
    """
    STANDARD (1200/year, 100/month) and PREMIUM (2400/year, 200/month)
    plans with the three standard add-ons. ADMIN is 100/year, 10/month.
    """
    standard = Plan(
        id=uuid4(), code="STANDARD", name="Standard",
        monthly_price=Decimal("100.00"), yearly_price=Decimal("1200.00"),
        max_admins=1, associations_included=10, communes_included=1,
    )
    premium = Plan(
        id=uuid4(), code="PREMIUM", name="Premium",
        monthly_price=Decimal("200.00"), yearly_price=Decimal("2400.00"),
        max_admins=3, associations_included=50, communes_included=5,
    )
    admin = Addon(
        id=uuid4(), code="ADMIN", name="Administrateur supplementaire",
        default_monthly_price=Decimal("10.00"), default_yearly_price=Decimal("100.00"),
    )
    associations = Addon(
        id=uuid4(), code="ASSOCIATIONS", name="Pack associations",
        default_monthly_price=Decimal("5.00"), default_yearly_price=Decimal("60.00"),
    )
    mairies = Addon(
        id=uuid4(), code="MAIRIES", name="Mairie supplementaire",
        default_monthly_price=Decimal("20.00"), default_yearly_price=Decimal("240.00"),
    )
    db_session.add_all([standard, premium, admin, associations, mairies])
    await db_session.commit()

    return {
        "standard": standard,
        "premium": premium,
        "admin": admin,
        "associations": associations,
        "mairies": mairies,
    }


@pytest_asyncio.fixture
async def addon_override(db_session: AsyncSession):
    """Factory for per-plan add-on access rows."""

    async def _create(plan, addon, yearly_price=None, monthly_price=None, is_enabled=True):
        access = PlanAddonAccess(
            plan_id=plan.id,
            addon_id=addon.id,
            is_enabled=is_enabled,
            yearly_price=yearly_price,
            monthly_price=monthly_price,
        )
        db_session.add(access)
        await db_session.commit()
        return access

    return _create


# ===========================================
# TENANT FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def make_tenant(db_session: AsyncSession, catalog: dict):
    """Factory for tenants on the STANDARD plan."""

    async def _create(
        name: str = "Mairie de Saint-Andre",
        plan: Optional[Plan] = None,
        interval: Optional[BillingInterval] = BillingInterval.YEARLY,
        created_at: Optional[datetime] = None,
        with_plan: bool = True,
        **fields,
    ) -> Tenant:
        tenant = Tenant(
            id=uuid4(),
            name=name,
            siret="21330001600011",
            contact_email="mairie@saint-andre.fr",
            subscription_plan_id=(plan or catalog["standard"]).id if with_plan else None,
            billing_interval=interval,
            billing_status=BillingStatus.TRIAL,
            billing_address="1 place de la Mairie, 33000 Saint-Andre",
            accounting_contact_name="Service comptabilite",
            accounting_contact_email="compta@saint-andre.fr",
            created_at=created_at or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc),
            **fields,
        )
        db_session.add(tenant)
        await db_session.commit()
        return tenant

    return _create


@pytest_asyncio.fixture
async def tenant(make_tenant) -> Tenant:
    return await make_tenant()


@pytest_asyncio.fixture
async def set_addon_quantity(db_session: AsyncSession):
    """Write a tenant_addons row directly."""

    async def _set(tenant: Tenant, addon: Addon, quantity: int) -> TenantAddon:
        row = TenantAddon(tenant_id=tenant.id, addon_id=addon.id, quantity=quantity)
        db_session.add(row)
        await db_session.commit()
        return row

    return _set


@pytest_asyncio.fixture
async def make_subscription(db_session: AsyncSession):
    """Factory for an ACTIVE mandate subscription over [start, end)."""

    async def _create(tenant: Tenant, start: date, end: date, order_id=None) -> MandateSubscription:
        subscription = MandateSubscription(
            tenant_id=tenant.id,
            order_id=order_id or uuid4(),
            plan_id=tenant.subscription_plan_id,
            status=MandateSubscriptionStatus.ACTIVE,
            start_date=start,
            end_date=end,
        )
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _create


@pytest.fixture
def today() -> date:
    return date(2025, 3, 1)

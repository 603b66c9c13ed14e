"""
Test fixtures for the allocation engine.

Every test gets its own file-backed SQLite database created from the ORM
metadata, so store invariants (partial unique indexes, CHECKs) are enforced
by a real database.  The environment is pinned before ``allocation`` is
imported so no test ever reaches Postgres, Redis or the Celery broker.
"""
import os
import tempfile
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

_TMP_DIR = tempfile.mkdtemp(prefix="allocation_test_")
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/app.db"
os.environ["DATABASE_URL_SYNC"] = f"sqlite:///{_TMP_DIR}/app.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["AUDIT_EVENTS_ENABLED"] = "false"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from allocation.core.database import Base, build_engine, get_db  # noqa: E402
from allocation.core.deps import RequestContext  # noqa: E402
from allocation.main import app  # noqa: E402
from allocation.models import Household, Lease, Property, Tenant, Unit  # noqa: E402
from allocation.models.enums import LeaseStatus  # noqa: E402
from allocation.services import store  # noqa: E402


# ── Database ───────────────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "allocation.db"


@pytest.fixture
async def engine(db_path):
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sync_engine(engine, db_path):
    """Sync engine on the same database, as the Celery tasks use."""
    sync = create_engine(f"sqlite:///{db_path}")
    yield sync
    sync.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── Seed data ──────────────────────────────────────────────────────────

@pytest.fixture
async def world(db):
    """One household, one active property with three units at 1000/month,
    and two tenants.  No leases."""
    household = Household(name="Test Household")
    db.add(household)
    await db.flush()

    prop = Property(household_id=household.id, name="Maple Court", lifecycle_status="ACTIVE")
    db.add(prop)
    await db.flush()

    units = [
        Unit(property_id=prop.id, unit_label=label, monthly_rent=Decimal("1000.00"),
             status="AVAILABLE", is_active=True)
        for label in ("A", "B", "C")
    ]
    alice = Tenant(household_id=household.id, full_name="Alice Tenant")
    bob = Tenant(household_id=household.id, full_name="Bob Tenant")
    db.add_all([*units, alice, bob])
    await db.commit()

    return SimpleNamespace(
        ctx=RequestContext(household_id=household.id),
        household=household,
        property=prop,
        unit_a=units[0],
        unit_b=units[1],
        unit_c=units[2],
        alice=alice,
        bob=bob,
    )


@pytest.fixture
def make_lease(db):
    """Insert a lease through the store write path and commit it."""

    async def _make(
        unit: Unit,
        tenant: Tenant,
        start: date,
        end: date | None = None,
        *,
        status: LeaseStatus = LeaseStatus.ACTIVE,
        rent: Decimal = Decimal("1000.00"),
        dual_lease_approved: bool = False,
    ) -> Lease:
        lease = Lease(
            unit_id=unit.id,
            tenant_id=tenant.id,
            start_date=start,
            end_date=end,
            monthly_rent=rent,
            security_deposit=Decimal("0"),
            pet_deposit=Decimal("0"),
            status=status.value,
            lease_type="FIXED_TERM",
            dual_lease_approved=dual_lease_approved,
        )
        await store.insert_lease(db, lease)
        await db.commit()
        return lease

    return _make


# ── HTTP ───────────────────────────────────────────────────────────────

@pytest.fixture
async def client(session_factory):
    """Async test client for the FastAPI app, bound to the per-test database."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

"""
Store invariants, enforced by the database itself, not just by callers.
"""
import asyncio
import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from allocation.core.config import settings
from allocation.core.deps import RequestContext
from allocation.core.errors import ConstraintViolation, NotFound, StoreTimeout
from allocation.models.enums import LeaseStatus
from allocation.models.rental import Lease
from allocation.services import allocation, store


def _lease(unit, tenant, start, end=None, **overrides):
    fields = dict(
        unit_id=unit.id,
        tenant_id=tenant.id,
        start_date=start,
        end_date=end,
        monthly_rent=Decimal("1000.00"),
        security_deposit=Decimal("0"),
        pet_deposit=Decimal("0"),
        status="ACTIVE",
        lease_type="FIXED_TERM",
        dual_lease_approved=False,
    )
    fields.update(overrides)
    return Lease(**fields)


# ── Constraint name translation ─────────────────────────────────────────────

class TestTranslateIntegrityError:
    def _error(self, message):
        return IntegrityError("INSERT INTO leases ...", {}, Exception(message))

    def test_postgres_unit_index(self):
        exc = self._error('duplicate key value violates unique constraint "uq_leases_active_unit"')
        assert store.translate_integrity_error(exc).rule == "unique_active_lease_per_unit"

    def test_sqlite_unit_index(self):
        exc = self._error("UNIQUE constraint failed: leases.unit_id")
        assert store.translate_integrity_error(exc).rule == "unique_active_lease_per_unit"

    def test_tenant_index(self):
        exc = self._error("UNIQUE constraint failed: leases.tenant_id")
        assert store.translate_integrity_error(exc).rule == "unique_active_lease_per_tenant"

    def test_check_constraint(self):
        exc = self._error("CHECK constraint failed: ck_leases_positive_rent")
        assert store.translate_integrity_error(exc).rule == "positive_rent"

    def test_unknown_constraint(self):
        exc = self._error("NOT NULL constraint failed: leases.start_date")
        assert store.translate_integrity_error(exc).rule == "integrity"


# ── Application-side validation ─────────────────────────────────────────────

class TestValidateLease:
    def test_end_before_start(self):
        lease = Lease(start_date=date(2024, 8, 1), end_date=date(2024, 7, 1), monthly_rent=Decimal("1"))
        with pytest.raises(ConstraintViolation) as err:
            store.validate_lease(lease)
        assert err.value.rule == "start_before_end"

    def test_end_equal_start(self):
        lease = Lease(start_date=date(2024, 8, 1), end_date=date(2024, 8, 1), monthly_rent=Decimal("1"))
        with pytest.raises(ConstraintViolation):
            store.validate_lease(lease)

    def test_zero_rent(self):
        lease = Lease(start_date=date(2024, 8, 1), monthly_rent=Decimal("0"))
        with pytest.raises(ConstraintViolation) as err:
            store.validate_lease(lease)
        assert err.value.rule == "positive_rent"

    def test_negative_deposit(self):
        lease = Lease(
            start_date=date(2024, 8, 1),
            monthly_rent=Decimal("500"),
            security_deposit=Decimal("-1"),
        )
        with pytest.raises(ConstraintViolation) as err:
            store.validate_lease(lease)
        assert err.value.rule == "non_negative_deposits"

    def test_open_ended_is_valid(self):
        store.validate_lease(Lease(start_date=date(2024, 8, 1), monthly_rent=Decimal("500")))


# ── Bounded operations ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bounded_times_out(monkeypatch):
    monkeypatch.setattr(settings, "store_timeout_seconds", 0.01)
    with pytest.raises(StoreTimeout) as err:
        await store.bounded(asyncio.sleep(1), "slow_read")
    assert err.value.retryable is True
    assert err.value.operation == "slow_read"


def _aborted(**orig):
    return OperationalError("UPDATE units SET status = 'OCCUPIED'", {}, SimpleNamespace(**orig))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "orig",
    [
        {"sqlstate": "57014"},  # statement_timeout
        {"sqlstate": "55P03"},  # lock_timeout
        {"pgcode": "40P01"},  # deadlock victim
    ],
)
async def test_bounded_maps_server_aborts(orig):
    async def cancelled():
        raise _aborted(**orig)

    with pytest.raises(StoreTimeout) as err:
        await store.bounded(cancelled(), "lock_unit")
    assert err.value.retryable is True
    assert err.value.operation == "lock_unit"
    assert isinstance(err.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_bounded_reraises_other_database_errors():
    async def broken():
        raise _aborted(sqlstate="42P01")

    with pytest.raises(OperationalError):
        await store.bounded(broken(), "get_unit")


class _DeadlockedSession:
    def __init__(self):
        self.rolled_back = False

    async def commit(self):
        raise _aborted(pgcode="40P01")

    async def rollback(self):
        self.rolled_back = True


@pytest.mark.asyncio
async def test_commit_abort_rolls_back_and_is_retryable():
    session = _DeadlockedSession()

    with pytest.raises(StoreTimeout) as err:
        await allocation.commit_or_translate(session, uuid.uuid4())

    assert session.rolled_back is True
    assert err.value.operation == "commit"
    assert "40P01" in err.value.detail


# ── Database-enforced invariants ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_second_active_lease_on_unit_rejected(db, world, make_lease):
    await make_lease(world.unit_a, world.alice, date(2024, 1, 1))

    with pytest.raises(ConstraintViolation) as err:
        await store.insert_lease(db, _lease(world.unit_a, world.bob, date(2025, 1, 1)))
    await db.rollback()
    assert err.value.rule == "unique_active_lease_per_unit"


@pytest.mark.asyncio
async def test_second_unapproved_active_lease_for_tenant_rejected(db, world, make_lease):
    await make_lease(world.unit_a, world.alice, date(2024, 1, 1))

    with pytest.raises(ConstraintViolation) as err:
        await store.insert_lease(db, _lease(world.unit_b, world.alice, date(2024, 2, 1)))
    await db.rollback()
    assert err.value.rule == "unique_active_lease_per_tenant"


@pytest.mark.asyncio
async def test_approved_dual_lease_accepted(db, world, make_lease):
    await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    lease = await make_lease(world.unit_b, world.alice, date(2024, 2, 1), dual_lease_approved=True)
    assert lease.status == "ACTIVE"


@pytest.mark.asyncio
async def test_terminated_lease_frees_unit_index(db, world, make_lease):
    first = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    await store.transition_lease(db, first, LeaseStatus.TERMINATED, end_date=date(2024, 3, 31))
    await db.commit()

    second = await make_lease(world.unit_a, world.bob, date(2024, 4, 1))
    assert second.status == "ACTIVE"


# ── Transitions and retention ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_terminal_lease_cannot_transition_again(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    await store.transition_lease(db, lease, LeaseStatus.TERMINATED, end_date=date(2024, 3, 31))
    await db.commit()

    with pytest.raises(ConstraintViolation) as err:
        await store.transition_lease(db, lease, LeaseStatus.EXPIRED)
    assert err.value.rule == "lease_status_transition"


@pytest.mark.asyncio
async def test_lease_cannot_be_reactivated(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    with pytest.raises(ConstraintViolation):
        await store.transition_lease(db, lease, LeaseStatus.ACTIVE)


@pytest.mark.asyncio
async def test_transition_appends_note(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    lease.notes = "signed in person"
    await store.transition_lease(
        db, lease, LeaseStatus.TERMINATED, end_date=date(2024, 2, 29), note="tenant left early"
    )
    await db.commit()
    assert lease.notes == "signed in person\ntenant left early"
    assert lease.end_date == date(2024, 2, 29)


@pytest.mark.asyncio
async def test_active_lease_is_retained(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    with pytest.raises(ConstraintViolation) as err:
        await store.delete_lease(db, lease)
    assert err.value.rule == "lease_retention"


@pytest.mark.asyncio
async def test_pending_lease_can_be_deleted(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1), status=LeaseStatus.PENDING)
    await store.delete_lease(db, lease)
    await db.commit()
    assert await db.get(Lease, lease.id) is None


# ── Household scoping ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reads_are_scoped_to_household(db, world):
    stranger = RequestContext(household_id=uuid.uuid4())
    with pytest.raises(NotFound):
        await store.get_unit(db, stranger, world.unit_a.id)
    with pytest.raises(NotFound):
        await store.get_tenant(db, stranger, world.alice.id)


@pytest.mark.asyncio
async def test_unit_rent_must_be_positive(db, world):
    world.unit_a.monthly_rent = Decimal("0")
    with pytest.raises(ConstraintViolation) as err:
        await store.save_unit(db, world.unit_a)
    assert err.value.rule == "positive_unit_rent"

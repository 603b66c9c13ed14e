"""
Atomic reallocation: both writes commit together or not at all.
"""
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from allocation.core.errors import NoActiveLease, NotFound, UnitUnavailable
from allocation.models.enums import LeaseStatus, UnitStatus
from allocation.models.rental import Lease, Unit
from allocation.schemas.allocation import AllocationRequest, ReallocationRequest
from allocation.services import allocation, conflicts, reallocation


def _move(tenant, lease, unit, effective=date(2024, 7, 1), **overrides):
    fields = dict(
        tenant_id=tenant.id,
        current_lease_id=lease.id,
        new_unit_id=unit.id,
        effective_date=effective,
        notes="needs a ground-floor unit",
    )
    fields.update(overrides)
    return ReallocationRequest(**fields)


@pytest.mark.asyncio
async def test_move_terminates_old_lease_and_creates_new(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))

    result = await reallocation.reallocate(db, world.ctx, _move(world.alice, old, world.unit_b))

    await db.refresh(old)
    new = await db.get(Lease, result.new_lease_id)
    assert old.status == "TERMINATED"
    assert old.end_date == date(2024, 6, 30)
    assert "Terminated for reallocation" in old.notes
    assert new.status == "ACTIVE"
    assert new.unit_id == world.unit_b.id
    assert new.start_date == date(2024, 7, 1)
    assert new.end_date is None
    assert new.monthly_rent == Decimal("1000.00")
    assert "Reallocation" in new.notes
    assert result.terminated_lease_id == old.id

    await db.refresh(world.unit_a)
    await db.refresh(world.unit_b)
    assert world.unit_a.status == "AVAILABLE"
    assert world.unit_b.status == "OCCUPIED"


@pytest.mark.asyncio
async def test_new_rent_overrides_nominal(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    result = await reallocation.reallocate(
        db, world.ctx, _move(world.alice, old, world.unit_b, new_rent=Decimal("1100.00"))
    )
    new = await db.get(Lease, result.new_lease_id)
    assert new.monthly_rent == Decimal("1100.00")


@pytest.mark.asyncio
async def test_keep_current_lease_creates_approved_dual_lease(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))

    result = await reallocation.reallocate(
        db, world.ctx, _move(world.alice, old, world.unit_b, terminate_current=False)
    )

    await db.refresh(old)
    new = await db.get(Lease, result.new_lease_id)
    assert old.status == "ACTIVE"
    assert new.status == "ACTIVE"
    assert new.dual_lease_approved is True
    assert result.terminated_lease_id is None
    assert result.warnings


# ── Preconditions ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lease_of_another_tenant(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    with pytest.raises(NoActiveLease):
        await reallocation.reallocate(db, world.ctx, _move(world.bob, old, world.unit_b))


@pytest.mark.asyncio
async def test_lease_no_longer_active(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    await allocation.transition_lease(db, world.ctx, old.id, LeaseStatus.TERMINATED, date(2024, 3, 1))

    with pytest.raises(NoActiveLease):
        await reallocation.reallocate(db, world.ctx, _move(world.alice, old, world.unit_b))


@pytest.mark.asyncio
async def test_unknown_lease(db, world):
    missing = Lease(id=uuid.uuid4())
    with pytest.raises(NoActiveLease):
        await reallocation.reallocate(db, world.ctx, _move(world.alice, missing, world.unit_b))


@pytest.mark.asyncio
async def test_unknown_target_unit(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    with pytest.raises(NotFound):
        await reallocation.reallocate(db, world.ctx, _move(world.alice, old, Unit(id=uuid.uuid4())))


@pytest.mark.asyncio
async def test_occupied_target(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    blocker = await make_lease(world.unit_b, world.bob, date(2024, 1, 1), date(2024, 12, 31))
    blocker_id = blocker.id

    with pytest.raises(UnitUnavailable) as err:
        await reallocation.reallocate(db, world.ctx, _move(world.alice, old, world.unit_b))

    assert err.value.blocking_lease_id == blocker_id
    assert err.value.available_from == date(2024, 12, 31)
    await db.refresh(old)
    assert old.status == "ACTIVE"


@pytest.mark.asyncio
async def test_target_lease_past_its_end_date_still_blocks(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    blocker = await make_lease(world.unit_b, world.bob, date(2024, 1, 1), date(2024, 6, 30))
    blocker_id = blocker.id

    # Effective the day after bob's end date, but his lease is still ACTIVE
    with pytest.raises(UnitUnavailable) as err:
        await reallocation.reallocate(
            db, world.ctx, _move(world.alice, old, world.unit_b, effective=date(2024, 7, 1))
        )

    assert err.value.blocking_lease_id == blocker_id
    assert err.value.available_from == date(2024, 6, 30)
    assert "concurrent" not in err.value.detail


@pytest.mark.asyncio
async def test_target_under_maintenance(db, world, make_lease):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    await allocation.set_unit_status(db, world.ctx, world.unit_b.id, UnitStatus.MAINTENANCE)

    with pytest.raises(UnitUnavailable):
        await reallocation.reallocate(db, world.ctx, _move(world.alice, old, world.unit_b))


# ── All or nothing ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_failure_after_termination_rolls_everything_back(db, world, make_lease, monkeypatch):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    target_id = world.unit_b.id

    async def broken_insert(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(reallocation.store, "insert_lease", broken_insert)

    with pytest.raises(RuntimeError):
        await reallocation.reallocate(db, world.ctx, _move(world.alice, old, world.unit_b))

    await db.refresh(old)
    await db.refresh(world.unit_a)
    assert old.status == "ACTIVE"
    assert old.end_date is None
    assert world.unit_a.status == "OCCUPIED"
    leases = (await db.execute(select(Lease).where(Lease.unit_id == target_id))).scalars().all()
    assert leases == []


@pytest.mark.asyncio
async def test_index_catches_occupant_the_check_missed(db, world, make_lease, monkeypatch):
    old = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    bob_lease = await make_lease(world.unit_b, world.bob, date(2024, 1, 1))
    old_id, bob_lease_id, target_id = old.id, bob_lease.id, world.unit_b.id

    async def sees_nothing(db, unit_id):
        return None

    monkeypatch.setattr(reallocation.availability, "find_blocking_lease", sees_nothing)

    with pytest.raises(UnitUnavailable, match="concurrent"):
        await reallocation.reallocate(db, world.ctx, _move(world.alice, old, world.unit_b))

    await db.refresh(old)
    await db.refresh(world.unit_a)
    assert old.status == "ACTIVE"
    assert old.end_date is None
    assert world.unit_a.status == "OCCUPIED"
    on_target = (await db.execute(select(Lease).where(Lease.unit_id == target_id))).scalars().all()
    assert [lease.id for lease in on_target] == [bob_lease_id]
    assert old_id not in [lease.id for lease in on_target]


@pytest.mark.asyncio
async def test_stale_check_loses_to_concurrent_reallocation(world, make_lease, session_factory):
    alice_lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    bob_lease = await make_lease(world.unit_c, world.bob, date(2024, 1, 1))

    # Alice's caller checks first and sees unit B free
    async with session_factory() as first:
        check = await conflicts.check_allocation(
            first,
            world.ctx,
            AllocationRequest(
                tenant_id=world.alice.id,
                unit_id=world.unit_b.id,
                start_date=date(2024, 7, 1),
                monthly_rent=Decimal("1000.00"),
            ),
            today=date(2024, 6, 1),
        )
        await first.rollback()
        assert not any(c.type == "UNIT_OCCUPIED" for c in check.conflicts)

        # Bob's reallocation into B commits in between
        async with session_factory() as second:
            await reallocation.reallocate(second, world.ctx, _move(world.bob, bob_lease, world.unit_b))

        with pytest.raises(UnitUnavailable):
            await reallocation.reallocate(first, world.ctx, _move(world.alice, alice_lease, world.unit_b))

    async with session_factory() as verify:
        active = (
            await verify.execute(
                select(Lease).where(Lease.unit_id == world.unit_b.id, Lease.status == "ACTIVE")
            )
        ).scalars().all()
        alice_current = await verify.get(Lease, alice_lease.id)
    assert [lease.tenant_id for lease in active] == [world.bob.id]
    assert alice_current.status == "ACTIVE"


# ── Lock order ──────────────────────────────────────────────────────────────

@pytest.fixture
def locks(monkeypatch):
    """Records every row lock reallocation takes, in order."""
    taken = []
    get_unit, get_lease = reallocation.store.get_unit, reallocation.store.get_lease

    async def locking_get_unit(db, ctx, unit_id, *, for_update=False):
        if for_update:
            taken.append(("unit", unit_id))
        return await get_unit(db, ctx, unit_id, for_update=for_update)

    async def locking_get_lease(db, ctx, lease_id, *, for_update=False):
        if for_update:
            taken.append(("lease", lease_id))
        return await get_lease(db, ctx, lease_id, for_update=for_update)

    monkeypatch.setattr(reallocation.store, "get_unit", locking_get_unit)
    monkeypatch.setattr(reallocation.store, "get_lease", locking_get_lease)
    return taken


@pytest.mark.asyncio
async def test_opposite_moves_lock_units_in_the_same_order(db, world, make_lease, locks):
    alice_lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    bob_lease = await make_lease(world.unit_b, world.bob, date(2024, 1, 1))
    a, b, c = world.unit_a.id, world.unit_b.id, world.unit_c.id
    alice_lease_id, bob_lease_id = alice_lease.id, bob_lease.id

    # Alice A -> C frees A, then bob B -> A: the two moves touch A from opposite sides
    await reallocation.reallocate(db, world.ctx, _move(world.alice, alice_lease, world.unit_c))
    alice_locks = list(locks)
    locks.clear()
    await reallocation.reallocate(db, world.ctx, _move(world.bob, bob_lease, world.unit_a))

    assert alice_locks == [("unit", u) for u in sorted([a, c])] + [("lease", alice_lease_id)]
    assert locks == [("unit", u) for u in sorted([a, b])] + [("lease", bob_lease_id)]

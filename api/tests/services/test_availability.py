import uuid
from datetime import date

import pytest

from allocation.core.errors import NotFound
from allocation.models.enums import LeaseStatus, UnitStatus
from allocation.services import allocation, availability


# ── Overlap test ────────────────────────────────────────────────────────────

class TestRangesOverlap:
    def test_open_ended_existing_blocks_everything_after_start(self):
        assert availability.ranges_overlap(date(2024, 1, 1), None, date(2030, 1, 1), None)

    def test_open_ended_request_overlaps_later_lease(self):
        assert availability.ranges_overlap(date(2025, 1, 1), date(2025, 6, 30), date(2024, 1, 1), None)

    def test_touching_end_date_overlaps(self):
        # Both ends are inclusive: a lease ending on the requested start still blocks it
        assert availability.ranges_overlap(date(2024, 1, 1), date(2024, 6, 30), date(2024, 6, 30), None)

    def test_day_after_end_is_free(self):
        assert not availability.ranges_overlap(date(2024, 1, 1), date(2024, 6, 30), date(2024, 7, 1), None)

    def test_request_ending_before_existing_start(self):
        assert not availability.ranges_overlap(
            date(2024, 7, 1), None, date(2024, 1, 1), date(2024, 6, 30)
        )

    def test_request_ending_on_existing_start(self):
        assert availability.ranges_overlap(date(2024, 7, 1), None, date(2024, 1, 1), date(2024, 7, 1))


# ── Resolver against the store ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_open_ended_lease_blocks_indefinitely(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1))

    result = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 6, 1))

    assert result.available is False
    assert result.available_from is None
    assert result.indefinite is True
    assert result.blocking_lease_id == lease.id
    assert result.occupying_tenant == "Alice Tenant"


@pytest.mark.asyncio
async def test_bounded_lease_blocks_until_closed(db, world, make_lease):
    lease = await make_lease(world.unit_a, world.alice, date(2024, 1, 1), date(2024, 6, 30))

    during = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 3, 1))
    after_end = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 7, 1))

    # Still ACTIVE, so the store would reject a second lease on the unit
    assert during.available is False
    assert after_end.available is False
    assert after_end.blocking_lease_id == lease.id
    assert after_end.available_from == date(2024, 6, 30)
    assert after_end.indefinite is False

    await allocation.transition_lease(db, world.ctx, lease.id, LeaseStatus.EXPIRED)
    freed = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 7, 1))
    assert freed.available is True


@pytest.mark.asyncio
async def test_non_active_leases_do_not_block(db, world, make_lease):
    await make_lease(world.unit_a, world.alice, date(2024, 1, 1), status=LeaseStatus.PENDING)
    result = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 2, 1))
    assert result.available is True


@pytest.mark.asyncio
async def test_check_is_repeatable(db, world, make_lease):
    await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    first = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 6, 1))
    second = await availability.check_availability(db, world.ctx, world.unit_a.id, date(2024, 6, 1))
    assert first == second


@pytest.mark.asyncio
async def test_unknown_unit(db, world):
    with pytest.raises(NotFound):
        await availability.check_availability(db, world.ctx, uuid.uuid4(), date(2024, 6, 1))


@pytest.mark.asyncio
async def test_list_available_units(db, world, make_lease):
    await make_lease(world.unit_a, world.alice, date(2024, 1, 1))
    await allocation.set_unit_status(db, world.ctx, world.unit_c.id, UnitStatus.MAINTENANCE)

    units = await availability.list_available_units(db, world.ctx, date(2024, 6, 1))

    assert [u.unit_label for u in units] == ["B"]


@pytest.mark.asyncio
async def test_inactive_property_has_no_available_units(db, world):
    world.property.lifecycle_status = "INACTIVE"
    await db.commit()

    units = await availability.list_available_units(db, world.ctx, date(2024, 6, 1))

    assert units == []

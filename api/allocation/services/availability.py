"""
Unit availability: read-only, side-effect free, safe to call repeatedly.

The store holds at most one ACTIVE lease per unit, whatever its dates, so a
unit with an ACTIVE lease cannot take another one until that lease is closed
(terminated, expired or cancelled).  The blocking lease's end date is
reported as ``available_from``; the daily expiry sweep closes it the day
after.  Requested dates are not used to look past an ACTIVE lease.

The answer is advisory: a concurrent writer can invalidate it immediately,
which is why allocation and reallocation re-run it inside their own
transaction.
"""
import logging
import uuid
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.deps import RequestContext
from allocation.models.enums import LeaseStatus
from allocation.models.rental import Lease, Tenant, Unit
from allocation.schemas.allocation import Availability
from allocation.services import store

logger = logging.getLogger(__name__)


def ranges_overlap(
    existing_start: date,
    existing_end: date | None,
    requested_start: date,
    requested_end: date | None,
) -> bool:
    """Inclusive overlap test; both ends of both ranges count."""
    return (existing_end is None or existing_end >= requested_start) and (
        requested_end is None or existing_start <= requested_end
    )


async def find_blocking_lease(db: AsyncSession, unit_id: uuid.UUID) -> tuple[Lease, str] | None:
    """The unit's ACTIVE lease, if any, with the occupying tenant's name."""
    result = await store.bounded(
        db.execute(
            select(Lease, Tenant.full_name)
            .join(Tenant, Lease.tenant_id == Tenant.id)
            .where(
                Lease.unit_id == unit_id,
                Lease.status == LeaseStatus.ACTIVE.value,
            )
            .order_by(Lease.start_date, Lease.created_at)
            .limit(1)
        ),
        "find_blocking_lease",
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


def to_availability(unit_id: uuid.UUID, blocking: tuple[Lease, str] | None) -> Availability:
    if blocking is None:
        return Availability(unit_id=unit_id, available=True)
    lease, tenant_name = blocking
    return Availability(
        unit_id=unit_id,
        available=False,
        blocking_lease_id=lease.id,
        occupying_tenant=tenant_name,
        blocking_start=lease.start_date,
        blocking_end=lease.end_date,
        available_from=lease.end_date,
        indefinite=lease.end_date is None,
    )


async def check_availability(
    db: AsyncSession,
    ctx: RequestContext,
    unit_id: uuid.UUID,
    start: date,
    end: date | None = None,
) -> Availability:
    await store.get_unit(db, ctx, unit_id)
    result = to_availability(unit_id, await find_blocking_lease(db, unit_id))
    logger.debug("Unit %s for %s to %s: available=%s", unit_id, start, end, result.available)
    return result


async def list_available_units(
    db: AsyncSession,
    ctx: RequestContext,
    start: date,
    end: date | None = None,
    property_id: uuid.UUID | None = None,
) -> list[Unit]:
    candidates = await store.rentable_units(db, ctx, property_id)
    if not candidates:
        return []

    result = await store.bounded(
        db.execute(
            select(Lease.unit_id)
            .where(
                Lease.unit_id.in_([u.id for u in candidates]),
                Lease.status == LeaseStatus.ACTIVE.value,
            )
            .distinct()
        ),
        "list_available_units",
    )
    blocked = set(result.scalars().all())
    available = [u for u in candidates if u.id not in blocked]
    logger.debug(
        "%d of %d candidate units free from %s to %s", len(available), len(candidates), start, end
    )
    return available

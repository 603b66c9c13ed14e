"""
Plain allocation plus the read-side queries built on leases (current tenant,
histories, occupancy statistics) and the lease/unit lifecycle actions.

Writers here re-check availability inside their own transaction with the
target unit locked; the advisory ``check_allocation`` result a caller saw
earlier is never trusted.
"""
import logging
import uuid
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.deps import RequestContext
from allocation.core.errors import ConstraintViolation, UnitUnavailable
from allocation.models.enums import LeaseStatus, UnitStatus
from allocation.models.property import Property
from allocation.models.rental import Lease, Unit
from allocation.schemas.allocation import AllocateRequest, AllocationResult, AllocationStats, CurrentTenant
from allocation.services import audit, availability, store

logger = logging.getLogger(__name__)


def ensure_rentable(unit: Unit, prop: Property) -> None:
    if unit.status == UnitStatus.MAINTENANCE.value:
        raise UnitUnavailable(unit.id, f"Unit {unit.unit_label} is under maintenance")
    if unit.status == UnitStatus.INACTIVE.value or not unit.is_active:
        raise UnitUnavailable(unit.id, f"Unit {unit.unit_label} is inactive")
    if not prop.is_active:
        raise UnitUnavailable(unit.id, f"Property {prop.name} is not active")


async def ensure_unit_free(db: AsyncSession, unit_id: uuid.UUID) -> None:
    blocking = await availability.find_blocking_lease(db, unit_id)
    if blocking is None:
        return
    lease, tenant_name = blocking
    until = lease.end_date.isoformat() if lease.end_date else "indefinitely"
    raise UnitUnavailable(
        unit_id,
        f"Unit is occupied by {tenant_name} until {until}",
        blocking_lease_id=lease.id,
        available_from=lease.end_date,
    )


async def commit_or_translate(db: AsyncSession, unit_id: uuid.UUID) -> None:
    """Commit the write; a lost race on the unit becomes UnitUnavailable and
    a server-side abort (timeout, deadlock) a retryable StoreTimeout.

    The transaction is rolled back on any failure, so nothing partial is
    ever visible.
    """
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        violation = store.translate_integrity_error(exc)
        if violation.rule == store.RULE_UNIT_ACTIVE_LEASE:
            raise UnitUnavailable(unit_id, "Unit was allocated by a concurrent request") from exc
        raise violation from exc
    except DBAPIError as exc:
        await db.rollback()
        timed_out = store.store_timeout_from(exc, "commit")
        if timed_out is None:
            raise
        raise timed_out from exc


async def allocate(
    db: AsyncSession, ctx: RequestContext, request: AllocateRequest
) -> AllocationResult:
    terms = request.terms
    warnings: list[str] = []

    try:
        await store.get_tenant(db, ctx, request.tenant_id)
        unit = await store.get_unit(db, ctx, request.unit_id, for_update=True)
        _, prop = await store.get_unit_with_property(db, ctx, unit.id)
        ensure_rentable(unit, prop)
        await ensure_unit_free(db, unit.id)

        existing = await store.active_leases_for_tenant(db, ctx, request.tenant_id)
        if existing and not terms.allow_dual_lease:
            held = ", ".join(str(lease.id) for lease, _, _ in existing)
            raise ConstraintViolation(
                store.RULE_TENANT_ACTIVE_LEASE,
                f"Tenant already holds active lease(s) {held}; approve a dual lease to proceed",
            )
        for lease, other_unit, other_prop in existing:
            warnings.append(
                f"Tenant already has an active lease {lease.id} in {other_prop.name} - {other_unit.unit_label}; "
                "this creates a second active lease"
            )
        if terms.start_date < date.today():
            warnings.append("Start date is in the past")

        lease = Lease(
            unit_id=unit.id,
            tenant_id=request.tenant_id,
            start_date=terms.start_date,
            end_date=terms.end_date,
            monthly_rent=terms.monthly_rent,
            security_deposit=terms.security_deposit,
            pet_deposit=terms.pet_deposit,
            lease_type=terms.lease_type.value,
            status=LeaseStatus.ACTIVE.value,
            dual_lease_approved=bool(existing) and terms.allow_dual_lease,
            notes=terms.notes,
            created_by=ctx.actor_id,
        )
        await store.insert_lease(db, lease)
    except ConstraintViolation as exc:
        await db.rollback()
        if exc.rule == store.RULE_UNIT_ACTIVE_LEASE:
            raise UnitUnavailable(request.unit_id, "Unit was allocated by a concurrent request") from exc
        raise
    except Exception:
        await db.rollback()
        raise

    await commit_or_translate(db, request.unit_id)
    logger.info("Allocated unit %s to tenant %s (lease %s)", request.unit_id, request.tenant_id, lease.id)
    await audit.publish(
        "lease_allocated",
        ctx,
        lease_id=lease.id,
        unit_id=request.unit_id,
        tenant_id=request.tenant_id,
        start_date=terms.start_date,
        end_date=terms.end_date,
        monthly_rent=terms.monthly_rent,
        dual_lease=lease.dual_lease_approved,
    )
    return AllocationResult(lease_id=lease.id, warnings=warnings)


# ── Lease and unit lifecycle ────────────────────────────────────────────────

async def transition_lease(
    db: AsyncSession,
    ctx: RequestContext,
    lease_id: uuid.UUID,
    new_status: LeaseStatus,
    end_date: date | None = None,
    note: str | None = None,
) -> Lease:
    try:
        lease = await store.get_lease(db, ctx, lease_id, for_update=True)
        previous = lease.status
        await store.transition_lease(db, lease, new_status, end_date, note)
    except Exception:
        await db.rollback()
        raise
    await commit_or_translate(db, lease.unit_id)
    await audit.publish(
        "lease_transitioned",
        ctx,
        lease_id=lease.id,
        unit_id=lease.unit_id,
        tenant_id=lease.tenant_id,
        previous_status=previous,
        new_status=new_status.value,
    )
    return lease


async def delete_pending_lease(db: AsyncSession, ctx: RequestContext, lease_id: uuid.UUID) -> None:
    try:
        lease = await store.get_lease(db, ctx, lease_id, for_update=True)
        await store.delete_lease(db, lease)
    except Exception:
        await db.rollback()
        raise
    await commit_or_translate(db, lease.unit_id)


async def set_unit_status(
    db: AsyncSession,
    ctx: RequestContext,
    unit_id: uuid.UUID,
    status: UnitStatus,
    maintenance_notes: str | None = None,
) -> Unit:
    try:
        unit = await store.get_unit(db, ctx, unit_id, for_update=True)
        previous = unit.status
        await store.set_unit_status(db, unit, status, maintenance_notes)
    except Exception:
        await db.rollback()
        raise
    await commit_or_translate(db, unit.id)
    await audit.publish(
        "unit_status_changed", ctx, unit_id=unit.id, previous_status=previous, new_status=unit.status
    )
    return unit


# ── Queries ─────────────────────────────────────────────────────────────────

async def current_tenant(
    db: AsyncSession, ctx: RequestContext, unit_id: uuid.UUID, *, today: date | None = None
) -> CurrentTenant | None:
    await store.get_unit(db, ctx, unit_id)
    today = today or date.today()
    blocking = await availability.find_blocking_lease(db, unit_id)
    if blocking is None:
        return None
    lease, tenant_name = blocking
    if not availability.ranges_overlap(lease.start_date, lease.end_date, today, today):
        return None
    return CurrentTenant(
        tenant_id=lease.tenant_id,
        tenant_name=tenant_name,
        lease_id=lease.id,
        start_date=lease.start_date,
        end_date=lease.end_date,
        monthly_rent=lease.monthly_rent,
    )


async def tenant_history(db: AsyncSession, ctx: RequestContext, tenant_id: uuid.UUID) -> list[Lease]:
    await store.get_tenant(db, ctx, tenant_id)
    result = await store.bounded(
        db.execute(
            select(Lease)
            .where(Lease.tenant_id == tenant_id)
            .order_by(Lease.start_date.desc(), Lease.created_at.desc())
        ),
        "tenant_history",
    )
    return list(result.scalars().all())


async def unit_history(db: AsyncSession, ctx: RequestContext, unit_id: uuid.UUID) -> list[Lease]:
    await store.get_unit(db, ctx, unit_id)
    result = await store.bounded(
        db.execute(
            select(Lease)
            .where(Lease.unit_id == unit_id)
            .order_by(Lease.start_date.desc(), Lease.created_at.desc())
        ),
        "unit_history",
    )
    return list(result.scalars().all())


async def allocation_stats(
    db: AsyncSession, ctx: RequestContext, property_id: uuid.UUID | None = None
) -> AllocationStats:
    scope = [Property.household_id == ctx.household_id]
    if property_id:
        scope.append(Unit.property_id == property_id)

    unit_counts = await store.bounded(
        db.execute(
            select(Unit.status, func.count(Unit.id))
            .join(Property, Unit.property_id == Property.id)
            .where(*scope)
            .group_by(Unit.status)
        ),
        "allocation_stats.units",
    )
    by_status = {status: count for status, count in unit_counts.all()}
    total = sum(by_status.values())
    occupied = by_status.get(UnitStatus.OCCUPIED.value, 0)

    active = await store.bounded(
        db.execute(
            select(Lease.start_date, Lease.end_date)
            .join(Unit, Lease.unit_id == Unit.id)
            .join(Property, Unit.property_id == Property.id)
            .where(Lease.status == LeaseStatus.ACTIVE.value, *scope)
        ),
        "allocation_stats.leases",
    )
    rows = active.all()
    lengths = [(end - start).days for start, end in rows if end is not None]

    return AllocationStats(
        total_units=total,
        occupied_units=occupied,
        vacant_units=total - occupied,
        occupancy_rate=round(occupied / total * 100, 1) if total else 0.0,
        average_lease_length_days=round(sum(lengths) / len(lengths)) if lengths else 0,
        total_active_leases=len(rows),
    )

"""
Atomic reallocation: move a tenant from their current lease to a new unit.

Everything happens on one session in one transaction:

    1. lock the source and target unit rows in id order, then the current
       lease row
    2. current lease must be ACTIVE and belong to the tenant  -> NoActiveLease
    3. target unit must be rentable and hold no other ACTIVE lease
                                                               -> UnitUnavailable
    4. terminate the current lease the day before the effective date
       (unless ``terminate_current`` is false)
    5. insert the new ACTIVE lease
    6. commit

Unit status follows from the lease writes through the occupancy hooks in the
same transaction.  Any failure rolls the whole thing back; a concurrent
writer that wins the target unit surfaces here as ``UnitUnavailable`` via the
partial unique index.  Nothing is retried.
"""
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.deps import RequestContext
from allocation.core.errors import ConstraintViolation, NoActiveLease, NotFound, UnitUnavailable
from allocation.models.enums import LeaseStatus
from allocation.models.rental import Lease
from allocation.schemas.allocation import ReallocationRequest, ReallocationResult
from allocation.services import audit, availability, store
from allocation.services.allocation import commit_or_translate, ensure_rentable

logger = logging.getLogger(__name__)


async def reallocate(
    db: AsyncSession, ctx: RequestContext, request: ReallocationRequest
) -> ReallocationResult:
    effective = request.effective_date
    reason = request.notes or "tenant moved"
    warnings: list[str] = []

    try:
        try:
            current = await store.get_lease(db, ctx, request.current_lease_id)
        except NotFound as exc:
            raise NoActiveLease(request.tenant_id, request.current_lease_id) from exc

        # Both unit rows are written (occupancy), so every reallocation locks
        # them in the same order before touching anything
        locked = {}
        for unit_id in sorted({current.unit_id, request.new_unit_id}):
            locked[unit_id] = await store.get_unit(db, ctx, unit_id, for_update=True)
        unit = locked[request.new_unit_id]
        _, prop = await store.get_unit_with_property(db, ctx, unit.id)
        current = await store.get_lease(db, ctx, request.current_lease_id, for_update=True)
        if current.tenant_id != request.tenant_id or current.status != LeaseStatus.ACTIVE.value:
            raise NoActiveLease(request.tenant_id, request.current_lease_id)

        ensure_rentable(unit, prop)
        blocking = await availability.find_blocking_lease(db, unit.id)
        # Moving within the same unit: the current lease ends before the new one starts
        if blocking is not None and not (request.terminate_current and blocking[0].id == current.id):
            lease, tenant_name = blocking
            raise UnitUnavailable(
                unit.id,
                f"Unit {unit.unit_label} is occupied by {tenant_name} until "
                f"{lease.end_date.isoformat() if lease.end_date else 'indefinitely'}",
                blocking_lease_id=lease.id,
                available_from=lease.end_date,
            )

        terminated_id = None
        if request.terminate_current:
            await store.transition_lease(
                db,
                current,
                LeaseStatus.TERMINATED,
                end_date=effective - timedelta(days=1),
                note=f"Terminated for reallocation to unit {unit.unit_label}: {reason}",
            )
            terminated_id = current.id
        else:
            warnings.append(f"Tenant keeps lease {current.id}; new lease recorded as an approved dual lease")

        new_lease = Lease(
            unit_id=unit.id,
            tenant_id=request.tenant_id,
            start_date=effective,
            monthly_rent=request.new_rent if request.new_rent is not None else unit.monthly_rent,
            security_deposit=current.security_deposit,
            pet_deposit=current.pet_deposit,
            lease_type=current.lease_type,
            status=LeaseStatus.ACTIVE.value,
            dual_lease_approved=not request.terminate_current,
            notes=f"Reallocation from lease {current.id}: {reason}",
            created_by=ctx.actor_id,
        )
        await store.insert_lease(db, new_lease)
    except ConstraintViolation as exc:
        await db.rollback()
        if exc.rule == store.RULE_UNIT_ACTIVE_LEASE:
            raise UnitUnavailable(request.new_unit_id, "Unit was allocated by a concurrent request") from exc
        raise
    except Exception:
        await db.rollback()
        raise

    await commit_or_translate(db, request.new_unit_id)
    logger.info(
        "Reallocated tenant %s from lease %s to unit %s effective %s",
        request.tenant_id, request.current_lease_id, request.new_unit_id, effective,
    )
    await audit.publish(
        "tenant_reallocated",
        ctx,
        lease_id=new_lease.id,
        unit_id=request.new_unit_id,
        tenant_id=request.tenant_id,
        previous_lease_id=request.current_lease_id,
        terminated=request.terminate_current,
        effective_date=effective,
    )
    return ReallocationResult(new_lease_id=new_lease.id, terminated_lease_id=terminated_id, warnings=warnings)

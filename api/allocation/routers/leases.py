import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.database import get_db
from allocation.core.deps import RequestContext, get_request_context
from allocation.models.enums import LeaseStatus
from allocation.models.property import Property
from allocation.models.rental import Lease, Unit
from allocation.schemas.rental import LeaseResponse, LeaseTransition
from allocation.services import allocation, store

router = APIRouter(prefix="/leases", tags=["leases"])


@router.get("/", response_model=list[LeaseResponse])
async def list_leases(
    status: LeaseStatus | None = None,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Lease)
        .join(Unit, Lease.unit_id == Unit.id)
        .join(Property, Unit.property_id == Property.id)
        .where(Property.household_id == ctx.household_id)
        .order_by(Lease.start_date.desc())
    )
    if status:
        query = query.where(Lease.status == status.value)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{lease_id}", response_model=LeaseResponse)
async def get_lease(
    lease_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await store.get_lease(db, ctx, lease_id)


@router.post("/{lease_id}/transition", response_model=LeaseResponse)
async def transition_lease(
    lease_id: uuid.UUID,
    payload: LeaseTransition,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await allocation.transition_lease(
        db, ctx, lease_id, LeaseStatus(payload.status), payload.end_date, payload.note
    )


@router.delete("/{lease_id}", status_code=204)
async def delete_lease(
    lease_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    """Only PENDING drafts can be removed; everything else is history."""
    await allocation.delete_pending_lease(db, ctx, lease_id)

import uuid
from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.database import get_db
from allocation.core.deps import RequestContext, get_request_context
from allocation.models.enums import UnitStatus
from allocation.schemas.allocation import Availability, CurrentTenant, UnitSummary
from allocation.schemas.rental import LeaseResponse, UnitResponse, UnitStatusUpdate, UnitUpdate
from allocation.services import allocation, availability, store

router = APIRouter(prefix="/units", tags=["units"])


# Declared before /{unit_id} so "available" is not parsed as an id
@router.get("/available", response_model=list[UnitSummary])
async def list_available_units(
    start_date: date,
    end_date: date | None = None,
    property_id: uuid.UUID | None = None,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await availability.list_available_units(db, ctx, start_date, end_date, property_id)


@router.get("/{unit_id}", response_model=UnitResponse)
async def get_unit(
    unit_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await store.get_unit(db, ctx, unit_id)


@router.patch("/{unit_id}", response_model=UnitResponse)
async def update_unit(
    unit_id: uuid.UUID,
    payload: UnitUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    unit = await store.get_unit(db, ctx, unit_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(unit, field, value)
    await store.save_unit(db, unit)
    await db.refresh(unit)
    return unit


@router.put("/{unit_id}/status", response_model=UnitResponse)
async def set_unit_status(
    unit_id: uuid.UUID,
    payload: UnitStatusUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await allocation.set_unit_status(
        db, ctx, unit_id, UnitStatus(payload.status), payload.maintenance_notes
    )


@router.get("/{unit_id}/availability", response_model=Availability)
async def check_availability(
    unit_id: uuid.UUID,
    start_date: date,
    end_date: date | None = None,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await availability.check_availability(db, ctx, unit_id, start_date, end_date)


@router.get("/{unit_id}/current-tenant", response_model=CurrentTenant | None)
async def get_current_tenant(
    unit_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await allocation.current_tenant(db, ctx, unit_id)


@router.get("/{unit_id}/leases", response_model=list[LeaseResponse])
async def unit_history(
    unit_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await allocation.unit_history(db, ctx, unit_id)

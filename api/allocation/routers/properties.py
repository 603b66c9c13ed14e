import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.database import get_db
from allocation.core.deps import RequestContext, get_request_context
from allocation.core.errors import NotFound
from allocation.models.property import Property
from allocation.models.rental import Unit
from allocation.schemas.rental import (
    PropertyCreate,
    PropertyLifecycleUpdate,
    PropertyResponse,
    UnitCreate,
    UnitResponse,
)
from allocation.services import store

router = APIRouter(prefix="/properties", tags=["properties"])


async def _get_property(property_id: uuid.UUID, ctx: RequestContext, db: AsyncSession) -> Property:
    result = await db.execute(
        select(Property).where(
            Property.id == property_id,
            Property.household_id == ctx.household_id,
        )
    )
    prop = result.scalar_one_or_none()
    if not prop:
        raise NotFound("Property", property_id)
    return prop


@router.get("/", response_model=list[PropertyResponse])
async def list_properties(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Property)
        .where(Property.household_id == ctx.household_id)
        .order_by(Property.created_at.desc())
    )
    return result.scalars().all()


@router.post("/", response_model=PropertyResponse, status_code=201)
async def create_property(
    payload: PropertyCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    await store.ensure_household(db, ctx)
    prop = Property(household_id=ctx.household_id, **payload.model_dump())
    db.add(prop)
    await db.flush()
    await db.refresh(prop)
    return prop


@router.patch("/{property_id}/lifecycle", response_model=PropertyResponse)
async def update_property_lifecycle(
    property_id: uuid.UUID,
    payload: PropertyLifecycleUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    prop = await _get_property(property_id, ctx, db)
    prop.lifecycle_status = payload.lifecycle_status.value
    await db.flush()
    await db.refresh(prop)
    return prop


# ─── Units of a property ─────────────────────────────────────────────────────

@router.get("/{property_id}/units", response_model=list[UnitResponse])
async def list_units(
    property_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    await _get_property(property_id, ctx, db)
    result = await db.execute(
        select(Unit)
        .where(Unit.property_id == property_id)
        .order_by(Unit.unit_label)
    )
    return result.scalars().all()


@router.post("/{property_id}/units", response_model=UnitResponse, status_code=201)
async def create_unit(
    property_id: uuid.UUID,
    payload: UnitCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    await _get_property(property_id, ctx, db)
    unit = Unit(property_id=property_id, **payload.model_dump())
    await store.save_unit(db, unit)
    await db.refresh(unit)
    return unit

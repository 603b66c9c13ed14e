import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.database import get_db
from allocation.core.deps import RequestContext, get_request_context
from allocation.core.limiter import limiter
from allocation.schemas.allocation import (
    AllocateRequest,
    AllocationRequest,
    AllocationResult,
    AllocationStats,
    ConflictCheckResult,
    ExecuteResolutionRequest,
    ReallocationRequest,
    ReallocationResult,
    ResolutionOutcome,
)
from allocation.services import allocation, conflicts, reallocation

router = APIRouter(prefix="/allocations", tags=["allocations"])


@router.post("/check", response_model=ConflictCheckResult)
async def check_allocation(
    payload: AllocationRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await conflicts.check_allocation(db, ctx, payload)


@router.post("", response_model=AllocationResult, status_code=201)
@limiter.limit("30/minute")
async def allocate(
    request: Request,
    payload: AllocateRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await allocation.allocate(db, ctx, payload)


@router.post("/reallocate", response_model=ReallocationResult, status_code=201)
@limiter.limit("30/minute")
async def reallocate(
    request: Request,
    payload: ReallocationRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await reallocation.reallocate(db, ctx, payload)


@router.post("/resolutions/execute", response_model=ResolutionOutcome)
async def execute_resolution(
    payload: ExecuteResolutionRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await conflicts.execute_resolution(db, ctx, payload.resolution, payload.request)


@router.get("/stats", response_model=AllocationStats)
async def allocation_stats(
    property_id: uuid.UUID | None = None,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
):
    return await allocation.allocation_stats(db, ctx, property_id)

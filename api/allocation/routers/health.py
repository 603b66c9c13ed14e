from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.config import settings
from allocation.core.database import get_db
from allocation.services.store import bounded

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "ok", "environment": settings.environment}


@router.get("/health/db")
async def health_db(db: AsyncSession = Depends(get_db)):
    # A slow store answers 503 through the StoreTimeout handler
    await bounded(db.execute(text("SELECT 1")), "health_db")
    return {"status": "ok", "database": "connected"}

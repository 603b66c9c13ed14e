"""
Allocation audit trail.

Engine calls ``publish()`` after a successful allocation, reallocation,
lease transition, termination request or override; the event is handed to
the Celery worker, which writes an ``allocation_events`` row on its own sync
session.  Publishing is fire-and-forget: a broker outage is logged and never
fails the engine call that produced the event.
"""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from kombu.exceptions import OperationalError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from allocation.core.config import settings
from allocation.core.deps import RequestContext
from allocation.models.audit import AllocationEvent
from allocation.worker import celery_app

logger = logging.getLogger(__name__)

_engine = create_engine(settings.database_url_sync, pool_pre_ping=True)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _uuid_or_none(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


@celery_app.task(name="allocation.services.audit.record_allocation_event")
def record_allocation_event(
    household_id: str,
    event_type: str,
    actor_id: str | None = None,
    lease_id: str | None = None,
    unit_id: str | None = None,
    tenant_id: str | None = None,
    payload: dict | None = None,
):
    with Session(_engine) as db:
        db.add(
            AllocationEvent(
                household_id=uuid.UUID(household_id),
                actor_id=_uuid_or_none(actor_id),
                event_type=event_type,
                lease_id=_uuid_or_none(lease_id),
                unit_id=_uuid_or_none(unit_id),
                tenant_id=_uuid_or_none(tenant_id),
                payload=payload,
            )
        )
        db.commit()
    logger.debug("Recorded %s event for household %s", event_type, household_id)


async def publish(
    event_type: str,
    ctx: RequestContext,
    *,
    lease_id: uuid.UUID | None = None,
    unit_id: uuid.UUID | None = None,
    tenant_id: uuid.UUID | None = None,
    **payload: Any,
) -> None:
    if not settings.audit_events_enabled:
        return
    kwargs = _jsonable(
        {
            "household_id": ctx.household_id,
            "event_type": event_type,
            "actor_id": ctx.actor_id,
            "lease_id": lease_id,
            "unit_id": unit_id,
            "tenant_id": tenant_id,
            "payload": payload or None,
        }
    )
    try:
        # Broker I/O stays off the event loop
        await run_in_threadpool(record_allocation_event.apply_async, kwargs=kwargs, retry=False)
    except OperationalError as exc:
        logger.warning("Could not publish %s audit event: %s", event_type, exc)

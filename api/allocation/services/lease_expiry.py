"""
Daily sweep: ACTIVE leases whose end date has passed become EXPIRED.

Runs from Celery beat (see ``worker.py``) on a sync session.  Each lease is
expired in its own transaction through the same store write path as the API,
so the unit it frees is released in that transaction too.
"""
import logging
from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from allocation.core.config import settings
from allocation.core.errors import AllocationError
from allocation.models.enums import LeaseStatus
from allocation.models.rental import Lease
from allocation.services import store
from allocation.worker import celery_app

logger = logging.getLogger(__name__)

_engine = create_engine(settings.database_url_sync, pool_pre_ping=True)


def expire_ended_leases_sync(session: Session, today: date | None = None) -> list[str]:
    """Expire every ACTIVE lease that ended before ``today``.

    Returns the ids of the leases that were expired.
    """
    today = today or date.today()
    ids = session.execute(
        select(Lease.id).where(
            Lease.status == LeaseStatus.ACTIVE.value,
            Lease.end_date.is_not(None),
            Lease.end_date < today,
        )
    ).scalars().all()

    expired: list[str] = []
    for lease_id in ids:
        lease = session.execute(
            select(Lease).where(Lease.id == lease_id).with_for_update()
        ).scalar_one()
        if lease.status != LeaseStatus.ACTIVE.value:
            session.rollback()
            continue
        try:
            store.transition_lease_sync(
                session, lease, LeaseStatus.EXPIRED, note=f"Expired automatically on {today.isoformat()}"
            )
            session.commit()
        except AllocationError as exc:
            session.rollback()
            logger.error("Could not expire lease %s: %s", lease_id, exc.detail)
            continue
        expired.append(str(lease_id))
    return expired


@celery_app.task(name="allocation.services.lease_expiry.expire_ended_leases")
def expire_ended_leases():
    if not settings.lease_expiry_enabled:
        logger.info("Lease expiry sweep disabled; skipping")
        return []
    with Session(_engine) as session:
        expired = expire_ended_leases_sync(session)
    logger.info("Lease expiry sweep: %d lease(s) expired", len(expired))
    return expired

"""
Unit occupancy maintenance.

Keeps ``Unit.status`` in step with lease state: OCCUPIED while an ACTIVE
lease references the unit, AVAILABLE otherwise.  MAINTENANCE and INACTIVE
belong to maintenance workflows and are never overwritten here.

These hooks are called by ``services.store`` right after a lease write has
been flushed, on the same session and therefore inside the same
transaction; there is no window where committed lease state and unit
status disagree.  They are synchronous (``Session``) so async callers run
them through ``AsyncSession.run_sync`` and Celery tasks call them directly.
All of them are idempotent.
"""
import logging
import uuid

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from allocation.models.enums import LeaseStatus, UnitStatus
from allocation.models.rental import Lease, Unit

logger = logging.getLogger(__name__)

# Statuses this module is allowed to switch between
_DERIVED = frozenset({UnitStatus.AVAILABLE.value, UnitStatus.OCCUPIED.value})


def has_active_lease(
    session: Session, unit_id: uuid.UUID, excluding: uuid.UUID | None = None
) -> bool:
    conditions = [Lease.unit_id == unit_id, Lease.status == LeaseStatus.ACTIVE.value]
    if excluding is not None:
        conditions.append(Lease.id != excluding)
    return bool(session.execute(select(exists().where(*conditions))).scalar())


def _set_derived_status(session: Session, unit_id: uuid.UUID, status: UnitStatus) -> None:
    unit = session.get(Unit, unit_id)
    if unit is None:
        return
    if unit.status not in _DERIVED:
        logger.debug("Unit %s is %s; leaving status untouched", unit_id, unit.status)
        return
    if unit.status != status.value:
        logger.info("Unit %s: %s -> %s", unit_id, unit.status, status.value)
        unit.status = status.value


def on_lease_created(session: Session, lease: Lease) -> None:
    if lease.status == LeaseStatus.ACTIVE.value:
        _set_derived_status(session, lease.unit_id, UnitStatus.OCCUPIED)


def on_lease_transitioned(session: Session, lease: Lease, previous_status: str) -> None:
    was_active = previous_status == LeaseStatus.ACTIVE.value
    is_active = lease.status == LeaseStatus.ACTIVE.value
    if was_active and not is_active:
        release_unit(session, lease.unit_id, excluding=lease.id)
    elif is_active and not was_active:
        _set_derived_status(session, lease.unit_id, UnitStatus.OCCUPIED)


def on_lease_deleted(session: Session, unit_id: uuid.UUID, was_active: bool) -> None:
    if was_active:
        release_unit(session, unit_id)


def release_unit(session: Session, unit_id: uuid.UUID, excluding: uuid.UUID | None = None) -> None:
    """Mark the unit AVAILABLE unless another ACTIVE lease still references it."""
    if not has_active_lease(session, unit_id, excluding=excluding):
        _set_derived_status(session, unit_id, UnitStatus.AVAILABLE)


def reconcile_unit(session: Session, unit: Unit) -> None:
    """Recompute AVAILABLE/OCCUPIED from scratch, e.g. when a unit returns
    from maintenance."""
    if has_active_lease(session, unit.id):
        unit.status = UnitStatus.OCCUPIED.value
    else:
        unit.status = UnitStatus.AVAILABLE.value

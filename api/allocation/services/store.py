"""
Allocation store, the write boundary for units, tenants and leases.

The hard invariants live in the schema (see ``models.rental``): one ACTIVE
lease per unit, one unapproved ACTIVE lease per tenant, date ordering and
amount ranges.  This module validates the same rules up front so callers get
a precise ``ConstraintViolation``, and translates the database's own
``IntegrityError`` into the same error when a concurrent writer gets there
first.

Every lease write runs the occupancy hooks on the same session before
returning, so unit status is part of the write's transaction.  Every store
call is bounded by ``settings.store_timeout_seconds``.
"""
import asyncio
import logging
import uuid
from collections.abc import Awaitable
from datetime import date
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import Select, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from allocation.core.config import settings
from allocation.core.deps import RequestContext
from allocation.core.errors import ConstraintViolation, NotFound, StoreTimeout
from allocation.models.enums import (
    CLOSING_LEASE_STATUSES,
    TRANSITIONABLE_LEASE_STATUSES,
    LeaseStatus,
    PropertyLifecycle,
    UnitStatus,
)
from allocation.models.household import Household
from allocation.models.property import Property
from allocation.models.rental import (
    CK_LEASE_DATES,
    CK_LEASE_DEPOSITS,
    CK_LEASE_RENT,
    CK_UNIT_RENT,
    UQ_ACTIVE_TENANT_LEASE,
    UQ_ACTIVE_UNIT_LEASE,
    Lease,
    Tenant,
    Unit,
)
from allocation.services import occupancy

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Rule names ──────────────────────────────────────────────────────────────

RULE_UNIT_ACTIVE_LEASE = "unique_active_lease_per_unit"
RULE_TENANT_ACTIVE_LEASE = "unique_active_lease_per_tenant"
RULE_DATE_ORDER = "start_before_end"
RULE_POSITIVE_RENT = "positive_rent"
RULE_DEPOSITS = "non_negative_deposits"
RULE_UNIT_RENT = "positive_unit_rent"
RULE_STATUS_TRANSITION = "lease_status_transition"
RULE_RETENTION = "lease_retention"

# Substrings that identify each constraint in driver error messages.
# Postgres reports the index/constraint name; SQLite reports "table.column"
# for unique indexes and the constraint name for CHECKs.
_CONSTRAINT_MARKERS: list[tuple[tuple[str, ...], str]] = [
    ((UQ_ACTIVE_UNIT_LEASE, "leases.unit_id"), RULE_UNIT_ACTIVE_LEASE),
    ((UQ_ACTIVE_TENANT_LEASE, "leases.tenant_id"), RULE_TENANT_ACTIVE_LEASE),
    ((CK_LEASE_DATES,), RULE_DATE_ORDER),
    ((CK_LEASE_RENT,), RULE_POSITIVE_RENT),
    ((CK_LEASE_DEPOSITS,), RULE_DEPOSITS),
    ((CK_UNIT_RENT,), RULE_UNIT_RENT),
]


# ── Helpers ─────────────────────────────────────────────────────────────────

# SQLSTATEs for statements the server gave up on: statement timeout, lock
# timeout, deadlock victim and serialization failure.  The transaction is
# dead but re-running the whole operation is safe.
_ABORTED_SQLSTATES = frozenset({"57014", "55P03", "40P01", "40001"})


def aborted_by_database(exc: DBAPIError) -> str | None:
    """SQLSTATE of a retryable server-side abort, else None."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code if code in _ABORTED_SQLSTATES else None


def store_timeout_from(exc: DBAPIError, operation: str) -> StoreTimeout | None:
    code = aborted_by_database(exc)
    if code is None:
        return None
    logger.warning("Store operation %s aborted by the database (SQLSTATE %s)", operation, code)
    return StoreTimeout(
        operation,
        settings.store_timeout_seconds,
        f"Store operation '{operation}' was aborted by the database (SQLSTATE {code})",
    )


async def bounded(awaitable: Awaitable[T], operation: str) -> T:
    """Await a store call, failing with a retryable StoreTimeout if it runs
    long or the database cancels it."""
    timeout = settings.store_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Store operation %s timed out after %ss", operation, timeout)
        raise StoreTimeout(operation, timeout) from exc
    except DBAPIError as exc:
        timed_out = store_timeout_from(exc, operation)
        if timed_out is None:
            raise
        raise timed_out from exc


def translate_integrity_error(exc: IntegrityError) -> ConstraintViolation:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    for markers, rule in _CONSTRAINT_MARKERS:
        if any(marker in message for marker in markers):
            return ConstraintViolation(rule)
    return ConstraintViolation("integrity", f"Integrity error: {message}")


def _flush(session: Session) -> None:
    try:
        session.flush()
    except IntegrityError as exc:
        violation = translate_integrity_error(exc)
        logger.info("Store rejected write: %s", violation.rule)
        raise violation from exc


def append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def validate_lease(lease: Lease) -> None:
    """Application-side copy of the lease CHECK constraints."""
    if lease.end_date is not None and not lease.start_date < lease.end_date:
        raise ConstraintViolation(
            RULE_DATE_ORDER,
            f"Lease end date {lease.end_date} must be after start date {lease.start_date}",
        )
    if lease.monthly_rent is None or Decimal(lease.monthly_rent) <= 0:
        raise ConstraintViolation(RULE_POSITIVE_RENT, "Monthly rent must be greater than zero")
    for field in ("security_deposit", "pet_deposit"):
        value = getattr(lease, field)
        if value is not None and Decimal(value) < 0:
            raise ConstraintViolation(RULE_DEPOSITS, f"{field} must not be negative")


# ── Reads ───────────────────────────────────────────────────────────────────

def _units_in_household(ctx: RequestContext) -> Select:
    return (
        select(Unit)
        .join(Property, Unit.property_id == Property.id)
        .where(Property.household_id == ctx.household_id)
    )


async def get_unit(
    db: AsyncSession, ctx: RequestContext, unit_id: uuid.UUID, *, for_update: bool = False
) -> Unit:
    stmt = _units_in_household(ctx).where(Unit.id == unit_id)
    if for_update:
        # Serialises writers targeting the same unit (no-op on SQLite)
        stmt = stmt.with_for_update(of=Unit).execution_options(populate_existing=True)
    result = await bounded(db.execute(stmt), "get_unit")
    unit = result.scalar_one_or_none()
    if not unit:
        raise NotFound("Unit", unit_id)
    return unit


async def get_unit_with_property(
    db: AsyncSession, ctx: RequestContext, unit_id: uuid.UUID
) -> tuple[Unit, Property]:
    result = await bounded(
        db.execute(
            select(Unit, Property)
            .join(Property, Unit.property_id == Property.id)
            .where(Unit.id == unit_id, Property.household_id == ctx.household_id)
        ),
        "get_unit_with_property",
    )
    row = result.one_or_none()
    if not row:
        raise NotFound("Unit", unit_id)
    return row[0], row[1]


async def get_tenant(db: AsyncSession, ctx: RequestContext, tenant_id: uuid.UUID) -> Tenant:
    result = await bounded(
        db.execute(
            select(Tenant).where(
                Tenant.id == tenant_id,
                Tenant.household_id == ctx.household_id,
            )
        ),
        "get_tenant",
    )
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise NotFound("Tenant", tenant_id)
    return tenant


async def get_lease(
    db: AsyncSession, ctx: RequestContext, lease_id: uuid.UUID, *, for_update: bool = False
) -> Lease:
    stmt = (
        select(Lease)
        .join(Unit, Lease.unit_id == Unit.id)
        .join(Property, Unit.property_id == Property.id)
        .where(Lease.id == lease_id, Property.household_id == ctx.household_id)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Lease).execution_options(populate_existing=True)
    result = await bounded(db.execute(stmt), "get_lease")
    lease = result.scalar_one_or_none()
    if not lease:
        raise NotFound("Lease", lease_id)
    return lease


async def active_leases_for_tenant(
    db: AsyncSession, ctx: RequestContext, tenant_id: uuid.UUID
) -> list[tuple[Lease, Unit, Property]]:
    result = await bounded(
        db.execute(
            select(Lease, Unit, Property)
            .join(Unit, Lease.unit_id == Unit.id)
            .join(Property, Unit.property_id == Property.id)
            .where(
                Lease.tenant_id == tenant_id,
                Lease.status == LeaseStatus.ACTIVE.value,
                Property.household_id == ctx.household_id,
            )
            .order_by(Lease.start_date)
        ),
        "active_leases_for_tenant",
    )
    return [(lease, unit, prop) for lease, unit, prop in result.all()]


async def rentable_units(
    db: AsyncSession, ctx: RequestContext, property_id: uuid.UUID | None = None
) -> list[Unit]:
    """Units that could take a new lease: active unit, active property,
    not under maintenance or inactive."""
    stmt = (
        _units_in_household(ctx)
        .where(
            Unit.is_active == True,  # noqa: E712
            Unit.status.notin_([UnitStatus.MAINTENANCE.value, UnitStatus.INACTIVE.value]),
            Property.lifecycle_status == PropertyLifecycle.ACTIVE.value,
        )
        .order_by(Unit.unit_label)
    )
    if property_id:
        stmt = stmt.where(Unit.property_id == property_id)
    result = await bounded(db.execute(stmt), "rentable_units")
    return list(result.scalars().all())


# ── Writes (sync core, shared with Celery tasks) ────────────────────────────

def insert_lease_sync(session: Session, lease: Lease) -> Lease:
    validate_lease(lease)
    session.add(lease)
    _flush(session)
    occupancy.on_lease_created(session, lease)
    _flush(session)
    return lease


def transition_lease_sync(
    session: Session,
    lease: Lease,
    new_status: LeaseStatus,
    end_date: date | None = None,
    note: str | None = None,
) -> Lease:
    previous = lease.status
    if LeaseStatus(previous) not in TRANSITIONABLE_LEASE_STATUSES or new_status not in CLOSING_LEASE_STATUSES:
        raise ConstraintViolation(
            RULE_STATUS_TRANSITION,
            f"Lease {lease.id} cannot move from {previous} to {new_status.value}",
        )
    lease.status = new_status.value
    if end_date is not None:
        lease.end_date = end_date
    if note:
        lease.notes = append_note(lease.notes, note)
    validate_lease(lease)
    _flush(session)
    occupancy.on_lease_transitioned(session, lease, previous)
    _flush(session)
    logger.info("Lease %s: %s -> %s", lease.id, previous, new_status.value)
    return lease


def delete_lease_sync(session: Session, lease: Lease) -> None:
    # Leases are history; only drafts that never took effect may be removed
    if lease.status != LeaseStatus.PENDING.value:
        raise ConstraintViolation(
            RULE_RETENTION, f"Lease {lease.id} is {lease.status} and must be retained"
        )
    unit_id = lease.unit_id
    was_active = lease.status == LeaseStatus.ACTIVE.value
    session.delete(lease)
    _flush(session)
    occupancy.on_lease_deleted(session, unit_id, was_active)
    _flush(session)


def save_unit_sync(session: Session, unit: Unit) -> Unit:
    if unit.monthly_rent is None or Decimal(unit.monthly_rent) <= 0:
        raise ConstraintViolation(RULE_UNIT_RENT, "Unit monthly rent must be greater than zero")
    session.add(unit)
    _flush(session)
    return unit


def set_unit_status_sync(
    session: Session, unit: Unit, status: UnitStatus, maintenance_notes: str | None = None
) -> Unit:
    if maintenance_notes is not None:
        unit.maintenance_notes = maintenance_notes
    if status == UnitStatus.AVAILABLE:
        # Back in service: occupancy decides between AVAILABLE and OCCUPIED
        unit.is_active = True
        occupancy.reconcile_unit(session, unit)
    else:
        unit.status = status.value
        if status == UnitStatus.INACTIVE:
            unit.is_active = False
    _flush(session)
    logger.info("Unit %s status set to %s", unit.id, unit.status)
    return unit


# ── Writes (async facade) ───────────────────────────────────────────────────

async def insert_lease(db: AsyncSession, lease: Lease) -> Lease:
    return await bounded(db.run_sync(insert_lease_sync, lease), "insert_lease")


async def transition_lease(
    db: AsyncSession,
    lease: Lease,
    new_status: LeaseStatus,
    end_date: date | None = None,
    note: str | None = None,
) -> Lease:
    return await bounded(
        db.run_sync(transition_lease_sync, lease, new_status, end_date, note),
        "transition_lease",
    )


async def delete_lease(db: AsyncSession, lease: Lease) -> None:
    await bounded(db.run_sync(delete_lease_sync, lease), "delete_lease")


async def set_unit_status(
    db: AsyncSession, unit: Unit, status: UnitStatus, maintenance_notes: str | None = None
) -> Unit:
    return await bounded(
        db.run_sync(set_unit_status_sync, unit, status, maintenance_notes),
        "set_unit_status",
    )


async def save_unit(db: AsyncSession, unit: Unit) -> Unit:
    return await bounded(db.run_sync(save_unit_sync, unit), "save_unit")


async def ensure_household(db: AsyncSession, ctx: RequestContext) -> Household:
    """The landlord record for the caller's household, created on first write."""
    household = await bounded(db.get(Household, ctx.household_id), "ensure_household")
    if household is None:
        household = Household(id=ctx.household_id, name=f"Household {ctx.household_id}")
        db.add(household)
        await bounded(db.flush(), "ensure_household")
    return household

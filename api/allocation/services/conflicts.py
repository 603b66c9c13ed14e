"""
Conflict prevention for allocation requests.

``check_allocation`` runs five independent checks against a proposed
allocation and returns every conflict found, each with a severity and the
resolutions a caller may offer:

    unit occupancy:   CRITICAL while the unit holds an ACTIVE lease
    tenant lease:     WARNING when the tenant already holds an ACTIVE lease
    dates:            past start (WARNING), end <= start (CRITICAL),
                       shorter than ``min_lease_days`` (WARNING)
    unit lifecycle:   CRITICAL for MAINTENANCE / INACTIVE units and units
                       of inactive properties
    rent:             WARNING when the proposed rent is more than
                       ``rent_mismatch_threshold_pct`` away from nominal

A check that blows up does not stop the others; its failure is reported as a
CRITICAL ``CHECK_FAILED`` conflict so the result can never read as "safe"
when it was not fully evaluated.

``execute_resolution`` turns one resolution into an updated request (or a
list of alternative units, or a termination/override audit event).  It never
writes a lease.
"""
import logging
from collections.abc import Awaitable, Callable
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.core.config import settings
from allocation.core.deps import RequestContext
from allocation.core.errors import AllocationError, ConflictCheckFailure, NotFound, ResolutionExecutionFailure
from allocation.models.enums import LeaseStatus, UnitStatus
from allocation.models.property import Property
from allocation.models.rental import Unit
from allocation.schemas.allocation import (
    AdjustDates,
    AdjustRent,
    AllocationRequest,
    Conflict,
    ConflictCheckResult,
    ConflictType,
    Override,
    OverrideScope,
    Resolution,
    ResolutionOutcome,
    Risk,
    Severity,
    SuggestAlternative,
    TerminateExisting,
    UnitSummary,
    Wait,
)
from allocation.services import audit, availability, store

logger = logging.getLogger(__name__)

RECOMMEND_RESOLVE = "Resolve critical conflicts before proceeding"
RECOMMEND_REVIEW = "Review warnings and consider suggested resolutions"
RECOMMEND_PROCEED = "Proceed with allocation"
RECOMMEND_RETRY = "System error - please try again"


# ── Pure checks ─────────────────────────────────────────────────────────────

def date_conflicts(
    request: AllocationRequest, today: date, min_days: int | None = None
) -> list[Conflict]:
    min_days = settings.min_lease_days if min_days is None else min_days
    conflicts: list[Conflict] = []
    start, end = request.start_date, request.end_date

    if start < today:
        conflicts.append(
            Conflict(
                type=ConflictType.DATE_OVERLAP,
                severity=Severity.WARNING,
                message="Start date is in the past",
                conflicting_data={"start_date": start, "today": today},
                suggested_resolutions=[
                    AdjustDates(
                        id="adjust-to-today",
                        title="Start Today",
                        description="Adjust start date to today",
                        new_start_date=today,
                        automated=True,
                    )
                ],
            )
        )

    if end is not None and end <= start:
        conflicts.append(
            Conflict(
                type=ConflictType.DATE_OVERLAP,
                severity=Severity.CRITICAL,
                message="End date must be after start date",
                conflicting_data={"start_date": start, "end_date": end},
                suggested_resolutions=[
                    AdjustDates(
                        id="remove-end-date",
                        title="Remove End Date",
                        description="Make this an ongoing lease without end date",
                        clear_end_date=True,
                    )
                ],
            )
        )
    elif end is not None and (end - start).days < min_days:
        days = (end - start).days
        conflicts.append(
            Conflict(
                type=ConflictType.DATE_OVERLAP,
                severity=Severity.WARNING,
                message=f"Lease period is very short ({days} days)",
                conflicting_data={"duration_days": days, "minimum_days": min_days},
                suggested_resolutions=[
                    AdjustDates(
                        id="extend-lease",
                        title="Extend Lease Period",
                        description=f"Extend to minimum {min_days} days or make ongoing",
                        new_end_date=start + timedelta(days=min_days),
                    )
                ],
            )
        )

    return conflicts


def lifecycle_conflicts(unit: Unit, prop: Property) -> list[Conflict]:
    conflicts: list[Conflict] = []
    alternative = SuggestAlternative(
        id="suggest-alternative",
        title="Find Alternative Unit",
        description="Suggest similar units that can be let",
        automated=True,
    )

    if unit.status == UnitStatus.MAINTENANCE.value:
        conflicts.append(
            Conflict(
                type=ConflictType.MAINTENANCE_CONFLICT,
                severity=Severity.CRITICAL,
                message="Unit is currently under maintenance",
                conflicting_data={
                    "unit_status": unit.status,
                    "maintenance_notes": unit.maintenance_notes,
                    "next_inspection_date": unit.next_inspection_date,
                },
                suggested_resolutions=[
                    Wait(
                        id="wait-maintenance",
                        title="Wait for Maintenance Completion",
                        description="Delay allocation until maintenance is complete",
                        until=unit.next_inspection_date,
                    ),
                    alternative,
                ],
            )
        )
    elif unit.status == UnitStatus.INACTIVE.value or not unit.is_active:
        conflicts.append(
            Conflict(
                type=ConflictType.MAINTENANCE_CONFLICT,
                severity=Severity.CRITICAL,
                message="Unit is inactive and not available for rent",
                conflicting_data={"unit_status": unit.status, "is_active": unit.is_active},
                suggested_resolutions=[
                    Override(
                        id="activate-unit",
                        title="Activate Unit",
                        description="Change unit status to active (requires authorization)",
                        scope=OverrideScope.ACTIVATE_UNIT,
                        risk=Risk.MEDIUM,
                    )
                ],
            )
        )

    if not prop.is_active:
        conflicts.append(
            Conflict(
                type=ConflictType.MAINTENANCE_CONFLICT,
                severity=Severity.CRITICAL,
                message=f"Property {prop.name} is not active",
                conflicting_data={"property_id": prop.id, "lifecycle_status": prop.lifecycle_status},
                suggested_resolutions=[alternative],
            )
        )

    return conflicts


def rent_conflicts(
    request: AllocationRequest, unit_rent: Decimal, threshold_pct: float | None = None
) -> list[Conflict]:
    threshold = Decimal(str(settings.rent_mismatch_threshold_pct if threshold_pct is None else threshold_pct))
    unit_rent = Decimal(unit_rent or 0)
    requested = Decimal(request.monthly_rent)
    if unit_rent <= 0:
        return []

    difference = abs(unit_rent - requested)
    pct = difference / unit_rent * 100
    if pct <= threshold:
        return []

    return [
        Conflict(
            type=ConflictType.RENT_MISMATCH,
            severity=Severity.WARNING,
            message=(
                f"Requested rent ({requested:,.2f}) differs significantly from "
                f"unit's standard rent ({unit_rent:,.2f})"
            ),
            conflicting_data={
                "unit_rent": unit_rent,
                "requested_rent": requested,
                "difference": difference,
                "percentage_diff": int(pct.to_integral_value()),
            },
            suggested_resolutions=[
                AdjustRent(
                    id="use-standard-rent",
                    title="Use Standard Rent",
                    description=f"Use unit's standard rent of {unit_rent:,.2f}",
                    new_rent=unit_rent,
                    automated=True,
                ),
                Override(
                    id="approve-custom-rent",
                    title="Approve Custom Rent",
                    description="Proceed with custom rent amount (requires approval)",
                    scope=OverrideScope.CUSTOM_RENT,
                    risk=Risk.MEDIUM,
                ),
            ],
        )
    ]


# ── Store-backed checks ─────────────────────────────────────────────────────

async def unit_occupancy_conflicts(db: AsyncSession, request: AllocationRequest) -> list[Conflict]:
    blocking = await availability.find_blocking_lease(db, request.unit_id)
    if blocking is None:
        return []

    lease, tenant_name = blocking
    until = lease.end_date.isoformat() if lease.end_date else "indefinitely"
    # The unit frees up once the lease is closed; the expiry sweep does that
    # the day after its end date
    free_from = lease.end_date + timedelta(days=1) if lease.end_date else None
    wait = Wait(
        id="wait-until-available",
        title="Wait Until Available",
        description=(
            f"Delay allocation until {free_from.isoformat()}"
            if free_from
            else "Delay allocation until the current lease ends"
        ),
        until=free_from,
    )

    return [
        Conflict(
            type=ConflictType.UNIT_OCCUPIED,
            severity=Severity.CRITICAL,
            message=f"Unit is occupied by {tenant_name} until {until}",
            conflicting_data={
                "lease_id": lease.id,
                "tenant": tenant_name,
                "start_date": lease.start_date,
                "end_date": lease.end_date,
                "available_from": lease.end_date,
            },
            suggested_resolutions=[
                wait,
                SuggestAlternative(
                    id="suggest-alternative",
                    title="Suggest Alternative Unit",
                    description="Find similar available units for the tenant",
                    automated=True,
                ),
                TerminateExisting(
                    id="terminate-existing",
                    title="Terminate Existing Lease",
                    description="End current lease early (requires tenant agreement)",
                    lease_id=lease.id,
                    risk=Risk.HIGH,
                ),
            ],
        )
    ]


async def tenant_lease_conflicts(
    db: AsyncSession, ctx: RequestContext, request: AllocationRequest
) -> list[Conflict]:
    conflicts: list[Conflict] = []
    for lease, unit, prop in await store.active_leases_for_tenant(db, ctx, request.tenant_id):
        conflicts.append(
            Conflict(
                type=ConflictType.TENANT_HAS_LEASE,
                severity=Severity.WARNING,
                message=f"Tenant already has an active lease in {prop.name} - {unit.unit_label}",
                conflicting_data={
                    "lease_id": lease.id,
                    "unit_id": unit.id,
                    "unit_label": unit.unit_label,
                    "property_name": prop.name,
                    "start_date": lease.start_date,
                    "end_date": lease.end_date,
                    "monthly_rent": lease.monthly_rent,
                },
                suggested_resolutions=[
                    TerminateExisting(
                        id="terminate-current",
                        title="Terminate Current Lease",
                        description="End existing lease and move to new unit",
                        lease_id=lease.id,
                        risk=Risk.MEDIUM,
                    ),
                    Override(
                        id="allow-dual-lease",
                        title="Allow Dual Lease",
                        description="Permit tenant to have multiple active leases (unusual)",
                        scope=OverrideScope.DUAL_LEASE,
                        risk=Risk.HIGH,
                    ),
                ],
            )
        )
    return conflicts


# ── Aggregation ─────────────────────────────────────────────────────────────

def _failure_conflict(failures: list[ConflictCheckFailure]) -> Conflict:
    return Conflict(
        type=ConflictType.CHECK_FAILED,
        severity=Severity.CRITICAL,
        message="Unable to verify allocation safety due to system error",
        conflicting_data={
            "failed_checks": [f.check for f in failures],
            "errors": [str(f.cause) for f in failures],
        },
    )


def summarize(conflicts: list[Conflict]) -> ConflictCheckResult:
    critical = any(c.severity == Severity.CRITICAL for c in conflicts)
    failed = any(c.type == ConflictType.CHECK_FAILED for c in conflicts)
    if failed:
        recommended = RECOMMEND_RETRY
    elif critical:
        recommended = RECOMMEND_RESOLVE
    elif any(c.severity == Severity.WARNING for c in conflicts):
        recommended = RECOMMEND_REVIEW
    else:
        recommended = RECOMMEND_PROCEED
    return ConflictCheckResult(
        has_conflicts=bool(conflicts),
        conflicts=conflicts,
        can_proceed=not critical,
        recommended_action=recommended,
    )


async def check_allocation(
    db: AsyncSession,
    ctx: RequestContext,
    request: AllocationRequest,
    *,
    today: date | None = None,
) -> ConflictCheckResult:
    """Read-only; identical input and store state give identical results."""
    today = today or date.today()

    try:
        unit, prop = await store.get_unit_with_property(db, ctx, request.unit_id)
        await store.get_tenant(db, ctx, request.tenant_id)
    except NotFound:
        raise
    except Exception as exc:
        logger.exception("Conflict check could not load unit %s", request.unit_id)
        return summarize([_failure_conflict([ConflictCheckFailure("load", exc)])])

    checks: list[tuple[str, Callable[[], Awaitable[list[Conflict]]]]] = [
        ("unit_occupancy", lambda: unit_occupancy_conflicts(db, request)),
        ("tenant_lease", lambda: tenant_lease_conflicts(db, ctx, request)),
        ("dates", _wrap(lambda: date_conflicts(request, today))),
        ("unit_lifecycle", _wrap(lambda: lifecycle_conflicts(unit, prop))),
        ("rent", _wrap(lambda: rent_conflicts(request, unit.monthly_rent))),
    ]

    conflicts: list[Conflict] = []
    failures: list[ConflictCheckFailure] = []
    for name, run in checks:
        try:
            conflicts.extend(await run())
        except Exception as exc:
            logger.exception("Conflict check %s failed for unit %s", name, request.unit_id)
            failures.append(ConflictCheckFailure(name, exc))

    if failures:
        conflicts.append(_failure_conflict(failures))

    result = summarize(conflicts)
    logger.info(
        "Allocation check tenant=%s unit=%s: %d conflict(s), can_proceed=%s",
        request.tenant_id, request.unit_id, len(conflicts), result.can_proceed,
    )
    return result


def _wrap(fn: Callable[[], list[Conflict]]) -> Callable[[], Awaitable[list[Conflict]]]:
    async def run() -> list[Conflict]:
        return fn()
    return run


# ── Resolution execution ────────────────────────────────────────────────────

def _adjust_dates(resolution: AdjustDates, request: AllocationRequest) -> ResolutionOutcome:
    update: dict = {}
    if resolution.new_start_date is not None:
        update["start_date"] = resolution.new_start_date
    if resolution.clear_end_date:
        update["end_date"] = None
    elif resolution.new_end_date is not None:
        update["end_date"] = resolution.new_end_date
    if not update:
        raise ResolutionExecutionFailure(resolution.id, "No date adjustment specified")
    return ResolutionOutcome(
        success=True,
        message="Dates adjusted successfully",
        updated_request=request.model_copy(update=update),
    )


def _adjust_rent(resolution: AdjustRent, request: AllocationRequest) -> ResolutionOutcome:
    if resolution.new_rent <= 0:
        raise ResolutionExecutionFailure(resolution.id, "Adjusted rent must be greater than zero")
    return ResolutionOutcome(
        success=True,
        message=f"Rent adjusted to {resolution.new_rent:,.2f}",
        updated_request=request.model_copy(update={"monthly_rent": resolution.new_rent}),
    )


async def _suggest_alternative(
    db: AsyncSession, ctx: RequestContext, resolution: SuggestAlternative, request: AllocationRequest
) -> ResolutionOutcome:
    units = await availability.list_available_units(
        db, ctx, request.start_date, request.end_date, resolution.property_id
    )
    alternatives = [u for u in units if u.id != request.unit_id][: settings.alternative_units_limit]
    return ResolutionOutcome(
        success=True,
        message=f"Found {len(alternatives)} alternative units",
        updated_request=request,
        alternatives=[UnitSummary.model_validate(u) for u in alternatives],
    )


async def _request_termination(
    db: AsyncSession, ctx: RequestContext, resolution: TerminateExisting, request: AllocationRequest
) -> ResolutionOutcome:
    lease = await store.get_lease(db, ctx, resolution.lease_id)
    if lease.status != LeaseStatus.ACTIVE.value:
        raise ResolutionExecutionFailure(
            resolution.id, f"Lease {lease.id} is {lease.status}, not ACTIVE"
        )
    # The termination itself goes through manual approval; we only raise it
    await audit.publish(
        "termination_requested",
        ctx,
        lease_id=lease.id,
        unit_id=lease.unit_id,
        tenant_id=lease.tenant_id,
        resolution_id=resolution.id,
        requested_for_tenant=request.tenant_id,
        requested_unit=request.unit_id,
    )
    return ResolutionOutcome(
        success=True,
        message="Lease termination initiated (requires manual approval)",
        updated_request=request,
    )


async def _acknowledge_override(
    ctx: RequestContext, resolution: Override, request: AllocationRequest
) -> ResolutionOutcome:
    await audit.publish(
        "override_acknowledged",
        ctx,
        unit_id=request.unit_id,
        tenant_id=request.tenant_id,
        resolution_id=resolution.id,
        scope=resolution.scope.value,
    )
    message = "Override approved - proceeding with allocation"
    if resolution.scope == OverrideScope.DUAL_LEASE:
        message += " (allocate with allow_dual_lease)"
    elif resolution.scope == OverrideScope.ACTIVATE_UNIT:
        message = "Unit activation requested - requires authorization before allocation"
    return ResolutionOutcome(success=True, message=message, updated_request=request)


async def execute_resolution(
    db: AsyncSession,
    ctx: RequestContext,
    resolution: Resolution,
    request: AllocationRequest,
) -> ResolutionOutcome:
    """Prepare the request for a follow-up allocate/reallocate call.

    A failure here is reported in the outcome and affects no other
    resolution or conflict.
    """
    try:
        if isinstance(resolution, AdjustDates):
            outcome = _adjust_dates(resolution, request)
        elif isinstance(resolution, AdjustRent):
            outcome = _adjust_rent(resolution, request)
        elif isinstance(resolution, SuggestAlternative):
            outcome = await _suggest_alternative(db, ctx, resolution, request)
        elif isinstance(resolution, TerminateExisting):
            outcome = await _request_termination(db, ctx, resolution, request)
        elif isinstance(resolution, Override):
            outcome = await _acknowledge_override(ctx, resolution, request)
        elif isinstance(resolution, Wait):
            until = f" until {resolution.until.isoformat()}" if resolution.until else ""
            outcome = ResolutionOutcome(
                success=True, message=f"Allocation postponed{until}. Please try again later."
            )
        else:
            raise ResolutionExecutionFailure(getattr(resolution, "id", "?"), "Unknown resolution action")
    except (AllocationError, SQLAlchemyError) as exc:
        message = exc.detail if isinstance(exc, AllocationError) else "Failed to execute resolution"
        logger.warning("Resolution %s failed: %s", resolution.id, exc)
        return ResolutionOutcome(success=False, message=message)

    logger.info("Resolution %s (%s) executed: %s", resolution.id, resolution.action, outcome.message)
    return outcome

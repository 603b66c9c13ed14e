"""
Value objects exchanged with the allocation engine.

Conflicts and resolutions are never persisted; they are recomputed on every
check.  ``Resolution`` is a discriminated union on ``action`` so each kind
carries only the parameters it needs and callers can dispatch on type.
"""
import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from allocation.models.enums import LeaseType


# ─── Requests ──────────────────────────────────────────────────────────────

class AllocationRequest(BaseModel):
    tenant_id: uuid.UUID
    unit_id: uuid.UUID
    start_date: date
    end_date: date | None = None
    monthly_rent: Decimal
    notes: str | None = None


class LeaseTerms(BaseModel):
    start_date: date
    end_date: date | None = None
    monthly_rent: Decimal
    security_deposit: Decimal = Decimal("0")
    pet_deposit: Decimal = Decimal("0")
    lease_type: LeaseType = LeaseType.FIXED_TERM
    notes: str | None = None
    # Set after an allow-dual-lease override has been approved
    allow_dual_lease: bool = False


class AllocateRequest(BaseModel):
    tenant_id: uuid.UUID
    unit_id: uuid.UUID
    terms: LeaseTerms


class ReallocationRequest(BaseModel):
    tenant_id: uuid.UUID
    current_lease_id: uuid.UUID
    new_unit_id: uuid.UUID
    effective_date: date
    new_rent: Decimal | None = None  # defaults to the new unit's nominal rent
    notes: str | None = None
    terminate_current: bool = True


# ─── Availability ──────────────────────────────────────────────────────────

class Availability(BaseModel):
    unit_id: uuid.UUID
    available: bool
    blocking_lease_id: uuid.UUID | None = None
    occupying_tenant: str | None = None
    blocking_start: date | None = None
    blocking_end: date | None = None
    # The blocking lease's end date; None while ``indefinite``
    available_from: date | None = None
    indefinite: bool = False


class UnitSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: uuid.UUID
    unit_label: str
    monthly_rent: Decimal
    status: str


# ─── Conflicts & resolutions ───────────────────────────────────────────────

class ConflictType(str, Enum):
    UNIT_OCCUPIED = "UNIT_OCCUPIED"
    TENANT_HAS_LEASE = "TENANT_HAS_LEASE"
    DATE_OVERLAP = "DATE_OVERLAP"
    MAINTENANCE_CONFLICT = "MAINTENANCE_CONFLICT"
    RENT_MISMATCH = "RENT_MISMATCH"
    CHECK_FAILED = "CHECK_FAILED"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


class Risk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class OverrideScope(str, Enum):
    DUAL_LEASE = "DUAL_LEASE"
    CUSTOM_RENT = "CUSTOM_RENT"
    ACTIVATE_UNIT = "ACTIVATE_UNIT"


class _ResolutionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    risk: Risk = Risk.LOW
    automated: bool = False


class AdjustDates(_ResolutionBase):
    action: Literal["ADJUST_DATES"] = "ADJUST_DATES"
    new_start_date: date | None = None
    new_end_date: date | None = None
    clear_end_date: bool = False


class AdjustRent(_ResolutionBase):
    action: Literal["ADJUST_RENT"] = "ADJUST_RENT"
    new_rent: Decimal


class SuggestAlternative(_ResolutionBase):
    action: Literal["SUGGEST_ALTERNATIVE"] = "SUGGEST_ALTERNATIVE"
    property_id: uuid.UUID | None = None


class TerminateExisting(_ResolutionBase):
    action: Literal["TERMINATE_EXISTING"] = "TERMINATE_EXISTING"
    lease_id: uuid.UUID


class Override(_ResolutionBase):
    action: Literal["OVERRIDE"] = "OVERRIDE"
    scope: OverrideScope


class Wait(_ResolutionBase):
    action: Literal["WAIT"] = "WAIT"
    until: date | None = None


Resolution = Annotated[
    Union[AdjustDates, AdjustRent, SuggestAlternative, TerminateExisting, Override, Wait],
    Field(discriminator="action"),
]


class Conflict(BaseModel):
    type: ConflictType
    severity: Severity
    message: str
    conflicting_data: dict[str, Any] = Field(default_factory=dict)
    suggested_resolutions: list[Resolution] = Field(default_factory=list)


class ConflictCheckResult(BaseModel):
    has_conflicts: bool
    conflicts: list[Conflict]
    can_proceed: bool
    recommended_action: str


class ExecuteResolutionRequest(BaseModel):
    resolution: Resolution
    request: AllocationRequest


class ResolutionOutcome(BaseModel):
    success: bool
    message: str
    updated_request: AllocationRequest | None = None
    alternatives: list[UnitSummary] = Field(default_factory=list)


# ─── Results ───────────────────────────────────────────────────────────────

class AllocationResult(BaseModel):
    lease_id: uuid.UUID
    warnings: list[str] = Field(default_factory=list)


class ReallocationResult(BaseModel):
    new_lease_id: uuid.UUID
    terminated_lease_id: uuid.UUID | None = None
    warnings: list[str] = Field(default_factory=list)


class CurrentTenant(BaseModel):
    tenant_id: uuid.UUID
    tenant_name: str
    lease_id: uuid.UUID
    start_date: date
    end_date: date | None
    monthly_rent: Decimal


class AllocationStats(BaseModel):
    total_units: int
    occupied_units: int
    vacant_units: int
    occupancy_rate: float
    average_lease_length_days: int
    total_active_leases: int

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict

from allocation.models.enums import PropertyLifecycle


# ─── Property ──────────────────────────────────────────────────────────────

class PropertyCreate(BaseModel):
    name: str
    address: str | None = None
    city: str | None = None
    notes: str | None = None


class PropertyLifecycleUpdate(BaseModel):
    lifecycle_status: PropertyLifecycle


class PropertyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    household_id: uuid.UUID
    name: str
    address: str | None
    city: str | None
    lifecycle_status: str
    created_at: datetime


# ─── Unit ──────────────────────────────────────────────────────────────────

class UnitCreate(BaseModel):
    unit_label: str
    monthly_rent: Decimal
    last_inspection_date: date | None = None
    next_inspection_date: date | None = None


class UnitUpdate(BaseModel):
    unit_label: str | None = None
    monthly_rent: Decimal | None = None
    last_inspection_date: date | None = None
    next_inspection_date: date | None = None


class UnitStatusUpdate(BaseModel):
    """Maintenance-workflow signal.  ``AVAILABLE`` means "back in service";
    the engine then derives AVAILABLE or OCCUPIED from the unit's leases."""
    status: Literal["MAINTENANCE", "INACTIVE", "AVAILABLE"]
    maintenance_notes: str | None = None


class UnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    property_id: uuid.UUID
    unit_label: str
    monthly_rent: Decimal
    status: str
    is_active: bool
    last_inspection_date: date | None
    next_inspection_date: date | None
    maintenance_notes: str | None
    created_at: datetime


# ─── Tenant ────────────────────────────────────────────────────────────────

class TenantCreate(BaseModel):
    full_name: str
    email: str | None = None
    phone: str | None = None
    national_id: str | None = None


class TenantUpdate(BaseModel):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    national_id: str | None = None
    status: str | None = None


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    household_id: uuid.UUID
    full_name: str
    email: str | None
    phone: str | None
    national_id: str | None
    status: str
    created_at: datetime


# ─── Lease ─────────────────────────────────────────────────────────────────

class LeaseTransition(BaseModel):
    status: Literal["TERMINATED", "EXPIRED", "CANCELLED"]
    end_date: date | None = None
    note: str | None = None


class LeaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    unit_id: uuid.UUID
    tenant_id: uuid.UUID
    start_date: date
    end_date: date | None
    monthly_rent: Decimal
    security_deposit: Decimal
    pet_deposit: Decimal
    status: str
    lease_type: str
    dual_lease_approved: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime | None

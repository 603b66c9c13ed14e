import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from allocation.core.database import Base
from allocation.models.enums import LeaseStatus, LeaseType, UnitStatus

# Constraint / index names double as the rule names reported by ConstraintViolation.
UQ_ACTIVE_UNIT_LEASE = "uq_leases_active_unit"
UQ_ACTIVE_TENANT_LEASE = "uq_leases_active_tenant"
CK_LEASE_DATES = "ck_leases_start_before_end"
CK_LEASE_RENT = "ck_leases_positive_rent"
CK_LEASE_DEPOSITS = "ck_leases_non_negative_deposits"
CK_UNIT_RENT = "ck_units_positive_rent"


class Unit(Base):
    """A rentable unit within a property (even a SFH can be 1 unit)."""
    __tablename__ = "units"
    __table_args__ = (
        CheckConstraint("monthly_rent > 0", name=CK_UNIT_RENT),
        Index("ix_units_property_status", "property_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    property_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("properties.id"), index=True
    )
    unit_label: Mapped[str] = mapped_column(String(50))  # "Unit 1", "A", "Main", etc.
    monthly_rent: Mapped[Decimal] = mapped_column(Numeric(14, 2))  # nominal / advertised
    # AVAILABLE <-> OCCUPIED is derived from leases (services.occupancy);
    # MAINTENANCE / INACTIVE are set by maintenance workflows
    status: Mapped[str] = mapped_column(String(20), default=UnitStatus.AVAILABLE.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_inspection_date: Mapped[date | None] = mapped_column(Date)
    next_inspection_date: Mapped[date | None] = mapped_column(Date)
    maintenance_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    property: Mapped["Property"] = relationship(back_populates="units")  # noqa: F821


class Tenant(Base):
    """Tenant directory.  Leases reference tenants and never own them."""
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    household_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("households.id"), index=True
    )
    full_name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(320))
    phone: Mapped[str | None] = mapped_column(String(50))
    national_id: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Lease(Base):
    """Tenancy agreement binding one tenant to one unit for a date range."""
    __tablename__ = "leases"
    __table_args__ = (
        CheckConstraint("end_date IS NULL OR start_date < end_date", name=CK_LEASE_DATES),
        CheckConstraint("monthly_rent > 0", name=CK_LEASE_RENT),
        CheckConstraint(
            "security_deposit >= 0 AND pet_deposit >= 0", name=CK_LEASE_DEPOSITS
        ),
        # Evaluated at write/commit time by the database, so concurrent
        # writers cannot both end up with an ACTIVE lease on one unit.
        Index(
            UQ_ACTIVE_UNIT_LEASE,
            "unit_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        # One unapproved ACTIVE lease per tenant; approved dual leases are exempt.
        Index(
            UQ_ACTIVE_TENANT_LEASE,
            "tenant_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE' AND dual_lease_approved = false"),
            sqlite_where=text("status = 'ACTIVE' AND dual_lease_approved = 0"),
        ),
        Index("ix_leases_status_dates", "status", "start_date", "end_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("units.id"), index=True
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), index=True
    )
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)  # open-ended when NULL
    monthly_rent: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    security_deposit: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    pet_deposit: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), default=LeaseStatus.ACTIVE.value)
    lease_type: Mapped[str] = mapped_column(String(20), default=LeaseType.FIXED_TERM.value)
    dual_lease_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    unit: Mapped["Unit"] = relationship()
    tenant: Mapped["Tenant"] = relationship()

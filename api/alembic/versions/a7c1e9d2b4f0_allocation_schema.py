"""allocation_schema

Revision ID: a7c1e9d2b4f0
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "a7c1e9d2b4f0"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "households",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("household_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("lifecycle_status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["household_id"], ["households.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_properties_household_id"), "properties", ["household_id"], unique=False)

    op.create_table(
        "units",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("property_id", sa.UUID(), nullable=False),
        sa.Column("unit_label", sa.String(length=50), nullable=False),
        sa.Column("monthly_rent", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="AVAILABLE"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_inspection_date", sa.Date(), nullable=True),
        sa.Column("next_inspection_date", sa.Date(), nullable=True),
        sa.Column("maintenance_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("monthly_rent > 0", name="ck_units_positive_rent"),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_units_property_id"), "units", ["property_id"], unique=False)
    op.create_index("ix_units_property_status", "units", ["property_id", "status"], unique=False)

    op.create_table(
        "tenants",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("household_id", sa.UUID(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("national_id", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["household_id"], ["households.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tenants_household_id"), "tenants", ["household_id"], unique=False)

    op.create_table(
        "leases",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("unit_id", sa.UUID(), nullable=False),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("monthly_rent", sa.Numeric(14, 2), nullable=False),
        sa.Column("security_deposit", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("pet_deposit", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("lease_type", sa.String(length=20), nullable=False, server_default="FIXED_TERM"),
        sa.Column("dual_lease_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint("end_date IS NULL OR start_date < end_date", name="ck_leases_start_before_end"),
        sa.CheckConstraint("monthly_rent > 0", name="ck_leases_positive_rent"),
        sa.CheckConstraint(
            "security_deposit >= 0 AND pet_deposit >= 0", name="ck_leases_non_negative_deposits"
        ),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_leases_unit_id"), "leases", ["unit_id"], unique=False)
    op.create_index(op.f("ix_leases_tenant_id"), "leases", ["tenant_id"], unique=False)
    op.create_index("ix_leases_status_dates", "leases", ["status", "start_date", "end_date"], unique=False)
    # The store invariants: at most one ACTIVE lease per unit, and per tenant
    # unless the extra lease was approved as a dual lease
    op.create_index(
        "uq_leases_active_unit",
        "leases",
        ["unit_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )
    op.create_index(
        "uq_leases_active_tenant",
        "leases",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE' AND dual_lease_approved = false"),
    )

    op.create_table(
        "allocation_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("household_id", sa.UUID(), nullable=False),
        sa.Column("actor_id", sa.UUID(), nullable=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("lease_id", sa.UUID(), nullable=True),
        sa.Column("unit_id", sa.UUID(), nullable=True),
        sa.Column("tenant_id", sa.UUID(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_allocation_events_household_id"), "allocation_events", ["household_id"], unique=False)
    op.create_index(op.f("ix_allocation_events_event_type"), "allocation_events", ["event_type"], unique=False)
    op.create_index(op.f("ix_allocation_events_lease_id"), "allocation_events", ["lease_id"], unique=False)


def downgrade() -> None:
    # Reverse order for FK dependencies
    op.drop_index(op.f("ix_allocation_events_lease_id"), table_name="allocation_events")
    op.drop_index(op.f("ix_allocation_events_event_type"), table_name="allocation_events")
    op.drop_index(op.f("ix_allocation_events_household_id"), table_name="allocation_events")
    op.drop_table("allocation_events")
    op.drop_index("uq_leases_active_tenant", table_name="leases")
    op.drop_index("uq_leases_active_unit", table_name="leases")
    op.drop_index("ix_leases_status_dates", table_name="leases")
    op.drop_index(op.f("ix_leases_tenant_id"), table_name="leases")
    op.drop_index(op.f("ix_leases_unit_id"), table_name="leases")
    op.drop_table("leases")
    op.drop_index(op.f("ix_tenants_household_id"), table_name="tenants")
    op.drop_table("tenants")
    op.drop_index("ix_units_property_status", table_name="units")
    op.drop_index(op.f("ix_units_property_id"), table_name="units")
    op.drop_table("units")
    op.drop_index(op.f("ix_properties_household_id"), table_name="properties")
    op.drop_table("properties")
    op.drop_table("households")

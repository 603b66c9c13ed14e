import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from allocation.core.database import Base


class AllocationEvent(Base):
    """Audit trail of allocation activity, written asynchronously by the worker."""
    __tablename__ = "allocation_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    household_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    # lease_allocated | tenant_reallocated | lease_transitioned | unit_status_changed |
    # termination_requested | override_acknowledged
    event_type: Mapped[str] = mapped_column(String(50), index=True)
    lease_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    unit_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    payload: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

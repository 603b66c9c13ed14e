import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from allocation.core.database import Base
from allocation.models.enums import PropertyLifecycle


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    household_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("households.id"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(String(500))
    city: Mapped[str | None] = mapped_column(String(100))
    # Owned by the property-lifecycle workflow; the engine only reads it
    lifecycle_status: Mapped[str] = mapped_column(
        String(20), default=PropertyLifecycle.ACTIVE.value
    )  # ACTIVE | INACTIVE
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    household: Mapped["Household"] = relationship(back_populates="properties")  # noqa: F821
    units: Mapped[list["Unit"]] = relationship(back_populates="property")  # noqa: F821

    @property
    def is_active(self) -> bool:
        return self.lifecycle_status == PropertyLifecycle.ACTIVE.value

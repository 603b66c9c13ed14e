from enum import Enum


class UnitStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"
    INACTIVE = "INACTIVE"


class LeaseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TERMINATED = "TERMINATED"
    EXPIRED = "EXPIRED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


class LeaseType(str, Enum):
    FIXED_TERM = "FIXED_TERM"
    MONTH_TO_MONTH = "MONTH_TO_MONTH"
    PERIODIC = "PERIODIC"
    TEMPORARY = "TEMPORARY"


class PropertyLifecycle(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


# Statuses a lease may move *from*, and the only statuses it may move *to*.
TRANSITIONABLE_LEASE_STATUSES = frozenset({LeaseStatus.ACTIVE, LeaseStatus.PENDING})
CLOSING_LEASE_STATUSES = frozenset(
    {LeaseStatus.TERMINATED, LeaseStatus.EXPIRED, LeaseStatus.CANCELLED}
)

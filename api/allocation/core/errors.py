"""
Engine error taxonomy.

Every failure the engine reports is one of these.  Callers (routers, Celery
tasks) decide how to present them; ``main.py`` maps them onto HTTP responses.
Nothing here is retried by the engine itself; ``retryable`` only tells the
caller whether re-running the *whole* operation (including its checks) is
reasonable.
"""
import uuid
from datetime import date


class AllocationError(Exception):
    code = "allocation_error"
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(AllocationError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: uuid.UUID):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConstraintViolation(AllocationError):
    """A store invariant was violated.  ``rule`` names which one."""
    code = "constraint_violation"

    def __init__(self, rule: str, detail: str | None = None):
        super().__init__(detail or f"Constraint violated: {rule}")
        self.rule = rule


class NoActiveLease(AllocationError):
    code = "no_active_lease"

    def __init__(self, tenant_id: uuid.UUID, lease_id: uuid.UUID):
        super().__init__(f"No active lease {lease_id} found for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.lease_id = lease_id


class UnitUnavailable(AllocationError):
    code = "unit_unavailable"

    def __init__(
        self,
        unit_id: uuid.UUID,
        detail: str | None = None,
        *,
        blocking_lease_id: uuid.UUID | None = None,
        available_from: date | None = None,
    ):
        super().__init__(detail or f"Unit {unit_id} is not available for the requested dates")
        self.unit_id = unit_id
        self.blocking_lease_id = blocking_lease_id
        self.available_from = available_from


class ConflictCheckFailure(AllocationError):
    code = "conflict_check_failure"
    retryable = True

    def __init__(self, check: str, cause: BaseException):
        super().__init__(f"{check} check failed: {cause}")
        self.check = check
        self.cause = cause


class ResolutionExecutionFailure(AllocationError):
    code = "resolution_failed"

    def __init__(self, resolution_id: str, detail: str):
        super().__init__(detail)
        self.resolution_id = resolution_id


class StoreTimeout(AllocationError):
    code = "store_timeout"
    retryable = True

    def __init__(self, operation: str, timeout: float, detail: str | None = None):
        super().__init__(detail or f"Store operation '{operation}' exceeded {timeout:g}s")
        self.operation = operation
        self.timeout = timeout

from allocation.models.audit import AllocationEvent
from allocation.models.household import Household
from allocation.models.property import Property
from allocation.models.rental import Lease, Tenant, Unit

__all__ = ["AllocationEvent", "Household", "Lease", "Property", "Tenant", "Unit"]

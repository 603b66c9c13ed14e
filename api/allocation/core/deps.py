import uuid
from dataclasses import dataclass

from fastapi import Header, HTTPException


@dataclass(frozen=True)
class RequestContext:
    """Who is calling the engine.  Passed explicitly into every engine call;
    all reads and writes are scoped to ``household_id``."""
    household_id: uuid.UUID
    actor_id: uuid.UUID | None = None


async def get_request_context(
    x_household_id: str = Header(...),
    x_actor_id: str | None = Header(default=None),
) -> RequestContext:
    try:
        household_id = uuid.UUID(x_household_id)
        actor_id = uuid.UUID(x_actor_id) if x_actor_id else None
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Household-Id or X-Actor-Id header")
    return RequestContext(household_id=household_id, actor_id=actor_id)

from slowapi import Limiter
from slowapi.util import get_remote_address

from allocation.core.config import settings

# Backed by Redis so limits hold across API workers and restarts
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.rate_limit_storage_uri or settings.redis_url,
    enabled=settings.rate_limit_enabled,
)

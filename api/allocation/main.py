import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from allocation.core.config import settings
from allocation.core.errors import (
    AllocationError,
    ConflictCheckFailure,
    ConstraintViolation,
    NoActiveLease,
    NotFound,
    ResolutionExecutionFailure,
    StoreTimeout,
    UnitUnavailable,
)
from allocation.core.limiter import limiter
from allocation.routers import allocations, health, leases, properties, tenants, units

logging.basicConfig(
    level=getattr(logging, settings.api_log_level.upper()),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# ─── Security headers middleware ───────────────────────────────────────────────
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.environment != "development":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


app = FastAPI(
    title="Unit Allocation API",
    version="0.1.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# ─── CORS ──────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=(
        ["http://localhost:3000", "http://localhost", f"http://{settings.domain}"]
        if settings.environment == "development"
        else [f"https://{settings.domain}"]
    ),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin", "X-Household-Id", "X-Actor-Id"],
)

# ─── Engine errors ─────────────────────────────
_STATUS_CODES: list[tuple[type[AllocationError], int]] = [
    (NotFound, 404),
    (NoActiveLease, 409),
    (UnitUnavailable, 409),
    (ConstraintViolation, 409),
    (ResolutionExecutionFailure, 422),
    (StoreTimeout, 503),
    (ConflictCheckFailure, 503),
]


def status_for(exc: AllocationError) -> int:
    for cls, status in _STATUS_CODES:
        if isinstance(exc, cls):
            return status
    return 400


async def allocation_error_handler(request: Request, exc: AllocationError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    body = {"code": exc.code, "detail": exc.detail, "retryable": exc.retryable}
    if isinstance(exc, ConstraintViolation):
        body["rule"] = exc.rule
    if isinstance(exc, UnitUnavailable):
        body["blocking_lease_id"] = str(exc.blocking_lease_id) if exc.blocking_lease_id else None
        body["available_from"] = exc.available_from.isoformat() if exc.available_from else None
    return JSONResponse(status_code=status, content=body)


app.add_exception_handler(AllocationError, allocation_error_handler)

# ─── Routers ──────────────────────────────────
app.include_router(health.router)
app.include_router(properties.router, prefix="/api/v1")
app.include_router(units.router, prefix="/api/v1")
app.include_router(tenants.router, prefix="/api/v1")
app.include_router(leases.router, prefix="/api/v1")
app.include_router(allocations.router, prefix="/api/v1")

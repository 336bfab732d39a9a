"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.exceptions import ActivationError, MissingFieldError, ValidationError
from app.db.session import engine

# ============================================================================
# Logging
# ============================================================================

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Don't send PII to Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Activation API",
    description="Trial activation pipeline: meetings, outcomes, slots and lifecycle events",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ActivationError)
async def activation_error_handler(request: Request, exc: ActivationError):
    """Domain errors → {"error", "reason"} with the error's status code."""
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Body/query validation failures use the same 400 error shape as domain errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    names = [part for part in first.get("loc", ()) if isinstance(part, str)]
    field = names[-1] if len(names) > 1 else None
    if first.get("type") in ("missing", "string_too_short", "too_short") and field:
        error = MissingFieldError(field)
    else:
        error = ValidationError(
            f"Invalid value for {field or 'request'}: {first.get('msg', 'invalid')}",
            reason="invalid_field",
        )
    return JSONResponse(error.to_dict(), status_code=error.status_code)


# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Internal-Secret"],
    expose_headers=["X-Request-ID"],
)

# ============================================================================
# Routers
# ============================================================================

from app.routers import availability, internal, meetings, pipelines, slots, webhooks

# Slot query (SDR booking UI)
app.include_router(slots.router, prefix="/activator-availability", tags=["slots"])

# Activator shift configuration
app.include_router(availability.router, prefix="/activator/availability", tags=["availability"])

# Meetings, outcomes and status changes
app.include_router(meetings.router, prefix="/activation-meetings", tags=["meetings"])

# Pipeline reads
app.include_router(pipelines.router, prefix="/pipelines", tags=["pipelines"])

# Webhooks (product lifecycle + signup)
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
app.include_router(internal.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}

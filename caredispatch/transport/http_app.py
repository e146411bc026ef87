# caredispatch/transport/http_app.py
"""
HTTP application for complaint intake and volunteer status tracking.

Security layers:
1. Public: complaint intake and the complaint status page (rate limited)
2. Volunteer: gateway identity headers, HMAC-signed when configured
3. Metrics: METRICS_TOKEN (dev-only when unset)
4. Dev-only: fictional volunteer seeding (404 outside dev)

Routes stay thin: parse the request, call the dispatch core, map
``DispatchError`` to an HTTP status. No business logic lives here.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caredispatch.config import settings
from caredispatch.core.dispatch.coordinator import DispatchCoordinator
from caredispatch.core.dispatch.domain import CallerIdentity
from caredispatch.core.dispatch.errors import DispatchError, StorageError
from caredispatch.core.dispatch.models import (
    AssignmentOut,
    ComplaintDetailsResponse,
    CreateComplaintRequest,
    DispatchOut,
    IntakeResponse,
    StatusUpdateResponse,
    UpdateStatusRequest,
    VolunteerOut,
)
from caredispatch.core.dispatch.services import LogVolunteerNotifier
from caredispatch.core.dispatch.status_updater import StatusUpdater
from caredispatch.infra.db_async import close_pool, init_pool
from caredispatch.infra.fictional_volunteers import seed_fictional_volunteers
from caredispatch.infra.logging_config import get_logger, setup_logging
from caredispatch.infra.memory_store import InMemoryDispatchStore, InMemoryVolunteerDirectory
from caredispatch.infra.metrics import get_metrics_collector
from caredispatch.infra.pg_dispatch_repo_async import AsyncPostgresDispatchStore
from caredispatch.infra.pg_volunteer_repo_async import AsyncPostgresVolunteerDirectory
from caredispatch.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from caredispatch.infra.schema_validator import validate_schema_version
from caredispatch.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from caredispatch.transport.security import (
    VOLUNTEER_CATEGORY_HEADER,
    VOLUNTEER_ID_HEADER,
    IDENTITY_SIGNATURE_HEADER,
    require_admin_token,
    require_caller_identity,
    require_dev_environment,
    require_metrics_auth,
    sanitize_error_message,
)

setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_coordinator(request: Request) -> DispatchCoordinator:
    return request.app.state.coordinator


def get_status_updater(request: Request) -> StatusUpdater:
    return request.app.state.status_updater


async def rate_limit_check(request: Request) -> None:
    """Per-IP rate limit for public endpoints"""
    await request.app.state.rate_limiter(request)


def _http_error(exc: DispatchError) -> HTTPException:
    detail = exc.detail
    if isinstance(exc, StorageError) and settings.is_production:
        detail = "Service temporarily unavailable"
    return HTTPException(status_code=exc.status_code, detail=detail)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: build storage and services, tear down the pool."""
    logger.info(f"Starting application: env={settings.app_env}, storage={settings.storage_backend}")

    if settings.is_production and settings.log_level.upper() == "DEBUG":
        logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
        raise RuntimeError("LOG_LEVEL=DEBUG in production")

    if settings.uses_postgres:
        await init_pool()
        logger.info("Database pool initialized")

        # Migrations run separately: python -m caredispatch.infra.migrate
        try:
            await validate_schema_version()
        except Exception:
            logger.critical("Schema validation failed", exc_info=True)
            await close_pool()
            raise

        directory = AsyncPostgresVolunteerDirectory()
        store = AsyncPostgresDispatchStore()
    else:
        logger.warning("Using in-memory storage: nothing survives a restart")
        directory = InMemoryVolunteerDirectory()
        store = InMemoryDispatchStore()

    fastapi_app.state.directory = directory
    fastapi_app.state.store = store
    fastapi_app.state.coordinator = DispatchCoordinator(
        directory=directory,
        store=store,
        notifier=LogVolunteerNotifier(),
    )
    fastapi_app.state.status_updater = StatusUpdater(directory=directory, store=store)
    fastapi_app.state.rate_limiter = RateLimitDependency(
        InMemoryRateLimiter(max_requests=settings.rate_limit_per_minute, name="ip")
    )
    fastapi_app.state.complaint_limiter = InMemoryRateLimiter(
        max_requests=settings.complaint_rate_limit_per_minute, name="complaint_phone"
    )

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    if settings.uses_postgres:
        await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Care Dispatch",
    description="Complaint intake and volunteer dispatch",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

_identity_headers = [VOLUNTEER_ID_HEADER, VOLUNTEER_CATEGORY_HEADER, IDENTITY_SIGNATURE_HEADER]

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", *_identity_headers],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are a 400 with a readable reason."""
    reasons = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())[1:])
        reasons.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "; ".join(reasons) or "Invalid request"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness check. Minimal information."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(request: Request):
    """Readiness check: storage must answer."""
    try:
        await request.app.state.store.ping()
    except DispatchError:
        return JSONResponse(status_code=503, content={"status": "unhealthy"})

    return {"status": "healthy"}


@app.post(
    "/complaints",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit_check)],
)
async def create_complaint(
    payload: CreateComplaintRequest,
    request: Request,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """File a complaint and dispatch the nearest volunteer of each category."""
    request.app.state.complaint_limiter.check(payload.phone_no)

    try:
        result = await coordinator.file_complaint(
            phone_no=payload.phone_no,
            complaint_type=payload.type,
            location=payload.location,
            name=payload.name,
            description=payload.description,
        )
    except DispatchError as exc:
        raise _http_error(exc)

    return IntakeResponse.from_domain(result).model_dump(by_alias=True, mode="json")


@app.get("/complaints/{complaint_id}", dependencies=[Depends(rate_limit_check)])
async def get_complaint(
    complaint_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    """Complaint status page: dispatches, assigned volunteers, aggregate status."""
    try:
        details = await coordinator.get_complaint_details(complaint_id)
    except DispatchError as exc:
        raise _http_error(exc)

    return ComplaintDetailsResponse.from_domain(details).model_dump(by_alias=True, mode="json")


# ============================================================================
# VOLUNTEER ENDPOINTS (gateway identity headers)
# ============================================================================

@app.get("/volunteers/me/dispatches")
async def list_my_dispatches(
    include_resolved: bool = Query(default=False, alias="includeResolved"),
    caller: CallerIdentity = Depends(require_caller_identity),
    updater: StatusUpdater = Depends(get_status_updater),
):
    """Volunteer dashboard: dispatches the caller holds a slot in."""
    try:
        assignments = await updater.list_assignments(caller, include_resolved=include_resolved)
    except DispatchError as exc:
        raise _http_error(exc)

    return {
        "assignments": [
            AssignmentOut.from_domain(a).model_dump(by_alias=True, mode="json")
            for a in assignments
        ]
    }


async def _apply_status_update(
    caller: CallerIdentity,
    updater: StatusUpdater,
    new_status: str,
    dispatch_id: str | None,
) -> dict:
    try:
        record = await updater.update_status(caller, new_status, dispatch_id=dispatch_id)
    except DispatchError as exc:
        raise _http_error(exc)

    slot = record.slot(caller.category)
    response = StatusUpdateResponse(
        message=f"{caller.category.value} slot is now {slot.status.value}",
        dispatch=DispatchOut.from_domain(record),
    )
    return response.model_dump(by_alias=True, mode="json")


@app.post("/dispatches/{dispatch_id}/status")
async def update_dispatch_status(
    dispatch_id: str,
    payload: UpdateStatusRequest,
    caller: CallerIdentity = Depends(require_caller_identity),
    updater: StatusUpdater = Depends(get_status_updater),
):
    """Advance the caller's slot on a specific dispatch."""
    return await _apply_status_update(caller, updater, payload.new_status, dispatch_id)


@app.post("/volunteers/me/status")
async def update_my_status(
    payload: UpdateStatusRequest,
    caller: CallerIdentity = Depends(require_caller_identity),
    updater: StatusUpdater = Depends(get_status_updater),
):
    """
    Advance the caller's slot.

    Uses ``dispatchId`` from the body when given; otherwise the caller must
    hold exactly one open assignment.
    """
    return await _apply_status_update(caller, updater, payload.new_status, payload.dispatch_id)


# ============================================================================
# METRICS
# ============================================================================

@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    return get_metrics_collector().get_metrics()


# ============================================================================
# DEV-ONLY ENDPOINTS (404 outside dev)
# ============================================================================

@app.post(
    "/dev/volunteers/seed",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_dev_environment()), Depends(require_admin_token)],
)
async def dev_seed_volunteers(
    request: Request,
    count: int | None = Query(default=None, ge=1, le=500),
    seed: int | None = Query(default=None),
):
    """Create fictional ACTIVE volunteers of every category around the configured center."""
    try:
        volunteers = await seed_fictional_volunteers(
            request.app.state.directory, count_per_category=count, seed=seed
        )
    except DispatchError as exc:
        raise _http_error(exc)

    return {
        "created": len(volunteers),
        "volunteers": [VolunteerOut.from_domain(v).model_dump() for v in volunteers],
    }


@app.delete(
    "/dev/volunteers",
    dependencies=[Depends(require_dev_environment()), Depends(require_admin_token)],
)
async def dev_delete_volunteers(request: Request):
    """Remove every volunteer from the directory."""
    try:
        deleted = await request.app.state.directory.delete_volunteers(None)
    except DispatchError as exc:
        raise _http_error(exc)

    return {"deleted": deleted}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "caredispatch.transport.http_app:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )

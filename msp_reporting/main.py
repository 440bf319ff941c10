"""MSP Reporting: Main FastAPI Application.

Ticket reporting from HaloPSA, device monitoring from NinjaOne and domain
tracking from 20i, filtered per customer company.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_router
from .core import async_session_factory, close_db, get_settings, init_db
from .integrations.base import UpstreamError
from .integrations.factory import build_upstream_clients
from .jobs.sync_worker import SyncTaskQueue
from .schemas.base import ErrorDetail, error_body
from .services.admin import NotFoundError
from .services.tenant_context import AccessDeniedError, TargetUserNotFoundError

settings = get_settings()
logger = logging.getLogger(__name__)

ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    502: "upstream_error",
    503: "service_unavailable",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables already exist)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")

    app.state.upstream = build_upstream_clients(settings)
    app.state.sync_queue = SyncTaskQueue(
        async_session_factory,
        app.state.upstream.halopsa,
        batch_size=settings.sync_ticket_batch_size,
        closed_status_id=settings.halo_closed_status_id,
    )
    yield
    # Shutdown
    await app.state.sync_queue.shutdown()
    await app.state.upstream.aclose()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## MSP Reporting API

    Reporting dashboard backend for a managed service provider.

    ### Key Features

    - **Ticket Reporting**: HaloPSA clients, tickets and feedback synced into a local store.
    - **Monitoring**: Live NinjaOne servers and workstations with patch status.
    - **Domains**: 20i domains with expiry and hosting status.
    - **Multi-Tenancy**: Customers only see data mapped to their active company.

    ### Authentication

    All endpoints except `/config` and `/auth/login` require a valid JWT token in
    the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

# CORS middleware with explicit origins (credentials require explicit origins, not "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(ERROR_CODES.get(exc.status_code, "error"), str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400 with one detail per invalid field."""
    details = [
        ErrorDetail(
            field=".".join(str(part) for part in err["loc"][1:]) or None,
            message=err["msg"],
            code=err["type"],
        )
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("validation_error", "Request validation failed", details),
    )


@app.exception_handler(AccessDeniedError)
async def access_denied_handler(request: Request, exc: AccessDeniedError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content=error_body("forbidden", str(exc)),
    )


@app.exception_handler(TargetUserNotFoundError)
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=error_body("not_found", str(exc)),
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    """Upstream details stay in the log, never in the response."""
    logger.error(f"Upstream error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=error_body(
            "upstream_error", f"Failed to fetch data from {exc.provider}"
        ),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("internal_error", "An unexpected error occurred"),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "msp_reporting.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )

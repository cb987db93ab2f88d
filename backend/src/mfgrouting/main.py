"""Manufacturer Routing Service - Main FastAPI Application

Routes manufacturing jobs to manufacturers and exposes the routing admin API.

This module creates and configures the FastAPI application, including:
- Routing admin router
- Middleware (request ID correlation, CORS)
- Exception handlers
- Health and observability endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router
from .routing.exceptions import RoutingError, ConsistencyError
from .routing.router import router as routing_router

settings = get_settings()

# Configure logging
configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Manufacturer routing API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    yield

    logger.info("Manufacturer routing API shutting down...")


_docs_enabled = settings.ENVIRONMENT != "production"

app = FastAPI(
    title="Manufacturer Routing API",
    description="Routes manufacturing jobs to manufacturers by capability, MOQ and lead time",
    version="0.1.0",
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
    openapi_url="/openapi.json" if _docs_enabled else None,
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

# Request ID Middleware (must be first for proper correlation)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(RoutingError)
async def routing_exception_handler(request: Request, exc: RoutingError) -> JSONResponse:
    """Map routing errors to their HTTP status.

    ConsistencyError is an internal repair signal; its detail is logged by
    the gateway and replaced with a generic message here.
    """
    if isinstance(exc, ConsistencyError):
        message = "Routing data for this job needs attention. Operations has been alerted."
    else:
        message = exc.message

    if exc.status_code >= 500:
        logger.error(
            f"Routing error on {request.method} {request.url.path}: {exc.message}",
            extra={"job_id": exc.job_id}
        )
    else:
        logger.info(
            f"Routing request rejected on {request.method} {request.url.path}: {exc.message}",
            extra={"job_id": exc.job_id}
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "message": message},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors.

    Returns a structured error response with field-level details.
    """
    logger.warning(f"Validation error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """Handle database errors.

    Logs the full error but returns a generic message to prevent
    information leakage.
    """
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "database_error",
            "message": "A database error occurred. Please try again later.",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle uncaught exceptions.

    Full details are logged but not exposed to the client.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Field errors without the raw input/context objects."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


# =============================================================================
# ROUTER REGISTRATION
# =============================================================================

# Observability (health, metrics, ready)
app.include_router(observability_router)

# Routing administration
app.include_router(routing_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root() -> dict[str, Any]:
    """Root endpoint - API information."""
    return {
        "name": "Manufacturer Routing API",
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs" if _docs_enabled else None,
    }


def create_app() -> FastAPI:
    """Application factory for creating test instances.

    Returns the configured FastAPI application instance.
    """
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mfgrouting.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )

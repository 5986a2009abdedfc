"""HTTP surface of the scraping engine.

Usage:
    Development: uvicorn newsingest.api.main:app --reload --host 0.0.0.0 --port 8000
    Production: uvicorn newsingest.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Tuple, Type

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from newsingest.api.routes.jobs import router as jobs_router
from newsingest.api.routes.sources import router as sources_router
from newsingest.database.connection import close_database_connection, get_database_connection
from newsingest.shared.config import Settings, get_settings
from newsingest.shared.exceptions import (
    BaseAppException,
    DatabaseConnectionError,
    InvalidJobStateError,
    JobNotFoundError,
    SourceNotFoundError,
    ValidationError,
)
from newsingest.shared.log_config import configure_logging

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger(__name__)

SERVICE_VERSION = "1.0.0"

# First match wins; anything else derived from BaseAppException maps to 500
APP_ERROR_STATUS: Tuple[Tuple[Type[BaseAppException], int], ...] = (
    (ValidationError, 422),
    (JobNotFoundError, 404),
    (SourceNotFoundError, 404),
    (InvalidJobStateError, 409),
)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def _error_response(request: Request, status_code: int, error: str, detail: Any, **extra) -> JSONResponse:
    body: Dict[str, Any] = {"error": error, "detail": detail, "correlation_id": _correlation_id(request)}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ingestion API", environment=settings.ENVIRONMENT, log_level=settings.LOG_LEVEL)
    if not await get_database_connection(settings).health_check():
        logger.error("Database unreachable at startup")
        raise DatabaseConnectionError(details={"environment": settings.ENVIRONMENT})

    yield

    logger.info("Stopping ingestion API")
    await close_database_connection()


async def correlation_middleware(request: Request, call_next):
    """Tag each request with a correlation ID and log its duration."""
    started = time.perf_counter()
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    log = logger.bind(correlation_id=correlation_id, method=request.method, path=request.url.path)

    response = await call_next(request)

    elapsed = time.perf_counter() - started
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    log.info("Request handled", status_code=response.status_code, process_time=round(elapsed, 4))
    return response


async def handle_http_exception(request: Request, exc: HTTPException):
    logger.warning(
        "HTTP error response",
        correlation_id=_correlation_id(request),
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path
    )
    return _error_response(request, exc.status_code, "HTTP Exception", exc.detail)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]
    logger.warning("Rejected request payload", correlation_id=_correlation_id(request), errors=errors)
    return _error_response(
        request, 422, "Validation Error", "Request validation failed", validation_errors=errors
    )


async def handle_app_exception(request: Request, exc: BaseAppException):
    status_code = next((status for kind, status in APP_ERROR_STATUS if isinstance(exc, kind)), 500)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Application error",
        correlation_id=_correlation_id(request),
        code=exc.code.value,
        error=exc.message,
        path=request.url.path
    )
    return _error_response(request, status_code, exc.code.value, exc.message)


async def handle_unexpected(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        correlation_id=_correlation_id(request),
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        exc_info=True
    )
    return _error_response(request, 500, "Internal Server Error", "An unexpected error occurred")


def create_app(app_settings: Settings) -> FastAPI:
    application = FastAPI(
        title="News Ingestion API",
        description="Trigger scraping jobs and inspect their outcome, event log and reconciliation",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json"
    )

    development = app_settings.ENVIRONMENT == "development"
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if development else [],
        allow_credentials=True,
        allow_methods=["*"] if development else ["GET", "POST"],
        allow_headers=["*"],
    )
    application.middleware("http")(correlation_middleware)

    application.add_exception_handler(HTTPException, handle_http_exception)
    application.add_exception_handler(RequestValidationError, handle_validation_error)
    application.add_exception_handler(BaseAppException, handle_app_exception)
    application.add_exception_handler(Exception, handle_unexpected)

    application.include_router(jobs_router)
    application.include_router(sources_router)
    return application


app = create_app(settings)


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness plus database reachability, for container probes."""
    if not await get_database_connection().health_check():
        logger.error("Health check failed: database unreachable")
        raise HTTPException(status_code=503, detail="Database connectivity failed")

    return {
        "status": "healthy",
        "service": "newsingest",
        "version": SERVICE_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": "connected"
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "service": "News Ingestion API",
        "version": SERVICE_VERSION,
        "docs": "/api/v1/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "newsingest.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower()
    )

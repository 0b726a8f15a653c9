"""DuckDB Explorer API - FastAPI application."""

import logging
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import time
import uuid

import duckdb

from duckdb_explorer.config import settings
from duckdb_explorer.routers import backend, database, metrics
from duckdb_explorer.middleware.metrics import MetricsMiddleware, normalize_path
from duckdb_explorer.metrics import ERROR_COUNT, set_service_info
from duckdb_explorer.reaper import IdleReaper
from duckdb_explorer.service import DatabaseExplorer


def setup_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if not settings.debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if not settings.debug else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger = structlog.get_logger()
    logger.info(
        "application_startup",
        version=settings.api_version,
        debug=settings.debug,
        data_dir=str(settings.data_dir),
        max_pool_size=settings.max_pool_size,
        exclusive_active_database=settings.exclusive_active_database,
    )

    explorer = DatabaseExplorer.from_settings(settings)
    explorer.ensure_directories()
    app.state.explorer = explorer
    set_service_info(version=settings.api_version, duckdb_version=duckdb.__version__)

    reaper = IdleReaper(
        explorer.pool,
        idle_timeout=settings.idle_timeout_seconds,
        interval=settings.reaper_interval_seconds,
    )
    reaper.start()

    yield

    await reaper.stop()
    explorer.shutdown()
    app.state.explorer = None

    logger.info("application_shutdown")


# Setup logging before creating app
setup_logging()
logger = structlog.get_logger()

# Create FastAPI application
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="""
DuckDB Explorer API.

Browse DuckDB database files over HTTP:
- Open or create database files in the data directory
- List tables and run ad-hoc SQL
- Back up databases into the `meta/` directory
- Upload existing `.duckdb` / `.db` files

Connections are pooled per database file and closed after 15 minutes of
inactivity. Without an explicit database, requests use the most recently
opened one, falling back to an in-memory demo database.
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add metrics middleware (for Prometheus request instrumentation)
app.add_middleware(MetricsMiddleware)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Bind a request id for every log line of the request and time it."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    logger.debug("request_started")

    response = await call_next(request)

    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )

    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Turn anything the routers did not handle into a 500."""
    error_type = type(exc).__name__
    ERROR_COUNT.labels(type=error_type, endpoint=normalize_path(request.url.path)).inc()

    logger.error("unhandled_exception", error=str(exc), error_type=error_type, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": str(exc) if settings.debug else "An internal error occurred",
        },
    )


# Include routers
app.include_router(backend.router)
app.include_router(database.router)
app.include_router(metrics.router)


# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint - points at the health check and the database API."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "health": "/health",
        "api": settings.api_prefix,
        "docs": "/docs" if settings.debug else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "duckdb_explorer.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )

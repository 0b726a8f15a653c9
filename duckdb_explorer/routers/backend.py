"""Health check: storage directories plus the state of the connection pool."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from duckdb_explorer.config import settings
from duckdb_explorer.dependencies import get_explorer
from duckdb_explorer.models.responses import ErrorResponse, HealthResponse
from duckdb_explorer.service import DatabaseExplorer

logger = structlog.get_logger()
router = APIRouter(tags=["backend"])


def storage_status(explorer: DatabaseExplorer) -> dict[str, bool]:
    """Report which of the explorer's directories are usable."""
    result = {}
    for name, path in (("data_dir", explorer.data_dir), ("meta_dir", explorer.meta_dir)):
        try:
            result[name] = path.is_dir()
        except OSError:
            result[name] = False
    return result


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": ErrorResponse}},
    summary="Health check",
    description="Storage accessibility and connection pool status.",
)
async def health_check(
    explorer: DatabaseExplorer = Depends(get_explorer),
) -> HealthResponse:
    """
    Healthy when both the data and the backup directory exist.

    The pool section is informational: an empty pool or a missing active
    database is a normal idle state.
    """
    directories = storage_status(explorer)
    pool = explorer.pool
    pool_size = len(pool)

    if not all(directories.values()):
        logger.warning("health_check_storage_unavailable", directories=directories)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "storage_unavailable",
                "message": "One or more storage paths are not accessible",
                "details": directories,
            },
        )

    logger.debug("health_check", pool_size=pool_size, active_path=pool.active_path)
    return HealthResponse(
        status="healthy",
        version=settings.api_version,
        storage_available=True,
        details=directories,
        pool_size=pool_size,
        max_pool_size=pool.max_pool_size,
        active_path=pool.active_path,
    )

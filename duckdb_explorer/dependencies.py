"""FastAPI dependencies.

The ``DatabaseExplorer`` is created once in the application lifespan and kept
on ``app.state``; routers receive it through ``get_explorer``:

    @router.get("/tables")
    async def get_tables(explorer: DatabaseExplorer = Depends(get_explorer)):
        ...
"""

import structlog
from fastapi import HTTPException, Request, status

from duckdb_explorer.service import DatabaseExplorer

logger = structlog.get_logger(__name__)


def get_explorer(request: Request) -> DatabaseExplorer:
    """Return the application's DatabaseExplorer."""
    explorer = getattr(request.app.state, "explorer", None)
    if explorer is None:
        logger.error("explorer_not_initialized", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": "Database explorer is not initialized",
            },
        )
    return explorer

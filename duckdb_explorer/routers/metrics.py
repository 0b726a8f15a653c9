"""Prometheus metrics endpoint router.

Exposes /metrics endpoint for Prometheus scraping.
"""

import duckdb
import structlog
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from duckdb_explorer.config import settings
from duckdb_explorer.metrics import POOL_CONNECTIONS_OPEN, set_service_info

logger = structlog.get_logger()

router = APIRouter(tags=["metrics"])


def collect_pool_metrics(request: Request) -> None:
    """Refresh gauges that are sampled rather than updated in place."""
    explorer = getattr(request.app.state, "explorer", None)
    if explorer is not None:
        POOL_CONNECTIONS_OPEN.set(len(explorer.pool))


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus metrics endpoint",
    description="Returns metrics in Prometheus text format for scraping.",
)
async def get_metrics(request: Request):
    """
    Expose Prometheus metrics.

    Returns metrics in text/plain format using Prometheus exposition format.
    """
    set_service_info(version=settings.api_version, duckdb_version=duckdb.__version__)
    collect_pool_metrics(request)

    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )

"""HTTP request instrumentation.

Endpoint labels are restricted to the routes this service serves, so scanners
and typos cannot blow up label cardinality.
"""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from duckdb_explorer.config import settings
from duckdb_explorer.metrics import REQUEST_COUNT, REQUEST_DURATION, REQUEST_IN_FLIGHT

DATABASE_ENDPOINTS = ("query", "tables", "info", "open", "backup", "upload")
UNMATCHED_ENDPOINT = "/{unmatched}"


def normalize_path(path: str) -> str:
    """
    Normalize path for metrics labels to avoid high cardinality.

    Known endpoints keep their path; anything else (typos, scanners) is
    collapsed into a single label.

    Examples:
        /api/db/query -> /api/db/query
        /api/db/query/ -> /api/db/query
        /wp-login.php -> /{unmatched}
    """
    normalized = "/" + path.strip("/")
    known = {"/", "/health", "/metrics"} | {
        f"{settings.api_prefix.rstrip('/')}/{name}" for name in DATABASE_ENDPOINTS
    }
    return normalized if normalized in known else UNMATCHED_ENDPOINT


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Records request count, latency and concurrency per normalized endpoint.

    Scrapes of ``/metrics`` itself are not recorded.
    """

    SKIP_PATHS = frozenset({"/metrics"})

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = normalize_path(request.url.path)
        status_code = "500"

        with REQUEST_IN_FLIGHT.labels(method=method).track_inprogress():
            with REQUEST_DURATION.labels(method=method, endpoint=endpoint).time():
                try:
                    response = await call_next(request)
                    status_code = str(response.status_code)
                finally:
                    REQUEST_COUNT.labels(
                        method=method, endpoint=endpoint, status_code=status_code
                    ).inc()

        return response

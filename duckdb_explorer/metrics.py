"""Prometheus metrics definitions for the DuckDB Explorer service.

This module defines all Prometheus metrics used for observability:
- HTTP request metrics (count, duration, in-flight)
- Connection pool metrics (size, hits, closes by reason)
- Query metrics (count, duration, table discovery)
- Backup and upload metrics
- Process metrics (CPU, memory, file descriptors)
"""

import platform
import time
from prometheus_client import Counter, Histogram, Gauge, Info
from prometheus_client import ProcessCollector

# Register ProcessCollector for process_* metrics
# Note: ProcessCollector only works on Linux (uses /proc filesystem)
if platform.system() == "Linux":
    try:
        ProcessCollector()
    except ValueError:
        pass  # Already registered by the default registry

# =============================================================================
# Service Health Metrics
# =============================================================================

SERVICE_UP = Gauge(
    "duckdb_explorer_up",
    "Whether the DuckDB Explorer service is up (1) or down (0)"
)

SERVICE_START_TIME = Gauge(
    "duckdb_explorer_start_time_seconds",
    "Unix timestamp when the service started"
)

SERVICE_START_TIME.set(time.time())
SERVICE_UP.set(1)

SERVICE_INFO = Info(
    "duckdb_explorer_service",
    "DuckDB Explorer service information"
)

# =============================================================================
# HTTP Request Metrics
# =============================================================================

REQUEST_COUNT = Counter(
    "duckdb_explorer_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

REQUEST_DURATION = Histogram(
    "duckdb_explorer_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

REQUEST_IN_FLIGHT = Gauge(
    "duckdb_explorer_requests_in_flight",
    "Number of HTTP requests currently being processed",
    ["method"]
)

ERROR_COUNT = Counter(
    "duckdb_explorer_errors_total",
    "Total number of errors by type",
    ["type", "endpoint"]
)

# =============================================================================
# Connection Pool Metrics
# =============================================================================

POOL_CONNECTIONS_OPEN = Gauge(
    "duckdb_pool_connections_open",
    "Number of connections currently held by the pool"
)

POOL_ACQUIRE_TOTAL = Counter(
    "duckdb_pool_acquire_total",
    "Total connection acquisitions",
    ["result"]  # hit, miss, error
)

POOL_CLOSE_TOTAL = Counter(
    "duckdb_pool_close_total",
    "Total connections closed by the pool",
    ["reason"]  # explicit, switch, lru, idle, shutdown
)

# =============================================================================
# Query Metrics
# =============================================================================

QUERY_TOTAL = Counter(
    "duckdb_queries_total",
    "Total number of user queries",
    ["status"]
)

QUERY_DURATION = Histogram(
    "duckdb_query_duration_seconds",
    "User query duration in seconds",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0]
)

TABLE_DISCOVERY_TOTAL = Counter(
    "duckdb_table_discovery_total",
    "Table listings by the strategy that produced them",
    ["strategy"]
)

# =============================================================================
# Backup / Upload Metrics
# =============================================================================

BACKUPS_TOTAL = Counter(
    "duckdb_backups_total",
    "Total number of backup attempts",
    ["status"]
)

BACKUP_BYTES_TOTAL = Counter(
    "duckdb_backup_bytes_total",
    "Total bytes written to backup files"
)

UPLOADS_TOTAL = Counter(
    "duckdb_uploads_total",
    "Total number of database file uploads",
    ["status"]
)


def set_service_info(version: str, duckdb_version: str) -> None:
    """Set service info labels."""
    SERVICE_INFO.info({
        "version": version,
        "duckdb_version": duckdb_version
    })

"""Ad-hoc query execution with audit logging and error enrichment."""

import re
import time
from typing import Any

import duckdb
import structlog

from duckdb_explorer import metrics
from duckdb_explorer.database import QUERY_LOG_TABLE, ConnectionPool, fetch_rows
from duckdb_explorer.discovery import list_tables
from duckdb_explorer.errors import QueryError
from duckdb_explorer.paths import is_memory_path

logger = structlog.get_logger()

AVAILABLE_TABLES_MARKER = "Available tables: "

# Substrings DuckDB (and friends) use when a relation does not exist
MISSING_TABLE_MARKERS = ("not exist", "No table", "Unknown relation", "Catalog Error")

_FROM_TABLE = re.compile(r"\bFROM\s+([^\s;]+)", re.IGNORECASE)


def is_missing_table_error(message: str) -> bool:
    return any(marker in message for marker in MISSING_TABLE_MARKERS)


def parse_available_tables(message: str) -> list[str]:
    """Extract the table names appended by ``QueryExecutor`` to an error."""
    if AVAILABLE_TABLES_MARKER not in message:
        return []
    suffix = message.rsplit(AVAILABLE_TABLES_MARKER, 1)[1].split("\n", 1)[0]
    return [name.strip() for name in suffix.split(", ") if name.strip()]


def extract_target_table(sql: str) -> str | None:
    """Best-effort name of the first relation after FROM."""
    match = _FROM_TABLE.search(sql)
    return match.group(1) if match else None


class QueryExecutor:
    """Runs SQL against pooled connections."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def execute(
        self,
        sql: str,
        params: list | dict | None = None,
        path: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute ``sql`` on the database at ``path`` (default: active database).

        Returns rows as dicts. On failure raises ``QueryError`` whose message
        lists the available tables when they can be discovered.
        """
        target = path or self._pool.default_path()
        start_time = time.perf_counter()
        conn = None

        try:
            conn = self._pool.acquire(target)
            rows = fetch_rows(conn, sql, params)
        except Exception as e:
            metrics.QUERY_TOTAL.labels(status="error").inc()
            logger.error("query_failed", path=target, error=str(e))
            raise QueryError(self._enrich_error(conn, e)) from e

        duration = time.perf_counter() - start_time
        execution_time_ms = int(duration * 1000)
        metrics.QUERY_TOTAL.labels(status="success").inc()
        metrics.QUERY_DURATION.observe(duration)

        logger.info(
            "query_executed",
            path=target,
            row_count=len(rows),
            execution_time_ms=execution_time_ms,
        )

        if not is_memory_path(target):
            self._log_query(conn, sql, execution_time_ms, len(rows))

        return rows

    def _log_query(
        self,
        conn: duckdb.DuckDBPyConnection,
        sql: str,
        execution_time_ms: int,
        row_count: int,
    ) -> None:
        try:
            conn.execute(
                f"INSERT INTO {QUERY_LOG_TABLE} (query, execution_time_ms, row_count) "
                "VALUES (?, ?, ?)",
                [sql, execution_time_ms, row_count],
            )
        except Exception as e:
            logger.warning("query_log_failed", error=str(e))

    def _enrich_error(
        self, conn: duckdb.DuckDBPyConnection | None, error: Exception
    ) -> str:
        message = str(error)
        tables = [table.name for table in list_tables(conn)] if conn is not None else []

        if tables:
            return f"{message} {AVAILABLE_TABLES_MARKER}{', '.join(tables)}"
        return f"Query failed: {message}"

"""DuckDB connection management - the process-wide connection pool.

One pool entry per canonical database path
==========================================
- Key = canonical path (see ``paths.resolve_db_path``) or ``:memory:``
- Value = open DuckDB connection + last access time
- At most ``max_pool_size`` entries; the least recently used entry is
  evicted when a new database is opened into a full pool

File-backed databases get two audit tables (``_meta_backup_history`` and
``_meta_query_log``). The in-memory database is seeded with a small demo
``items`` table.
"""

import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import duckdb
import structlog

from duckdb_explorer import metrics
from duckdb_explorer.paths import MEMORY_PATH, is_memory_path

logger = structlog.get_logger()

DEFAULT_MAX_POOL_SIZE = 10

AUDIT_TABLE_PREFIX = "_meta_"
BACKUP_HISTORY_TABLE = "_meta_backup_history"
QUERY_LOG_TABLE = "_meta_query_log"


# ============================================
# Schema definitions
# ============================================

DEMO_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY,
    name VARCHAR,
    value INTEGER
);

INSERT OR REPLACE INTO items (id, name, value) VALUES
    (1, 'Alpha', 10),
    (2, 'Bravo', 25),
    (3, 'Charlie', 5),
    (4, 'Delta', 30),
    (5, 'Echo', 15),
    (6, 'Foxtrot', 40),
    (7, 'Golf', 20);
"""

AUDIT_SCHEMA = f"""
CREATE SEQUENCE IF NOT EXISTS {BACKUP_HISTORY_TABLE}_seq;

CREATE TABLE IF NOT EXISTS {BACKUP_HISTORY_TABLE} (
    id INTEGER PRIMARY KEY DEFAULT nextval('{BACKUP_HISTORY_TABLE}_seq'),
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    backup_path VARCHAR,
    backup_size_bytes BIGINT,
    status VARCHAR
);

CREATE SEQUENCE IF NOT EXISTS {QUERY_LOG_TABLE}_seq;

CREATE TABLE IF NOT EXISTS {QUERY_LOG_TABLE} (
    id INTEGER PRIMARY KEY DEFAULT nextval('{QUERY_LOG_TABLE}_seq'),
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    query TEXT,
    execution_time_ms INTEGER,
    row_count INTEGER
);
"""


# ============================================
# Row helpers
# ============================================


def fetch_rows(
    conn: duckdb.DuckDBPyConnection, sql: str, params: list | dict | None = None
) -> list[dict[str, Any]]:
    """Execute a statement and return rows as column-name -> value dicts."""
    if params:
        result = conn.execute(sql, params)
    else:
        result = conn.execute(sql)

    if result.description is None:
        return []

    columns = [desc[0] for desc in result.description]
    return [dict(zip(columns, row)) for row in result.fetchall()]


def serialize_value(val: Any) -> Any:
    """Serialize a value for JSON response."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.isoformat()
    if isinstance(val, list):
        return [serialize_value(v) for v in val]
    if isinstance(val, dict):
        return {str(k): serialize_value(v) for k, v in val.items()}
    if isinstance(val, (str, int, float, bool)):
        return val
    return str(val)


def serialize_row(row: dict[str, Any]) -> dict[str, Any]:
    return {key: serialize_value(val) for key, val in row.items()}


# ============================================
# Connection pool
# ============================================


@dataclass
class PoolEntry:
    """One open connection and its access-time bookkeeping."""

    path: str
    connection: duckdb.DuckDBPyConnection
    last_accessed: float


class ConnectionPool:
    """
    Keyed store of open DuckDB connections.

    The pool is the only owner of the connections it hands out: callers must
    never close them directly, use ``close()`` instead.

    Thread-safe: the entry map and the active path are guarded by a
    re-entrant lock, so a connection is opened at most once per path even
    when requests arrive from worker threads.

    With ``exclusive_active_database`` enabled, opening a database that is not
    yet pooled first closes the currently active one, so only one database is
    kept warm from the caller's point of view.
    """

    def __init__(
        self,
        max_pool_size: int = DEFAULT_MAX_POOL_SIZE,
        exclusive_active_database: bool = True,
        clock: Callable[[], float] = time.monotonic,
        connect: Callable[[str], duckdb.DuckDBPyConnection] = duckdb.connect,
    ) -> None:
        if max_pool_size < 1:
            raise ValueError("max_pool_size must be at least 1")

        self._max_pool_size = max_pool_size
        self._exclusive = exclusive_active_database
        self._clock = clock
        self._connect = connect
        self._entries: dict[str, PoolEntry] = {}
        self._active_path: str | None = None
        self._lock = threading.RLock()

    # ========================================
    # Introspection
    # ========================================

    @property
    def active_path(self) -> str | None:
        """Path of the database most recently opened or reused."""
        with self._lock:
            return self._active_path

    @property
    def max_pool_size(self) -> int:
        return self._max_pool_size

    def default_path(self) -> str:
        """Path used when a request does not name a database."""
        with self._lock:
            return self._active_path or MEMORY_PATH

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def last_accessed(self, path: str) -> float | None:
        with self._lock:
            entry = self._entries.get(path)
            return entry.last_accessed if entry else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries

    # ========================================
    # Acquire / close
    # ========================================

    def acquire(self, path: str) -> duckdb.DuckDBPyConnection:
        """
        Return the pooled connection for ``path``, opening it if needed.

        Opening a new database may first close the active database (exclusive
        mode) and/or the least recently used entry (pool full).
        """
        with self._lock:
            entry = self._entries.get(path)
            if entry is not None:
                entry.last_accessed = self._clock()
                self._active_path = path
                metrics.POOL_ACQUIRE_TOTAL.labels(result="hit").inc()
                logger.debug("pool_connection_reused", path=path)
                return entry.connection

            if (
                self._exclusive
                and self._active_path is not None
                and self._active_path != path
                and self._active_path in self._entries
            ):
                logger.info(
                    "pool_switching_database",
                    from_path=self._active_path,
                    to_path=path,
                )
                self._close_entry(self._active_path, reason="switch")

            if len(self._entries) >= self._max_pool_size:
                oldest = min(self._entries.values(), key=lambda e: e.last_accessed)
                logger.info(
                    "pool_evicting_lru",
                    path=oldest.path,
                    pool_size=len(self._entries),
                )
                self._close_entry(oldest.path, reason="lru")

            try:
                conn = self._open(path)
            except Exception as e:
                metrics.POOL_ACQUIRE_TOTAL.labels(result="error").inc()
                logger.error("pool_open_failed", path=path, error=str(e))
                raise

            self._entries[path] = PoolEntry(
                path=path, connection=conn, last_accessed=self._clock()
            )
            self._active_path = path
            metrics.POOL_ACQUIRE_TOTAL.labels(result="miss").inc()
            metrics.POOL_CONNECTIONS_OPEN.set(len(self._entries))
            logger.info(
                "pool_connection_opened", path=path, pool_size=len(self._entries)
            )
            return conn

    def close(self, path: str | None = None) -> bool:
        """
        Close the entry for ``path`` (default: active database or memory).

        Returns True when nothing needed closing or the close succeeded, and
        False if closing the connection raised. Never raises.
        """
        with self._lock:
            target = path or self._active_path or MEMORY_PATH
            return self._close_entry(target, reason="explicit")

    def reap_idle(self, idle_timeout: float) -> list[str]:
        """Close every entry unused for more than ``idle_timeout`` seconds."""
        with self._lock:
            now = self._clock()
            idle = [
                entry
                for entry in self._entries.values()
                if now - entry.last_accessed > idle_timeout
            ]
            for entry in idle:
                logger.info(
                    "idle_connection_reaping",
                    path=entry.path,
                    idle_seconds=round(now - entry.last_accessed, 1),
                )
                self._close_entry(entry.path, reason="idle")
            return [entry.path for entry in idle]

    def close_all(self) -> None:
        """Close every pooled connection (service shutdown)."""
        with self._lock:
            for path in list(self._entries):
                self._close_entry(path, reason="shutdown")

    # ========================================
    # Internals
    # ========================================

    def _open(self, path: str) -> duckdb.DuckDBPyConnection:
        """Open a connection and bootstrap its schema."""
        if not is_memory_path(path):
            parent = os.path.dirname(path)
            if parent and not os.path.isdir(parent):
                os.makedirs(parent, exist_ok=True)
                logger.info("database_dir_created", path=parent)

        logger.info("pool_opening_database", path=path)
        conn = self._connect(path)

        if is_memory_path(path):
            try:
                conn.execute(DEMO_SCHEMA)
            except Exception:
                conn.close()
                raise
        else:
            try:
                conn.execute(AUDIT_SCHEMA)
            except Exception as e:
                logger.warning("audit_tables_create_failed", path=path, error=str(e))

        return conn

    def _close_entry(self, path: str, reason: str) -> bool:
        """Remove and close one entry. Caller holds the lock."""
        entry = self._entries.pop(path, None)
        if entry is None:
            return True

        if self._active_path == path:
            self._active_path = None
        metrics.POOL_CONNECTIONS_OPEN.set(len(self._entries))

        try:
            entry.connection.close()
        except Exception as e:
            logger.error(
                "pool_connection_close_failed", path=path, reason=reason, error=str(e)
            )
            return False

        metrics.POOL_CLOSE_TOTAL.labels(reason=reason).inc()
        logger.info("pool_connection_closed", path=path, reason=reason)
        return True

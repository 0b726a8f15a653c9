"""DatabaseExplorer - the long-lived service behind the HTTP handlers.

Owns the connection pool and wires it to query execution, table discovery
and backups. One instance is created per application (see ``main.lifespan``)
and injected into routers via ``dependencies.get_explorer``.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from duckdb_explorer.backup import BackupResult, BackupService
from duckdb_explorer.config import Settings
from duckdb_explorer.database import DEFAULT_MAX_POOL_SIZE, ConnectionPool
from duckdb_explorer.discovery import FALLBACK_TABLE, TableDescriptor, list_tables
from duckdb_explorer.errors import InvalidDatabaseFileError
from duckdb_explorer.paths import MEMORY_PATH, is_memory_path, resolve_db_path
from duckdb_explorer.query import QueryExecutor

logger = structlog.get_logger()

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Replace everything except letters, digits, '.', '_' and '-' with '_'."""
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


@dataclass
class OpenResult:
    success: bool
    path: str | None = None
    is_new: bool = False
    table_count: int = 0
    tables: list[str] = field(default_factory=list)
    message: str | None = None


class DatabaseExplorer:
    """Facade over the connection pool for the HTTP layer."""

    def __init__(
        self,
        data_dir: str | Path,
        meta_dir: str | Path | None = None,
        max_pool_size: int = DEFAULT_MAX_POOL_SIZE,
        exclusive_active_database: bool = True,
        pool: ConnectionPool | None = None,
    ) -> None:
        self.data_dir = Path(os.path.abspath(data_dir))
        self.meta_dir = Path(meta_dir) if meta_dir else self.data_dir / "meta"
        self.pool = pool or ConnectionPool(
            max_pool_size=max_pool_size,
            exclusive_active_database=exclusive_active_database,
        )
        self.queries = QueryExecutor(self.pool)
        self.backups = BackupService(self.pool, self.meta_dir)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseExplorer":
        return cls(
            data_dir=settings.data_dir,
            meta_dir=settings.meta_dir,
            max_pool_size=settings.max_pool_size,
            exclusive_active_database=settings.exclusive_active_database,
        )

    def ensure_directories(self) -> None:
        """Create the data and backup directories."""
        for path in (self.data_dir, self.meta_dir):
            if not path.exists():
                path.mkdir(parents=True, exist_ok=True)
                logger.info("created_directory", path=str(path))

    def resolve(self, value: str | None) -> str:
        return resolve_db_path(value, self.pool.active_path, self.data_dir)

    # ========================================
    # Operations
    # ========================================

    def open_database(self, filename: str) -> OpenResult:
        """
        Open (or create) a database and make it the active one.

        ``is_new`` reflects whether the file existed before this call, not
        whether the pool already held a connection to it.
        """
        logger.info("open_database_start", filename=filename)

        try:
            path = self.resolve(filename)
            is_new = not is_memory_path(path) and not os.path.exists(path)
            if is_new:
                logger.info("creating_new_database", path=path)
            conn = self.pool.acquire(path)
        except Exception as e:
            logger.error("open_database_failed", filename=filename, error=str(e))
            return OpenResult(success=False, message=f"Failed to open database: {e}")

        tables = [table.name for table in list_tables(conn)]
        logger.info(
            "open_database_complete", path=path, is_new=is_new, table_count=len(tables)
        )

        return OpenResult(
            success=True,
            path=path,
            is_new=is_new,
            table_count=len(tables),
            tables=tables,
        )

    def list_tables(self, db_path: str | None = None) -> list[TableDescriptor]:
        """List tables of ``db_path`` if given, else of the active database."""
        if db_path:
            try:
                self.pool.acquire(self.resolve(db_path))
            except Exception as e:
                # Fall through to the active database
                logger.warning("list_tables_connect_failed", db_path=db_path, error=str(e))

        try:
            conn = self.pool.acquire(self.pool.default_path())
        except Exception as e:
            logger.error("list_tables_failed", error=str(e))
            return [TableDescriptor(FALLBACK_TABLE)]

        return list_tables(conn)

    def execute(
        self,
        sql: str,
        params: list | dict | None = None,
        db_path: str | None = None,
    ) -> list[dict[str, Any]]:
        return self.queries.execute(sql, params, self.resolve(db_path))

    def backup(self, filename: str) -> BackupResult:
        return self.backups.backup(self.resolve(filename))

    def database_info(self) -> dict[str, Any]:
        return {
            "connected": len(self.pool) > 0,
            "path": self.pool.active_path or MEMORY_PATH,
        }

    def close_database(self, db_path: str | None = None) -> bool:
        return self.pool.close(self.resolve(db_path) if db_path else None)

    def register_upload(self, path: Path) -> str:
        """
        Validate an uploaded file by opening it through the pool.

        Invalid files are deleted so they do not linger in the data directory.
        """
        canonical = self.resolve(str(path))
        try:
            self.pool.acquire(canonical)
        except Exception as e:
            logger.warning("upload_validation_failed", path=canonical, error=str(e))
            try:
                os.remove(canonical)
            except OSError as rm_error:
                logger.error("upload_cleanup_failed", path=canonical, error=str(rm_error))
            raise InvalidDatabaseFileError(f"Invalid DuckDB database file: {e}") from e

        logger.info("upload_registered", path=canonical)
        return canonical

    def shutdown(self) -> None:
        self.pool.close_all()

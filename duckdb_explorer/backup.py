"""Database backups: checkpoint a live database and copy it into ``meta/``."""

import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import duckdb
import structlog

from duckdb_explorer import metrics
from duckdb_explorer.database import BACKUP_HISTORY_TABLE, ConnectionPool
from duckdb_explorer.paths import is_memory_path

logger = structlog.get_logger()


@dataclass
class BackupResult:
    success: bool
    path: str | None = None
    size_bytes: int | None = None
    message: str | None = None


def backup_filename(db_path: str, now: datetime) -> str:
    """
    Build ``<stem>_backup_<timestamp>.duckdb``.

    The timestamp is ISO-8601 UTC with millisecond precision, ':' and '.'
    replaced by '-' (e.g. ``2024-05-01T10-20-30-123Z``).
    """
    stamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    stamp = stamp.replace("+00:00", "Z").replace(":", "-").replace(".", "-")
    return f"{Path(db_path).stem}_backup_{stamp}.duckdb"


class BackupService:
    """Creates file copies of pooled databases."""

    def __init__(
        self,
        pool: ConnectionPool,
        meta_dir: str | Path,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._pool = pool
        self._meta_dir = Path(meta_dir)
        self._now = now

    def backup(self, path: str) -> BackupResult:
        """
        Back up the database at canonical ``path``.

        The connection is checkpointed before the file is copied so the copy
        contains every committed write. Failures are returned, not raised.
        """
        if not path or is_memory_path(path):
            metrics.BACKUPS_TOTAL.labels(status="rejected").inc()
            return BackupResult(
                success=False, message="Cannot backup in-memory database"
            )

        try:
            conn = self._pool.acquire(path)

            # Flush the WAL into the main file before copying it
            conn.execute("CHECKPOINT")

            self._meta_dir.mkdir(parents=True, exist_ok=True)
            backup_path = self._meta_dir / backup_filename(path, self._now())
            shutil.copyfile(path, backup_path)
            size_bytes = backup_path.stat().st_size
        except Exception as e:
            metrics.BACKUPS_TOTAL.labels(status="error").inc()
            logger.error("backup_failed", path=path, error=str(e))
            return BackupResult(success=False, message=f"Backup failed: {e}")

        self._record_backup(conn, backup_path, size_bytes)

        metrics.BACKUPS_TOTAL.labels(status="success").inc()
        metrics.BACKUP_BYTES_TOTAL.inc(size_bytes)
        logger.info(
            "backup_created",
            path=path,
            backup_path=str(backup_path),
            size_bytes=size_bytes,
        )

        return BackupResult(success=True, path=str(backup_path), size_bytes=size_bytes)

    def _record_backup(
        self, conn: duckdb.DuckDBPyConnection, backup_path: Path, size_bytes: int
    ) -> None:
        try:
            conn.execute(
                f"INSERT INTO {BACKUP_HISTORY_TABLE} (backup_path, backup_size_bytes, status) "
                "VALUES (?, ?, ?)",
                [str(backup_path), size_bytes, "success"],
            )
        except Exception as e:
            logger.warning("backup_record_failed", backup_path=str(backup_path), error=str(e))

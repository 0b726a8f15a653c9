"""Database endpoints: query, list tables, info, open, backup, upload.

Thin request/response marshaling over ``DatabaseExplorer``.
"""

import os
import tempfile
import time
from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import JSONResponse

from duckdb_explorer import metrics
from duckdb_explorer.config import settings
from duckdb_explorer.database import serialize_row
from duckdb_explorer.dependencies import get_explorer
from duckdb_explorer.discovery import FALLBACK_TABLE
from duckdb_explorer.errors import FileTooLargeError, InvalidDatabaseFileError, QueryError
from duckdb_explorer.models.responses import (
    BackupRequest,
    BackupResponse,
    DatabaseInfoResponse,
    ErrorResponse,
    OpenDatabaseRequest,
    OpenDatabaseResponse,
    QueryErrorResponse,
    QueryRequest,
    QueryResponse,
    TableInfo,
    TablesResponse,
    UploadResponse,
)
from duckdb_explorer.query import (
    extract_target_table,
    is_missing_table_error,
    parse_available_tables,
)
from duckdb_explorer.service import DatabaseExplorer, sanitize_filename

logger = structlog.get_logger()
router = APIRouter(prefix=settings.api_prefix, tags=["database"])

UPLOAD_CHUNK_SIZE = 1024 * 1024
DEFAULT_UPLOAD_NAME = "database.duckdb"


def _error_response(status_code: int, error: str, message: str, **details) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error, message=message, details=details or None
        ).model_dump(exclude_none=True),
    )


@router.post(
    "/query",
    response_model=QueryResponse,
    responses={400: {"model": QueryErrorResponse}},
    summary="Run a query",
    description="Execute SQL against the given or active database.",
)
async def run_query(
    request: QueryRequest,
    explorer: DatabaseExplorer = Depends(get_explorer),
):
    """
    Execute an ad-hoc query.

    Missing-relation errors are reported as 'Table not found' together with
    the tables that do exist, so the UI can suggest one.
    """
    if not request.sql:
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "validation_error", "SQL query is required"
        )

    target_table = extract_target_table(request.sql)

    try:
        rows = explorer.execute(request.sql, request.params, request.db_path)
    except QueryError as e:
        message = str(e)

        if not is_missing_table_error(message):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=QueryErrorResponse(error="Query error", message=message).model_dump(
                    by_alias=True, exclude_none=True
                ),
            )

        available_tables = parse_available_tables(message)
        if not available_tables:
            available_tables = [table.name for table in explorer.list_tables()]

        logger.info(
            "query_table_not_found",
            target_table=target_table,
            available_tables=available_tables,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=QueryErrorResponse(
                error="Table not found",
                message=message,
                target_table=target_table,
                available_tables=available_tables or [FALLBACK_TABLE],
            ).model_dump(by_alias=True),
        )

    return QueryResponse(results=[serialize_row(row) for row in rows])


@router.get(
    "/tables",
    response_model=TablesResponse,
    summary="List tables",
    description="List user tables of the given or active database.",
)
async def get_tables(
    db_path: str | None = Query(default=None, alias="dbPath"),
    explorer: DatabaseExplorer = Depends(get_explorer),
) -> TablesResponse:
    tables = explorer.list_tables(db_path)
    logger.info("tables_listed", table_count=len(tables))
    return TablesResponse(tables=[TableInfo(**table.to_dict()) for table in tables])


@router.get(
    "/info",
    response_model=DatabaseInfoResponse,
    summary="Connection info",
)
async def get_info(
    explorer: DatabaseExplorer = Depends(get_explorer),
) -> DatabaseInfoResponse:
    return DatabaseInfoResponse(**explorer.database_info())


@router.post(
    "/open",
    response_model=OpenDatabaseResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    summary="Open database",
    description="Open a database file, creating it if it does not exist.",
)
async def open_database(
    request: OpenDatabaseRequest,
    explorer: DatabaseExplorer = Depends(get_explorer),
):
    if not request.filename:
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "validation_error", "Filename is required"
        )

    result = explorer.open_database(request.filename)
    if not result.success:
        return OpenDatabaseResponse(success=False, message=result.message)

    return OpenDatabaseResponse(
        success=True,
        path=result.path,
        is_new=result.is_new,
        table_count=result.table_count,
        tables=result.tables,
    )


@router.post(
    "/backup",
    response_model=BackupResponse,
    response_model_exclude_none=True,
    responses={400: {"model": BackupResponse}},
    summary="Back up database",
    description="Checkpoint a database and copy it into the meta directory.",
)
async def backup_database(
    request: BackupRequest,
    explorer: DatabaseExplorer = Depends(get_explorer),
):
    if not request.filename:
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "validation_error", "Filename is required"
        )

    result = explorer.backup(request.filename)
    response = BackupResponse(
        success=result.success,
        path=result.path,
        size_bytes=result.size_bytes,
        message=result.message,
    )

    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=response.model_dump(by_alias=True, exclude_none=True),
        )
    return response


async def _stream_upload(file: UploadFile, target, max_bytes: int) -> int:
    """Copy ``file`` into ``target`` in chunks, refusing more than ``max_bytes``."""
    size_bytes = 0
    while chunk := await file.read(UPLOAD_CHUNK_SIZE):
        size_bytes += len(chunk)
        if size_bytes > max_bytes:
            raise FileTooLargeError(max_bytes)
        target.write(chunk)
    return size_bytes


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
    summary="Upload database file",
    description="Upload a DuckDB file into the data directory and open it.",
)
async def upload_database(
    file: UploadFile | None = File(default=None),
    explorer: DatabaseExplorer = Depends(get_explorer),
):
    """
    Stage an uploaded database file and validate it by opening it.

    The upload is streamed into a ``.part`` file next to its destination and
    only moved over an existing database once the size limit has been
    checked. Files that DuckDB cannot open are deleted again.
    """
    if file is None:
        metrics.UPLOADS_TOTAL.labels(status="rejected").inc()
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "validation_error", "No file uploaded"
        )

    start_time = time.time()
    safe_name = sanitize_filename(file.filename or DEFAULT_UPLOAD_NAME)

    logger.info("upload_database_start", filename=file.filename, safe_name=safe_name)

    if not safe_name.lower().endswith(tuple(settings.allowed_upload_extensions)):
        metrics.UPLOADS_TOTAL.labels(status="rejected").inc()
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "invalid_file_extension",
            "Please upload a DuckDB file ("
            + " or ".join(settings.allowed_upload_extensions)
            + ")",
            filename=safe_name,
        )

    explorer.ensure_directories()
    final_path = explorer.data_dir / safe_name

    staging = tempfile.NamedTemporaryFile(
        dir=explorer.data_dir, prefix=f".{safe_name}.", suffix=".part", delete=False
    )
    staging_path = Path(staging.name)
    try:
        with staging:
            size_bytes = await _stream_upload(file, staging, settings.upload_max_bytes)
    except FileTooLargeError as e:
        staging_path.unlink(missing_ok=True)
        metrics.UPLOADS_TOTAL.labels(status="too_large").inc()
        logger.warning("upload_too_large", filename=safe_name, max_bytes=e.max_bytes)
        return _error_response(
            413,
            "file_too_large",
            str(e),
            max_size_bytes=e.max_bytes,
        )
    except OSError:
        staging_path.unlink(missing_ok=True)
        metrics.UPLOADS_TOTAL.labels(status="error").inc()
        raise

    # Never replace a file underneath an open connection
    explorer.close_database(str(final_path))
    try:
        os.replace(staging_path, final_path)
    except OSError:
        staging_path.unlink(missing_ok=True)
        metrics.UPLOADS_TOTAL.labels(status="error").inc()
        raise

    try:
        path = explorer.register_upload(final_path)
    except InvalidDatabaseFileError as e:
        metrics.UPLOADS_TOTAL.labels(status="invalid").inc()
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "invalid_database_file", str(e), filename=safe_name
        )

    metrics.UPLOADS_TOTAL.labels(status="success").inc()
    logger.info(
        "upload_database_complete",
        path=path,
        size_bytes=size_bytes,
        duration_ms=int((time.time() - start_time) * 1000),
    )
    return UploadResponse(success=True, filename=safe_name, path=path)

"""Request and response models for API endpoints.

Field names on the wire follow the UI's camelCase convention (``dbPath``,
``isNew``); Python attributes stay snake_case via aliases.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status: 'healthy' or 'unhealthy'")
    version: str = Field(description="API version")
    storage_available: bool = Field(description="Whether storage paths are accessible")
    details: dict[str, bool] | None = Field(
        default=None, description="Detailed status of each storage path"
    )
    pool_size: int = Field(default=0, description="Number of open pooled connections")
    max_pool_size: int | None = Field(default=None, description="Pool capacity")
    active_path: str | None = Field(
        default=None, description="Database used when a request names none"
    )


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Error type")
    message: str = Field(description="Error message")
    details: dict | None = Field(default=None, description="Additional error details")


# ============================================
# Query models
# ============================================


class QueryRequest(BaseModel):
    """Request to run an ad-hoc query."""

    model_config = ConfigDict(populate_by_name=True)

    sql: str | None = Field(default=None, description="SQL to execute")
    db_path: str | None = Field(
        default=None,
        alias="dbPath",
        description="Database to run against (default: the active database)",
    )
    params: list[Any] | None = Field(
        default=None, description="Positional parameters bound to '?' placeholders"
    )


class QueryResponse(BaseModel):
    """Query results."""

    results: list[dict[str, Any]] = Field(description="Rows as column -> value objects")


class QueryErrorResponse(BaseModel):
    """Query failure, with table hints for missing-relation errors."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(description="'Table not found' or 'Query error'")
    message: str = Field(description="Engine error, possibly with 'Available tables: ...'")
    target_table: str | None = Field(
        default=None, alias="targetTable", description="Relation named after FROM"
    )
    available_tables: list[str] | None = Field(
        default=None, alias="availableTables", description="Tables that do exist"
    )


# ============================================
# Table / info models
# ============================================


class TableInfo(BaseModel):
    """A user-visible table."""

    name: str = Field(description="Table name, schema-qualified when discovered per schema")
    type: str = Field(default="table", description="Always 'table'")


class TablesResponse(BaseModel):
    """Table listing."""

    tables: list[TableInfo]


class DatabaseInfoResponse(BaseModel):
    """Current connection state."""

    connected: bool = Field(description="Whether the pool holds any connection")
    path: str = Field(description="Active database path or ':memory:'")


# ============================================
# Open / backup / upload models
# ============================================


class OpenDatabaseRequest(BaseModel):
    """Request to open or create a database file."""

    filename: str | None = Field(default=None, description="File name or absolute path")


class OpenDatabaseResponse(BaseModel):
    """Result of opening a database."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    path: str | None = None
    is_new: bool | None = Field(default=None, alias="isNew")
    table_count: int | None = Field(default=None, alias="tableCount")
    tables: list[str] | None = None
    message: str | None = None


class BackupRequest(BaseModel):
    """Request to back up a database file."""

    filename: str | None = Field(default=None, description="Database to back up")


class BackupResponse(BaseModel):
    """Result of a backup."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    path: str | None = Field(default=None, description="Backup file location")
    size_bytes: int | None = Field(default=None, alias="sizeBytes")
    message: str | None = None


class UploadResponse(BaseModel):
    """Result of a database file upload."""

    success: bool
    filename: str = Field(description="Sanitized file name")
    path: str = Field(description="Location inside the data directory")

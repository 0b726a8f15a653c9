"""DuckDB Explorer - pooled DuckDB connections behind a small HTTP API."""

__version__ = "0.1.0"

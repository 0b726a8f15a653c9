"""Table discovery.

DuckDB exposes several introspection surfaces and not every one of them
works on every database or engine version. ``list_tables`` walks an ordered
chain of strategies and keeps the first non-empty answer; when nothing works
it returns the demo ``items`` table.
"""

from dataclasses import dataclass
from typing import Callable

import duckdb
import structlog

from duckdb_explorer import metrics
from duckdb_explorer.database import AUDIT_TABLE_PREFIX, fetch_rows

logger = structlog.get_logger()

FALLBACK_TABLE = "items"
SYSTEM_SCHEMAS = ("information_schema", "pg_catalog")


@dataclass(frozen=True)
class TableDescriptor:
    """A user-visible table."""

    name: str
    kind: str = "table"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.kind}


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _is_user_table(name: str | None) -> bool:
    """Hide audit tables and SQLite-compat catalog entries."""
    if not name:
        return False
    bare = name.rsplit(".", 1)[-1]
    return not bare.startswith(AUDIT_TABLE_PREFIX) and not bare.startswith("sqlite_")


# ============================================
# Strategies
# ============================================


def _from_sqlite_master(conn: duckdb.DuckDBPyConnection) -> list[str]:
    rows = fetch_rows(
        conn,
        r"""
        SELECT name FROM sqlite_master
        WHERE type = 'table'
          AND name NOT LIKE '\_meta\_%' ESCAPE '\'
          AND name NOT LIKE 'sqlite\_%' ESCAPE '\'
        ORDER BY name
        """,
    )
    return [row["name"] for row in rows]


def _from_information_schema(conn: duckdb.DuckDBPyConnection) -> list[str]:
    rows = fetch_rows(
        conn,
        """
        SELECT table_name AS name
        FROM information_schema.tables
        WHERE table_schema NOT IN ('pg_catalog', 'information_schema')
        ORDER BY table_name
        """,
    )
    return [row["name"] for row in rows]


def _from_show_tables(conn: duckdb.DuckDBPyConnection) -> list[str]:
    rows = fetch_rows(conn, "SHOW TABLES")
    return [row.get("name") or row.get("table_name") for row in rows]


def _from_schemas(conn: duckdb.DuckDBPyConnection) -> list[str]:
    schemas = fetch_rows(conn, "SHOW SCHEMAS")

    names: list[str] = []
    for schema in schemas:
        schema_name = schema.get("name") or schema.get("schema_name")
        if not schema_name or schema_name in SYSTEM_SCHEMAS:
            continue

        try:
            rows = fetch_rows(conn, f"SHOW TABLES FROM {_quote_identifier(schema_name)}")
        except Exception as e:
            logger.debug(
                "table_discovery_schema_failed", schema=schema_name, error=str(e)
            )
            continue

        for row in rows:
            table_name = row.get("name") or row.get("table_name")
            if table_name:
                names.append(f"{schema_name}.{table_name}")

    return names


STRATEGIES: tuple[tuple[str, Callable[[duckdb.DuckDBPyConnection], list[str]]], ...] = (
    ("sqlite_master", _from_sqlite_master),
    ("information_schema", _from_information_schema),
    ("show_tables", _from_show_tables),
    ("schemas", _from_schemas),
)


def list_tables(conn: duckdb.DuckDBPyConnection) -> list[TableDescriptor]:
    """
    List user tables on ``conn``. Never raises.

    Each strategy runs independently: an exception or an empty result moves
    on to the next one.
    """
    for strategy_name, strategy in STRATEGIES:
        try:
            names = [name for name in strategy(conn) if _is_user_table(name)]
        except Exception as e:
            logger.debug(
                "table_discovery_strategy_failed", strategy=strategy_name, error=str(e)
            )
            continue

        if names:
            metrics.TABLE_DISCOVERY_TOTAL.labels(strategy=strategy_name).inc()
            logger.debug(
                "tables_discovered", strategy=strategy_name, table_count=len(names)
            )
            return [TableDescriptor(name) for name in dict.fromkeys(names)]

        logger.debug("table_discovery_strategy_empty", strategy=strategy_name)

    metrics.TABLE_DISCOVERY_TOTAL.labels(strategy="fallback").inc()
    logger.info("table_discovery_fallback", table=FALLBACK_TABLE)
    return [TableDescriptor(FALLBACK_TABLE)]

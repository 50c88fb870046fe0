"""Table listing and cached column metadata."""

from __future__ import annotations

import logging
import re

from sqlv_cli.shared.exceptions import SchemaError

from .handle import DatabaseHandle
from .quoting import quote_identifier
from .types import ColumnInfo, TableInfo, TableSchema

logger = logging.getLogger(__name__)

_WITHOUT_ROWID_RE = re.compile(r"\bWITHOUT\s+ROWID\b", re.IGNORECASE)


def list_tables(handle: DatabaseHandle) -> list[TableInfo]:
    """User tables in name order; SQLite's internal tables are skipped."""
    rows = handle.fetch_all(
        """
        SELECT name, sql
        FROM sqlite_master
        WHERE type = 'table'
        AND name NOT LIKE 'sqlite_%'
        ORDER BY name
        """
    )
    return [TableInfo(name=row[0], sql=row[1]) for row in rows]


def _declares_without_rowid(sql: str | None) -> bool:
    if not sql:
        return False
    # Table options follow the closing parenthesis of the column list.
    tail = sql[sql.rfind(")"):]
    return bool(_WITHOUT_ROWID_RE.search(tail))


def fetch_schema(handle: DatabaseHandle, table: str) -> TableSchema:
    """Read a table's schema straight from the engine."""
    row = handle.fetch_all(
        "SELECT name, type, sql FROM sqlite_master "
        "WHERE type IN ('table', 'view') AND name = ? COLLATE NOCASE",
        (table,),
    )
    if not row:
        raise SchemaError(f"Table '{table}' does not exist in database {handle.id}.")
    name, object_type, sql = row[0]

    pragma_rows = handle.fetch_all(f"PRAGMA table_info({quote_identifier(name)})")
    columns = tuple(
        ColumnInfo(
            ordinal=int(cid),
            name=str(column_name),
            declared_type=str(declared_type or ""),
            not_null=bool(not_null),
            default_value=default_value,
            primary_key_ordinal=int(pk),
        )
        for cid, column_name, declared_type, not_null, default_value, pk in pragma_rows
    )
    shadowed = any(column.name.lower() == "rowid" for column in columns)
    has_rowid = object_type == "table" and not _declares_without_rowid(sql) and not shadowed
    return TableSchema(
        name=str(name),
        columns=tuple(sorted(columns, key=lambda column: column.ordinal)),
        has_rowid=has_rowid,
        sql=sql,
    )


class SchemaCache:
    """Per-(database, table) schema cache, filled lazily.

    Entries live until ``invalidate`` is called; the cache does not watch for
    schema changes on its own.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], TableSchema] = {}

    def get_schema(self, handle: DatabaseHandle, table: str) -> TableSchema:
        key = (handle.id, table)
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        schema = fetch_schema(handle, table)
        self._entries[key] = schema
        logger.debug("Cached schema for %s.%s (%d columns)", handle.id, table, len(schema.columns))
        return schema

    def get_columns(self, handle: DatabaseHandle, table: str) -> tuple[ColumnInfo, ...]:
        return self.get_schema(handle, table).columns

    def invalidate(self, database_id: str, table: str | None = None) -> None:
        """Drop one table's entry, or every entry for ``database_id``."""
        if table is not None:
            self._entries.pop((database_id, table), None)
            return
        for key in [key for key in self._entries if key[0] == database_id]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

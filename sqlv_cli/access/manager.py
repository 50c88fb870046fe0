"""The data-access layer.

``DatabaseManager`` owns every loaded database handle, the active selection,
the schema cache and the result limiter. It is constructed once by the host
(the CLI builds one per invocation) and passed to whatever needs it; there is
no module-level instance.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlv_cli.shared.config import AppConfig, LimitSettings
from sqlv_cli.shared.exceptions import (
    CapacityError,
    DatabaseNotFoundError,
    EngineError,
    InvalidIdentifierError,
    PersistenceError,
    SchemaError,
    ValidationError,
)
from sqlv_cli.shared.session import load_session, remember_selection
from sqlv_cli.shared.storage import DatabaseStore, StoredDatabase

from .composer import compose_page, parse_sort
from .filters import ColumnFilter
from .handle import DatabaseHandle, open_image
from .identity import IdentityResult, NativeRowId, PrimaryKeyValues, derive_identifier, identifier_from_parts
from .limiter import ResultLimiter
from .mutator import TransactionalMutator
from .quoting import quote_identifier
from .schema import SchemaCache, list_tables
from .types import (
    ROWID_COLUMN,
    UNKNOWN_TOTAL,
    BrowseRequest,
    ColumnInfo,
    DatabaseInfo,
    LoadPreview,
    QueryResult,
    SortSpec,
    StorageInfo,
    TableInfo,
    TableSchema,
)

logger = logging.getLogger(__name__)

ONE_MIB = 1024 * 1024
ONE_GIB = 1024 * ONE_MIB
DEFAULT_PAGE_SIZE = 50
DISTINCT_VALUES_LIMIT = 1000

_UNSAFE_ID_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")
_LEADING_NOISE_RE = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/)*", re.DOTALL)
_DDL_KEYWORDS = {"CREATE", "ALTER", "DROP"}


def is_schema_change(sql: str) -> bool:
    """True when the statement starts with CREATE, ALTER or DROP."""
    body = _LEADING_NOISE_RE.sub("", sql, count=1)
    first_word = body.split(None, 1)[0].upper() if body.strip() else ""
    return first_word in _DDL_KEYWORDS


def _size_label(size_bytes: int) -> str:
    if size_bytes >= ONE_GIB:
        return f"{size_bytes / ONE_GIB:.1f}GB"
    return f"{size_bytes / ONE_MIB:.1f}MB"


class DatabaseManager:
    """Loaded databases plus every read and write operation against them."""

    def __init__(
        self,
        store: DatabaseStore | None = None,
        *,
        limits: LimitSettings | None = None,
        session_path: str | Path | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        foreign_keys: bool = False,
    ) -> None:
        limits = limits or LimitSettings(
            max_rows=1000,
            memory_optimizations=True,
            allow_large_files=False,
            max_database_bytes=200 * ONE_MIB,
        )
        self.store = store
        self.session_path = Path(session_path) if session_path else None
        self.limiter = ResultLimiter(limits.max_rows, limits.memory_optimizations)
        self.allow_large_files = limits.allow_large_files
        self.max_database_bytes = limits.max_database_bytes
        self.page_size = page_size
        self.foreign_keys = foreign_keys
        self.schema_cache = SchemaCache()
        self._handles: dict[str, DatabaseHandle] = {}
        self._active_id: str | None = None

    @classmethod
    def from_config(cls, config: AppConfig, *, restore: bool = True) -> DatabaseManager:
        manager = cls(
            DatabaseStore(config.storage.path),
            limits=config.limits,
            session_path=config.storage.session_path,
            page_size=config.browse.page_size,
            foreign_keys=config.engine.foreign_keys,
        )
        if restore:
            manager.restore()
        return manager

    # ------------------------------------------------------------------
    # Runtime configuration

    @property
    def max_rows(self) -> int:
        return self.limiter.max_rows

    @max_rows.setter
    def max_rows(self, value: int) -> None:
        self.limiter.max_rows = value

    @property
    def memory_optimizations(self) -> bool:
        return self.limiter.memory_optimizations

    @memory_optimizations.setter
    def memory_optimizations(self, enabled: bool) -> None:
        self.limiter.memory_optimizations = bool(enabled)

    # ------------------------------------------------------------------
    # Loading and selection

    def restore(self) -> list[str]:
        """Reopen every stored database and re-activate the last selection."""
        restored: list[str] = []
        if self.store is not None:
            for record in self.store.get_all():
                if record.id in self._handles:
                    continue
                try:
                    connection = open_image(record.data, foreign_keys=self.foreign_keys)
                except EngineError as exc:
                    logger.error("Failed to restore database %s: %s", record.id, exc)
                    self._forget_stored(record.id)
                    continue
                info = DatabaseInfo(
                    id=record.id,
                    name=record.name,
                    size_bytes=record.size_bytes,
                    uploaded_at=record.uploaded_at,
                    persisted=True,
                )
                self._handles[record.id] = DatabaseHandle(connection, info)
                restored.append(record.id)

        if self.session_path is not None and self._active_id is None:
            last_selected = load_session(self.session_path).last_selected_database
            if last_selected and last_selected in self._handles:
                self._active_id = last_selected
        logger.debug("Restored %d database(s); active=%s", len(restored), self._active_id)
        return restored

    def preview_load(self, size_bytes: int) -> LoadPreview:
        """Classify a file by size before attempting to load it."""
        label = _size_label(size_bytes)
        if size_bytes <= self.max_database_bytes:
            return LoadPreview(
                can_load=True,
                size_label=label,
                reason="File size is within safe limits for loading",
                suggestion="You can load this database normally",
            )
        if size_bytes <= ONE_GIB:
            return LoadPreview(
                can_load=False,
                size_label=label,
                reason="File is too large for safe loading but might work with large files allowed",
                suggestion=(
                    "Allow large files to load it in memory only (changes are not persisted), "
                    "or export a smaller subset of the data."
                ),
            )
        return LoadPreview(
            can_load=False,
            size_label=label,
            reason="File is too large for in-memory SQLite processing",
            suggestion=(
                "Use a desktop SQLite client, or export a smaller subset of your data "
                "(recent records, specific tables, or sampled data)."
            ),
        )

    def load_database(self, data: bytes, name: str, *, allow_large: bool | None = None) -> str:
        """Open ``data`` as a new database, make it active and return its id.

        Images above ``max_database_bytes`` raise ``CapacityError`` unless large
        files are allowed, in which case they are held in memory only
        (``DatabaseInfo.persisted`` is False).
        """
        size = len(data)
        allowed = self.allow_large_files if allow_large is None else allow_large
        oversized = size > self.max_database_bytes
        if oversized and not allowed:
            limit_mb = round(self.max_database_bytes / ONE_MIB)
            raise CapacityError(
                f"Databases larger than ~{limit_mb}MB cannot be loaded safely. "
                f"The selected file is {size / ONE_MIB:.1f}MB. "
                "Export a smaller subset, allow large files, or use a desktop SQLite client."
            )

        connection = open_image(data, foreign_keys=self.foreign_keys)
        database_id = self._new_database_id(name)
        info = DatabaseInfo(
            id=database_id,
            name=name,
            size_bytes=size,
            uploaded_at=datetime.now(timezone.utc).isoformat(),
            persisted=self.store is not None and not oversized,
        )
        handle = DatabaseHandle(connection, info)

        if info.persisted:
            try:
                self._store_put(info, bytes(data))
            except PersistenceError:
                handle.close()
                raise
        else:
            logger.warning(
                "Database %s (%s) is held in memory only; changes will not be persisted",
                database_id,
                _size_label(size),
            )

        self._handles[database_id] = handle
        self.select_database(database_id)
        return database_id

    def select_database(self, database_id: str) -> None:
        if database_id not in self._handles:
            raise DatabaseNotFoundError(f"Database with ID {database_id} not found")
        self._active_id = database_id
        if self.session_path is not None:
            remember_selection(self.session_path, database_id)

    def remove_database(self, database_id: str) -> None:
        """Close and forget a database; unknown ids are ignored."""
        handle = self._handles.pop(database_id, None)
        if handle is None:
            return
        handle.close()
        self.schema_cache.invalidate(database_id)
        if handle.info.persisted:
            self._forget_stored(database_id)
        if self._active_id == database_id:
            self._active_id = None
            if self.session_path is not None:
                remember_selection(self.session_path, None)

    def list_databases(self) -> list[DatabaseInfo]:
        return [handle.info for handle in self._handles.values()]

    @property
    def active_database_id(self) -> str | None:
        return self._active_id

    @property
    def active_database(self) -> DatabaseInfo | None:
        if self._active_id is None:
            return None
        return self._handles[self._active_id].info

    def database_info(self, database_id: str | None = None) -> DatabaseInfo:
        return self._handle(database_id).info

    def export_database(self, database_id: str | None = None) -> bytes:
        return self._handle(database_id).export_image()

    def storage_info(self) -> StorageInfo:
        if self.store is None:
            return StorageInfo(used=None, quota=None, database_count=0)
        estimate = self.store.estimate_usage()
        return StorageInfo(used=estimate.used, quota=estimate.quota, database_count=self.store.count())

    def clear_all(self) -> None:
        """Close every database and wipe the durable store."""
        self.close()
        if self.store is not None:
            self.store.clear()
        if self.session_path is not None:
            remember_selection(self.session_path, None)

    def close(self) -> None:
        """Close every handle; stored images are kept."""
        for handle in self._handles.values():
            handle.close()
        self._handles.clear()
        self.schema_cache = SchemaCache()
        self._active_id = None

    # ------------------------------------------------------------------
    # Reads

    def list_tables(self, database_id: str | None = None) -> list[TableInfo]:
        return list_tables(self._handle(database_id))

    def count_rows(self, table: str, database_id: str | None = None) -> int:
        handle = self._handle(database_id)
        schema = self.schema_cache.get_schema(handle, table)
        return int(handle.fetch_scalar(f"SELECT COUNT(*) FROM {quote_identifier(schema.name)}") or 0)

    def get_schema(self, table: str, database_id: str | None = None) -> TableSchema:
        return self.schema_cache.get_schema(self._handle(database_id), table)

    def get_columns(self, table: str, database_id: str | None = None) -> tuple[ColumnInfo, ...]:
        return self.get_schema(table, database_id).columns

    def reload_schema(self, table: str | None = None, database_id: str | None = None) -> None:
        self.schema_cache.invalidate(self._handle(database_id).id, table)

    def browse(
        self,
        table: str,
        page: int = 1,
        page_size: int | None = None,
        search: str | None = None,
        sort: SortSpec | str | None = None,
        filters: Iterable[ColumnFilter] = (),
        database_id: str | None = None,
    ) -> QueryResult:
        """Fetch one page of ``table``; the synthetic row identifier comes first."""
        handle = self._handle(database_id)
        request = BrowseRequest(
            table=table,
            page=page,
            page_size=page_size if page_size is not None else self.page_size,
            search=search or None,
            sort=parse_sort(sort) if isinstance(sort, str) else sort,
            filters=tuple(filters),
        )
        with handle.locked() as connection:
            schema = self.schema_cache.get_schema(handle, table)
            plan = compose_page(schema, request, self.limiter)
            try:
                cursor = connection.execute(plan.select.sql, plan.select.params)
                try:
                    columns = tuple(column[0] for column in cursor.description or ())
                    rows = [tuple(row) for row in cursor.fetchall()]
                finally:
                    cursor.close()
                if plan.count is not None:
                    total = int(connection.execute(plan.count.sql, plan.count.params).fetchone()[0])
                else:
                    total = UNKNOWN_TOTAL
            except sqlite3.Error as exc:
                raise EngineError(f"Failed to retrieve data from table {table}: {exc}") from exc

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            total_count=total,
            limit=plan.page_size,
            offset=plan.offset,
            rowid_column=plan.rowid_column,
        )

    def distinct_values(
        self,
        table: str,
        column: str,
        limit: int = DISTINCT_VALUES_LIMIT,
        database_id: str | None = None,
    ) -> list[Any]:
        """Distinct values of one column in ascending order, for building ``in`` filters."""
        handle = self._handle(database_id)
        schema = self.schema_cache.get_schema(handle, table)
        if schema.column(column) is None:
            raise SchemaError(f"Column '{column}' does not exist in table '{schema.name}'.")
        if limit < 1:
            raise ValidationError(f"Distinct value limit must be positive, got {limit}.")
        effective_limit = self.limiter.clamp_page_size(limit)
        col = quote_identifier(column)
        rows = handle.fetch_all(
            f"SELECT DISTINCT {col} FROM {quote_identifier(schema.name)} ORDER BY {col} LIMIT ?",
            (effective_limit,),
        )
        return [row[0] for row in rows]

    def run_query(
        self,
        sql: str,
        params: Mapping[str, Any] | Iterable[Any] | None = None,
        database_id: str | None = None,
    ) -> QueryResult:
        """Execute one ad-hoc statement.

        Rows beyond the limiter's ceiling are not consumed and the total is
        reported as ``UNKNOWN_TOTAL``. Schema-changing statements drop the
        database's cached schema; statements that changed data persist the new
        image.
        """
        handle = self._handle(database_id)
        bindings: Any = params if isinstance(params, Mapping) else tuple(params or ())
        with handle.locked() as connection:
            changes_before = connection.total_changes
            try:
                cursor = connection.execute(sql, bindings)
            except sqlite3.Error as exc:
                raise EngineError(f"SQL Error: {exc}") from exc
            try:
                columns = tuple(column[0] for column in cursor.description or ())
                if columns:
                    rows, truncated = self.limiter.fetch(cursor)
                else:
                    rows, truncated = [], False
            finally:
                cursor.close()
            changed = connection.total_changes != changes_before

            schema_changed = is_schema_change(sql)
            if schema_changed:
                self.schema_cache.invalidate(handle.id)
            if changed or schema_changed:
                self._persist(handle)

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            total_count=self.limiter.total_for(len(rows), truncated),
            truncated=truncated,
        )

    # ------------------------------------------------------------------
    # Writes

    def identify_row(
        self, table: str, row: Mapping[str, Any], database_id: str | None = None
    ) -> IdentityResult:
        """Derive the identifier for a row previously returned by ``browse``."""
        schema = self.get_schema(table, database_id)
        return derive_identifier(row, schema.primary_key_columns, rowid_column=schema.rowid_alias)

    def insert_row(
        self, table: str, values: Mapping[str, Any], database_id: str | None = None
    ) -> int:
        handle = self._handle(database_id)
        schema = self.schema_cache.get_schema(handle, table)
        self._require_columns(schema, values.keys())
        mutator = TransactionalMutator(handle, self._persist)
        return mutator.insert(schema.name, values, rowid_column=schema.rowid_alias)

    def update_row(
        self,
        table: str,
        identifier: IdentityResult | Mapping[str, Any] | None,
        values: Mapping[str, Any],
        database_id: str | None = None,
    ) -> int:
        """Update one row; returns 0 without touching the engine when nothing would change."""
        handle = self._handle(database_id)
        if all(column == ROWID_COLUMN for column in values):
            logger.debug("Update on %s carries no column values; nothing to do", table)
            return 0
        schema = self.schema_cache.get_schema(handle, table)
        resolved = self._resolve_identifier(schema, identifier)
        self._require_columns(schema, values.keys())
        mutator = TransactionalMutator(handle, self._persist)
        return mutator.update(schema.name, resolved, values, rowid_column=schema.rowid_alias)

    def delete_row(
        self,
        table: str,
        identifier: IdentityResult | Mapping[str, Any] | None,
        database_id: str | None = None,
    ) -> int:
        handle = self._handle(database_id)
        schema = self.schema_cache.get_schema(handle, table)
        resolved = self._resolve_identifier(schema, identifier)
        mutator = TransactionalMutator(handle, self._persist)
        return mutator.delete(schema.name, resolved)

    # ------------------------------------------------------------------
    # Internal helpers

    def _handle(self, database_id: str | None = None) -> DatabaseHandle:
        if database_id:
            handle = self._handles.get(database_id)
            if handle is None:
                raise DatabaseNotFoundError(f"Database with ID {database_id} not found")
            return handle
        if self._active_id is None:
            raise DatabaseNotFoundError("No database selected")
        return self._handles[self._active_id]

    def _new_database_id(self, name: str) -> str:
        base = f"{int(time.time() * 1000)}_{_UNSAFE_ID_CHARS_RE.sub('_', name)}"
        candidate = base
        suffix = 1
        while candidate in self._handles:
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    def _require_columns(self, schema: TableSchema, names: Iterable[str]) -> None:
        known = set(schema.column_names) | {ROWID_COLUMN, schema.rowid_alias}
        unknown = [name for name in names if name not in known]
        if unknown:
            raise SchemaError(
                f"Unknown column(s) for table '{schema.name}': {', '.join(unknown)}."
            )

    def _resolve_identifier(
        self, schema: TableSchema, identifier: IdentityResult | Mapping[str, Any] | None
    ) -> IdentityResult | None:
        if isinstance(identifier, Mapping):
            identifier = identifier_from_parts(
                rowid=identifier.get("rowid"),
                primary_key_values=identifier.get("primary_key_values"),
            )
        if isinstance(identifier, NativeRowId) and not schema.has_rowid:
            raise InvalidIdentifierError(
                f"Table '{schema.name}' has no usable rowid; identify the row by its primary key."
            )
        if isinstance(identifier, PrimaryKeyValues):
            self._require_columns(schema, (column for column, _ in identifier.values))
        return identifier

    def _store_put(self, info: DatabaseInfo, image: bytes) -> None:
        if self.store is None:
            return
        record = StoredDatabase(
            id=info.id,
            name=info.name,
            size_bytes=len(image),
            uploaded_at=info.uploaded_at,
            data=image,
        )
        try:
            self.store.put(record)
        except OSError as exc:
            raise PersistenceError(f"Failed to store database {info.id}: {exc}") from exc

    def _persist(self, handle: DatabaseHandle) -> None:
        """Write the handle's current image to the store after a committed change."""
        if not handle.info.persisted:
            logger.warning("Database %s is held in memory only; change not persisted", handle.id)
            return
        try:
            image = handle.export_image()
        except EngineError as exc:
            raise PersistenceError(
                f"Change committed in memory but export failed for {handle.id}: {exc}"
            ) from exc
        try:
            self._store_put(handle.info, image)
        except PersistenceError as exc:
            raise PersistenceError(
                f"Change committed in memory but the stored copy of {handle.id} is stale: {exc}"
            ) from exc
        handle.info.size_bytes = len(image)

    def _forget_stored(self, database_id: str) -> None:
        if self.store is None:
            return
        try:
            self.store.delete(database_id)
        except PersistenceError as exc:
            logger.error("Failed to delete stored database %s: %s", database_id, exc)

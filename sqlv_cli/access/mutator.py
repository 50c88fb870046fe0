"""Transactional single-row mutations.

Every mutation runs ``BEGIN`` → statement → ``COMMIT`` → persist. Any failure
before the commit completes triggers a best-effort ``ROLLBACK`` and the error
propagates. Statements are planned first (pure, no engine access) so callers
can preview them and so precondition failures never open a transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping
from typing import Any

from sqlv_cli.shared.exceptions import EngineError, InvalidIdentifierError

from .handle import DatabaseHandle
from .identity import IdentityResult, build_where_clause
from .quoting import quote_identifier, quote_identifiers
from .types import ROWID_COLUMN, Statement

logger = logging.getLogger(__name__)

Persister = Callable[[DatabaseHandle], None]


def coerce_value(value: Any) -> Any:
    """Normalise a Python value into something sqlite3 can bind."""
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float, str, bytes)):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return str(value)


def _usable_entries(values: Mapping[str, Any], rowid_column: str) -> list[tuple[str, Any]]:
    return [(column, value) for column, value in values.items() if column not in (ROWID_COLUMN, rowid_column)]


def plan_insert(table: str, values: Mapping[str, Any], *, rowid_column: str = ROWID_COLUMN) -> Statement:
    entries = _usable_entries(values, rowid_column)
    if not entries:
        return Statement(f"INSERT INTO {quote_identifier(table)} DEFAULT VALUES")
    columns_sql = quote_identifiers(column for column, _ in entries)
    placeholders = ", ".join("?" for _ in entries)
    return Statement(
        f"INSERT INTO {quote_identifier(table)} ({columns_sql}) VALUES ({placeholders})",
        tuple(coerce_value(value) for _, value in entries),
    )


def plan_update(
    table: str,
    identifier: IdentityResult | None,
    values: Mapping[str, Any],
    *,
    rowid_column: str = ROWID_COLUMN,
) -> Statement | None:
    """UPDATE for one row, or ``None`` when no column would change."""
    entries = _usable_entries(values, rowid_column)
    if not entries:
        return None
    where = build_where_clause(identifier)
    if not where:
        raise InvalidIdentifierError("Unable to determine row identifier for update.")
    set_clause = ", ".join(f"{quote_identifier(column)} = ?" for column, _ in entries)
    params = tuple(coerce_value(value) for _, value in entries)
    params += tuple(coerce_value(value) for value in where.params)
    return Statement(f"UPDATE {quote_identifier(table)} SET {set_clause} WHERE {where.clause}", params)


def plan_delete(table: str, identifier: IdentityResult | None) -> Statement:
    where = build_where_clause(identifier)
    if not where:
        raise InvalidIdentifierError("Unable to determine row identifier for deletion.")
    return Statement(
        f"DELETE FROM {quote_identifier(table)} WHERE {where.clause}",
        tuple(coerce_value(value) for value in where.params),
    )


class TransactionalMutator:
    """Applies planned statements to one handle atomically, then persists."""

    def __init__(self, handle: DatabaseHandle, persist: Persister | None = None) -> None:
        self.handle = handle
        self._persist = persist

    def insert(self, table: str, values: Mapping[str, Any], *, rowid_column: str = ROWID_COLUMN) -> int:
        """Insert one row; return the number of rows written."""
        return self.apply(plan_insert(table, values, rowid_column=rowid_column))

    def update(
        self,
        table: str,
        identifier: IdentityResult | None,
        values: Mapping[str, Any],
        *,
        rowid_column: str = ROWID_COLUMN,
    ) -> int:
        """Update one row; an empty value map is a no-op returning 0."""
        statement = plan_update(table, identifier, values, rowid_column=rowid_column)
        if statement is None:
            logger.debug("Update on %s has no usable columns; skipping", table)
            return 0
        return self.apply(statement)

    def delete(self, table: str, identifier: IdentityResult | None) -> int:
        return self.apply(plan_delete(table, identifier))

    def apply(self, statement: Statement) -> int:
        """Run ``statement`` inside its own transaction and persist on success."""
        with self.handle.locked() as connection:
            self._execute(connection, "BEGIN")
            try:
                cursor = connection.execute(statement.sql, statement.params)
                changed = cursor.rowcount
                connection.execute("COMMIT")
            except Exception as exc:
                self._rollback(connection)
                if isinstance(exc, sqlite3.Error):
                    raise EngineError(f"SQL error: {exc}") from exc
                raise
            logger.debug("[%s] committed: %s", self.handle.id, statement.sql)
            if self._persist is not None:
                self._persist(self.handle)
        return changed

    def _execute(self, connection: sqlite3.Connection, sql: str) -> None:
        try:
            connection.execute(sql)
        except sqlite3.Error as exc:
            raise EngineError(f"SQL error: {exc}") from exc

    def _rollback(self, connection: sqlite3.Connection) -> None:
        if not connection.in_transaction:
            return
        try:
            connection.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.error("[%s] rollback failed: %s", self.handle.id, exc)

"""Row identity: turning a fetched row into something a WHERE clause can find again.

A row is identified either by SQLite's native ``rowid`` or, when that is not
available (``WITHOUT ROWID`` tables, views, shadowed ``rowid`` columns), by the
full composite primary key. ``derive_identifier`` never raises; it returns an
``InvalidIdentifier`` that callers must handle before building a mutation.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

from sqlv_cli.shared.exceptions import InvalidIdentifierError

from .quoting import quote_identifier
from .types import ROWID_COLUMN, ColumnInfo


@dataclass(frozen=True, slots=True)
class NativeRowId:
    rowid: int


@dataclass(frozen=True, slots=True)
class PrimaryKeyValues:
    """Composite key values in primary-key ordinal order."""

    values: tuple[tuple[str, Any], ...]

    def as_dict(self) -> dict[str, Any]:
        return dict(self.values)


@dataclass(frozen=True, slots=True)
class InvalidIdentifier:
    reason: str

    def to_error(self) -> InvalidIdentifierError:
        return InvalidIdentifierError(self.reason)


RowIdentifier = Union[NativeRowId, PrimaryKeyValues]
IdentityResult = Union[NativeRowId, PrimaryKeyValues, InvalidIdentifier]


@dataclass(frozen=True, slots=True)
class WhereClause:
    clause: str
    params: tuple[Any, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.clause)


def _as_rowid(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return None
    return None


def derive_identifier(
    row: Mapping[str, Any],
    primary_key_columns: Sequence[ColumnInfo],
    *,
    rowid_column: str = ROWID_COLUMN,
) -> IdentityResult:
    """Prefer the native rowid; fall back to the complete primary key."""
    rowid = _as_rowid(row.get(rowid_column))
    if rowid is not None:
        return NativeRowId(rowid)

    key_columns = sorted(
        (column for column in primary_key_columns if column.is_primary_key),
        key=lambda column: column.primary_key_ordinal,
    )
    if not key_columns:
        return InvalidIdentifier("Row has no rowid and the table declares no primary key.")

    missing = [column.name for column in key_columns if column.name not in row]
    if missing:
        return InvalidIdentifier(
            f"Row has no rowid and is missing primary key column(s): {', '.join(missing)}."
        )
    return PrimaryKeyValues(tuple((column.name, row[column.name]) for column in key_columns))


def identifier_from_parts(
    rowid: Any = None,
    primary_key_values: Mapping[str, Any] | Sequence[tuple[str, Any]] | None = None,
) -> IdentityResult:
    """Build an identifier from caller-supplied parts; ``rowid`` wins when usable."""
    if rowid is not None:
        native = _as_rowid(rowid)
        if native is None:
            return InvalidIdentifier(f"rowid must be an integer, got {rowid!r}.")
        return NativeRowId(native)
    if primary_key_values:
        items = (
            tuple(primary_key_values.items())
            if isinstance(primary_key_values, Mapping)
            else tuple(primary_key_values)
        )
        return PrimaryKeyValues(items)
    return InvalidIdentifier("Unable to determine row identifier: no rowid or primary key values.")


def build_where_clause(identifier: IdentityResult | None) -> WhereClause:
    """WHERE clause locating exactly the identified row.

    An invalid or missing identifier yields an empty clause. Callers must treat
    that as fatal; a mutation without a WHERE clause touches every row.
    """
    if isinstance(identifier, NativeRowId):
        return WhereClause("rowid = ?", (identifier.rowid,))

    if isinstance(identifier, PrimaryKeyValues) and identifier.values:
        parts: list[str] = []
        params: list[Any] = []
        for column, value in identifier.values:
            if value is None:
                parts.append(f"{quote_identifier(column)} IS NULL")
            else:
                parts.append(f"{quote_identifier(column)} = ?")
                params.append(value)
        return WhereClause(" AND ".join(parts), tuple(params))

    return WhereClause("")


def require_identifier(identifier: IdentityResult | None) -> RowIdentifier:
    """Return a usable identifier or raise ``InvalidIdentifierError``."""
    if isinstance(identifier, (NativeRowId, PrimaryKeyValues)) and build_where_clause(identifier):
        return identifier
    if isinstance(identifier, InvalidIdentifier):
        raise identifier.to_error()
    raise InvalidIdentifierError("Unable to determine row identifier.")

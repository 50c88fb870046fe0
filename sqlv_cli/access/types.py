"""Data structures shared across the data-access layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

ROWID_COLUMN = "__rowid__"
UNKNOWN_TOTAL = -1


@dataclass(frozen=True, slots=True)
class Statement:
    """SQL text plus the values bound to its placeholders."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    """One row of ``PRAGMA table_info``."""

    ordinal: int
    name: str
    declared_type: str
    not_null: bool
    default_value: Any = None
    primary_key_ordinal: int = 0  # 0 when not part of the key, else 1-based position

    @property
    def is_primary_key(self) -> bool:
        return self.primary_key_ordinal > 0


@dataclass(frozen=True, slots=True)
class TableSchema:
    """Column metadata for one table, in declared order."""

    name: str
    columns: tuple[ColumnInfo, ...]
    has_rowid: bool = True
    sql: str | None = None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    @property
    def primary_key_columns(self) -> tuple[ColumnInfo, ...]:
        keyed = [column for column in self.columns if column.is_primary_key]
        return tuple(sorted(keyed, key=lambda column: column.primary_key_ordinal))

    def column(self, name: str) -> ColumnInfo | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def rowid_alias(self) -> str:
        """Private alias for the projected row identifier, unique among real columns."""
        taken = {name.lower() for name in self.column_names}
        alias = ROWID_COLUMN
        while alias.lower() in taken:
            alias += "_"
        return alias


@dataclass(frozen=True, slots=True)
class TableInfo:
    name: str
    sql: str | None


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Structured result set returned by browse and ad-hoc queries."""

    columns: tuple[str, ...]
    rows: Sequence[tuple[Any, ...]]
    row_count: int
    total_count: int | None = None
    limit: int | None = None
    offset: int | None = None
    rowid_column: str | None = None
    truncated: bool = False

    @property
    def total_known(self) -> bool:
        return self.total_count is not None and self.total_count != UNKNOWN_TOTAL

    @property
    def visible_columns(self) -> tuple[str, ...]:
        return tuple(column for column in self.columns if column != self.rowid_column)

    def visible_rows(self) -> list[list[Any]]:
        """Rows without the synthetic row-identifier column."""
        if self.rowid_column is None or self.rowid_column not in self.columns:
            return [list(row) for row in self.rows]
        index = self.columns.index(self.rowid_column)
        return [[value for i, value in enumerate(row) if i != index] for row in self.rows]

    def records(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass(slots=True)
class DatabaseInfo:
    """Metadata for one loaded database."""

    id: str
    name: str
    size_bytes: int
    uploaded_at: str
    persisted: bool = True


@dataclass(frozen=True, slots=True)
class LoadPreview:
    """Whether a file of a given size can be loaded, and what to do if not."""

    can_load: bool
    size_label: str
    reason: str
    suggestion: str


@dataclass(frozen=True, slots=True)
class StorageInfo:
    used: int | None
    quota: int | None
    database_count: int


@dataclass(frozen=True, slots=True)
class SortSpec:
    """Sort column and direction (``asc`` or ``desc``)."""

    column: str
    direction: str = "asc"


@dataclass(frozen=True, slots=True)
class BrowseRequest:
    """UI-level intent for one page of a table."""

    table: str
    page: int = 1
    page_size: int = 50
    search: str | None = None
    sort: SortSpec | None = None
    filters: Sequence[Any] = field(default_factory=tuple)

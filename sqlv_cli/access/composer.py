"""SELECT and COUNT composition for table browsing."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlv_cli.shared.exceptions import SchemaError, ValidationError

from .filters import ColumnFilter, FilterSet
from .limiter import ResultLimiter
from .quoting import quote_identifier
from .types import BrowseRequest, SortSpec, Statement, TableSchema

SORT_DIRECTIONS = ("asc", "desc")
_LIKE_ESCAPE = "\\"

__all__ = [
    "BrowsePlan",
    "BrowseRequest",
    "SortSpec",
    "compose_count",
    "compose_page",
    "compose_select",
    "compose_where",
    "parse_sort",
]


@dataclass(frozen=True, slots=True)
class BrowsePlan:
    """Everything needed to fetch one page: the SELECT, the optional COUNT, and paging."""

    select: Statement
    count: Statement | None
    page_size: int
    offset: int
    rowid_column: str


def parse_sort(text: str | None) -> SortSpec | None:
    """Parse ``column`` or ``column:asc|desc``; empty input means no sort."""
    if not text or not text.strip():
        return None
    column, sep, direction = text.strip().rpartition(":")
    if not sep:
        return SortSpec(column=direction, direction="asc")
    direction = direction.strip().lower()
    if direction not in SORT_DIRECTIONS:
        # A colon inside the column name, no direction given.
        return SortSpec(column=text.strip(), direction="asc")
    return SortSpec(column=column, direction=direction)


def _escape_like(text: str) -> str:
    return (
        text.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", f"{_LIKE_ESCAPE}%")
        .replace("_", f"{_LIKE_ESCAPE}_")
    )


def _require_column(schema: TableSchema, column: str, purpose: str) -> None:
    if schema.column(column) is None:
        raise SchemaError(f"Cannot {purpose} by unknown column '{column}' in table '{schema.name}'.")


def compose_where(
    schema: TableSchema,
    search: str | None = None,
    filters: Iterable[ColumnFilter] = (),
) -> tuple[str, tuple[Any, ...]]:
    """WHERE body (without the keyword) and its parameters; empty when unconstrained.

    Search text is OR'd across every column as a literal substring match, and
    the result is AND'd with each column filter.
    """
    conditions: list[str] = []
    params: list[Any] = []

    if search:
        pattern = f"%{_escape_like(search)}%"
        like_parts = [
            f"{quote_identifier(column)} LIKE ? ESCAPE '{_LIKE_ESCAPE}'" for column in schema.column_names
        ]
        conditions.append(f"({' OR '.join(like_parts)})")
        params.extend(pattern for _ in like_parts)

    for column_filter in FilterSet(filters):
        _require_column(schema, column_filter.column, "filter")
        fragment, fragment_params = column_filter.to_sql()
        conditions.append(fragment)
        params.extend(fragment_params)

    return " AND ".join(conditions), tuple(params)


def _projection(schema: TableSchema) -> str:
    alias = quote_identifier(schema.rowid_alias)
    rowid_expr = "rowid" if schema.has_rowid else "NULL"
    columns = [f"{rowid_expr} AS {alias}"]
    columns.extend(quote_identifier(name) for name in schema.column_names)
    return ", ".join(columns)


def _order_by(schema: TableSchema, sort: SortSpec | None) -> str:
    if sort is None or not sort.column or not sort.direction:
        return ""
    direction = sort.direction.lower()
    if direction not in SORT_DIRECTIONS:
        raise ValidationError(f"Sort direction must be 'asc' or 'desc', got '{sort.direction}'.")
    _require_column(schema, sort.column, "sort")
    return f" ORDER BY {quote_identifier(sort.column)} {direction.upper()}"


def _validate_paging(request: BrowseRequest) -> None:
    if request.page < 1:
        raise ValidationError(f"Page numbers start at 1, got {request.page}.")
    if request.page_size < 1:
        raise ValidationError(f"Page size must be positive, got {request.page_size}.")


def compose_select(schema: TableSchema, request: BrowseRequest, page_size: int | None = None) -> Statement:
    """Paginated SELECT projecting the row identifier first, then every column."""
    _validate_paging(request)
    size = page_size if page_size is not None else request.page_size
    where, params = compose_where(schema, request.search, request.filters)

    sql = f"SELECT {_projection(schema)} FROM {quote_identifier(schema.name)}"
    if where:
        sql += f" WHERE {where}"
    sql += _order_by(schema, request.sort)
    sql += " LIMIT ? OFFSET ?"
    return Statement(sql, params + (size, (request.page - 1) * size))


def compose_count(schema: TableSchema, request: BrowseRequest) -> Statement:
    """COUNT(*) over the same WHERE clause as ``compose_select``."""
    where, params = compose_where(schema, request.search, request.filters)
    sql = f"SELECT COUNT(*) FROM {quote_identifier(schema.name)}"
    if where:
        sql += f" WHERE {where}"
    return Statement(sql, params)


def compose_page(schema: TableSchema, request: BrowseRequest, limiter: ResultLimiter) -> BrowsePlan:
    """Apply the limiter to a browse request and compose its statements."""
    _validate_paging(request)
    page_size = limiter.clamp_page_size(request.page_size)
    select = compose_select(schema, request, page_size)
    count = compose_count(schema, request) if limiter.should_count(page_size) else None
    return BrowsePlan(
        select=select,
        count=count,
        page_size=page_size,
        offset=(request.page - 1) * page_size,
        rowid_column=schema.rowid_alias,
    )

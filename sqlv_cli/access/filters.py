"""Column filter predicates.

Each operator is its own frozen dataclass that validates itself on
construction and renders a ``(fragment, params)`` pair through ``to_sql``.
Values are always bound; only the column name is interpolated, quoted.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Union

from sqlv_cli.shared.exceptions import ValidationError

from .quoting import quote_identifier

FILTER_OPERATORS = ("equals", "in", "gt", "gte", "lt", "lte", "between", "is_null", "not_null")
COMPARISON_OPERATORS = {"gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _display(value: Any) -> str:
    return "NULL" if value is None else str(value)


@dataclass(frozen=True, slots=True)
class Equals:
    column: str
    value: Any

    operator = "equals"

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        col = quote_identifier(self.column)
        if self.value is None:
            return f"{col} IS NULL", ()
        return f"{col} = ?", (self.value,)

    def describe(self) -> str:
        return f"= {_display(self.value)}"


@dataclass(frozen=True, slots=True)
class In:
    """Set membership; ``None`` among the values also matches NULL."""

    column: str
    values: tuple[Any, ...]

    operator = "in"

    def __post_init__(self) -> None:
        values = tuple(self.values)
        if not values:
            raise ValidationError(f"Filter 'in' on column '{self.column}' needs at least one value.")
        object.__setattr__(self, "values", values)

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        col = quote_identifier(self.column)
        non_null = tuple(value for value in self.values if value is not None)
        includes_null = len(non_null) != len(self.values)

        conditions: list[str] = []
        if non_null:
            placeholders = ", ".join("?" for _ in non_null)
            conditions.append(f"{col} IN ({placeholders})")
        if includes_null:
            conditions.append(f"{col} IS NULL")
        if len(conditions) > 1:
            return f"({' OR '.join(conditions)})", non_null
        return conditions[0], non_null

    def describe(self) -> str:
        shown = ", ".join(_display(value) for value in self.values[:3])
        if len(self.values) > 3:
            return f"{shown}... (+{len(self.values) - 3})"
        return shown


@dataclass(frozen=True, slots=True)
class Compare:
    """``gt``/``gte``/``lt``/``lte`` against one numeric value."""

    column: str
    operator: str
    value: float | int

    def __post_init__(self) -> None:
        if self.operator not in COMPARISON_OPERATORS:
            raise ValidationError(f"Unknown comparison operator '{self.operator}'.")
        if not _is_number(self.value):
            raise ValidationError(
                f"Filter '{self.operator}' on column '{self.column}' needs a numeric value, got {self.value!r}."
            )

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        symbol = COMPARISON_OPERATORS[self.operator]
        return f"{quote_identifier(self.column)} {symbol} ?", (self.value,)

    def describe(self) -> str:
        return f"{COMPARISON_OPERATORS[self.operator]} {self.value}"


@dataclass(frozen=True, slots=True)
class Between:
    """Inclusive numeric range; ``start > end`` is passed through unchanged."""

    column: str
    start: float | int
    end: float | int

    operator = "between"

    def __post_init__(self) -> None:
        if not _is_number(self.start) or not _is_number(self.end):
            raise ValidationError(
                f"Filter 'between' on column '{self.column}' needs numeric start and end bounds."
            )

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        return f"{quote_identifier(self.column)} BETWEEN ? AND ?", (self.start, self.end)

    def describe(self) -> str:
        return f"{self.start} - {self.end}"


@dataclass(frozen=True, slots=True)
class IsNull:
    column: str

    operator = "is_null"

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        return f"{quote_identifier(self.column)} IS NULL", ()

    def describe(self) -> str:
        return "IS NULL"


@dataclass(frozen=True, slots=True)
class NotNull:
    column: str

    operator = "not_null"

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        return f"{quote_identifier(self.column)} IS NOT NULL", ()

    def describe(self) -> str:
        return "IS NOT NULL"


ColumnFilter = Union[Equals, In, Compare, Between, IsNull, NotNull]


def _to_number(value: Any, *, column: str, operator: str) -> float | int:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return _parse_number(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"Filter '{operator}' on column '{column}' needs a numeric value, got {value!r}.")


def _parse_number(text: str) -> float | int:
    try:
        return int(text)
    except ValueError:
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"non-finite number {text!r}")
        return number


def build_filter(
    column: str,
    operator: str,
    values: Sequence[Any] = (),
    range_start: Any = None,
    range_end: Any = None,
) -> ColumnFilter:
    """Build a filter from the generic ``{column, operator, values, range}`` shape."""
    if not column:
        raise ValidationError("Filter column name must not be empty.")
    values = tuple(values)
    if operator == "equals":
        if not values:
            raise ValidationError(f"Filter 'equals' on column '{column}' needs a value.")
        return Equals(column, values[0])
    if operator == "in":
        return In(column, values)
    if operator in COMPARISON_OPERATORS:
        if not values:
            raise ValidationError(f"Filter '{operator}' on column '{column}' needs a value.")
        return Compare(column, operator, _to_number(values[0], column=column, operator=operator))
    if operator == "between":
        if range_start is None or range_end is None:
            raise ValidationError(f"Filter 'between' on column '{column}' needs both range bounds.")
        return Between(
            column,
            _to_number(range_start, column=column, operator=operator),
            _to_number(range_end, column=column, operator=operator),
        )
    if operator == "is_null":
        return IsNull(column)
    if operator == "not_null":
        return NotNull(column)
    raise ValidationError(
        f"Unknown filter operator '{operator}'. Expected one of: {', '.join(FILTER_OPERATORS)}."
    )


_COLUMN = r'(?P<column>"(?:[^"]|"")+"|[^\s<>=]+)'
_IS_NOT_NULL_RE = re.compile(rf"^{_COLUMN}\s+is\s+not\s+null$", re.IGNORECASE)
_IS_NULL_RE = re.compile(rf"^{_COLUMN}\s+is\s+null$", re.IGNORECASE)
_BETWEEN_RE = re.compile(rf"^{_COLUMN}\s+between\s+(?P<start>\S+)\s+and\s+(?P<end>\S+)$", re.IGNORECASE)
_IN_RE = re.compile(rf"^{_COLUMN}\s+in\s+(?P<values>.+)$", re.IGNORECASE)
_COMPARE_RE = re.compile(rf"^{_COLUMN}\s*(?P<op>>=|<=|>|<|=)\s*(?P<value>.*)$")
_SYMBOL_TO_OPERATOR = {">": "gt", ">=": "gte", "<": "lt", "<=": "lte"}


def _parse_column(token: str) -> str:
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        return token[1:-1].replace('""', '"')
    return token


def _parse_literal(token: str) -> Any:
    text = token.strip()
    if text.upper() == "NULL":
        return None
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    try:
        return _parse_number(text)
    except ValueError:
        return text


def parse_filter(expression: str) -> ColumnFilter:
    """Parse a command-line filter expression.

    Supported forms: ``col = v``, ``col in v1,v2,NULL``, ``col > n`` (also
    ``>=``, ``<``, ``<=``), ``col between a and b``, ``col is null`` and
    ``col is not null``. Double-quote a column name containing spaces.
    """
    text = (expression or "").strip()
    if not text:
        raise ValidationError("Filter expression must not be empty.")

    match = _IS_NOT_NULL_RE.match(text)
    if match:
        return NotNull(_parse_column(match.group("column")))
    match = _IS_NULL_RE.match(text)
    if match:
        return IsNull(_parse_column(match.group("column")))
    match = _BETWEEN_RE.match(text)
    if match:
        return build_filter(
            _parse_column(match.group("column")),
            "between",
            range_start=_parse_literal(match.group("start")),
            range_end=_parse_literal(match.group("end")),
        )
    match = _IN_RE.match(text)
    if match:
        values = [_parse_literal(part) for part in match.group("values").split(",") if part.strip()]
        return In(_parse_column(match.group("column")), tuple(values))
    match = _COMPARE_RE.match(text)
    if match:
        column = _parse_column(match.group("column"))
        raw_value = match.group("value")
        if not raw_value.strip():
            raise ValidationError(f"Filter '{text}' is missing a value.")
        value = _parse_literal(raw_value)
        if match.group("op") == "=":
            return Equals(column, value)
        return build_filter(column, _SYMBOL_TO_OPERATOR[match.group("op")], [value])
    raise ValidationError(f"Could not parse filter expression '{expression}'.")


class FilterSet:
    """Active filters, at most one per column; the newest filter for a column wins."""

    def __init__(self, filters: Iterable[ColumnFilter] = ()) -> None:
        self._filters: dict[str, ColumnFilter] = {}
        for column_filter in filters:
            self.apply(column_filter)

    def apply(self, column_filter: ColumnFilter) -> None:
        self._filters.pop(column_filter.column, None)
        self._filters[column_filter.column] = column_filter

    def remove(self, column: str) -> None:
        self._filters.pop(column, None)

    def clear(self) -> None:
        self._filters.clear()

    def get(self, column: str) -> ColumnFilter | None:
        return self._filters.get(column)

    def __iter__(self) -> Iterator[ColumnFilter]:
        return iter(list(self._filters.values()))

    def __len__(self) -> int:
        return len(self._filters)

    def __bool__(self) -> bool:
        return bool(self._filters)

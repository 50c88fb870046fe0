"""Coercion of user-typed text into values for a column's declared type."""

from __future__ import annotations

from typing import Any

from sqlv_cli.shared.exceptions import ValidationError

from .types import ColumnInfo

NUMERIC_TYPE_MARKERS = ("INT", "REAL", "NUM", "DEC", "DOUBLE", "FLOAT")


class _Omit:
    """Marker for a column left out of an INSERT so its default applies."""

    _instance: _Omit | None = None

    def __new__(cls) -> _Omit:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "OMIT"

    def __bool__(self) -> bool:
        return False


OMIT = _Omit()


def is_editable(column: ColumnInfo) -> bool:
    """BLOB columns cannot be edited from text."""
    return "BLOB" not in column.declared_type.upper()


def coerce_input(column: ColumnInfo, raw: str | None, *, creating: bool = False) -> Any:
    """Convert ``raw`` text for ``column``.

    ``None`` is SQL NULL. A blank value while creating a row returns ``OMIT``;
    while editing, a blank numeric or boolean value becomes NULL and a blank
    text value stays an empty string.
    """
    if raw is None:
        return None
    if not is_editable(column):
        raise ValidationError(f"Column {column.name} holds binary data and cannot be edited as text.")

    declared = column.declared_type.upper()
    text = raw.strip()

    if any(marker in declared for marker in NUMERIC_TYPE_MARKERS):
        if not text:
            return OMIT if creating else None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid number for column {column.name}: {raw!r}") from exc

    if "BOOL" in declared:
        lowered = text.lower()
        if not lowered:
            return OMIT if creating else None
        if lowered in {"1", "true"}:
            return 1
        if lowered in {"0", "false"}:
            return 0
        raise ValidationError(f"Invalid boolean for column {column.name}: {raw!r}")

    if raw == "" and creating:
        return OMIT
    return raw


def coerce_row_inputs(
    columns: tuple[ColumnInfo, ...] | list[ColumnInfo],
    raw_values: dict[str, str | None],
    *,
    creating: bool = False,
) -> dict[str, Any]:
    """Coerce a ``{column: text}`` map, dropping omitted columns.

    Unknown column names are passed through untouched so the caller's schema
    check reports them.
    """
    by_name = {column.name: column for column in columns}
    coerced: dict[str, Any] = {}
    for name, raw in raw_values.items():
        column = by_name.get(name)
        if column is None:
            coerced[name] = raw
            continue
        value = coerce_input(column, raw, creating=creating)
        if value is OMIT:
            continue
        coerced[name] = value
    return coerced

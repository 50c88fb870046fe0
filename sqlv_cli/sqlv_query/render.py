"""Output rendering helpers for sqlv-query."""

from __future__ import annotations

import csv
import json
import sys
from typing import IO, Any, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from sqlv_cli.access.types import ColumnInfo, DatabaseInfo, QueryResult, StorageInfo, TableInfo, TableSchema
from sqlv_cli.shared.logging import Logger

OUTPUT_FORMAT_CHOICES = ("table", "tsv", "csv", "json")


def render_query_result(
    result: QueryResult,
    *,
    output_format: str,
    logger: Logger,
    show_rowid: bool = False,
    stream=None,
) -> None:
    """Render a result set; the synthetic row-identifier column is hidden unless asked for."""
    output_stream = stream or sys.stdout
    fmt = (output_format or "table").lower()
    if show_rowid or result.rowid_column is None:
        columns = tuple(result.columns)
        rows: Sequence[Sequence[Any]] = result.rows
    else:
        columns = result.visible_columns
        rows = result.visible_rows()

    if fmt == "table":
        _render_table(columns, rows, logger=logger, stream=output_stream)
    elif fmt == "csv":
        _render_delimited(columns, rows, stream=output_stream, delimiter=",")
    elif fmt == "tsv":
        _render_delimited(columns, rows, stream=output_stream, delimiter="\t")
    elif fmt == "json":
        _render_json(columns, rows, stream=output_stream)
    else:  # pragma: no cover - Click validation should prevent this
        raise ValueError(f"Unsupported output format '{output_format}'.")

    if result.truncated:
        logger.warning(
            f"Result truncated to {result.row_count} rows. Raise --max-rows or use --no-memory-optimizations."
        )


def describe_page(result: QueryResult) -> str:
    """One-line summary of where a browse page sits in the table."""
    offset = result.offset or 0
    if result.row_count == 0:
        shown = "No rows"
    else:
        shown = f"Rows {offset + 1}-{offset + result.row_count}"
    if result.total_known:
        return f"{shown} of {result.total_count}"
    return f"{shown} (total not counted)"


def render_databases(
    databases: Sequence[DatabaseInfo],
    *,
    active_id: str | None,
    output_format: str,
    stream=None,
) -> None:
    output_stream = stream or sys.stdout
    if output_format == "json":
        payload = [
            {
                "id": info.id,
                "name": info.name,
                "size_bytes": info.size_bytes,
                "uploaded_at": info.uploaded_at,
                "persisted": info.persisted,
                "active": info.id == active_id,
            }
            for info in databases
        ]
        json.dump(payload, output_stream, indent=2)
        output_stream.write("\n")
        return

    if not databases:
        print("No databases loaded.", file=output_stream)
        return

    console = Console(file=output_stream, highlight=False, force_terminal=False)
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Loaded")
    table.add_column("Persisted")
    for info in databases:
        table.add_row(
            "*" if info.id == active_id else "",
            info.id,
            info.name,
            format_bytes(info.size_bytes),
            info.uploaded_at,
            "yes" if info.persisted else "memory only",
        )
    console.print(table)


def render_tables(
    tables: Sequence[TableInfo],
    *,
    counts: dict[str, int] | None,
    output_format: str,
    logger: Logger,
    stream=None,
) -> None:
    output_stream = stream or sys.stdout
    if output_format == "json":
        payload = []
        for info in tables:
            entry: dict[str, Any] = {"name": info.name}
            if counts is not None:
                entry["rows"] = counts.get(info.name)
            payload.append(entry)
        json.dump(payload, output_stream, indent=2)
        output_stream.write("\n")
        return

    if not tables:
        logger.info("No tables found.")
        return

    console = Console(file=output_stream, highlight=False, force_terminal=False)
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("Table", style="bold")
    if counts is not None:
        table.add_column("Rows", justify="right")
    for info in tables:
        if counts is not None:
            table.add_row(info.name, str(counts.get(info.name, "")))
        else:
            table.add_row(info.name)
    console.print(table)


def render_schema(
    schemas: Sequence[TableSchema],
    *,
    output_format: str,
    logger: Logger,
    stream=None,
) -> None:
    """Render column metadata for each table."""
    output_stream = stream or sys.stdout

    if output_format == "json":
        payload = {
            "tables": [
                {
                    "name": schema.name,
                    "has_rowid": schema.has_rowid,
                    "columns": [_column_payload(column) for column in schema.columns],
                }
                for schema in schemas
            ]
        }
        json.dump(payload, output_stream, indent=2)
        output_stream.write("\n")
        return

    if not schemas:
        logger.info("No tables found.")
        return

    console = Console(file=output_stream, highlight=False, force_terminal=False)
    for schema in schemas:
        title = schema.name if schema.has_rowid else f"{schema.name} (no rowid)"
        console.print(title, style="bold", markup=False)
        column_table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
        column_table.add_column("Column")
        column_table.add_column("Type")
        column_table.add_column("Not Null")
        column_table.add_column("Key")
        column_table.add_column("Default")
        for column in schema.columns:
            column_table.add_row(
                column.name,
                column.declared_type,
                "yes" if column.not_null else "",
                f"PK{column.primary_key_ordinal}" if column.is_primary_key else "",
                _stringify(column.default_value),
            )
        console.print(column_table)


def render_values(
    column: str,
    values: Sequence[Any],
    *,
    output_format: str,
    logger: Logger,
    stream=None,
) -> None:
    result = QueryResult(columns=(column,), rows=[(value,) for value in values], row_count=len(values))
    render_query_result(result, output_format=output_format, logger=logger, stream=stream)


def render_storage(info: StorageInfo, *, stream=None) -> None:
    output_stream = stream or sys.stdout
    used = format_bytes(info.used) if info.used is not None else "unknown"
    quota = format_bytes(info.quota) if info.quota is not None else "unknown"
    print(f"Stored databases: {info.database_count}", file=output_stream)
    print(f"Used: {used}", file=output_stream)
    print(f"Quota: {quota}", file=output_stream)


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"  # pragma: no cover


def _render_table(
    columns: Sequence[str], rows: Sequence[Sequence[Any]], *, logger: Logger, stream: IO[str]
) -> None:
    console = Console(file=stream, highlight=False, force_terminal=False)
    table = Table(box=box.SIMPLE_HEAVY, show_header=bool(columns), header_style="bold")
    for column in columns:
        table.add_column(column or "")

    if rows:
        for row in rows:
            table.add_row(*[_display_cell(cell) for cell in row])
    else:
        logger.info("Query returned zero rows.")

    console.print(table)


def _render_delimited(
    columns: Sequence[str], rows: Sequence[Sequence[Any]], *, stream: IO[str], delimiter: str
) -> None:
    writer = csv.writer(stream, delimiter=delimiter)
    if columns:
        writer.writerow(columns)
    for row in rows:
        writer.writerow(_stringify(cell) for cell in row)


def _render_json(columns: Sequence[str], rows: Sequence[Sequence[Any]], *, stream: IO[str]) -> None:
    records = [{column: _convert_json_value(value) for column, value in zip(columns, row)} for row in rows]
    json.dump(records, stream, indent=2)
    stream.write("\n")


def _column_payload(column: ColumnInfo) -> dict[str, Any]:
    return {
        "name": column.name,
        "type": column.declared_type,
        "not_null": column.not_null,
        "default": column.default_value,
        "primary_key": column.primary_key_ordinal,
    }


def _display_cell(value: object) -> str:
    if isinstance(value, bytes):
        return f"BLOB({len(value)} bytes)"
    return _stringify(value)


def _stringify(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def _convert_json_value(value: object) -> object:
    if isinstance(value, bytes):
        return value.hex()
    return value

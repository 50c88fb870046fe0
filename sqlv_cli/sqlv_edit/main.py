"""sqlv-edit CLI: loading databases and explicit single-row edits.

Row edits (insert/update/delete) are previews by default: the statement and its
parameters are printed. Pass --apply to perform the write.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click

from sqlv_cli.access.identity import IdentityResult, identifier_from_parts
from sqlv_cli.access.inputs import coerce_input, coerce_row_inputs
from sqlv_cli.access.mutator import plan_delete, plan_insert, plan_update
from sqlv_cli.access.types import Statement, TableSchema
from sqlv_cli.shared.cli import (
    CLIContext,
    common_cli_options,
    handle_cli_errors,
    parse_assignments,
    pass_cli_context,
)


def _effective_dry_run(cli_ctx: CLIContext, apply: bool) -> bool:
    """Return True when we should avoid writes.

    - If user passes --apply, we respect that and allow writes unless --dry-run also passed.
    - If user does not pass --apply, we remain in dry-run preview mode by default.
    """

    return cli_ctx.dry_run or (not apply)


def _preview_statement(cli_ctx: CLIContext, statement: Statement) -> bool:
    """Print ``statement`` when in preview mode; return True if the write should be skipped."""
    preview = _effective_dry_run(cli_ctx, bool(cli_ctx.state.get("apply_flag")))
    if preview:
        cli_ctx.logger.info(f"[dry-run] Would run: {statement.sql}")
        cli_ctx.logger.info(f"[dry-run] Parameters: {list(statement.params)!r}")
        cli_ctx.logger.info("Re-run with --apply to perform the write.")
    return preview


def _require_known_columns(schema: TableSchema, names: list[str] | tuple[str, ...]) -> None:
    unknown = [name for name in names if schema.column(name) is None]
    if unknown:
        raise click.ClickException(f"Unknown column(s) for table '{schema.name}': {', '.join(unknown)}.")


def _collect_values(
    schema: TableSchema,
    assignments: tuple[str, ...],
    nulls: tuple[str, ...],
    *,
    creating: bool,
) -> dict[str, Any]:
    raw: dict[str, str | None] = dict(parse_assignments(assignments, option="--set"))
    for column in nulls:
        raw[column] = None
    _require_known_columns(schema, tuple(raw))
    return coerce_row_inputs(schema.columns, raw, creating=creating)


def _resolve_identifier(schema: TableSchema, rowid: int | None, keys: tuple[str, ...]) -> IdentityResult:
    if (rowid is None) == (not keys):
        raise click.ClickException("Provide exactly one of --rowid or --key.")
    if rowid is not None:
        if not schema.has_rowid:
            raise click.ClickException(
                f"Table '{schema.name}' has no usable rowid; identify the row with --key instead."
            )
        return identifier_from_parts(rowid=rowid)

    raw_keys = parse_assignments(keys, option="--key")
    _require_known_columns(schema, tuple(raw_keys))
    key_values: dict[str, Any] = {}
    for name, raw in raw_keys.items():
        column = schema.column(name)
        assert column is not None
        key_values[name] = None if raw.upper() == "NULL" else coerce_input(column, raw)
    return identifier_from_parts(primary_key_values=key_values)


@click.group(help="Load databases and edit rows. Row edits are previews unless --apply is given.")
@click.option("--apply", is_flag=True, help="Perform row writes (default is preview only).")
@common_cli_options()
@handle_cli_errors
def main(apply: bool, cli_ctx: CLIContext) -> None:
    # Stash apply flag for subcommands
    cli_ctx.state["apply_flag"] = bool(apply)
    mode = "APPLY" if apply and not cli_ctx.dry_run else "DRY-RUN"
    cli_ctx.logger.debug(f"sqlv-edit initialised (mode={mode}, store={cli_ctx.config.storage.path})")


@main.command("load")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", type=str, help="Display name (defaults to the file name).")
@click.option(
    "--allow-large",
    is_flag=True,
    help="Load files above the size limit in memory only; they are not persisted.",
)
@pass_cli_context
@handle_cli_errors
def load(cli_ctx: CLIContext, path: Path, name: str | None, allow_large: bool) -> None:
    """Load the SQLite file at PATH and make it the active database."""
    manager = cli_ctx.manager
    preview = manager.preview_load(path.stat().st_size)
    cli_ctx.logger.debug(f"{path.name}: {preview.size_label}, {preview.reason}")
    if cli_ctx.dry_run:
        cli_ctx.logger.info(f"[dry-run] Would load {path} ({preview.size_label}). {preview.reason}.")
        return

    data = path.read_bytes()
    database_id = manager.load_database(data, name or path.name, allow_large=True if allow_large else None)
    info = manager.database_info(database_id)
    cli_ctx.logger.success(f"Loaded {info.name} as {database_id} ({preview.size_label}).")
    if not info.persisted:
        cli_ctx.logger.warning("Database is held in memory only and will not be available to later commands.")


@main.command("select")
@click.argument("database_id", type=str)
@pass_cli_context
@handle_cli_errors
def select(cli_ctx: CLIContext, database_id: str) -> None:
    """Make DATABASE_ID the active database."""
    cli_ctx.manager.select_database(database_id)
    cli_ctx.logger.success(f"Active database: {database_id}")


@main.command("remove")
@click.argument("database_id", type=str)
@pass_cli_context
@handle_cli_errors
def remove(cli_ctx: CLIContext, database_id: str) -> None:
    """Close DATABASE_ID and delete its stored copy."""
    manager = cli_ctx.manager
    known = {info.id for info in manager.list_databases()}
    if database_id not in known:
        cli_ctx.logger.warning(f"Database {database_id} is not loaded; nothing to remove.")
        return
    if cli_ctx.dry_run:
        cli_ctx.logger.info(f"[dry-run] Would remove database {database_id}.")
        return
    manager.remove_database(database_id)
    cli_ctx.logger.success(f"Removed database {database_id}.")


@main.command("clear")
@click.option("--yes", is_flag=True, help="Confirm removal of every stored database.")
@pass_cli_context
@handle_cli_errors
def clear(cli_ctx: CLIContext, yes: bool) -> None:
    """Remove every loaded database and wipe the store."""
    if not yes:
        raise click.ClickException("Refusing to clear all databases without --yes.")
    count = len(cli_ctx.manager.list_databases())
    if cli_ctx.dry_run:
        cli_ctx.logger.info(f"[dry-run] Would remove {count} database(s).")
        return
    cli_ctx.manager.clear_all()
    cli_ctx.logger.success(f"Removed {count} database(s).")


@main.command("export")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@pass_cli_context
@handle_cli_errors
def export(cli_ctx: CLIContext, output: Path) -> None:
    """Write the current database image to OUTPUT."""
    image = cli_ctx.manager.export_database(cli_ctx.database_id)
    if cli_ctx.dry_run:
        cli_ctx.logger.info(f"[dry-run] Would write {len(image)} bytes to {output}.")
        return
    try:
        output.write_bytes(image)
    except OSError as exc:
        raise click.ClickException(f"Unable to write '{output}': {exc}") from exc
    cli_ctx.logger.success(f"Exported {len(image)} bytes to {output}.")


@main.command("insert")
@click.argument("table", type=str)
@click.option("--set", "assignments", multiple=True, metavar="COL=VALUE", help="Column value. Repeatable.")
@click.option("--null", "nulls", multiple=True, metavar="COL", help="Set COL to NULL. Repeatable.")
@pass_cli_context
@handle_cli_errors
def insert(cli_ctx: CLIContext, table: str, assignments: tuple[str, ...], nulls: tuple[str, ...]) -> None:
    """Insert one row into TABLE; omitted columns take their defaults."""
    manager = cli_ctx.manager
    schema = manager.get_schema(table, database_id=cli_ctx.database_id)
    values = _collect_values(schema, assignments, nulls, creating=True)
    statement = plan_insert(schema.name, values, rowid_column=schema.rowid_alias)
    if _preview_statement(cli_ctx, statement):
        return
    count = manager.insert_row(schema.name, values, database_id=cli_ctx.database_id)
    cli_ctx.logger.success(f"Inserted {count} row(s) into {schema.name}.")


@main.command("update")
@click.argument("table", type=str)
@click.option("--rowid", type=int, help="Native row identifier of the target row.")
@click.option("--key", "keys", multiple=True, metavar="COL=VALUE", help="Primary key value. Repeatable.")
@click.option("--set", "assignments", multiple=True, metavar="COL=VALUE", help="New column value. Repeatable.")
@click.option("--null", "nulls", multiple=True, metavar="COL", help="Set COL to NULL. Repeatable.")
@pass_cli_context
@handle_cli_errors
def update(
    cli_ctx: CLIContext,
    table: str,
    rowid: int | None,
    keys: tuple[str, ...],
    assignments: tuple[str, ...],
    nulls: tuple[str, ...],
) -> None:
    """Update one row of TABLE identified by --rowid or its full primary key."""
    manager = cli_ctx.manager
    schema = manager.get_schema(table, database_id=cli_ctx.database_id)
    identifier = _resolve_identifier(schema, rowid, keys)
    values = _collect_values(schema, assignments, nulls, creating=False)
    statement = plan_update(schema.name, identifier, values, rowid_column=schema.rowid_alias)
    if statement is None:
        cli_ctx.logger.info("No column values given; nothing to update.")
        return
    if _preview_statement(cli_ctx, statement):
        return
    count = manager.update_row(schema.name, identifier, values, database_id=cli_ctx.database_id)
    if count == 0:
        cli_ctx.logger.warning("No row matched the given identifier.")
        return
    cli_ctx.logger.success(f"Updated {count} row(s) in {schema.name}.")


@main.command("delete")
@click.argument("table", type=str)
@click.option("--rowid", type=int, help="Native row identifier of the target row.")
@click.option("--key", "keys", multiple=True, metavar="COL=VALUE", help="Primary key value. Repeatable.")
@pass_cli_context
@handle_cli_errors
def delete(cli_ctx: CLIContext, table: str, rowid: int | None, keys: tuple[str, ...]) -> None:
    """Delete one row of TABLE identified by --rowid or its full primary key."""
    manager = cli_ctx.manager
    schema = manager.get_schema(table, database_id=cli_ctx.database_id)
    identifier = _resolve_identifier(schema, rowid, keys)
    statement = plan_delete(schema.name, identifier)
    if _preview_statement(cli_ctx, statement):
        return
    count = manager.delete_row(schema.name, identifier, database_id=cli_ctx.database_id)
    if count == 0:
        cli_ctx.logger.warning("No row matched the given identifier.")
        return
    cli_ctx.logger.success(f"Deleted {count} row(s) from {schema.name}.")


if __name__ == "__main__":  # pragma: no cover
    main()

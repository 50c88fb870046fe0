"""sqlv-query CLI entrypoint.

Read-side commands: list loaded databases, inspect tables and schemas, browse
pages of a table and run ad-hoc SQL. Loading and row edits live in sqlv-edit.
"""

from __future__ import annotations

from collections.abc import Iterable

import click

from sqlv_cli.access.composer import parse_sort
from sqlv_cli.access.filters import parse_filter
from sqlv_cli.shared.cli import (
    CLIContext,
    common_cli_options,
    handle_cli_errors,
    parse_assignments,
    pass_cli_context,
)

from . import render

OUTPUT_FORMAT_CHOICES = render.OUTPUT_FORMAT_CHOICES
LISTING_FORMAT_CHOICES = ("table", "json")


@click.group(help="Browse and query loaded SQLite databases.")
@common_cli_options()
@handle_cli_errors
def cli(cli_ctx: CLIContext) -> None:
    """Primary Click group for sqlv-query commands."""
    active = cli_ctx.database_id or cli_ctx.manager.active_database_id
    cli_ctx.logger.debug(f"sqlv-query initialised (database={active or 'none'}).")


@cli.command("databases")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(LISTING_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def list_databases(cli_ctx: CLIContext, output_format: str) -> None:
    """List loaded databases; the active one is marked with '*'."""
    manager = cli_ctx.manager
    render.render_databases(
        manager.list_databases(),
        active_id=manager.active_database_id,
        output_format=output_format,
    )


@cli.command("tables")
@click.option("--counts", is_flag=True, help="Include the exact row count of each table.")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(LISTING_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def list_tables(cli_ctx: CLIContext, counts: bool, output_format: str) -> None:
    """List user tables of the database."""
    manager = cli_ctx.manager
    tables = manager.list_tables(database_id=cli_ctx.database_id)
    row_counts = None
    if counts:
        row_counts = {
            info.name: manager.count_rows(info.name, database_id=cli_ctx.database_id) for info in tables
        }
    render.render_tables(tables, counts=row_counts, output_format=output_format, logger=cli_ctx.logger)


@cli.command("schema")
@click.option("--table", "table_filter", type=str, help="Inspect a specific table only.")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(LISTING_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def show_schema(cli_ctx: CLIContext, table_filter: str | None, output_format: str) -> None:
    """Display column metadata."""
    manager = cli_ctx.manager
    if table_filter:
        names = [table_filter]
    else:
        names = [info.name for info in manager.list_tables(database_id=cli_ctx.database_id)]
    schemas = [manager.get_schema(name, database_id=cli_ctx.database_id) for name in names]
    render.render_schema(schemas, output_format=output_format, logger=cli_ctx.logger)


@cli.command("browse")
@click.argument("table", type=str)
@click.option("--page", type=int, default=1, show_default=True, help="1-based page number.")
@click.option("--page-size", type=int, help="Rows per page (defaults to browse.page_size).")
@click.option("--search", type=str, help="Substring to match against every column.")
@click.option("--sort", type=str, metavar="COL[:asc|desc]", help="Sort column and direction.")
@click.option(
    "--filter",
    "filters",
    multiple=True,
    metavar="EXPR",
    help="Column filter, e.g. \"qty > 5\" or \"status in a,b,NULL\". Repeatable.",
)
@click.option("--show-rowid", is_flag=True, help="Include the row identifier column.")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(OUTPUT_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def browse(
    cli_ctx: CLIContext,
    table: str,
    page: int,
    page_size: int | None,
    search: str | None,
    sort: str | None,
    filters: Iterable[str],
    show_rowid: bool,
    output_format: str,
) -> None:
    """Show one page of TABLE."""
    column_filters = [parse_filter(expression) for expression in filters]
    result = cli_ctx.manager.browse(
        table,
        page=page,
        page_size=page_size,
        search=search,
        sort=parse_sort(sort),
        filters=column_filters,
        database_id=cli_ctx.database_id,
    )
    render.render_query_result(
        result,
        output_format=output_format,
        logger=cli_ctx.logger,
        show_rowid=show_rowid,
    )
    if output_format == "table":
        cli_ctx.logger.info(render.describe_page(result))


@cli.command("sql")
@click.argument("query", type=str)
@click.option(
    "-p",
    "--param",
    "params",
    multiple=True,
    metavar="KEY=VALUE",
    help="Bind a named parameter for the SQL query.",
)
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(OUTPUT_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def run_sql(
    cli_ctx: CLIContext,
    query: str,
    params: Iterable[str],
    output_format: str,
) -> None:
    """Execute ad-hoc SQL against the database."""
    if not query.strip():
        raise click.ClickException("Query text must not be empty.")
    bound_params = parse_assignments(tuple(params), option="--param")
    result = cli_ctx.manager.run_query(
        query,
        bound_params or None,
        database_id=cli_ctx.database_id,
    )
    if not result.columns:
        cli_ctx.logger.success("Statement executed.")
        return
    render.render_query_result(result, output_format=output_format, logger=cli_ctx.logger)


@cli.command("distinct")
@click.argument("table", type=str)
@click.argument("column", type=str)
@click.option("--limit", type=int, default=1000, show_default=True, help="Maximum values to list.")
@click.option(
    "--format",
    "output_format",
    default="table",
    show_default=True,
    type=click.Choice(OUTPUT_FORMAT_CHOICES),
)
@pass_cli_context
@handle_cli_errors
def distinct(cli_ctx: CLIContext, table: str, column: str, limit: int, output_format: str) -> None:
    """List the distinct values of COLUMN in TABLE."""
    values = cli_ctx.manager.distinct_values(table, column, limit=limit, database_id=cli_ctx.database_id)
    render.render_values(column, values, output_format=output_format, logger=cli_ctx.logger)


@cli.command("storage")
@pass_cli_context
@handle_cli_errors
def storage(cli_ctx: CLIContext) -> None:
    """Show how much space stored databases use."""
    render.render_storage(cli_ctx.manager.storage_info())


def main() -> None:
    """Entry point for console_scripts."""
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()

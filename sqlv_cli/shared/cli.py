"""Shared CLI helpers and decorators."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import click

from sqlv_cli.access.manager import DatabaseManager

from .config import AppConfig, load_config
from .exceptions import ConfigurationError, SqlvError
from .logging import Logger, get_logger

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(slots=True)
class CLIContext:
    """Runtime context shared across CLI invocations."""

    config: AppConfig
    manager: DatabaseManager
    database_id: str | None
    dry_run: bool
    verbose: bool
    logger: Logger
    state: dict[str, Any] = field(default_factory=dict)


pass_cli_context = click.make_pass_decorator(CLIContext)


def common_cli_options(*, restore_databases: bool = True) -> Callable[[F], F]:
    """Decorator factory injecting shared CLI options and context creation."""

    def decorator(func: F) -> F:
        @click.option("--config", "config_path", type=click.Path(path_type=str), help="Path to config file.")
        @click.option("--database", "database_id", type=str, help="Target database id (defaults to the active one).")
        @click.option("--max-rows", type=int, help="Row ceiling for query results (minimum 100).")
        @click.option(
            "--memory-optimizations/--no-memory-optimizations",
            default=None,
            help="Cap result sets and skip expensive counts.",
        )
        @click.option("--dry-run", is_flag=True, help="Preview actions without side effects.")
        @click.option("--verbose", is_flag=True, help="Enable verbose logging output.")
        @click.pass_context
        @functools.wraps(func)
        def wrapper(
            ctx: click.Context,
            *args: Any,
            config_path: str | None = None,
            database_id: str | None = None,
            max_rows: int | None = None,
            memory_optimizations: bool | None = None,
            dry_run: bool = False,
            verbose: bool = False,
            **kwargs: Any,
        ) -> Any:
            try:
                app_config = load_config(config_path)
            except ConfigurationError as exc:
                raise click.ClickException(str(exc)) from exc
            app_config = app_config.with_limits(
                max_rows=max_rows,
                memory_optimizations=memory_optimizations,
            )

            logger = get_logger(verbose=verbose)
            try:
                manager = DatabaseManager.from_config(app_config, restore=restore_databases)
            except SqlvError as exc:
                raise click.ClickException(f"Unable to open database store: {exc}") from exc
            ctx.call_on_close(manager.close)

            cli_ctx = CLIContext(
                config=app_config,
                manager=manager,
                database_id=database_id,
                dry_run=dry_run,
                verbose=verbose,
                logger=logger,
            )
            ctx.obj = cli_ctx
            kwargs["cli_ctx"] = cli_ctx
            return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def handle_cli_errors(func: F) -> F:
    """Convert project exceptions into Click-friendly errors."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ConfigurationError as exc:
            raise click.ClickException(f"Configuration error: {exc}") from exc
        except SqlvError as exc:
            raise click.ClickException(str(exc)) from exc
        except click.ClickException:
            raise
        except Exception as exc:  # pragma: no cover
            raise click.ClickException(f"Unexpected error: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def parse_assignments(pairs: tuple[str, ...] | list[str], *, option: str) -> dict[str, str]:
    """Convert repeated ``KEY=VALUE`` options into a dictionary."""
    parsed: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.ClickException(f"{option} value '{pair}' must be in KEY=VALUE format.")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise click.ClickException(f"{option} keys cannot be empty.")
        parsed[key] = value
    return parsed

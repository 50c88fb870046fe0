"""Rich-backed logging for the CLI tools.

Library modules under ``sqlv_cli.access`` and ``sqlv_cli.shared`` log through the
standard ``logging`` module. The CLI owns presentation: ``get_logger`` returns the
console facade used for user-facing chatter and wires the library loggers into the
same stderr console through ``RichHandler``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme
from rich.traceback import install

install(show_locals=False)

LIBRARY_LOGGER_NAME = "sqlv_cli"

_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "debug": "dim",
    }
)

# stdout carries structured payloads (tables, CSV, JSON); stderr carries log chatter.
# Highlighting stays off so table names and database ids never pick up ANSI styling.
_stdout_console = Console(theme=_THEME, highlight=False)
_stderr_console = Console(stderr=True, theme=_THEME, highlight=False)


@dataclass(slots=True)
class Logger:
    """Lightweight logger facade backed by Rich consoles."""

    verbose: bool = False

    @property
    def console(self) -> Console:
        return _stdout_console

    def info(self, message: str) -> None:
        _stderr_console.print(message, style="info", markup=False)

    def success(self, message: str) -> None:
        _stderr_console.print(message, style="success", markup=False)

    def warning(self, message: str) -> None:
        _stderr_console.print(message, style="warning", markup=False)

    def error(self, message: str) -> None:
        _stderr_console.print(message, style="error", markup=False)

    def debug(self, message: str) -> None:
        if self.verbose:
            _stderr_console.print(message, style="debug", markup=False)


def configure_library_logging(verbose: bool = False) -> logging.Logger:
    """Route ``sqlv_cli`` library records to stderr via Rich.

    Warnings and errors are always shown; debug records only with ``verbose``.
    Calling this repeatedly replaces the handler rather than stacking them.
    """
    library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    for handler in list(library_logger.handlers):
        if isinstance(handler, RichHandler):
            library_logger.removeHandler(handler)
    handler = RichHandler(
        console=_stderr_console,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    library_logger.addHandler(handler)
    library_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return library_logger


def get_logger(verbose: bool = False) -> Logger:
    """Return a configured Logger instance."""
    configure_library_logging(verbose)
    return Logger(verbose=verbose)

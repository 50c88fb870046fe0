"""Identifier quoting.

SQLite cannot bind table or column names as parameters, so identifiers are the
only text ever interpolated into generated SQL. Every such interpolation goes
through ``quote_identifier``; values always travel as bound parameters.
"""

from __future__ import annotations

from collections.abc import Iterable

_DELIMITER = '"'


def quote_identifier(identifier: str) -> str:
    """Wrap ``identifier`` in double quotes, doubling any embedded quotes."""
    if not isinstance(identifier, str):
        raise TypeError(f"Identifier must be a string, got {type(identifier).__name__}")
    escaped = identifier.replace(_DELIMITER, _DELIMITER * 2)
    return f"{_DELIMITER}{escaped}{_DELIMITER}"


def quote_identifiers(identifiers: Iterable[str]) -> str:
    """Quote each identifier and join them as a comma-separated list."""
    return ", ".join(quote_identifier(identifier) for identifier in identifiers)

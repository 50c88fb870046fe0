"""Open database handles.

A handle owns one in-memory SQLite connection built from a database image and
the lock that serializes every statement issued against it. Handles for
different databases never share a lock, so they interleave freely.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from sqlv_cli.shared.exceptions import DatabaseNotFoundError, EngineError

from .types import DatabaseInfo

logger = logging.getLogger(__name__)


def open_image(data: bytes, *, foreign_keys: bool = False) -> sqlite3.Connection:
    """Return an autocommit connection holding a private copy of ``data``.

    An empty image yields an empty database. Bytes that are not a SQLite
    database raise ``EngineError``.
    """
    connection = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    try:
        if data:
            connection.deserialize(bytes(data))
        connection.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
        if foreign_keys:
            connection.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as exc:
        connection.close()
        raise EngineError(f"Not a valid SQLite database: {exc}") from exc
    return connection


class DatabaseHandle:
    """One open database plus the metadata describing it."""

    def __init__(self, connection: sqlite3.Connection, info: DatabaseInfo) -> None:
        self.connection = connection
        self.info = info
        self._lock = threading.RLock()
        self._closed = False

    @property
    def id(self) -> str:
        return self.info.id

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def locked(self) -> Iterator[sqlite3.Connection]:
        """Hold the handle exclusively for the duration of the block."""
        with self._lock:
            if self._closed:
                raise DatabaseNotFoundError(f"Database {self.info.id} has been closed")
            yield self.connection

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run one statement, translating engine failures into ``EngineError``."""
        with self.locked() as connection:
            logger.debug("[%s] %s %r", self.info.id, sql, tuple(params))
            try:
                return connection.execute(sql, tuple(params))
            except sqlite3.Error as exc:
                raise EngineError(f"SQL error: {exc}") from exc

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        with self.locked():
            cursor = self.execute(sql, params)
            try:
                return [tuple(row) for row in cursor.fetchall()]
            except sqlite3.Error as exc:
                raise EngineError(f"SQL error: {exc}") from exc
            finally:
                cursor.close()

    def fetch_scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        with self.locked():
            cursor = self.execute(sql, params)
            try:
                row = cursor.fetchone()
            except sqlite3.Error as exc:
                raise EngineError(f"SQL error: {exc}") from exc
            finally:
                cursor.close()
        return row[0] if row else None

    @property
    def total_changes(self) -> int:
        with self.locked() as connection:
            return connection.total_changes

    def export_image(self) -> bytes:
        """Serialize the whole database as it currently stands."""
        with self.locked() as connection:
            try:
                return bytes(connection.serialize())
            except sqlite3.Error as exc:
                raise EngineError(f"Failed to export database {self.info.id}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.connection.close()

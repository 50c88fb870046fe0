"""Shared pytest fixtures for the sqlv test suite.

Databases are built in memory from SQL scripts and handed to the code under
test as serialized images, the same form ``sqlv-edit load`` reads from disk.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from sqlv_cli.access.manager import DatabaseManager
from sqlv_cli.shared import paths
from sqlv_cli.shared.storage import DatabaseStore

PEOPLE_SCRIPT = """
CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT);
INSERT INTO t (id, name) VALUES (1, 'a'), (2, 'b');
"""

SQLV_ENV_KEYS = (
    "SQLV_MAX_ROWS",
    "SQLV_MEMORY_OPTIMIZATIONS",
    "SQLV_ALLOW_LARGE_FILES",
    "SQLV_MAX_DATABASE_BYTES",
    "SQLV_PAGE_SIZE",
    "SQLV_FOREIGN_KEYS",
    paths.CONFIG_FILE_ENV,
)


@pytest.fixture()
def make_image() -> Callable[[str], bytes]:
    """Return a builder turning a SQL script into a serialized database image."""

    def _build(script: str) -> bytes:
        connection = sqlite3.connect(":memory:")
        try:
            connection.executescript(script)
            return bytes(connection.serialize())
        finally:
            connection.close()

    return _build


@pytest.fixture()
def people_image(make_image: Callable[[str], bytes]) -> bytes:
    return make_image(PEOPLE_SCRIPT)


@pytest.fixture()
def store(tmp_path: Path) -> DatabaseStore:
    return DatabaseStore(tmp_path / "store" / "store.db")


@pytest.fixture()
def manager(tmp_path: Path, store: DatabaseStore) -> Iterator[DatabaseManager]:
    """A manager backed by a temp store and session file."""
    db_manager = DatabaseManager(store, session_path=tmp_path / "session.json")
    yield db_manager
    db_manager.close()


@pytest.fixture()
def sqlv_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Point every sqlv path at ``tmp_path`` and clear stray overrides."""
    env = {
        paths.CONFIG_DIR_ENV: str(tmp_path / "config"),
        paths.STORE_PATH_ENV: str(tmp_path / "store" / "store.db"),
        paths.SESSION_FILE_ENV: str(tmp_path / "config" / "session.json"),
    }
    for key in SQLV_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def people_file(tmp_path: Path, people_image: bytes) -> Path:
    path = tmp_path / "people.sqlite"
    path.write_bytes(people_image)
    return path

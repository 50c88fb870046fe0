"""Durable catalog of database images.

Every loaded (non-transient) database is kept as one row of ``stored_databases``
in a small SQLite catalog file, so images survive process restarts. The catalog
schema is managed by the migration runner below.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Iterator, Sequence

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

MIGRATION_PACKAGE = "sqlv_cli.shared.migrations"


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    description: str
    sql: str


@dataclass(frozen=True, slots=True)
class StoredDatabase:
    """One persisted database image and its metadata."""

    id: str
    name: str
    size_bytes: int
    uploaded_at: str
    data: bytes


@dataclass(frozen=True, slots=True)
class StorageEstimate:
    """Best-effort usage numbers; either field may be unknown."""

    used: int | None = None
    quota: int | None = None


def _open_connection(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def _load_migrations() -> Sequence[Migration]:
    migrations: list[Migration] = []
    with resources.as_file(resources.files(MIGRATION_PACKAGE)) as package_path:
        for entry in sorted(package_path.iterdir()):
            if entry.suffix.lower() != ".sql":
                continue
            name = entry.stem
            try:
                version_str, description = name.split("_", 1)
            except ValueError:
                version_str, description = name, name
            try:
                version = int(version_str)
            except ValueError as exc:  # pragma: no cover - packaging error
                raise PersistenceError(f"Invalid migration filename '{entry.name}'") from exc
            sql = entry.read_text(encoding="utf-8")
            migrations.append(Migration(version=version, name=name, description=description, sql=sql))
    migrations.sort(key=lambda m: m.version)
    return migrations


def _get_applied_versions(connection: sqlite3.Connection) -> set[int]:
    try:
        rows = connection.execute("SELECT version FROM schema_versions").fetchall()
    except sqlite3.OperationalError:
        return set()
    return {int(row[0]) for row in rows}


def run_migrations(path: Path) -> None:
    """Apply pending catalog migrations to the file at ``path``."""
    migrations = _load_migrations()
    if not migrations:
        return

    try:
        connection = _open_connection(path)
    except (sqlite3.Error, OSError) as exc:
        raise PersistenceError(f"Unable to open database store at {path}: {exc}") from exc
    try:
        applied = _get_applied_versions(connection)
        for migration in migrations:
            if migration.version in applied:
                continue
            connection.executescript(migration.sql)
            connection.execute(
                "INSERT OR REPLACE INTO schema_versions(version, description) VALUES (?, ?)",
                (migration.version, migration.description),
            )
            connection.commit()
            logger.debug("Applied catalog migration %s", migration.name)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Unable to prepare database store at {path}: {exc}") from exc
    finally:
        connection.close()


class DatabaseStore:
    """Persistence collaborator keyed by database id."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._migrated = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self._migrated:
            run_migrations(self.path)
            self._migrated = True
        try:
            connection = _open_connection(self.path)
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Unable to open database store at {self.path}: {exc}") from exc
        try:
            with connection:
                yield connection
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database store error: {exc}") from exc
        finally:
            connection.close()

    def put(self, record: StoredDatabase) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO stored_databases (id, name, size_bytes, uploaded_at, data)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    size_bytes = excluded.size_bytes,
                    uploaded_at = excluded.uploaded_at,
                    data = excluded.data
                """,
                (record.id, record.name, record.size_bytes, record.uploaded_at, record.data),
            )
        logger.debug("Stored database %s (%d bytes)", record.id, record.size_bytes)

    def get(self, database_id: str) -> StoredDatabase | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT id, name, size_bytes, uploaded_at, data FROM stored_databases WHERE id = ?",
                (database_id,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_all(self) -> list[StoredDatabase]:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT id, name, size_bytes, uploaded_at, data FROM stored_databases ORDER BY uploaded_at, id"
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def delete(self, database_id: str) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM stored_databases WHERE id = ?", (database_id,))

    def clear(self) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM stored_databases")

    def count(self) -> int:
        with self._connect() as connection:
            return int(connection.execute("SELECT COUNT(*) FROM stored_databases").fetchone()[0])

    def estimate_usage(self) -> StorageEstimate:
        """Sum of stored image sizes, against the size of the backing filesystem."""
        with self._connect() as connection:
            used = connection.execute(
                "SELECT COALESCE(SUM(size_bytes), 0) FROM stored_databases"
            ).fetchone()[0]
        try:
            quota: int | None = shutil.disk_usage(self.path.parent).total
        except OSError as exc:
            logger.warning("Storage quota unavailable for %s: %s", self.path.parent, exc)
            quota = None
        return StorageEstimate(used=int(used), quota=quota)


def _row_to_record(row: sqlite3.Row) -> StoredDatabase:
    return StoredDatabase(
        id=str(row["id"]),
        name=str(row["name"]),
        size_bytes=int(row["size_bytes"]),
        uploaded_at=str(row["uploaded_at"]),
        data=bytes(row["data"]),
    )

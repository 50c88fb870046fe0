"""Session state that outlives a single CLI invocation.

Records which database was selected last so the next invocation re-activates it.
Stored as JSON next to the config file and written atomically.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SESSION_VERSION = 1


@dataclass(slots=True)
class SessionState:
    """Persisted selection state."""

    version: int = SESSION_VERSION
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    last_selected_database: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "updated_at": self.updated_at,
            "last_selected_database": self.last_selected_database,
        }


def load_session(path: str | Path) -> SessionState:
    """Load session state, falling back to an empty state on any read problem."""
    resolved_path = Path(path)
    if not resolved_path.exists():
        return SessionState()

    try:
        with resolved_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read session from %s: %s; starting fresh.", resolved_path, exc)
        return SessionState()

    if not isinstance(data, dict):
        logger.warning("Session file %s is not a JSON object; starting fresh.", resolved_path)
        return SessionState()

    selected = data.get("last_selected_database")
    return SessionState(
        version=int(data.get("version", SESSION_VERSION)),
        updated_at=str(data.get("updated_at") or datetime.now(timezone.utc).isoformat()),
        last_selected_database=str(selected) if selected else None,
    )


def save_session(state: SessionState, path: str | Path) -> Path:
    """Write session state with temp file + rename."""
    resolved_path = Path(path)
    parent = resolved_path.parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True, mode=0o700)

    state.updated_at = datetime.now(timezone.utc).isoformat()
    json_content = json.dumps(state.to_dict(), indent=2)

    fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix=".session_", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json_content)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, resolved_path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
    logger.debug("Saved session to %s", resolved_path)
    return resolved_path


def remember_selection(path: str | Path, database_id: str | None) -> None:
    """Record ``database_id`` as the last selection; ``None`` forgets it.

    Write failures are logged, not raised.
    """
    state = load_session(path)
    state.last_selected_database = database_id
    try:
        save_session(state, path)
    except OSError as exc:
        logger.error("Failed to save session to %s: %s", path, exc)

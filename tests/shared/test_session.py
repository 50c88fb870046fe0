"""Tests for session state with safe file handling."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from sqlv_cli.shared.session import SessionState, load_session, remember_selection, save_session


def test_missing_file_returns_empty_state(tmp_path: Path) -> None:
    state = load_session(tmp_path / "session.json")
    assert state.last_selected_database is None


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "session.json"
    save_session(SessionState(last_selected_database="db-1"), path)

    assert load_session(path).last_selected_database == "db-1"
    assert not list(path.parent.glob(".session_*.tmp"))


def test_corrupt_file_falls_back_with_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "session.json"
    path.write_text("{not json")

    with caplog.at_level("WARNING"):
        state = load_session(path)

    assert state.last_selected_database is None
    assert "Failed to read session" in caplog.text


def test_non_object_json_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    path.write_text(json.dumps(["db-1"]))
    assert load_session(path).last_selected_database is None


def test_remember_selection_updates_and_clears(tmp_path: Path) -> None:
    path = tmp_path / "session.json"

    remember_selection(path, "db-2")
    assert json.loads(path.read_text())["last_selected_database"] == "db-2"

    remember_selection(path, None)
    assert load_session(path).last_selected_database is None

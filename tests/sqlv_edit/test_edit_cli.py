from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner

from sqlv_cli.shared.session import load_session
from sqlv_cli.shared.storage import DatabaseStore
from sqlv_cli.sqlv_edit.main import main
from sqlv_cli.sqlv_query.main import cli as query_cli


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _store(sqlv_env: dict[str, str]) -> DatabaseStore:
    return DatabaseStore(sqlv_env["SQLV_STORE_PATH"])


def _rows(runner: CliRunner, table: str = "t") -> list[dict[str, object]]:
    result = runner.invoke(query_cli, ["browse", table, "--format", "json"])
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def _load(runner: CliRunner, path: Path) -> None:
    result = runner.invoke(main, ["load", str(path)])
    assert result.exit_code == 0, result.output


def test_load_persists_and_selects(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    result = runner.invoke(main, ["load", str(people_file), "--name", "people"])

    assert result.exit_code == 0, result.output
    assert "Loaded people as" in result.output
    records = _store(sqlv_env).get_all()
    assert [record.name for record in records] == ["people"]
    session = load_session(sqlv_env["SQLV_SESSION_PATH"])
    assert session.last_selected_database == records[0].id


def test_load_dry_run_does_not_store(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    result = runner.invoke(main, ["--dry-run", "load", str(people_file)])

    assert result.exit_code == 0, result.output
    assert "[dry-run] Would load" in result.output
    assert _store(sqlv_env).count() == 0


def test_load_rejects_non_sqlite_file(runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path) -> None:
    junk = tmp_path / "junk.db"
    junk.write_bytes(b"plain text, not a database" * 200)

    result = runner.invoke(main, ["load", str(junk)])

    assert result.exit_code != 0
    assert "Not a valid SQLite database" in result.output
    assert _store(sqlv_env).count() == 0


def test_load_oversized_file(
    runner: CliRunner, sqlv_env: dict[str, str], monkeypatch: pytest.MonkeyPatch, people_file: Path
) -> None:
    monkeypatch.setenv("SQLV_MAX_DATABASE_BYTES", "1024")

    refused = runner.invoke(main, ["load", str(people_file)])
    assert refused.exit_code != 0
    assert "cannot be loaded safely" in refused.output

    allowed = runner.invoke(main, ["load", str(people_file), "--allow-large"])
    assert allowed.exit_code == 0, allowed.output
    assert "memory only" in allowed.output
    assert _store(sqlv_env).count() == 0


def test_select_and_remove(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, people_file: Path, make_image: Callable[[str], bytes]
) -> None:
    _load(runner, people_file)
    other = tmp_path / "other.sqlite"
    other.write_bytes(make_image("CREATE TABLE other (x INTEGER);"))
    _load(runner, other)
    first_id, second_id = [record.id for record in _store(sqlv_env).get_all()]

    selected = runner.invoke(main, ["select", first_id])
    assert selected.exit_code == 0, selected.output
    assert load_session(sqlv_env["SQLV_SESSION_PATH"]).last_selected_database == first_id

    removed = runner.invoke(main, ["remove", second_id])
    assert removed.exit_code == 0, removed.output
    assert [record.id for record in _store(sqlv_env).get_all()] == [first_id]


def test_select_unknown_database_fails(runner: CliRunner, sqlv_env: dict[str, str]) -> None:
    result = runner.invoke(main, ["select", "nope"])

    assert result.exit_code != 0
    assert "not found" in result.output


def test_remove_unknown_database_warns(runner: CliRunner, sqlv_env: dict[str, str]) -> None:
    result = runner.invoke(main, ["remove", "nope"])

    assert result.exit_code == 0, result.output
    assert "nothing to remove" in result.output


def test_clear_requires_confirmation(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    refused = runner.invoke(main, ["clear"])
    assert refused.exit_code != 0
    assert _store(sqlv_env).count() == 1

    cleared = runner.invoke(main, ["clear", "--yes"])
    assert cleared.exit_code == 0, cleared.output
    assert _store(sqlv_env).count() == 0


def test_export_writes_current_image(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, people_file: Path
) -> None:
    _load(runner, people_file)
    target = tmp_path / "out" / "copy.sqlite"
    target.parent.mkdir()

    result = runner.invoke(main, ["export", str(target)])

    assert result.exit_code == 0, result.output
    assert target.read_bytes()[:16] == b"SQLite format 3\x00"


def test_update_previews_without_apply(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(main, ["update", "t", "--rowid", "1", "--set", "name=z"])

    assert result.exit_code == 0, result.output
    assert "[dry-run] Would run: UPDATE" in result.output
    assert "--apply" in result.output
    assert _rows(runner)[0]["name"] == "a"


def test_update_with_apply(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(main, ["--apply", "update", "t", "--rowid", "1", "--set", "name=z"])

    assert result.exit_code == 0, result.output
    assert "Updated 1 row(s)" in result.output
    assert _rows(runner) == [{"id": 1, "name": "z"}, {"id": 2, "name": "b"}]


def test_dry_run_overrides_apply(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(main, ["--apply", "--dry-run", "delete", "t", "--rowid", "1"])

    assert result.exit_code == 0, result.output
    assert "[dry-run]" in result.output
    assert len(_rows(runner)) == 2


def test_update_missing_row_warns(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(main, ["--apply", "update", "t", "--rowid", "99", "--set", "name=z"])

    assert result.exit_code == 0, result.output
    assert "No row matched" in result.output


def test_update_without_values_does_nothing(
    runner: CliRunner, sqlv_env: dict[str, str], people_file: Path
) -> None:
    _load(runner, people_file)

    result = runner.invoke(main, ["--apply", "update", "t", "--rowid", "1"])

    assert result.exit_code == 0, result.output
    assert "nothing to update" in result.output


def test_update_requires_one_identifier(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    neither = runner.invoke(main, ["--apply", "update", "t", "--set", "name=z"])
    both = runner.invoke(main, ["--apply", "update", "t", "--rowid", "1", "--key", "id=1", "--set", "name=z"])

    assert neither.exit_code != 0
    assert both.exit_code != 0
    assert "exactly one of --rowid or --key" in neither.output


def test_update_unknown_column_fails(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(main, ["--apply", "update", "t", "--rowid", "1", "--set", "nope=1"])

    assert result.exit_code != 0
    assert "Unknown column" in result.output


def test_insert_with_null_and_defaults(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "stock.sqlite"
    path.write_bytes(
        make_image("CREATE TABLE stock (id INTEGER PRIMARY KEY, item TEXT DEFAULT 'thing', qty INTEGER DEFAULT 1);")
    )
    _load(runner, path)

    first = runner.invoke(main, ["--apply", "insert", "stock", "--set", "qty=5", "--null", "item"])
    second = runner.invoke(main, ["--apply", "insert", "stock", "--set", "qty="])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert _rows(runner, "stock") == [
        {"id": 1, "item": None, "qty": 5},
        {"id": 2, "item": "thing", "qty": 1},
    ]


def test_insert_rejects_bad_number(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "stock.sqlite"
    path.write_bytes(make_image("CREATE TABLE stock (id INTEGER PRIMARY KEY, qty INTEGER);"))
    _load(runner, path)

    result = runner.invoke(main, ["--apply", "insert", "stock", "--set", "qty=lots"])

    assert result.exit_code != 0
    assert "Invalid number" in result.output


def test_update_and_delete_by_composite_key(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "pairs.sqlite"
    path.write_bytes(
        make_image(
            "CREATE TABLE pairs (a TEXT, b INTEGER, note TEXT, PRIMARY KEY (a, b)) WITHOUT ROWID;"
            "INSERT INTO pairs VALUES ('x', 1, 'first'), ('x', 2, 'second');"
        )
    )
    _load(runner, path)

    updated = runner.invoke(
        main, ["--apply", "update", "pairs", "--key", "a=x", "--key", "b=2", "--set", "note=changed"]
    )
    assert updated.exit_code == 0, updated.output

    deleted = runner.invoke(main, ["--apply", "delete", "pairs", "--key", "a=x", "--key", "b=1"])
    assert deleted.exit_code == 0, deleted.output

    assert _rows(runner, "pairs") == [{"a": "x", "b": 2, "note": "changed"}]


def test_delete_with_rowid_on_table_without_rowid_fails(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "pairs.sqlite"
    path.write_bytes(
        make_image(
            "CREATE TABLE pairs (a TEXT, b INTEGER, PRIMARY KEY (a, b)) WITHOUT ROWID;"
            "INSERT INTO pairs VALUES ('x', 1);"
        )
    )
    _load(runner, path)

    result = runner.invoke(main, ["--apply", "delete", "pairs", "--rowid", "1"])

    assert result.exit_code != 0
    assert len(_rows(runner, "pairs")) == 1


def test_rowid_option_refused_when_column_shadows_it(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "log.sqlite"
    path.write_bytes(
        make_image(
            "CREATE TABLE log (rowid INTEGER, msg TEXT);"
            "INSERT INTO log VALUES (1, 'a'), (1, 'b'), (2, 'c');"
        )
    )
    _load(runner, path)

    preview = runner.invoke(main, ["delete", "log", "--rowid", "1"])
    applied = runner.invoke(main, ["--apply", "delete", "log", "--rowid", "1"])

    assert preview.exit_code != 0
    assert applied.exit_code != 0
    assert "--key" in applied.output
    assert len(_rows(runner, "log")) == 3

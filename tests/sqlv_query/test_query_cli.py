from __future__ import annotations

import csv
import io
import json
from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner

from sqlv_cli.sqlv_edit.main import main as edit_main
from sqlv_cli.sqlv_query.main import cli


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _load(runner: CliRunner, path: Path, *extra: str) -> None:
    result = runner.invoke(edit_main, ["load", str(path), *extra])
    assert result.exit_code == 0, result.output


def _csv_rows(output: str) -> list[list[str]]:
    return [row for row in csv.reader(io.StringIO(output)) if row]


def _json_payload(output: str) -> object:
    start = min(index for index in (output.find("["), output.find("{")) if index >= 0)
    return json.loads(output[start:])


def test_databases_lists_loaded_file(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["databases", "--format", "json"])

    assert result.exit_code == 0, result.output
    payload = _json_payload(result.output)
    assert isinstance(payload, list)
    assert len(payload) == 1
    assert payload[0]["name"] == "people.sqlite"
    assert payload[0]["active"] is True
    assert payload[0]["persisted"] is True


def test_databases_when_empty(runner: CliRunner, sqlv_env: dict[str, str]) -> None:
    result = runner.invoke(cli, ["databases"])

    assert result.exit_code == 0, result.output
    assert "No databases loaded." in result.output


def test_tables_with_counts(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["tables", "--counts", "--format", "json"])

    assert result.exit_code == 0, result.output
    assert _json_payload(result.output) == [{"name": "t", "rows": 2}]


def test_schema_json(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["schema", "--table", "t", "--format", "json"])

    assert result.exit_code == 0, result.output
    payload = _json_payload(result.output)
    assert isinstance(payload, dict)
    table = payload["tables"][0]
    assert table["name"] == "t"
    assert table["has_rowid"] is True
    assert [column["name"] for column in table["columns"]] == ["id", "name"]
    assert table["columns"][0]["primary_key"] == 1


def test_browse_csv_hides_rowid(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["browse", "t", "--format", "csv"])

    assert result.exit_code == 0, result.output
    assert "__rowid__" not in result.output
    assert _csv_rows(result.output) == [["id", "name"], ["1", "a"], ["2", "b"]]


def test_browse_json_with_rowid_filter_and_sort(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "stock.sqlite"
    path.write_bytes(
        make_image(
            "CREATE TABLE stock (id INTEGER PRIMARY KEY, item TEXT, qty INTEGER);"
            "INSERT INTO stock (item, qty) VALUES ('bolt', 4), ('nut', 12), ('gear', 30), ('cog', NULL);"
        )
    )
    _load(runner, path)

    result = runner.invoke(
        cli,
        [
            "browse",
            "stock",
            "--filter",
            "qty > 5",
            "--sort",
            "qty:desc",
            "--show-rowid",
            "--format",
            "json",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = _json_payload(result.output)
    assert payload == [
        {"__rowid__": 3, "id": 3, "item": "gear", "qty": 30},
        {"__rowid__": 2, "id": 2, "item": "nut", "qty": 12},
    ]


def test_browse_null_filter(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "stock.sqlite"
    path.write_bytes(
        make_image(
            "CREATE TABLE stock (id INTEGER PRIMARY KEY, qty INTEGER);"
            "INSERT INTO stock (qty) VALUES (4), (NULL);"
        )
    )
    _load(runner, path)

    result = runner.invoke(cli, ["browse", "stock", "--filter", "qty is null", "--format", "json"])

    assert result.exit_code == 0, result.output
    assert _json_payload(result.output) == [{"id": 2, "qty": None}]


def test_browse_table_format_reports_page(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["browse", "t", "--search", "b"])

    assert result.exit_code == 0, result.output
    assert "Rows 1-1 of 1" in result.output


def test_browse_unknown_table_fails(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["browse", "missing"])

    assert result.exit_code != 0
    assert "does not exist" in result.output


def test_browse_bad_filter_fails(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["browse", "t", "--filter", "id > many"])

    assert result.exit_code != 0


def test_commands_without_database_fail(runner: CliRunner, sqlv_env: dict[str, str]) -> None:
    result = runner.invoke(cli, ["tables"])

    assert result.exit_code != 0
    assert "No database selected" in result.output


def test_sql_with_named_parameter(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(
        cli,
        ["sql", "SELECT name FROM t WHERE id = :id", "-p", "id=2", "--format", "json"],
    )

    assert result.exit_code == 0, result.output
    assert _json_payload(result.output) == [{"name": "b"}]


def test_sql_statement_persists_changes(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    write = runner.invoke(cli, ["sql", "INSERT INTO t (name) VALUES ('c')"])
    assert write.exit_code == 0, write.output
    assert "Statement executed." in write.output

    read = runner.invoke(cli, ["sql", "SELECT COUNT(*) AS n FROM t", "--format", "json"])
    assert read.exit_code == 0, read.output
    assert _json_payload(read.output) == [{"n": 3}]


def test_sql_error_is_reported(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["sql", "SELEKT 1"])

    assert result.exit_code != 0
    assert "SQL Error" in result.output


def test_sql_rejects_empty_query(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["sql", "   "])

    assert result.exit_code != 0
    assert "must not be empty" in result.output


def test_sql_truncation_warns(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes]
) -> None:
    path = tmp_path / "big.sqlite"
    path.write_bytes(
        make_image(
            "CREATE TABLE big (n INTEGER);"
            "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 300) "
            "INSERT INTO big (n) SELECT x FROM c;"
        )
    )
    _load(runner, path)

    result = runner.invoke(cli, ["--max-rows", "100", "sql", "SELECT n FROM big", "--format", "csv"])

    assert result.exit_code == 0, result.output
    assert "truncated to 100 rows" in result.output
    assert "\n100" in result.output
    assert "\n101" not in result.output


def test_distinct_values(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["distinct", "t", "name", "--format", "json"])

    assert result.exit_code == 0, result.output
    assert _json_payload(result.output) == [{"name": "a"}, {"name": "b"}]


def test_storage_summary(runner: CliRunner, sqlv_env: dict[str, str], people_file: Path) -> None:
    _load(runner, people_file)

    result = runner.invoke(cli, ["storage"])

    assert result.exit_code == 0, result.output
    assert "Stored databases: 1" in result.output


def test_database_option_targets_specific_database(
    runner: CliRunner, sqlv_env: dict[str, str], tmp_path: Path, make_image: Callable[[str], bytes], people_file: Path
) -> None:
    _load(runner, people_file)
    listing = runner.invoke(cli, ["databases", "--format", "json"])
    people_id = _json_payload(listing.output)[0]["id"]  # type: ignore[index]

    other = tmp_path / "other.sqlite"
    other.write_bytes(make_image("CREATE TABLE other (x INTEGER);"))
    _load(runner, other)

    result = runner.invoke(cli, ["--database", people_id, "tables", "--format", "json"])

    assert result.exit_code == 0, result.output
    assert _json_payload(result.output) == [{"name": "t"}]

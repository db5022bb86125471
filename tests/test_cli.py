"""Tests for the db-schema-diff command-line interface.

Commands run through ``main()`` against folder sources and a temporary
db.toml; service calls that would reach a server are patched.
"""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from db_schema_diff.cli import build_parser, main, parse_source
from db_schema_diff.errors import InvalidSourceError, ProfileNotFoundError, SnapshotNotFoundError
from db_schema_diff.schema.catalog import SnapshotRow
from db_schema_diff.schema.models import ExecutionResult

DB_TOML = """
[profiles.dev]
server = "localhost"
username = "sa"
password = "dev-pass"
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "db.toml"
    path.write_text(DB_TOML)
    return path


@pytest.fixture
def folders(tmp_path):
    """Source and target folders differing by one added and one removed view."""
    source, target = tmp_path / "source", tmp_path / "target"
    source.mkdir()
    target.mkdir()
    (source / "vw_New.sql").write_text("CREATE VIEW dbo.vw_New AS SELECT 1 AS x")
    (target / "vw_Old.sql").write_text("CREATE VIEW dbo.vw_Old AS SELECT 1 AS x")
    (target / "Users.sql").write_text("CREATE TABLE [dbo].[Users] (\n  [Id] [int] NOT NULL\n);")
    return source, target


# ============================================================================
# Test: Argument Parsing
# ============================================================================


class TestParser:
    """Verify subcommands and options."""

    def test_compare_args(self) -> None:
        args = build_parser().parse_args(
            ["compare", "./sql", "db:dev/AppDb", "-o", "out.sql", "--diff", "--risk", "warning"]
        )
        assert args.source == "./sql"
        assert args.target == "db:dev/AppDb"
        assert args.output == "out.sql"
        assert args.diff is True
        assert args.risk == "warning"

    def test_apply_defaults(self) -> None:
        args = build_parser().parse_args(["apply", "db:dev/AppDb", "--script-file", "m.sql"])
        assert args.no_transaction is False
        assert args.continue_on_error is False
        assert args.confirm is False

    def test_global_options(self) -> None:
        args = build_parser().parse_args(["-vv", "--env-prefix", "APP_", "--config", "x.toml", "profiles"])
        assert args.verbose == 2
        assert args.env_prefix == "APP_"
        assert args.config == "x.toml"

    def test_invalid_risk(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["compare", "a", "b", "--risk", "high"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_history_args(self) -> None:
        args = build_parser().parse_args(["history", "db:dev/AppDb", "usp_GetUser", "--diff", "41", "57"])
        assert args.object == "usp_GetUser"
        assert args.diff == [41, 57]

    def test_history_object_is_optional(self) -> None:
        args = build_parser().parse_args(["history", "db:dev/AppDb"])
        assert args.object is None
        assert args.diff is None


class TestParseSource:
    """Verify source argument parsing."""

    def test_folder(self, tmp_path) -> None:
        source = parse_source(str(tmp_path / "sql"))
        assert source.type == "folder"
        assert source.name == "sql"
        assert source.folder_path == str(tmp_path / "sql")

    def test_database(self, config_file) -> None:
        source = parse_source("db:dev/AppDb", str(config_file))
        assert source.type == "database"
        assert source.name == "dev/AppDb"
        assert source.credentials.password == "dev-pass"

    def test_database_without_database_part(self, config_file) -> None:
        with pytest.raises(InvalidSourceError, match="db:<profile>/<database>"):
            parse_source("db:dev", str(config_file))

    def test_unknown_profile(self, config_file) -> None:
        with pytest.raises(ProfileNotFoundError):
            parse_source("db:qa/AppDb", str(config_file))


# ============================================================================
# Test: Commands
# ============================================================================


class TestCommands:
    """Verify exit codes and side effects of each command."""

    def test_profiles(self, config_file, capsys) -> None:
        assert main(["--config", str(config_file), "profiles"]) == 0
        assert "dev" in capsys.readouterr().out

    def test_profiles_missing_config(self, tmp_path) -> None:
        assert main(["--config", str(tmp_path / "none.toml"), "profiles"]) == 1

    def test_parse(self, folders, capsys) -> None:
        source, _ = folders
        assert main(["parse", str(source)]) == 0
        assert "vw_New" in capsys.readouterr().out

    def test_parse_missing_folder(self, tmp_path) -> None:
        assert main(["parse", str(tmp_path / "missing")]) == 1

    def test_parse_file_instead_of_folder(self, tmp_path) -> None:
        path = tmp_path / "usp_A.sql"
        path.write_text("CREATE PROCEDURE dbo.usp_A AS SELECT 1")
        assert main(["parse", str(path)]) == 1

    def test_extract_folder(self, folders, capsys) -> None:
        _, target = folders
        assert main(["extract", str(target)]) == 0
        assert "vw_Old" in capsys.readouterr().out

    def test_compare_identical(self, folders, capsys) -> None:
        source, _ = folders
        assert main(["compare", str(source), str(source)]) == 0
        assert "Schemas are identical" in capsys.readouterr().out

    def test_compare_saves_script(self, folders, tmp_path) -> None:
        source, target = folders
        output = tmp_path / "migration.sql"

        assert main(["compare", str(source), str(target), "--output", str(output), "--diff"]) == 0

        text = output.read_text(encoding="utf-8")
        assert "CREATE OR ALTER VIEW dbo.vw_New" in text
        assert "DROP VIEW IF EXISTS [dbo].[vw_Old];" in text
        assert "-- DROP TABLE [dbo].[Users];" in text
        assert "\nGO\n" in text

    def test_compare_missing_folder(self, folders, tmp_path) -> None:
        source, _ = folders
        assert main(["compare", str(source), str(tmp_path / "missing")]) == 1

    def test_apply_missing_script(self, config_file, tmp_path) -> None:
        argv = ["--config", str(config_file), "apply", "db:dev/AppDb", "--script-file", str(tmp_path / "x.sql")]
        assert main(argv) == 1

    def test_apply_without_confirm_shows_plan(self, config_file, tmp_path, capsys) -> None:
        script = tmp_path / "m.sql"
        script.write_text("SELECT 1\nGO\n-- BLOCKED\n-- DROP TABLE x;\nGO\nSELECT 2")

        with patch("db_schema_diff.cli.execute_scripts", new_callable=AsyncMock) as mock_execute:
            argv = ["--config", str(config_file), "apply", "db:dev/AppDb", "--script-file", str(script)]
            assert main(argv) == 0

        mock_execute.assert_not_called()
        assert "--confirm" in capsys.readouterr().out

    def test_apply_with_confirm(self, config_file, tmp_path) -> None:
        script = tmp_path / "m.sql"
        script.write_text("SELECT 1\nGO\n-- BLOCKED\n-- DROP TABLE x;\nGO\nSELECT 2")
        outcome = ExecutionResult(success=True, results=["Transaction committed successfully"])

        with patch("db_schema_diff.cli.execute_scripts", new_callable=AsyncMock, return_value=outcome) as mock_execute:
            argv = [
                "--config", str(config_file), "apply", "db:dev/AppDb",
                "--script-file", str(script), "--confirm", "--continue-on-error",
            ]
            assert main(argv) == 0

        target, batches = mock_execute.call_args.args
        assert target.database == "AppDb"
        assert batches == ["SELECT 1", "SELECT 2"]
        assert mock_execute.call_args.kwargs == {"use_transaction": True, "stop_on_error": False}

    def test_apply_failure_exit_code(self, config_file, tmp_path) -> None:
        script = tmp_path / "m.sql"
        script.write_text("BAD SQL")
        outcome = ExecutionResult(
            success=False, errors=["[1/1] Error: Incorrect syntax"], rolled_back=True
        )

        with patch("db_schema_diff.cli.execute_scripts", new_callable=AsyncMock, return_value=outcome):
            argv = ["--config", str(config_file), "apply", "db:dev/AppDb", "--script-file", str(script), "--confirm"]
            assert main(argv) == 1


# ============================================================================
# Test: History Command
# ============================================================================


class TestHistoryCommand:
    """Verify history listing and diff output with the service patched."""

    def _argv(self, config_file, *extra: str) -> list[str]:
        return ["--config", str(config_file), "history", "db:dev/AppDb", *extra]

    def test_list_objects(self, config_file, capsys) -> None:
        with patch(
            "db_schema_diff.cli.list_history_objects", new_callable=AsyncMock, return_value=["usp_A", "vw_B"]
        ) as mock_list:
            assert main(self._argv(config_file)) == 0

        assert mock_list.call_args.args[0].database == "AppDb"
        out = capsys.readouterr().out
        assert "usp_A" in out and "vw_B" in out
        assert "2 object(s) with saved versions" in out

    def test_list_snapshots(self, config_file, capsys) -> None:
        snapshots = [SnapshotRow(snapshot_id=57, changed_at=datetime(2024, 3, 1, 9, 30, 5))]

        with patch(
            "db_schema_diff.cli.list_snapshots", new_callable=AsyncMock, return_value=snapshots
        ) as mock_snapshots:
            assert main(self._argv(config_file, "usp_A")) == 0

        assert mock_snapshots.call_args.args[1] == "usp_A"
        out = capsys.readouterr().out
        assert "57" in out
        assert "2024-03-01 09:30:05" in out

    def test_diff(self, config_file, capsys) -> None:
        with patch(
            "db_schema_diff.cli.diff_snapshots", new_callable=AsyncMock, return_value="-SELECT 1\n+SELECT 2\n"
        ) as mock_diff:
            assert main(self._argv(config_file, "usp_A", "--diff", "41", "57")) == 0

        assert mock_diff.call_args.args[1:] == ("usp_A", 41, 57)
        assert "+SELECT 2" in capsys.readouterr().out

    def test_identical_snapshots(self, config_file, capsys) -> None:
        with patch("db_schema_diff.cli.diff_snapshots", new_callable=AsyncMock, return_value=""):
            assert main(self._argv(config_file, "usp_A", "--diff", "1", "2")) == 0

        assert "Snapshots are identical" in capsys.readouterr().out

    def test_missing_snapshot_exit_code(self, config_file, capsys) -> None:
        with patch(
            "db_schema_diff.cli.diff_snapshots",
            new_callable=AsyncMock,
            side_effect=SnapshotNotFoundError("Snapshot 9 not found"),
        ):
            assert main(self._argv(config_file, "usp_A", "--diff", "1", "9")) == 1

        assert "Snapshot 9 not found" in capsys.readouterr().out

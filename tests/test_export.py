"""Tests for script-file export, batch splitting and definition diffs."""

from db_schema_diff.schema.comparator import compare_objects
from db_schema_diff.schema.export import (
    build_script_file,
    diff_text,
    executable_batches,
    is_comment_only,
    save_script_file,
    split_batches,
    unified_diff,
)
from db_schema_diff.schema.models import (
    ChangeType,
    RiskLevel,
    SchemaChange,
    SchemaObject,
    SchemaObjectType,
)


def _view(name: str, body: str = "SELECT 1 AS x") -> SchemaObject:
    return SchemaObject(name, "dbo", SchemaObjectType.VIEW, f"CREATE VIEW dbo.{name} AS {body}")


def _changes() -> list[SchemaChange]:
    table = SchemaObject(
        "Users", "dbo", SchemaObjectType.TABLE, "CREATE TABLE [dbo].[Users] (\n  [Id] [int] NOT NULL\n);"
    )
    return compare_objects([_view("vw_New")], [_view("vw_Old"), table])


# ============================================================================
# Test: Script Files
# ============================================================================


class TestBuildScriptFile:
    """Verify the GO-separated layout."""

    def test_one_block_per_change(self) -> None:
        changes = _changes()
        text = build_script_file(changes)

        batches = split_batches(text)

        assert len(batches) == len(changes) == 3
        for batch, change in zip(batches, changes):
            assert batch.startswith(change.header())

    def test_header_format(self) -> None:
        change = SchemaChange(
            object_name="dbo.usp_GetUser",
            object_type=SchemaObjectType.STORED_PROCEDURE,
            change_type=ChangeType.ADDED,
            risk_level=RiskLevel.SAFE,
            script="CREATE OR ALTER PROCEDURE dbo.usp_GetUser AS SELECT 1",
        )
        assert build_script_file([change]) == (
            "-- ADDED: dbo.usp_GetUser (StoredProcedure)\n"
            "-- Risk Level: safe\n"
            "CREATE OR ALTER PROCEDURE dbo.usp_GetUser AS SELECT 1"
        )

    def test_empty(self) -> None:
        assert build_script_file([]) == ""

    def test_save_script_file(self, tmp_path) -> None:
        path = save_script_file(_changes(), tmp_path / "migration.sql")

        assert path == tmp_path / "migration.sql"
        assert path.read_text(encoding="utf-8") == build_script_file(_changes())


# ============================================================================
# Test: Batches
# ============================================================================


class TestBatches:
    """Verify GO splitting and comment-only detection."""

    def test_split_on_go_lines(self) -> None:
        text = "SELECT 1\ngo\nSELECT 2\n  GO  \n\nGO\n"
        assert split_batches(text) == ["SELECT 1", "SELECT 2"]

    def test_go_inside_a_line_is_not_a_separator(self) -> None:
        text = "SELECT 'GO' AS x\nGOTO done"
        assert split_batches(text) == [text]

    def test_is_comment_only(self) -> None:
        assert is_comment_only("-- a\n\n  -- b")
        assert not is_comment_only("-- a\nSELECT 1")

    def test_executable_batches_skip_blocked_changes(self) -> None:
        text = build_script_file(_changes())

        batches = executable_batches(text)

        assert len(batches) == 2
        assert not any("DROP TABLE" in batch for batch in batches)
        assert any("DROP VIEW IF EXISTS [dbo].[vw_Old];" in batch for batch in batches)


# ============================================================================
# Test: Unified Diff
# ============================================================================


class TestUnifiedDiff:
    """Verify target-to-source definition diffs."""

    def test_modified(self) -> None:
        (change,) = compare_objects([_view("v", "SELECT 2 AS x")], [_view("v", "SELECT 1 AS x")])

        diff = unified_diff(change)

        assert "--- target/dbo.v\n" in diff
        assert "+++ source/dbo.v\n" in diff
        assert "-CREATE VIEW dbo.v AS SELECT 1 AS x\n" in diff
        assert "+CREATE VIEW dbo.v AS SELECT 2 AS x\n" in diff

    def test_added_is_all_additions(self) -> None:
        source = SchemaObject("p", "dbo", SchemaObjectType.STORED_PROCEDURE, "CREATE PROCEDURE dbo.p\nAS\nSELECT 1")
        (change,) = compare_objects([source], [])

        body = unified_diff(change).splitlines()[3:]

        assert body == ["+CREATE PROCEDURE dbo.p", "+AS", "+SELECT 1"]

    def test_identical_definitions(self) -> None:
        change = SchemaChange(
            object_name="dbo.v",
            object_type=SchemaObjectType.VIEW,
            change_type=ChangeType.MODIFIED,
            risk_level=RiskLevel.SAFE,
            source_definition="SELECT 1",
            target_definition="SELECT 1",
        )
        assert unified_diff(change) == ""

    def test_crlf_is_normalized(self) -> None:
        change = SchemaChange(
            object_name="dbo.v",
            object_type=SchemaObjectType.VIEW,
            change_type=ChangeType.MODIFIED,
            risk_level=RiskLevel.SAFE,
            source_definition="A\nB",
            target_definition="A\r\nB",
        )
        assert unified_diff(change) == ""

    def test_whole_file_context(self) -> None:
        lines = [f"line {i}" for i in range(20)]
        changed = list(lines)
        changed[10] = "line ten"
        change = SchemaChange(
            object_name="dbo.v",
            object_type=SchemaObjectType.VIEW,
            change_type=ChangeType.MODIFIED,
            risk_level=RiskLevel.SAFE,
            source_definition="\n".join(changed),
            target_definition="\n".join(lines),
        )

        assert " line 0\n" not in unified_diff(change)
        assert " line 0\n" in unified_diff(change, context=None)

    def test_diff_text_labels(self) -> None:
        diff = diff_text("SELECT 1\n", "SELECT 2\n", fromfile="usp_A@41", tofile="usp_A@57")

        assert diff.splitlines()[:2] == ["--- usp_A@41", "+++ usp_A@57"]
        assert "-SELECT 1\n" in diff
        assert "+SELECT 2\n" in diff

    def test_diff_text_missing_final_newline(self) -> None:
        """Every diff line ends with a newline even when the input does not."""
        diff = diff_text("a\nb", "a\nc", fromfile="x", tofile="y")
        assert diff.endswith("+c\n")

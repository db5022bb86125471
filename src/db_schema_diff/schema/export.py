"""Script-file export and definition diffs.

A script file concatenates one block per change (header comment plus the
generated script) separated by ``GO`` batch lines, so it can be reviewed,
edited, and fed back to ``execute_scripts`` batch by batch.

Usage:
    from db_schema_diff.schema.export import save_script_file, split_batches

    save_script_file(result.changes, "migration.sql")
    batches = split_batches(Path("migration.sql").read_text())
"""

import difflib
import logging
import re
import sys
from collections.abc import Iterable
from pathlib import Path

from db_schema_diff.schema.models import SchemaChange

logger = logging.getLogger(__name__)

BATCH_SEPARATOR = "\n\nGO\n\n"

_GO_LINE = re.compile(r"^\s*GO\s*$", re.IGNORECASE | re.MULTILINE)


def build_script_file(changes: Iterable[SchemaChange]) -> str:
    """Render changes as one script, ``GO``-separated.

    Example:
        -- ADDED: dbo.usp_GetUser (StoredProcedure)
        -- Risk Level: safe
        CREATE OR ALTER PROCEDURE dbo.usp_GetUser AS SELECT 1

        GO

        -- REMOVED: dbo.vw_Old (View)
        ...
    """
    return BATCH_SEPARATOR.join(
        f"{change.header()}\n{change.script or ''}" for change in changes
    )


def save_script_file(changes: Iterable[SchemaChange], path: str | Path) -> Path:
    """Write ``build_script_file(changes)`` to ``path`` as UTF-8."""
    path = Path(path)
    path.write_text(build_script_file(changes), encoding="utf-8")
    logger.info("Saved script file: %s", path)
    return path


def split_batches(text: str) -> list[str]:
    """Split script text on ``GO`` separator lines.

    Batches that are blank after trimming are dropped.

    Example:
        >>> split_batches("SELECT 1\\nGO\\nSELECT 2")
        ['SELECT 1', 'SELECT 2']
    """
    return [batch.strip() for batch in _GO_LINE.split(text) if batch.strip()]


def is_comment_only(batch: str) -> bool:
    """True if every non-blank line is a ``--`` comment (e.g. a blocked change)."""
    return all(
        line.lstrip().startswith("--") for line in batch.splitlines() if line.strip()
    )


def executable_batches(text: str) -> list[str]:
    """Batches of a script file that contain at least one statement."""
    return [batch for batch in split_batches(text) if not is_comment_only(batch)]


def diff_text(
    before: str, after: str, fromfile: str, tofile: str, context: int | None = 3
) -> str:
    """Unified diff between two texts, line endings normalized.

    Args:
        context: Lines of context around each hunk; None shows the whole file.

    Returns:
        Diff text, empty when both sides are identical.
    """
    lines = difflib.unified_diff(
        before.replace("\r\n", "\n").splitlines(keepends=True),
        after.replace("\r\n", "\n").splitlines(keepends=True),
        fromfile=fromfile,
        tofile=tofile,
        n=sys.maxsize if context is None else context,
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


def unified_diff(change: SchemaChange, context: int | None = 3) -> str:
    """Unified diff from the target definition to the source definition."""
    return diff_text(
        change.target_definition or "",
        change.source_definition or "",
        fromfile=f"target/{change.object_name}",
        tofile=f"source/{change.object_name}",
        context=context,
    )

"""Migration script generation for a single schema change.

Safety policy:
- Destructive changes only ever produce comment-only scripts that start
  with ``-- BLOCKED``.
- Tables are never dropped by a generated script, whatever their risk.
- Column removals and constraint deltas are reported as comments only.
- Programmable objects are rewritten to ``CREATE OR ALTER`` so a script can
  be applied more than once.
"""

import re
from datetime import datetime, timezone

from db_schema_diff.schema.definitions import diff_columns, extract_constraints
from db_schema_diff.schema.models import (
    PROGRAMMABLE_TYPES,
    ChangeType,
    RiskLevel,
    SchemaObject,
    SchemaObjectType,
)
from db_schema_diff.schema.render import quote

BLOCKED_HEADER = "-- BLOCKED: This change is destructive and cannot be auto-applied"

# Keyword matched after CREATE, and the keyword written back
_CREATE_KEYWORDS: dict[SchemaObjectType, tuple[str, str]] = {
    SchemaObjectType.STORED_PROCEDURE: (r"PROC(?:EDURE)?", "PROCEDURE"),
    SchemaObjectType.FUNCTION: (r"FUNCTION", "FUNCTION"),
    SchemaObjectType.VIEW: (r"VIEW", "VIEW"),
    SchemaObjectType.TRIGGER: (r"TRIGGER", "TRIGGER"),
}

_DROP_KEYWORDS: dict[SchemaObjectType, str] = {
    SchemaObjectType.STORED_PROCEDURE: "PROCEDURE",
    SchemaObjectType.FUNCTION: "FUNCTION",
    SchemaObjectType.VIEW: "VIEW",
    SchemaObjectType.TRIGGER: "TRIGGER",
    SchemaObjectType.TABLE: "TABLE",
    SchemaObjectType.INDEX: "INDEX",
    SchemaObjectType.SEQUENCE: "SEQUENCE",
    SchemaObjectType.SYNONYM: "SYNONYM",
    SchemaObjectType.USER_DEFINED_TYPE: "TYPE",
    SchemaObjectType.TYPE: "TYPE",
}

_INDEX_TABLE = re.compile(r"ON\s+\[([^\]]+)\]\.\[([^\]]+)\]", re.IGNORECASE)
_INDEX_NAME = re.compile(r"\bINDEX\s+\[([^\]]+)\]", re.IGNORECASE)


def drop_keyword(object_type: SchemaObjectType) -> str:
    """Keyword used in ``DROP <KEYWORD> IF EXISTS``."""
    return _DROP_KEYWORDS.get(object_type, object_type.value.upper())


def convert_to_create_or_alter(definition: str, object_type: SchemaObjectType) -> str:
    """Rewrite ``CREATE <kind>`` to ``CREATE OR ALTER <kind>``.

    Text that already uses ``CREATE OR ALTER`` is returned unchanged, so the
    rewrite is idempotent.  ``PROC`` is normalized to ``PROCEDURE``.

    Example:
        >>> convert_to_create_or_alter("create proc dbo.p as select 1",
        ...                            SchemaObjectType.STORED_PROCEDURE)
        'CREATE OR ALTER PROCEDURE dbo.p as select 1'
    """
    pattern, replacement = _CREATE_KEYWORDS.get(
        object_type, (re.escape(object_type.value.upper()), object_type.value.upper())
    )
    if re.search(rf"CREATE\s+OR\s+ALTER\s+{pattern}\b", definition, re.IGNORECASE):
        return definition
    return re.sub(
        rf"CREATE\s+{pattern}\b",
        f"CREATE OR ALTER {replacement}",
        definition,
        count=1,
        flags=re.IGNORECASE,
    )


def find_index_table(definition: str) -> tuple[str, str] | None:
    """``(schema, table)`` an index definition is ``ON``, if present."""
    match = _INDEX_TABLE.search(definition)
    return (match.group(1), match.group(2)) if match else None


def index_name(index: SchemaObject) -> str:
    """Bare index name; extracted indexes are named ``<table>.<index>``.

    Example:
        >>> index_name(SchemaObject("Users.IX_A", "dbo", SchemaObjectType.INDEX,
        ...                         "CREATE INDEX [IX_A]\\nON [dbo].[Users] (A ASC);"))
        'IX_A'
    """
    match = _INDEX_NAME.search(index.definition)
    return match.group(1) if match else index.name.rsplit(".", 1)[-1]


# ============================================================================
# Table ALTER Scripts
# ============================================================================


def constraint_change_lines(source: SchemaObject, target: SchemaObject) -> list[str]:
    """Comment lines describing added, modified and removed constraints."""
    source_constraints = extract_constraints(source.definition)
    target_constraints = extract_constraints(target.definition)

    lines: list[str] = []
    for name, text in source_constraints.items():
        previous = target_constraints.get(name)
        if previous is None:
            lines += [f"-- New constraint: {name}", f"-- {text}"]
        elif previous != text:
            lines += [f"-- Modified constraint: {name}", f"-- From: {previous}", f"-- To: {text}"]

    for name, text in target_constraints.items():
        if name not in source_constraints:
            lines += [f"-- Removed constraint: {name}", f"-- {text}"]
    return lines


def generate_table_alter_script(
    source: SchemaObject,
    target: SchemaObject,
    generated_at: datetime | None = None,
) -> str:
    """ALTER TABLE script bringing ``target`` in line with ``source``.

    New columns are added and changed columns are altered.  Removed columns
    get commented-out DROP COLUMN statements; constraint changes are listed
    as comments.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    table = quote(source.schema, source.name)
    diff = diff_columns(source.definition, target.definition)

    lines = [
        f"-- Table modification: {table}",
        f"-- Generated at: {generated_at.isoformat()}",
        "",
    ]
    header_size = len(lines)

    if diff.added:
        lines.append("-- New columns to add:")
        for column in diff.added:
            default = f" {column.default_clause}" if column.default_clause else ""
            lines.append(f"ALTER TABLE {table} ADD [{column.name}] {column.definition}{default};")
        lines.append("")

    if diff.modified:
        lines.append("-- Column datatype changes (review carefully - may cause data loss):")
        for new, old in diff.modified:
            lines.append(f"-- Column [{new.name}]: {old.definition} -> {new.definition}")
            lines.append(
                f"ALTER TABLE {table} ALTER COLUMN [{new.name}] "
                f"{new.type_fragment} {new.nullability};"
            )
        lines.append("")

    if diff.removed:
        target_table = quote(target.schema, target.name)
        lines.append("-- WARNING: Column removal detected - manual review required")
        lines.append("-- The following DROP COLUMN statements are commented for safety:")
        for column in diff.removed:
            lines.append(f"-- ALTER TABLE {target_table} DROP COLUMN [{column.name}];")
        lines.append("")

    constraint_lines = constraint_change_lines(source, target)
    if constraint_lines:
        lines.append("-- Constraint changes detected:")
        lines.extend(constraint_lines)
        lines.append("")

    if len(lines) == header_size:
        lines.append("-- Other definition changes detected - manual review recommended")

    return "\n".join(lines)


# ============================================================================
# Per-change Scripts
# ============================================================================


def _drop_script(object_type: SchemaObjectType, target: SchemaObject) -> str:
    qualified = quote(target.schema, target.name)

    if object_type is SchemaObjectType.TABLE:
        return f"-- WARNING: DROP TABLE is blocked\n-- DROP TABLE {qualified};"

    if object_type is SchemaObjectType.INDEX:
        table = find_index_table(target.definition)
        if table is None:
            return "-- Unable to generate DROP INDEX statement - table name not found"
        return f"DROP INDEX [{index_name(target)}] ON {quote(*table)};"

    return f"DROP {drop_keyword(object_type)} IF EXISTS {qualified};"


def _create_script(
    object_type: SchemaObjectType,
    change_type: ChangeType,
    source: SchemaObject,
    target: SchemaObject | None,
    generated_at: datetime | None,
) -> str:
    if object_type in PROGRAMMABLE_TYPES:
        return convert_to_create_or_alter(source.definition, object_type)

    if change_type is ChangeType.MODIFIED and target is not None:
        if object_type is SchemaObjectType.TABLE:
            return generate_table_alter_script(source, target, generated_at)
        if object_type is SchemaObjectType.INDEX:
            table = find_index_table(target.definition)
            if table is not None:
                return (
                    "-- Recreating modified index\n"
                    f"DROP INDEX IF EXISTS [{index_name(target)}] ON {quote(*table)};\n"
                    f"{source.definition}"
                )

    return source.definition


def block_script(change_type: ChangeType, obj: SchemaObject, preview: str) -> str:
    """Wrap a script as a comment-only BLOCKED notice.

    Every line of the result is a ``--`` comment; blank preview lines are
    dropped.
    """
    lines = [
        BLOCKED_HEADER,
        "-- Manual review required",
        f"-- {change_type.value.upper()}: {obj.qualified_name}",
    ]
    for line in preview.splitlines():
        if not line.strip():
            continue
        lines.append(line if line.startswith("--") else f"-- {line}")
    return "\n".join(lines)


def generate_script(
    object_type: SchemaObjectType,
    change_type: ChangeType,
    source: SchemaObject | None,
    target: SchemaObject | None,
    risk_level: RiskLevel,
    generated_at: datetime | None = None,
) -> str:
    """Script that applies one change to the target.

    Args:
        object_type: Type of the changed object.
        change_type: added, removed, or modified.
        source: Source-side object (None when removed).
        target: Target-side object (None when added).
        risk_level: Assessed risk; destructive changes are always blocked.
        generated_at: Timestamp written into table ALTER scripts.

    Returns:
        SQL text, or a comment-only script when the change is blocked.
    """
    if change_type is ChangeType.REMOVED:
        if target is None:
            raise ValueError("A removed change needs a target object")
        script = _drop_script(object_type, target)
    else:
        if source is None:
            raise ValueError(f"An {change_type.value} change needs a source object")
        script = _create_script(object_type, change_type, source, target, generated_at)

    if risk_level is RiskLevel.DESTRUCTIVE:
        obj = source if source is not None else target
        return block_script(change_type, obj, script)
    return script

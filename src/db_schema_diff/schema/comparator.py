"""Diff two schema inventories and classify each difference by risk.

The comparator is pure: it takes two lists of SchemaObject and returns a
sorted list of SchemaChange, each carrying its generated script.  Database
and folder access happen before this point (see db_schema_diff.service).

Usage:
    from db_schema_diff.schema.comparator import compare_objects

    changes = compare_objects(source_objects, target_objects)
    for change in changes:
        print(change.risk_level, change.change_type, change.object_name)
"""

import hashlib
import logging
import re

from db_schema_diff.schema.definitions import (
    extract_column_definitions,
    extract_column_names,
)
from db_schema_diff.schema.models import (
    ChangeType,
    RiskLevel,
    SchemaChange,
    SchemaObject,
    SchemaObjectType,
)
from db_schema_diff.schema.scripts import generate_script

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def hash_definition(definition: str) -> str:
    """Content hash of a definition, insensitive to case and whitespace.

    Example:
        >>> hash_definition("SELECT  1\\r\\n") == hash_definition("select 1")
        True
    """
    normalized = _WHITESPACE.sub(" ", definition.replace("\r\n", "\n")).strip().lower()
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


# ============================================================================
# Risk Assessment
# ============================================================================


def has_column_removal(source: SchemaObject | None, target: SchemaObject | None) -> bool:
    """True if a target column no longer exists in the source."""
    if source is None or target is None:
        return False
    return bool(extract_column_names(target.definition) - extract_column_names(source.definition))


def has_data_type_change(source: SchemaObject | None, target: SchemaObject | None) -> bool:
    """True if a column present on both sides has a different definition."""
    if source is None or target is None:
        return False
    source_columns = extract_column_definitions(source.definition)
    target_columns = extract_column_definitions(target.definition)
    return any(
        name in target_columns and target_columns[name].key != column.key
        for name, column in source_columns.items()
    )


def assess_risk(
    object_type: SchemaObjectType,
    change_type: ChangeType,
    source: SchemaObject | None = None,
    target: SchemaObject | None = None,
) -> RiskLevel:
    """Classify one change.

    Tables: removal is destructive; a modification that drops a column is
    destructive, one that changes a column type is a warning, anything else
    is safe.  Every other type: removal is a warning, otherwise safe.
    Constraint differences never raise a table's risk.
    """
    if object_type is SchemaObjectType.TABLE:
        if change_type is ChangeType.REMOVED:
            return RiskLevel.DESTRUCTIVE
        if change_type is ChangeType.MODIFIED:
            if has_column_removal(source, target):
                return RiskLevel.DESTRUCTIVE
            if has_data_type_change(source, target):
                return RiskLevel.WARNING
        return RiskLevel.SAFE

    # Programmable objects, indexes and everything else share one policy
    if change_type is ChangeType.REMOVED:
        return RiskLevel.WARNING
    return RiskLevel.SAFE


def warning_message(
    object_type: SchemaObjectType, change_type: ChangeType, risk_level: RiskLevel
) -> str | None:
    """Human-readable caveat for a change, or None."""
    if risk_level is RiskLevel.DESTRUCTIVE and object_type is SchemaObjectType.TABLE:
        if change_type is ChangeType.REMOVED:
            return (
                "Dropping a table will permanently delete all data. "
                "This action cannot be automatically applied."
            )
        if change_type is ChangeType.MODIFIED:
            return "This change involves removing columns which may result in data loss."

    if risk_level is RiskLevel.WARNING:
        if change_type is ChangeType.REMOVED:
            return f"Removing this {object_type.value} may break dependent objects."
        if object_type is SchemaObjectType.TABLE:
            return "Table modifications may affect data integrity. Review carefully before applying."

    return None


# ============================================================================
# Diff
# ============================================================================


def create_change(
    source: SchemaObject | None,
    target: SchemaObject | None,
    change_type: ChangeType,
) -> SchemaChange:
    """Build a SchemaChange with its risk, script and warning filled in."""
    obj = source if source is not None else target
    if obj is None:
        raise ValueError("create_change() needs a source or a target object")

    risk_level = assess_risk(obj.type, change_type, source, target)
    return SchemaChange(
        object_name=obj.qualified_name,
        object_type=obj.type,
        change_type=change_type,
        risk_level=risk_level,
        source_definition=source.definition if source is not None else None,
        target_definition=target.definition if target is not None else None,
        script=generate_script(obj.type, change_type, source, target, risk_level),
        warning_message=warning_message(obj.type, change_type, risk_level),
    )


def compare_objects(
    source_objects: list[SchemaObject], target_objects: list[SchemaObject]
) -> list[SchemaChange]:
    """Diff two inventories keyed by lowercased ``schema.name``.

    Objects only in the source are "added" (they must be created on the
    target), objects only in the target are "removed", and objects on both
    sides with different normalized hashes are "modified".

    Returns:
        Changes ordered destructive, then warning, then safe; ties by name.
    """
    source_map = {obj.key: obj for obj in source_objects}
    target_map = {obj.key: obj for obj in target_objects}

    changes: list[SchemaChange] = []
    for key, source in source_map.items():
        target = target_map.pop(key, None)
        if target is None:
            changes.append(create_change(source, None, ChangeType.ADDED))
        elif hash_definition(source.definition) != hash_definition(target.definition):
            changes.append(create_change(source, target, ChangeType.MODIFIED))

    for target in target_map.values():
        changes.append(create_change(None, target, ChangeType.REMOVED))

    changes.sort(key=lambda change: (change.risk_level.rank, change.object_name))
    logger.debug(
        "Compared %d source and %d target object(s): %d change(s)",
        len(source_objects),
        len(target_objects),
        len(changes),
    )
    return changes

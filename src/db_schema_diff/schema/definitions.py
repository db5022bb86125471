"""Column and constraint extraction from CREATE TABLE text.

Structural pattern matching over bracket-quoted identifiers, applied to
reconstructed or stored table definitions.  This is intentionally
approximate -- it recognizes the layout produced by
``db_schema_diff.schema.render`` and hand-written scripts in the same
bracketed style, not arbitrary T-SQL.

Usage:
    from db_schema_diff.schema.definitions import (
        extract_column_definitions,
        extract_constraints,
    )

    columns = extract_column_definitions(table.definition)
    columns["email"].definition
    # '[nvarchar](256) NOT NULL'
"""

import re
from dataclasses import dataclass

# System types recognized when listing column names
COLUMN_TYPES = (
    "varchar", "nvarchar", "int", "bigint", "datetime", "bit", "decimal",
    "numeric", "float", "money", "text", "ntext", "char", "nchar",
    "uniqueidentifier", "date", "time", "datetime2", "smallint", "tinyint",
    "real", "smallmoney", "smalldatetime", "image", "xml", "varbinary",
    "binary", "timestamp", "rowversion", "sql_variant", "geography",
    "geometry", "hierarchyid",
)

_COLUMN_NAME_RE = re.compile(
    r"\[(\w+)\]\s+\[(?:" + "|".join(COLUMN_TYPES) + r")",
    re.IGNORECASE,
)

# Parenthesized expression, nested up to three levels: ((1)), (CONVERT([bit],(0)))
_PAREN_1 = r"\([^()\n]*\)"
_PAREN_2 = rf"\((?:[^()\n]|{_PAREN_1})*\)"
_PAREN_3 = rf"\((?:[^()\n]|{_PAREN_2})*\)"

_COLUMN_DEF_RE = re.compile(
    r"\[(\w+)\]\s+(\[[^\]]+\](?:\([^)]*\))?)\s*(IDENTITY\([^)]+\))?\s*(NOT\s+NULL|NULL)?"
    rf"(?:[ \t]+((?:CONSTRAINT\s+\[[^\]]+\]\s+)?DEFAULT\s+(?:{_PAREN_3}|[^\s,()]+)))?",
    re.IGNORECASE,
)

_CONSTRAINT_RE = re.compile(
    r"CONSTRAINT\s+\[([^\]]+)\]\s+(PRIMARY\s+KEY|FOREIGN\s+KEY|UNIQUE|CHECK)\b[^\n]*",
    re.IGNORECASE,
)

_TYPE_FRAGMENT_RE = re.compile(r"^(\[[^\]]+\](?:\([^)]*\))?)")
_NULLABILITY_RE = re.compile(r"(NOT\s+NULL|NULL)", re.IGNORECASE)


@dataclass(frozen=True)
class ColumnDefinition:
    """A column's type fragment as written in the definition.

    Attributes:
        name: Column name as written (case preserved).
        definition: Type, identity, and nullability as written,
            e.g. ``[int] IDENTITY(1,1) NOT NULL``.
        key: Lowercased, whitespace-collapsed ``definition`` used for comparison.
        default_clause: ``[CONSTRAINT [name]] DEFAULT <expr>`` when declared.
            Not part of ``key``; only used when the column is added.
    """

    name: str
    definition: str
    key: str
    default_clause: str | None = None

    @property
    def type_fragment(self) -> str:
        """Just the bracketed type with its size, e.g. ``[varchar](50)``."""
        match = _TYPE_FRAGMENT_RE.match(self.definition)
        return match.group(1) if match else self.definition

    @property
    def nullability(self) -> str:
        """``NULL`` or ``NOT NULL`` (``NULL`` when not stated)."""
        match = _NULLABILITY_RE.search(self.definition)
        if not match:
            return "NULL"
        return " ".join(match.group(1).upper().split())


def extract_column_names(definition: str) -> set[str]:
    """Lowercased names of columns declared with a recognized system type.

    Example:
        >>> sorted(extract_column_names("[Id] [int] NOT NULL, [Name] [nvarchar](50) NULL"))
        ['id', 'name']
    """
    return {match.group(1).lower() for match in _COLUMN_NAME_RE.finditer(definition)}


def extract_column_definitions(definition: str) -> dict[str, ColumnDefinition]:
    """Map lowercased column name to its ColumnDefinition.

    Matches ``[name] [type](size) [IDENTITY(s,i)] [NULL|NOT NULL] [DEFAULT ...]``
    anywhere in the text.  Insertion order follows the definition.
    """
    columns: dict[str, ColumnDefinition] = {}
    for match in _COLUMN_DEF_RE.finditer(definition):
        name, data_type, identity, nullability, default_clause = match.groups()
        parts = [data_type]
        if identity:
            parts.append(identity)
        if nullability:
            parts.append(" ".join(nullability.split()))
        text = " ".join(parts)
        columns[name.lower()] = ColumnDefinition(
            name=name,
            definition=text,
            key=" ".join(text.lower().split()),
            default_clause=default_clause.strip() if default_clause else None,
        )
    return columns


def extract_constraints(definition: str) -> dict[str, str]:
    """Map lowercased constraint name to its full constraint text.

    Example:
        >>> extract_constraints("  CONSTRAINT [PK_T] PRIMARY KEY CLUSTERED (Id),")
        {'pk_t': 'CONSTRAINT [PK_T] PRIMARY KEY CLUSTERED (Id)'}
    """
    constraints: dict[str, str] = {}
    for match in _CONSTRAINT_RE.finditer(definition):
        text = match.group(0).strip().rstrip(",").rstrip()
        constraints[match.group(1).lower()] = text
    return constraints


@dataclass(frozen=True)
class ColumnDiff:
    """Column-level delta between a source and a target table definition.

    Attributes:
        added: Source columns missing from the target.
        removed: Target columns missing from the source.
        modified: ``(source, target)`` pairs whose normalized definitions differ.
    """

    added: list[ColumnDefinition]
    removed: list[ColumnDefinition]
    modified: list[tuple[ColumnDefinition, ColumnDefinition]]

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


def diff_columns(source_definition: str, target_definition: str) -> ColumnDiff:
    """Compare the columns of two table definitions.

    Example:
        diff = diff_columns(
            "[Id] [int] NOT NULL, [Note] [nvarchar](50) NULL",
            "[Id] [int] NOT NULL",
        )
        [col.name for col in diff.added]
        # ['Note']
    """
    source = extract_column_definitions(source_definition)
    target = extract_column_definitions(target_definition)

    added: list[ColumnDefinition] = []
    modified: list[tuple[ColumnDefinition, ColumnDefinition]] = []
    for name, column in source.items():
        other = target.get(name)
        if other is None:
            added.append(column)
        elif other.key != column.key:
            modified.append((column, other))

    removed = [column for name, column in target.items() if name not in source]
    return ColumnDiff(added=added, removed=removed, modified=modified)

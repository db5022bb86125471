"""Render canonical DDL text from catalog rows.

Pure logic -- no I/O.  The extractor fetches rows and hands them to these
functions, so the exact text of every reconstructed definition can be tested
without a database.

Rendering is deterministic: the same rows always produce the same string,
which is what makes hash-based change detection stable across runs.
"""

from db_schema_diff.schema.catalog import (
    AliasTypeRow,
    CheckConstraintRow,
    ColumnRow,
    ForeignKeyRow,
    IndexRow,
    KeyConstraintRow,
    SequenceRow,
    SynonymRow,
    TableTypeColumnRow,
)

# Types whose max_length is rendered as a length (or MAX)
_LENGTH_TYPES = frozenset({"varchar", "nvarchar", "char", "nchar", "binary", "varbinary"})

# Unicode types store max_length in bytes (2 per character)
_UNICODE_TYPES = frozenset({"nvarchar", "nchar"})

_PRECISION_SCALE_TYPES = frozenset({"decimal", "numeric"})

# Types with fractional-seconds precision
_SCALE_TYPES = frozenset({"datetime2", "datetimeoffset", "time"})


def quote(*parts: str) -> str:
    """Bracket-quote and dot-join identifier parts.

    Example:
        >>> quote("dbo", "Users")
        '[dbo].[Users]'
    """
    return ".".join(f"[{part}]" for part in parts)


def format_data_type(type_name: str, max_length: int, precision: int, scale: int) -> str:
    """Render a bracketed type with its size suffix.

    Example:
        >>> format_data_type("nvarchar", 100, 0, 0)
        '[nvarchar](50)'
        >>> format_data_type("varbinary", -1, 0, 0)
        '[varbinary](MAX)'
        >>> format_data_type("decimal", 9, 18, 2)
        '[decimal](18,2)'
    """
    name = type_name.lower()

    if name in _LENGTH_TYPES:
        if max_length == -1:
            return f"[{name}](MAX)"
        length = max_length // 2 if name in _UNICODE_TYPES else max_length
        return f"[{name}]({length})"
    if name in _PRECISION_SCALE_TYPES:
        return f"[{name}]({precision},{scale})"
    if name in _SCALE_TYPES:
        return f"[{name}]({scale})"
    return f"[{name}]"


def _nullability(is_nullable: bool) -> str:
    return "NULL" if is_nullable else "NOT NULL"


def render_column(column: ColumnRow) -> str:
    """Render one column line of a CREATE TABLE body (without indent)."""
    if column.is_computed:
        line = f"[{column.column_name}] AS {column.computed_definition}"
        if column.is_persisted:
            line += " PERSISTED"
        return line

    line = f"[{column.column_name}] " + format_data_type(
        column.data_type, column.max_length, column.precision, column.scale
    )
    if column.is_identity:
        line += f" IDENTITY({column.seed_value},{column.increment_value})"
    line += f" {_nullability(column.is_nullable)}"

    if column.default_value:
        # System-generated default names differ per database; omit them
        if column.default_constraint_name and column.default_is_system_named is False:
            line += f" CONSTRAINT [{column.default_constraint_name}]"
        line += f" DEFAULT {column.default_value}"
    return line


def _clustering(index_type: str) -> str:
    return "CLUSTERED" if index_type == "CLUSTERED" else "NONCLUSTERED"


def _referential_action(action: str | None) -> str | None:
    """Map ``SET_NULL`` to ``SET NULL``; None for the NO_ACTION default."""
    if not action or action == "NO_ACTION":
        return None
    return action.replace("_", " ")


def render_table(
    schema_name: str,
    table_name: str,
    columns: list[ColumnRow],
    primary_key: KeyConstraintRow | None = None,
    unique_constraints: list[KeyConstraintRow] | None = None,
    check_constraints: list[CheckConstraintRow] | None = None,
    foreign_keys: list[ForeignKeyRow] | None = None,
) -> str:
    """Assemble a CREATE TABLE statement from catalog rows.

    Line order: columns, primary key, unique constraints, check constraints
    (disabled ones commented out), foreign keys.

    Example:
        CREATE TABLE [dbo].[Users] (
          [Id] [int] IDENTITY(1,1) NOT NULL,
          [Email] [nvarchar](256) NOT NULL,
          CONSTRAINT [PK_Users] PRIMARY KEY CLUSTERED (Id)
        );
    """
    lines: list[str] = [f"  {render_column(col)}" for col in columns]

    if primary_key is not None:
        lines.append(
            f"  CONSTRAINT [{primary_key.constraint_name}] PRIMARY KEY "
            f"{_clustering(primary_key.index_type)} ({primary_key.columns})"
        )

    for uq in unique_constraints or []:
        lines.append(
            f"  CONSTRAINT [{uq.constraint_name}] UNIQUE "
            f"{_clustering(uq.index_type)} ({uq.columns})"
        )

    for chk in check_constraints or []:
        line = f"  CONSTRAINT [{chk.constraint_name}] CHECK {chk.check_definition}"
        if chk.is_disabled:
            line = f"  -- DISABLED: {line}"
        lines.append(line)

    for fk in foreign_keys or []:
        line = (
            f"  CONSTRAINT [{fk.constraint_name}] FOREIGN KEY ({fk.columns}) "
            f"REFERENCES {quote(fk.ref_schema, fk.ref_table)}({fk.ref_columns})"
        )
        on_delete = _referential_action(fk.on_delete)
        if on_delete:
            line += f" ON DELETE {on_delete}"
        on_update = _referential_action(fk.on_update)
        if on_update:
            line += f" ON UPDATE {on_update}"
        lines.append(line)

    body = ",\n".join(lines)
    return f"CREATE TABLE {quote(schema_name, table_name)} (\n{body}\n);"


def render_index(row: IndexRow) -> str:
    """Render a CREATE INDEX statement for a standalone index."""
    definition = "CREATE"
    if row.is_unique:
        definition += " UNIQUE"
    definition += f" {row.index_type} INDEX [{row.index_name}]"
    definition += f"\nON {quote(row.schema_name, row.table_name)} ({row.key_columns or ''})"
    if row.included_columns:
        definition += f"\nINCLUDE ({row.included_columns})"
    if row.filter_definition:
        definition += f"\nWHERE {row.filter_definition}"
    return definition + ";"


def render_sequence(row: SequenceRow) -> str:
    """Render a CREATE SEQUENCE statement."""
    lines = [
        f"CREATE SEQUENCE {quote(row.schema_name, row.sequence_name)}",
        f"  AS [{row.data_type}]",
        f"  START WITH {row.start_value}",
        f"  INCREMENT BY {row.increment}",
        f"  MINVALUE {row.minimum_value}",
        f"  MAXVALUE {row.maximum_value}",
        "  CYCLE" if row.is_cycling else "  NO CYCLE",
        f"  CACHE {row.cache_size}" if row.cache_size else "  NO CACHE",
    ]
    return "\n".join(lines) + ";"


def render_synonym(row: SynonymRow) -> str:
    """Render a CREATE SYNONYM statement."""
    return f"CREATE SYNONYM {quote(row.schema_name, row.synonym_name)}\nFOR {row.base_object_name};"


def render_alias_type(row: AliasTypeRow) -> str:
    """Render a CREATE TYPE ... FROM statement for an alias type."""
    base = format_data_type(row.base_type, row.max_length, row.precision, row.scale)
    return (
        f"CREATE TYPE {quote(row.schema_name, row.type_name)}\n"
        f"FROM {base} {_nullability(row.is_nullable)};"
    )


def render_table_type(
    schema_name: str, type_name: str, columns: list[TableTypeColumnRow]
) -> str:
    """Render a CREATE TYPE ... AS TABLE statement."""
    column_defs = [
        f"\n  [{col.column_name}] "
        f"{format_data_type(col.data_type, col.max_length, col.precision, col.scale)} "
        f"{_nullability(col.is_nullable)}"
        for col in columns
    ]
    return f"CREATE TYPE {quote(schema_name, type_name)} AS TABLE ({','.join(column_defs)}\n);"

"""Exception taxonomy for schema extraction, comparison, and execution.

Driver-level errors are translated into these types at the adapter boundary
so callers (CLI, UI layer) only ever see short, presentable messages.  The
original driver exception is always chained as ``__cause__``.

Usage:
    from db_schema_diff.errors import SchemaDiffError, first_line

    try:
        result = await compare_schemas(source, target)
    except SchemaDiffError as e:
        print(f"Comparison failed: {e}")
"""


class SchemaDiffError(Exception):
    """Base class for all db-schema-diff errors."""

    pass


class DatabaseConnectionError(SchemaDiffError):
    """Raised when the extractor is not connected or a connection fails."""

    pass


class InvalidSourceError(SchemaDiffError, ValueError):
    """Raised for an incomplete or unknown ``SchemaSource`` configuration."""

    pass


class FolderNotFoundError(SchemaDiffError, FileNotFoundError):
    """Raised when a folder source path does not exist or is not a directory."""

    pass


class QueryError(SchemaDiffError):
    """Raised when a catalog query fails."""

    pass


class UnsupportedFeatureError(QueryError):
    """Raised when a catalog object does not exist on this engine version."""

    pass


class ExecutionError(SchemaDiffError):
    """Raised when a single script batch fails."""

    pass


class TransactionError(SchemaDiffError):
    """Raised when a transaction cannot be started or committed."""

    pass


class SnapshotNotFoundError(SchemaDiffError, LookupError):
    """Raised when a ChangeControl snapshot id does not exist."""

    pass


class ProfileNotFoundError(SchemaDiffError, KeyError):
    """Raised when a profile name is not present in db.toml."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0]) if self.args else ""


def first_line(message: object) -> str:
    """Return the first non-empty line of an error message.

    Engine errors are often multi-line (driver prefix, SQL state, context);
    only the first line is suitable for a UI banner or CLI output.

    Example:
        >>> first_line("Invalid object name 'x'.\\n(208) (SQLExecDirectW)")
        "Invalid object name 'x'."
    """
    text = str(message)
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return text.strip()

"""Models for schema sources, inventories, and comparison results.

This module contains schema-domain models:
- Source descriptors: ServerCredentials, SchemaSource
- Inventory value objects: SchemaObject, SchemaObjectType
- Comparison results: SchemaChange, ChangeType, RiskLevel, ComparisonResult
- Execution result: ExecutionResult

Inventory and comparison objects are frozen dataclasses created fresh per
comparison call.  Source descriptors and results that cross the service
boundary are pydantic models so they validate on construction.

Catalog row records (one per catalog query) live in
db_schema_diff.schema.catalog.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


# ============================================================================
# Enumerations
# ============================================================================


class SchemaObjectType(StrEnum):
    """Closed set of object types.

    ``Constraint``, ``Type`` and ``Schema`` are reserved; extraction never
    produces them.
    """

    TABLE = "Table"
    VIEW = "View"
    STORED_PROCEDURE = "StoredProcedure"
    FUNCTION = "Function"
    TRIGGER = "Trigger"
    INDEX = "Index"
    CONSTRAINT = "Constraint"
    TYPE = "Type"
    SCHEMA = "Schema"
    SEQUENCE = "Sequence"
    SYNONYM = "Synonym"
    USER_DEFINED_TYPE = "UserDefinedType"


# Objects whose definition is stored module text and can be CREATE OR ALTERed
PROGRAMMABLE_TYPES = frozenset(
    {
        SchemaObjectType.STORED_PROCEDURE,
        SchemaObjectType.FUNCTION,
        SchemaObjectType.VIEW,
        SchemaObjectType.TRIGGER,
    }
)


class ChangeType(StrEnum):
    """Direction of a change, relative to source vs target."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class RiskLevel(StrEnum):
    """Risk classification of a single change."""

    SAFE = "safe"
    WARNING = "warning"
    DESTRUCTIVE = "destructive"

    @property
    def rank(self) -> int:
        """Sort rank: destructive first, then warning, then safe."""
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.DESTRUCTIVE: 0,
    RiskLevel.WARNING: 1,
    RiskLevel.SAFE: 2,
}


# ============================================================================
# Source Descriptors
# ============================================================================


class ServerCredentials(BaseModel):
    """Logon fields for a SQL Server instance.

    Example:
        >>> creds = ServerCredentials(server="localhost", username="sa", password="x")
        >>> creds.driver
        'ODBC Driver 18 for SQL Server'
    """

    server: str
    username: str
    password: str | None = None
    port: int | None = None
    driver: str = "ODBC Driver 18 for SQL Server"
    encrypt: bool = True
    trust_server_certificate: bool = True


class SchemaSource(BaseModel):
    """Declarative description of one side of a comparison.

    Not a live connection -- extraction opens and closes its own connection
    per call and never stores it here.

    Example:
        >>> SchemaSource(type="folder", name="repo", folder_path="./sql")
        SchemaSource(type='folder', name='repo', ...)
    """

    type: Literal["database", "folder"]
    name: str
    database: str | None = None
    server: str | None = None
    folder_path: str | None = None
    credentials: ServerCredentials | None = None


# ============================================================================
# Inventory
# ============================================================================


@dataclass(frozen=True)
class SchemaObject:
    """A named database object with its normalized textual definition.

    Example:
        obj = SchemaObject("usp_GetUser", "dbo", SchemaObjectType.STORED_PROCEDURE,
                           "CREATE PROCEDURE dbo.usp_GetUser AS SELECT 1")
        obj.key
        # 'dbo.usp_getuser'
    """

    name: str
    schema: str
    type: SchemaObjectType
    definition: str

    @property
    def qualified_name(self) -> str:
        """``schema.name`` as extracted (case preserved)."""
        return f"{self.schema}.{self.name}"

    @property
    def key(self) -> str:
        """Case-insensitive identity key within one inventory."""
        return self.qualified_name.lower()


# ============================================================================
# Comparison Results
# ============================================================================


@dataclass(frozen=True)
class SchemaChange:
    """One difference between source and target, with its remediation script.

    Attributes:
        object_name: Qualified ``schema.name`` of the object.
        object_type: Type of the object.
        change_type: added, removed, or modified.
        risk_level: safe, warning, or destructive.
        source_definition: Definition on the source side (None if removed).
        target_definition: Definition on the target side (None if added).
        script: Generated migration script (comment-only when blocked).
        warning_message: Human-readable caveat, if any.
    """

    object_name: str
    object_type: SchemaObjectType
    change_type: ChangeType
    risk_level: RiskLevel
    source_definition: str | None = None
    target_definition: str | None = None
    script: str | None = None
    warning_message: str | None = None

    @property
    def is_blocked(self) -> bool:
        """True if the change must never be applied automatically."""
        return self.risk_level is RiskLevel.DESTRUCTIVE

    def header(self) -> str:
        """Header comment used when exporting the change to a script file."""
        return (
            f"-- {self.change_type.value.upper()}: {self.object_name} "
            f"({self.object_type.value})\n"
            f"-- Risk Level: {self.risk_level.value}"
        )


@dataclass(frozen=True)
class ComparisonResult:
    """Immutable snapshot of one comparison run."""

    source: SchemaSource
    target: SchemaSource
    changes: tuple[SchemaChange, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_changes(self) -> bool:
        """True if any difference was found."""
        return bool(self.changes)

    def summary(self) -> dict[RiskLevel, int]:
        """Count changes per risk level (every level present, possibly 0)."""
        counts = {level: 0 for level in RiskLevel}
        for change in self.changes:
            counts[change.risk_level] += 1
        return counts


# ============================================================================
# Execution Result
# ============================================================================


class ExecutionResult(BaseModel):
    """Outcome of ``execute_scripts()``.

    Attributes:
        success: True if every script succeeded (and the transaction committed).
        results: Progress messages, one per step.
        errors: Error messages, one per failed script or rollback failure.
        rolled_back: True if a transaction was rolled back, False if a
            rollback was attempted and failed, None if no rollback applies.

    Example:
        >>> ExecutionResult(success=True).errors
        []
    """

    success: bool = False
    results: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    rolled_back: bool | None = None

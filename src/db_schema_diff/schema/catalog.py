"""SQL Server catalog queries and their result records.

Each catalog query has a matching pydantic row model.  Rows are validated as
they arrive from the driver (``Model.model_validate(row)``), so a catalog
shape change fails loudly at the I/O boundary instead of producing a
half-rendered definition further down.

Queries use named parameters (``:schema``, ``:table``, ``:object_id``) which
the adapter binds through SQLAlchemy ``text()``.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CatalogRow(BaseModel):
    """Base for catalog rows -- extra driver columns are ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True)


# ============================================================================
# Tables
# ============================================================================


TABLES_QUERY = """
    SELECT
        t.name AS table_name,
        s.name AS schema_name,
        t.object_id
    FROM sys.tables t
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE t.is_ms_shipped = 0
    ORDER BY s.name, t.name
"""


class TableRow(CatalogRow):
    table_name: str
    schema_name: str
    object_id: int


COLUMNS_QUERY = """
    SELECT
        c.name AS column_name,
        t.name AS data_type,
        c.max_length,
        c.precision,
        c.scale,
        c.is_nullable,
        c.is_identity,
        c.is_computed,
        cc.definition AS computed_definition,
        cc.is_persisted,
        CAST(ISNULL(ic.seed_value, 0) AS bigint) AS seed_value,
        CAST(ISNULL(ic.increment_value, 0) AS bigint) AS increment_value,
        d.definition AS default_value,
        d.name AS default_constraint_name,
        d.is_system_named AS default_is_system_named,
        c.column_id
    FROM sys.columns c
    INNER JOIN sys.types t ON c.user_type_id = t.user_type_id
    INNER JOIN sys.tables tbl ON c.object_id = tbl.object_id
    INNER JOIN sys.schemas s ON tbl.schema_id = s.schema_id
    LEFT JOIN sys.identity_columns ic
        ON c.object_id = ic.object_id AND c.column_id = ic.column_id
    LEFT JOIN sys.default_constraints d ON c.default_object_id = d.object_id
    LEFT JOIN sys.computed_columns cc
        ON c.object_id = cc.object_id AND c.column_id = cc.column_id
    WHERE s.name = :schema AND tbl.name = :table
    ORDER BY c.column_id
"""


class ColumnRow(CatalogRow):
    column_name: str
    data_type: str
    max_length: int = 0
    precision: int = 0
    scale: int = 0
    is_nullable: bool = True
    is_identity: bool = False
    is_computed: bool = False
    computed_definition: str | None = None
    is_persisted: bool | None = None
    seed_value: int = 0
    increment_value: int = 0
    default_value: str | None = None
    default_constraint_name: str | None = None
    default_is_system_named: bool | None = None
    column_id: int = 0


PRIMARY_KEY_QUERY = """
    SELECT
        i.name AS constraint_name,
        STRING_AGG(c.name, ', ') WITHIN GROUP (ORDER BY ic.key_ordinal) AS columns,
        i.type_desc AS index_type
    FROM sys.indexes i
    INNER JOIN sys.index_columns ic
        ON i.object_id = ic.object_id AND i.index_id = ic.index_id
    INNER JOIN sys.columns c
        ON ic.object_id = c.object_id AND ic.column_id = c.column_id
    INNER JOIN sys.tables t ON i.object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE i.is_primary_key = 1 AND s.name = :schema AND t.name = :table
    GROUP BY i.name, i.type_desc
"""

UNIQUE_CONSTRAINTS_QUERY = """
    SELECT
        i.name AS constraint_name,
        STRING_AGG(c.name, ', ') WITHIN GROUP (ORDER BY ic.key_ordinal) AS columns,
        i.type_desc AS index_type
    FROM sys.indexes i
    INNER JOIN sys.index_columns ic
        ON i.object_id = ic.object_id AND i.index_id = ic.index_id
    INNER JOIN sys.columns c
        ON ic.object_id = c.object_id AND ic.column_id = c.column_id
    INNER JOIN sys.tables t ON i.object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE i.is_unique_constraint = 1 AND s.name = :schema AND t.name = :table
    GROUP BY i.name, i.type_desc
    ORDER BY i.name
"""


class KeyConstraintRow(CatalogRow):
    """Primary key or unique constraint (both come from sys.indexes)."""

    constraint_name: str
    columns: str
    index_type: str = "NONCLUSTERED"


FOREIGN_KEYS_QUERY = """
    SELECT
        fk.name AS constraint_name,
        STRING_AGG(c.name, ', ') WITHIN GROUP (ORDER BY fkc.constraint_column_id) AS columns,
        rs.name AS ref_schema,
        rt.name AS ref_table,
        STRING_AGG(rc.name, ', ') WITHIN GROUP (ORDER BY fkc.constraint_column_id) AS ref_columns,
        fk.delete_referential_action_desc AS on_delete,
        fk.update_referential_action_desc AS on_update
    FROM sys.foreign_keys fk
    INNER JOIN sys.foreign_key_columns fkc ON fk.object_id = fkc.constraint_object_id
    INNER JOIN sys.columns c
        ON fkc.parent_object_id = c.object_id AND fkc.parent_column_id = c.column_id
    INNER JOIN sys.tables t ON fk.parent_object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    INNER JOIN sys.tables rt ON fk.referenced_object_id = rt.object_id
    INNER JOIN sys.schemas rs ON rt.schema_id = rs.schema_id
    INNER JOIN sys.columns rc
        ON fkc.referenced_object_id = rc.object_id AND fkc.referenced_column_id = rc.column_id
    WHERE s.name = :schema AND t.name = :table
    GROUP BY fk.name, rs.name, rt.name,
             fk.delete_referential_action_desc, fk.update_referential_action_desc
    ORDER BY fk.name
"""


class ForeignKeyRow(CatalogRow):
    constraint_name: str
    columns: str
    ref_schema: str
    ref_table: str
    ref_columns: str
    on_delete: str | None = None
    on_update: str | None = None


CHECK_CONSTRAINTS_QUERY = """
    SELECT
        cc.name AS constraint_name,
        cc.definition AS check_definition,
        cc.is_disabled
    FROM sys.check_constraints cc
    INNER JOIN sys.tables t ON cc.parent_object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema AND t.name = :table
    ORDER BY cc.name
"""


class CheckConstraintRow(CatalogRow):
    constraint_name: str
    check_definition: str
    is_disabled: bool = False


# ============================================================================
# Programmable Objects (stored module text)
# ============================================================================


VIEWS_QUERY = """
    SELECT
        v.name AS object_name,
        s.name AS schema_name,
        m.definition
    FROM sys.views v
    INNER JOIN sys.schemas s ON v.schema_id = s.schema_id
    INNER JOIN sys.sql_modules m ON v.object_id = m.object_id
    WHERE v.is_ms_shipped = 0
    ORDER BY s.name, v.name
"""

PROCEDURES_QUERY = """
    SELECT
        p.name AS object_name,
        s.name AS schema_name,
        m.definition
    FROM sys.procedures p
    INNER JOIN sys.schemas s ON p.schema_id = s.schema_id
    INNER JOIN sys.sql_modules m ON p.object_id = m.object_id
    WHERE p.is_ms_shipped = 0
    ORDER BY s.name, p.name
"""

FUNCTIONS_QUERY = """
    SELECT
        o.name AS object_name,
        s.name AS schema_name,
        m.definition
    FROM sys.objects o
    INNER JOIN sys.schemas s ON o.schema_id = s.schema_id
    INNER JOIN sys.sql_modules m ON o.object_id = m.object_id
    WHERE o.type IN ('FN', 'IF', 'TF', 'AF')
      AND o.is_ms_shipped = 0
    ORDER BY s.name, o.name
"""

# Database-level DDL triggers (parent_class 0) have no owning schema
TRIGGERS_QUERY = """
    SELECT
        t.name AS object_name,
        s.name AS schema_name,
        m.definition
    FROM sys.triggers t
    INNER JOIN sys.sql_modules m ON t.object_id = m.object_id
    LEFT JOIN sys.objects o ON t.parent_id = o.object_id
    LEFT JOIN sys.schemas s ON o.schema_id = s.schema_id
    WHERE t.is_ms_shipped = 0
      AND t.parent_class = 1
    ORDER BY s.name, t.name
"""


class ModuleRow(CatalogRow):
    object_name: str
    schema_name: str | None = None
    definition: str | None = None


# ============================================================================
# Indexes
# ============================================================================


INDEXES_QUERY = """
    SELECT
        i.name AS index_name,
        s.name AS schema_name,
        t.name AS table_name,
        i.type_desc AS index_type,
        i.is_unique,
        i.filter_definition,
        STRING_AGG(
            CASE WHEN ic.is_included_column = 0
                THEN c.name + CASE WHEN ic.is_descending_key = 1 THEN ' DESC' ELSE ' ASC' END
                ELSE NULL
            END,
            ', '
        ) WITHIN GROUP (ORDER BY ic.key_ordinal, ic.index_column_id) AS key_columns,
        STRING_AGG(
            CASE WHEN ic.is_included_column = 1 THEN c.name ELSE NULL END,
            ', '
        ) WITHIN GROUP (ORDER BY ic.key_ordinal, ic.index_column_id) AS included_columns
    FROM sys.indexes i
    INNER JOIN sys.tables t ON i.object_id = t.object_id
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    INNER JOIN sys.index_columns ic
        ON i.object_id = ic.object_id AND i.index_id = ic.index_id
    INNER JOIN sys.columns c
        ON ic.object_id = c.object_id AND ic.column_id = c.column_id
    WHERE t.is_ms_shipped = 0
      AND i.is_primary_key = 0
      AND i.is_unique_constraint = 0
      AND i.type > 0
      AND i.name IS NOT NULL
    GROUP BY i.name, s.name, t.name, i.type_desc, i.is_unique, i.filter_definition
    ORDER BY s.name, t.name, i.name
"""


class IndexRow(CatalogRow):
    index_name: str
    schema_name: str
    table_name: str
    index_type: str
    is_unique: bool = False
    filter_definition: str | None = None
    key_columns: str | None = None
    included_columns: str | None = None


# ============================================================================
# Sequences, Synonyms, User-Defined Types
# ============================================================================


SEQUENCES_QUERY = """
    SELECT
        seq.name AS sequence_name,
        s.name AS schema_name,
        t.name AS data_type,
        CAST(seq.start_value AS nvarchar(64)) AS start_value,
        CAST(seq.increment AS nvarchar(64)) AS increment,
        CAST(seq.minimum_value AS nvarchar(64)) AS minimum_value,
        CAST(seq.maximum_value AS nvarchar(64)) AS maximum_value,
        seq.is_cycling,
        seq.cache_size
    FROM sys.sequences seq
    INNER JOIN sys.schemas s ON seq.schema_id = s.schema_id
    INNER JOIN sys.types t ON seq.user_type_id = t.user_type_id
    ORDER BY s.name, seq.name
"""


class SequenceRow(CatalogRow):
    sequence_name: str
    schema_name: str
    data_type: str
    start_value: str
    increment: str
    minimum_value: str
    maximum_value: str
    is_cycling: bool = False
    cache_size: int | None = None


SYNONYMS_QUERY = """
    SELECT
        syn.name AS synonym_name,
        s.name AS schema_name,
        syn.base_object_name
    FROM sys.synonyms syn
    INNER JOIN sys.schemas s ON syn.schema_id = s.schema_id
    ORDER BY s.name, syn.name
"""


class SynonymRow(CatalogRow):
    synonym_name: str
    schema_name: str
    base_object_name: str


ALIAS_TYPES_QUERY = """
    SELECT
        t.name AS type_name,
        s.name AS schema_name,
        bt.name AS base_type,
        t.max_length,
        t.precision,
        t.scale,
        t.is_nullable
    FROM sys.types t
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    INNER JOIN sys.types bt
        ON t.system_type_id = bt.system_type_id
        AND bt.user_type_id = bt.system_type_id
    WHERE t.is_user_defined = 1
      AND t.is_table_type = 0
    ORDER BY s.name, t.name
"""


class AliasTypeRow(CatalogRow):
    type_name: str
    schema_name: str
    base_type: str
    max_length: int = 0
    precision: int = 0
    scale: int = 0
    is_nullable: bool = True


TABLE_TYPES_QUERY = """
    SELECT
        tt.name AS type_name,
        s.name AS schema_name,
        tt.type_table_object_id
    FROM sys.table_types tt
    INNER JOIN sys.schemas s ON tt.schema_id = s.schema_id
    ORDER BY s.name, tt.name
"""


class TableTypeRow(CatalogRow):
    type_name: str
    schema_name: str
    type_table_object_id: int


TABLE_TYPE_COLUMNS_QUERY = """
    SELECT
        c.name AS column_name,
        t.name AS data_type,
        c.max_length,
        c.precision,
        c.scale,
        c.is_nullable,
        c.column_id
    FROM sys.columns c
    INNER JOIN sys.types t ON c.user_type_id = t.user_type_id
    WHERE c.object_id = :object_id
    ORDER BY c.column_id
"""


class TableTypeColumnRow(CatalogRow):
    column_name: str
    data_type: str
    max_length: int = 0
    precision: int = 0
    scale: int = 0
    is_nullable: bool = True
    column_id: int = 0


# ============================================================================
# Server
# ============================================================================


DATABASES_QUERY = """
    SELECT name
    FROM sys.databases
    WHERE database_id > 4
    ORDER BY name
"""


# ============================================================================
# ChangeControl History
# ============================================================================

# ChangeControl is an audit table kept by a DDL trigger: one row per saved
# version of a module, with the module text in ObjectReference.

HISTORY_OBJECTS_QUERY = """
    SELECT DISTINCT ObjectName AS object_name
    FROM ChangeControl WITH (NOLOCK)
    ORDER BY ObjectName
"""

SNAPSHOTS_QUERY = """
    SELECT
        ChangeControlID AS snapshot_id,
        ChangeDateTime AS changed_at
    FROM ChangeControl WITH (NOLOCK)
    WHERE ObjectName = :object_name
    ORDER BY ChangeDateTime DESC
"""

SNAPSHOT_CONTENT_QUERY = """
    SELECT ObjectReference AS definition
    FROM ChangeControl
    WHERE ChangeControlID = :snapshot_id
"""


class SnapshotRow(CatalogRow):
    snapshot_id: int
    changed_at: datetime

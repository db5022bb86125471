"""db-schema-diff: SQL Server schema comparison and migration scripting.

Compares two schema sources (a live database or a folder of ``.sql``
scripts), classifies every difference by risk, and generates a migration
script per change.  Destructive changes are never scripted as executable
DDL.

Usage:
    from db_schema_diff import compare_schemas, execute_scripts, SchemaSource
    from db_schema_diff import load_db_config, database_source
    from db_schema_diff import SchemaDiffError
"""

__version__ = "0.1.0"

# Errors
from db_schema_diff.errors import SchemaDiffError

# Schema
from db_schema_diff.schema.models import (
    ChangeType,
    ComparisonResult,
    ExecutionResult,
    RiskLevel,
    SchemaChange,
    SchemaObject,
    SchemaObjectType,
    SchemaSource,
    ServerCredentials,
)
from db_schema_diff.schema.extractor import SchemaExtractor

# Adapters
from db_schema_diff.adapters.base import DatabaseClient
from db_schema_diff.adapters.mssql import AsyncMssqlAdapter

# Config
from db_schema_diff.config.loader import database_source, load_db_config
from db_schema_diff.config.models import DatabaseConfig, DatabaseProfile

# Service
from db_schema_diff.service import (
    compare_schemas,
    execute_scripts,
    extract_schema,
    list_databases,
    parse_folder,
)

__all__ = [
    # Errors
    "SchemaDiffError",
    # Schema
    "ChangeType",
    "ComparisonResult",
    "ExecutionResult",
    "RiskLevel",
    "SchemaChange",
    "SchemaObject",
    "SchemaObjectType",
    "SchemaSource",
    "ServerCredentials",
    "SchemaExtractor",
    # Adapters
    "DatabaseClient",
    "AsyncMssqlAdapter",
    # Config
    "load_db_config",
    "database_source",
    "DatabaseConfig",
    "DatabaseProfile",
    # Service
    "compare_schemas",
    "execute_scripts",
    "extract_schema",
    "list_databases",
    "parse_folder",
]

"""Schema inventories, comparison, and migration scripts.

Provides folder parsing (``parse_folder``), live extraction
(``SchemaExtractor``), inventory diffing (``compare_objects``), and script
export (``build_script_file``, ``save_script_file``).

Usage:
    from db_schema_diff.schema import parse_folder, compare_objects
    from db_schema_diff.schema import SchemaExtractor, save_script_file
"""

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
from db_schema_diff.schema.comparator import assess_risk, compare_objects, hash_definition
from db_schema_diff.schema.export import (
    build_script_file,
    save_script_file,
    split_batches,
    unified_diff,
)
from db_schema_diff.schema.folder_parser import parse_folder
from db_schema_diff.schema.scripts import convert_to_create_or_alter, generate_script
from db_schema_diff.schema.extractor import SchemaExtractor

__all__ = [
    "ChangeType",
    "ComparisonResult",
    "ExecutionResult",
    "RiskLevel",
    "SchemaChange",
    "SchemaObject",
    "SchemaObjectType",
    "SchemaSource",
    "ServerCredentials",
    "assess_risk",
    "compare_objects",
    "hash_definition",
    "build_script_file",
    "save_script_file",
    "split_batches",
    "unified_diff",
    "parse_folder",
    "convert_to_create_or_alter",
    "generate_script",
    "SchemaExtractor",
]

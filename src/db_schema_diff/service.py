"""Comparison and execution service.

The boundary a UI or CLI calls.  Dispatches each ``SchemaSource`` to the
extractor or the folder parser and never keeps a connection open between
calls: every database operation connects, works, and disconnects in
``finally``.

Usage:
    from db_schema_diff.service import compare_schemas, execute_scripts

    result = await compare_schemas(source, target)
    scripts = [c.script for c in result.changes if not c.is_blocked]
    outcome = await execute_scripts(target, scripts)
"""

import asyncio
import logging
from pathlib import Path

from db_schema_diff.errors import InvalidSourceError
from db_schema_diff.schema import folder_parser
from db_schema_diff.schema.catalog import SnapshotRow
from db_schema_diff.schema.comparator import compare_objects
from db_schema_diff.schema.export import diff_text
from db_schema_diff.schema.extractor import AdapterFactory, SchemaExtractor, gather_or_raise
from db_schema_diff.schema.models import (
    ComparisonResult,
    ExecutionResult,
    SchemaObject,
    SchemaSource,
    ServerCredentials,
)

logger = logging.getLogger(__name__)

# Catalog to log on to when only the server matters
SERVER_DATABASE = "master"


def _require_database(source: SchemaSource) -> tuple[ServerCredentials, str]:
    if source.type != "database":
        raise InvalidSourceError(f"Expected a database source, got: {source.type}")
    if source.credentials is None or not source.database:
        raise InvalidSourceError("Database source requires credentials and database name")
    return source.credentials, source.database


async def extract_schema(
    source: SchemaSource, *, adapter_factory: AdapterFactory | None = None
) -> list[SchemaObject]:
    """Extract the inventory of a database source.

    Raises:
        InvalidSourceError: If ``source`` is not a complete database source.
        DatabaseConnectionError: If the database cannot be reached.
    """
    credentials, database = _require_database(source)
    extractor = SchemaExtractor(adapter_factory)
    try:
        await extractor.connect(credentials, database)
        return await extractor.extract_all_objects()
    finally:
        await extractor.disconnect()


async def parse_folder(folder_path: str | Path) -> list[SchemaObject]:
    """Parse a folder of scripts without blocking the event loop."""
    return await asyncio.to_thread(folder_parser.parse_folder, folder_path)


async def load_objects(
    source: SchemaSource, *, adapter_factory: AdapterFactory | None = None
) -> list[SchemaObject]:
    """Inventory of either kind of source.

    Raises:
        InvalidSourceError: If the source is incomplete or of unknown type.
    """
    if source.type == "database":
        return await extract_schema(source, adapter_factory=adapter_factory)
    if source.type == "folder":
        if not source.folder_path:
            raise InvalidSourceError("Folder source requires folder path")
        return await parse_folder(source.folder_path)
    raise InvalidSourceError("Unknown source type")


async def compare_schemas(
    source: SchemaSource,
    target: SchemaSource,
    *,
    adapter_factory: AdapterFactory | None = None,
) -> ComparisonResult:
    """Compare two sources.

    Both sides are loaded concurrently, each database side through its own
    extractor; a failure on either side cancels the other.

    Returns:
        ComparisonResult stamped with the current UTC time.

    Example:
        result = await compare_schemas(
            SchemaSource(type="folder", name="repo", folder_path="./sql"),
            database_source(config, "dev", "AppDb"),
        )
        result.summary()
        # {<RiskLevel.SAFE: 'safe'>: 3, ...}
    """
    source_objects, target_objects = await gather_or_raise(
        load_objects(source, adapter_factory=adapter_factory),
        load_objects(target, adapter_factory=adapter_factory),
    )
    changes = compare_objects(source_objects, target_objects)
    logger.info(
        "Compared %s -> %s: %d change(s)", source.name, target.name, len(changes)
    )
    return ComparisonResult(source=source, target=target, changes=tuple(changes))


async def execute_scripts(
    target: SchemaSource,
    scripts: list[str],
    *,
    use_transaction: bool = True,
    stop_on_error: bool = True,
    adapter_factory: AdapterFactory | None = None,
) -> ExecutionResult:
    """Apply scripts to a database target.

    Per-script failures are reported in the result; only infrastructure
    failures (connect, begin, commit) raise.

    Raises:
        InvalidSourceError: If ``target`` is not a complete database source.
        DatabaseConnectionError: If the database cannot be reached.
        TransactionError: If the transaction cannot be started or committed.
    """
    credentials, database = _require_database(target)
    extractor = SchemaExtractor(adapter_factory)
    try:
        await extractor.connect(credentials, database)
        return await extractor.execute_scripts(
            scripts, use_transaction=use_transaction, stop_on_error=stop_on_error
        )
    finally:
        await extractor.disconnect()


async def list_databases(
    credentials: ServerCredentials, *, adapter_factory: AdapterFactory | None = None
) -> list[str]:
    """User databases on a server, read through the ``master`` catalog."""
    extractor = SchemaExtractor(adapter_factory)
    try:
        await extractor.connect(credentials, SERVER_DATABASE)
        return await extractor.list_databases()
    finally:
        await extractor.disconnect()


async def list_history_objects(
    source: SchemaSource, *, adapter_factory: AdapterFactory | None = None
) -> list[str]:
    """Objects with saved versions in the database's ``ChangeControl`` table."""
    credentials, database = _require_database(source)
    extractor = SchemaExtractor(adapter_factory)
    try:
        await extractor.connect(credentials, database)
        return await extractor.list_history_objects()
    finally:
        await extractor.disconnect()


async def list_snapshots(
    source: SchemaSource,
    object_name: str,
    *,
    adapter_factory: AdapterFactory | None = None,
) -> list[SnapshotRow]:
    """Saved versions of one object, newest first."""
    credentials, database = _require_database(source)
    extractor = SchemaExtractor(adapter_factory)
    try:
        await extractor.connect(credentials, database)
        return await extractor.list_snapshots(object_name)
    finally:
        await extractor.disconnect()


async def diff_snapshots(
    source: SchemaSource,
    object_name: str,
    older_id: int,
    newer_id: int,
    *,
    context: int | None = 3,
    adapter_factory: AdapterFactory | None = None,
) -> str:
    """Unified diff between two saved versions of an object.

    Both snapshots are read over one connection.

    Raises:
        InvalidSourceError: If ``source`` is not a complete database source.
        SnapshotNotFoundError: If either snapshot id does not exist.

    Example:
        text = await diff_snapshots(source, "usp_GetUser", 41, 57)
        # '--- usp_GetUser@41\\n+++ usp_GetUser@57\\n@@ ...'
    """
    credentials, database = _require_database(source)
    extractor = SchemaExtractor(adapter_factory)
    try:
        await extractor.connect(credentials, database)
        older = await extractor.get_snapshot(older_id)
        newer = await extractor.get_snapshot(newer_id)
    finally:
        await extractor.disconnect()

    return diff_text(
        older,
        newer,
        fromfile=f"{object_name}@{older_id}",
        tofile=f"{object_name}@{newer_id}",
        context=context,
    )

"""SQL Server schema extraction via the system catalog.

This module queries a live database to build a normalized inventory:
- Tables, rebuilt from column, key, check and foreign key metadata
- Views, stored procedures, functions and triggers (stored module text)
- Indexes, sequences, synonyms and user-defined types

It also runs migration scripts, transactionally by default, and reads the
version history kept in a ``ChangeControl`` audit table.

Catalog access goes through a ``DatabaseClient`` so the extractor can be
exercised against any object implementing that protocol.

Usage:
    async with SchemaExtractor() as extractor:
        await extractor.connect(credentials, "AppDb")
        objects = await extractor.extract_all_objects()
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from pydantic import BaseModel

from db_schema_diff.adapters.base import DatabaseClient, Transaction
from db_schema_diff.errors import (
    DatabaseConnectionError,
    ExecutionError,
    SnapshotNotFoundError,
    TransactionError,
    UnsupportedFeatureError,
    first_line,
)
from db_schema_diff.schema import catalog
from db_schema_diff.schema.catalog import (
    AliasTypeRow,
    CheckConstraintRow,
    ColumnRow,
    ForeignKeyRow,
    IndexRow,
    KeyConstraintRow,
    ModuleRow,
    SequenceRow,
    SnapshotRow,
    SynonymRow,
    TableRow,
    TableTypeColumnRow,
    TableTypeRow,
)
from db_schema_diff.schema.export import split_batches
from db_schema_diff.schema.models import (
    ExecutionResult,
    SchemaObject,
    SchemaObjectType,
    ServerCredentials,
)
from db_schema_diff.schema.render import (
    render_alias_type,
    render_index,
    render_sequence,
    render_synonym,
    render_table,
    render_table_type,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
RowT = TypeVar("RowT", bound=BaseModel)

AdapterFactory = Callable[[ServerCredentials, str], Awaitable[DatabaseClient]]

DEFAULT_SCHEMA = "dbo"

# Length of the statement preview in progress messages
PREVIEW_LENGTH = 60


async def gather_or_raise(*coros: Coroutine[Any, Any, T]) -> list[T]:
    """Run coroutines concurrently; the first failure cancels the rest.

    Unlike ``asyncio.gather``, siblings are cancelled when one fails and
    the original exception (not an ``ExceptionGroup``) is raised.
    """
    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(coro) for coro in coros]
    except ExceptionGroup as group:
        raise group.exceptions[0] from None
    return [task.result() for task in tasks]


def _default_adapter_factory() -> AdapterFactory:
    from db_schema_diff.adapters.mssql import AsyncMssqlAdapter

    return AsyncMssqlAdapter.connect


def preview_script(script: str) -> str:
    """First statement line of a script, truncated for progress output.

    Example:
        >>> preview_script("-- header\\nCREATE TABLE [dbo].[T] ([Id] [int] NOT NULL)")
        'CREATE TABLE [dbo].[T] ([Id] [int] NOT NULL)'
    """
    first = next(
        (
            line
            for line in script.split("\n")
            if line.strip() and not line.strip().startswith("--")
        ),
        script,
    )
    if len(first) > PREVIEW_LENGTH:
        return first[:PREVIEW_LENGTH] + "..."
    return first


class SchemaExtractor:
    """Extracts a SQL Server schema inventory and executes scripts.

    Holds at most one client at a time.  ``connect()`` replaces any previous
    client; ``disconnect()`` is safe to call repeatedly.

    Args:
        adapter_factory: Coroutine function ``(credentials, database) ->
            DatabaseClient``.  Defaults to ``AsyncMssqlAdapter.connect``.

    Example:
        extractor = SchemaExtractor()
        await extractor.connect(credentials, "AppDb")
        try:
            tables = await extractor.extract_tables()
        finally:
            await extractor.disconnect()
    """

    def __init__(self, adapter_factory: AdapterFactory | None = None) -> None:
        self._adapter_factory = adapter_factory or _default_adapter_factory()
        self._client: DatabaseClient | None = None

    async def __aenter__(self) -> "SchemaExtractor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self, credentials: ServerCredentials, database: str) -> None:
        """Open a client for ``database``, closing any previous one first.

        Raises:
            DatabaseConnectionError: If the connection cannot be established.
        """
        await self.disconnect()
        try:
            self._client = await self._adapter_factory(credentials, database)
        except DatabaseConnectionError:
            raise
        except Exception as e:
            raise DatabaseConnectionError(first_line(e)) from e
        logger.info("Connected to %s on %s", database, credentials.server)

    async def disconnect(self) -> None:
        """Close and forget the client, if any."""
        client, self._client = self._client, None
        if client is not None:
            await client.close()
            logger.debug("Disconnected")

    def _require_client(self) -> DatabaseClient:
        if self._client is None:
            raise DatabaseConnectionError("Not connected to database")
        return self._client

    async def _fetch(
        self, model: type[RowT], sql: str, params: dict[str, Any] | None = None
    ) -> list[RowT]:
        rows = await self._require_client().fetch(sql, params)
        return [model.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def extract_all_objects(self) -> list[SchemaObject]:
        """Extract every supported object type.

        All per-type extractions run concurrently; any failure cancels the
        others and propagates, so a partial inventory is never returned.

        Returns:
            Objects in type order: tables, views, procedures, functions,
            triggers, indexes, sequences, synonyms, user-defined types.

        Raises:
            DatabaseConnectionError: If not connected.
        """
        self._require_client()
        groups = await gather_or_raise(
            self.extract_tables(),
            self.extract_views(),
            self.extract_stored_procedures(),
            self.extract_functions(),
            self.extract_triggers(),
            self.extract_indexes(),
            self.extract_sequences(),
            self.extract_synonyms(),
            self.extract_user_defined_types(),
        )
        objects = [obj for group in groups for obj in group]
        logger.info("Extracted %d object(s)", len(objects))
        return objects

    async def extract_tables(self) -> list[SchemaObject]:
        """Rebuild a CREATE TABLE definition for every user table.

        Tables are processed one at a time; the five detail queries for a
        table run concurrently.
        """
        tables = await self._fetch(TableRow, catalog.TABLES_QUERY)
        objects: list[SchemaObject] = []

        for table in tables:
            params = {"schema": table.schema_name, "table": table.table_name}
            columns, primary_keys, foreign_keys, checks, uniques = await gather_or_raise(
                self._fetch(ColumnRow, catalog.COLUMNS_QUERY, params),
                self._fetch(KeyConstraintRow, catalog.PRIMARY_KEY_QUERY, params),
                self._fetch(ForeignKeyRow, catalog.FOREIGN_KEYS_QUERY, params),
                self._fetch(CheckConstraintRow, catalog.CHECK_CONSTRAINTS_QUERY, params),
                self._fetch(KeyConstraintRow, catalog.UNIQUE_CONSTRAINTS_QUERY, params),
            )
            definition = render_table(
                table.schema_name,
                table.table_name,
                columns,
                primary_key=primary_keys[0] if primary_keys else None,
                unique_constraints=uniques,
                check_constraints=checks,
                foreign_keys=foreign_keys,
            )
            objects.append(
                SchemaObject(
                    name=table.table_name,
                    schema=table.schema_name,
                    type=SchemaObjectType.TABLE,
                    definition=definition,
                )
            )
            logger.debug("Rebuilt table %s.%s", table.schema_name, table.table_name)

        return objects

    async def _extract_modules(
        self, sql: str, object_type: SchemaObjectType
    ) -> list[SchemaObject]:
        rows = await self._fetch(ModuleRow, sql)
        return [
            SchemaObject(
                name=row.object_name,
                schema=row.schema_name or DEFAULT_SCHEMA,
                type=object_type,
                definition=row.definition or "",
            )
            for row in rows
        ]

    async def extract_views(self) -> list[SchemaObject]:
        return await self._extract_modules(catalog.VIEWS_QUERY, SchemaObjectType.VIEW)

    async def extract_stored_procedures(self) -> list[SchemaObject]:
        return await self._extract_modules(
            catalog.PROCEDURES_QUERY, SchemaObjectType.STORED_PROCEDURE
        )

    async def extract_functions(self) -> list[SchemaObject]:
        """Scalar, inline, table-valued and aggregate functions."""
        return await self._extract_modules(catalog.FUNCTIONS_QUERY, SchemaObjectType.FUNCTION)

    async def extract_triggers(self) -> list[SchemaObject]:
        """Object-level triggers, in the schema of their parent object."""
        return await self._extract_modules(catalog.TRIGGERS_QUERY, SchemaObjectType.TRIGGER)

    async def extract_indexes(self) -> list[SchemaObject]:
        """Standalone indexes (not backing a primary key or unique constraint).

        Index names are only unique per table, so each object is named
        ``<table>.<index>``.
        """
        rows = await self._fetch(IndexRow, catalog.INDEXES_QUERY)
        return [
            SchemaObject(
                name=f"{row.table_name}.{row.index_name}",
                schema=row.schema_name,
                type=SchemaObjectType.INDEX,
                definition=render_index(row),
            )
            for row in rows
        ]

    async def extract_sequences(self) -> list[SchemaObject]:
        """Sequences; an empty list on servers without ``sys.sequences``."""
        try:
            rows = await self._fetch(SequenceRow, catalog.SEQUENCES_QUERY)
        except UnsupportedFeatureError as e:
            logger.debug("Sequences not supported: %s", e)
            return []
        return [
            SchemaObject(
                name=row.sequence_name,
                schema=row.schema_name,
                type=SchemaObjectType.SEQUENCE,
                definition=render_sequence(row),
            )
            for row in rows
        ]

    async def extract_synonyms(self) -> list[SchemaObject]:
        rows = await self._fetch(SynonymRow, catalog.SYNONYMS_QUERY)
        return [
            SchemaObject(
                name=row.synonym_name,
                schema=row.schema_name,
                type=SchemaObjectType.SYNONYM,
                definition=render_synonym(row),
            )
            for row in rows
        ]

    async def extract_user_defined_types(self) -> list[SchemaObject]:
        """Alias types followed by table types."""
        alias_rows, table_types = await gather_or_raise(
            self._fetch(AliasTypeRow, catalog.ALIAS_TYPES_QUERY),
            self._fetch(TableTypeRow, catalog.TABLE_TYPES_QUERY),
        )

        objects = [
            SchemaObject(
                name=row.type_name,
                schema=row.schema_name,
                type=SchemaObjectType.USER_DEFINED_TYPE,
                definition=render_alias_type(row),
            )
            for row in alias_rows
        ]

        for table_type in table_types:
            columns = await self._fetch(
                TableTypeColumnRow,
                catalog.TABLE_TYPE_COLUMNS_QUERY,
                {"object_id": table_type.type_table_object_id},
            )
            objects.append(
                SchemaObject(
                    name=table_type.type_name,
                    schema=table_type.schema_name,
                    type=SchemaObjectType.USER_DEFINED_TYPE,
                    definition=render_table_type(
                        table_type.schema_name, table_type.type_name, columns
                    ),
                )
            )

        return objects

    async def list_databases(self) -> list[str]:
        """Names of the user databases on the connected server."""
        rows = await self._require_client().fetch(catalog.DATABASES_QUERY)
        return [row["name"] for row in rows]

    # ------------------------------------------------------------------
    # ChangeControl History
    # ------------------------------------------------------------------

    async def list_history_objects(self) -> list[str]:
        """Names of the objects with saved versions in ``ChangeControl``."""
        rows = await self._require_client().fetch(catalog.HISTORY_OBJECTS_QUERY)
        return [row["object_name"] for row in rows]

    async def list_snapshots(self, object_name: str) -> list[SnapshotRow]:
        """Saved versions of one object, newest first."""
        return await self._fetch(
            SnapshotRow, catalog.SNAPSHOTS_QUERY, {"object_name": object_name}
        )

    async def get_snapshot(self, snapshot_id: int) -> str:
        """Module text saved in one snapshot.

        Raises:
            SnapshotNotFoundError: If no snapshot has this id.
        """
        rows = await self._require_client().fetch(
            catalog.SNAPSHOT_CONTENT_QUERY, {"snapshot_id": snapshot_id}
        )
        if not rows:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found")
        return rows[0]["definition"] or ""

    # ------------------------------------------------------------------
    # Script Execution
    # ------------------------------------------------------------------

    async def execute_scripts(
        self,
        scripts: list[str],
        *,
        use_transaction: bool = True,
        stop_on_error: bool = True,
    ) -> ExecutionResult:
        """Execute scripts in order, collecting per-script outcomes.

        Each script is split on ``GO`` lines and its batches are sent one by
        one; a failing batch fails the whole script.  Individual script
        failures are reported in ``ExecutionResult.errors``, never raised.

        Args:
            scripts: Script texts; blank entries are skipped.
            use_transaction: Run everything in one transaction that is rolled
                back if any script fails.
            stop_on_error: Stop at the first failing script.

        Returns:
            ExecutionResult with progress messages and errors.

        Raises:
            DatabaseConnectionError: If not connected.
            TransactionError: If the transaction cannot be started or committed.
        """
        client = self._require_client()
        pending = [script for script in scripts if script.strip()]
        if not pending:
            return ExecutionResult(success=True, results=["No scripts to execute"])

        if use_transaction:
            return await self._execute_in_transaction(client, pending, stop_on_error)
        return await self._execute_autocommit(client, pending, stop_on_error)

    async def _execute_in_transaction(
        self, client: DatabaseClient, scripts: list[str], stop_on_error: bool
    ) -> ExecutionResult:
        result = ExecutionResult()
        total = len(scripts)

        transaction = await client.begin()
        result.results.append("Transaction started")

        try:
            for index, script in enumerate(scripts, start=1):
                try:
                    for batch in split_batches(script):
                        await transaction.execute(batch)
                except ExecutionError as e:
                    result.errors.append(f"[{index}/{total}] Error: {e}")
                    logger.warning("Script %d/%d failed: %s", index, total, e)
                    if stop_on_error:
                        break
                    continue
                result.results.append(
                    f"[{index}/{total}] Successfully executed: {preview_script(script)}"
                )
        except BaseException:
            # Cancellation or an unexpected driver error; release the
            # transaction before propagating.
            await self._abandon(transaction)
            raise

        if result.errors:
            message = (
                "Transaction rolled back due to error"
                if stop_on_error
                else "Transaction rolled back due to errors"
            )
            await self._rollback(transaction, result, message)
            return result

        try:
            await transaction.commit()
        except TransactionError:
            try:
                await transaction.rollback()
            except TransactionError as rollback_error:
                logger.error("Rollback after failed commit also failed: %s", rollback_error)
            raise

        result.results.append("Transaction committed successfully")
        result.success = True
        logger.info("Executed %d script(s) in one transaction", total)
        return result

    async def _rollback(
        self, transaction: Transaction, result: ExecutionResult, message: str
    ) -> None:
        try:
            await transaction.rollback()
        except TransactionError as e:
            result.errors.append(f"Rollback failed: {e}")
            result.rolled_back = False
            logger.error("Rollback failed: %s", e)
            return
        result.results.append(message)
        result.rolled_back = True

    async def _abandon(self, transaction: Transaction) -> None:
        try:
            await transaction.rollback()
        except TransactionError as e:
            logger.error("Rollback after interrupted execution failed: %s", e)
        else:
            logger.warning("Execution interrupted; transaction rolled back")

    async def _execute_autocommit(
        self, client: DatabaseClient, scripts: list[str], stop_on_error: bool
    ) -> ExecutionResult:
        result = ExecutionResult(
            results=["Executing without transaction (changes cannot be rolled back)"]
        )
        total = len(scripts)

        for index, script in enumerate(scripts, start=1):
            try:
                for batch in split_batches(script):
                    await client.execute(batch)
            except ExecutionError as e:
                result.errors.append(f"[{index}/{total}] Error: {e}")
                logger.warning("Script %d/%d failed: %s", index, total, e)
                if stop_on_error:
                    return result
                continue
            result.results.append(
                f"[{index}/{total}] Successfully executed: {preview_script(script)}"
            )

        result.success = not result.errors
        return result

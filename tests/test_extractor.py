"""Tests for SchemaExtractor against a mocked DatabaseClient.

Covers:
- Connection lifecycle (connect, replace, disconnect, not connected)
- Inventory extraction per object type, including the unsupported
  sequences fallback
- Script execution in transactional and autocommit modes
- ChangeControl history lookups
"""

import asyncio
import re
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from conftest import executed_sql, make_mock_client
from db_schema_diff.errors import (
    DatabaseConnectionError,
    QueryError,
    SnapshotNotFoundError,
    TransactionError,
    UnsupportedFeatureError,
)
from db_schema_diff.schema import catalog
from db_schema_diff.schema.extractor import (
    SchemaExtractor,
    gather_or_raise,
    preview_script,
)
from db_schema_diff.schema.models import SchemaObjectType


async def _connected(client: AsyncMock, credentials) -> SchemaExtractor:
    extractor = SchemaExtractor(AsyncMock(return_value=client))
    await extractor.connect(credentials, "AppDb")
    return extractor


def _users_client(extra: dict | None = None) -> AsyncMock:
    """A client describing one table, dbo.Users, with a primary key."""

    def columns(params):
        assert params == {"schema": "dbo", "table": "Users"}
        return [
            {
                "column_name": "Id", "data_type": "int", "max_length": 4, "precision": 10,
                "scale": 0, "is_nullable": False, "is_identity": True, "is_computed": False,
                "computed_definition": None, "is_persisted": None, "seed_value": 1,
                "increment_value": 1, "default_value": None, "default_constraint_name": None,
                "default_is_system_named": None, "column_id": 1,
            },
            {
                "column_name": "Email", "data_type": "nvarchar", "max_length": 512, "precision": 0,
                "scale": 0, "is_nullable": False, "is_identity": False, "is_computed": False,
                "computed_definition": None, "is_persisted": None, "seed_value": 0,
                "increment_value": 0, "default_value": None, "default_constraint_name": None,
                "default_is_system_named": None, "column_id": 2,
            },
        ]

    responses = {
        catalog.TABLES_QUERY: [{"table_name": "Users", "schema_name": "dbo", "object_id": 101}],
        catalog.COLUMNS_QUERY: columns,
        catalog.PRIMARY_KEY_QUERY: [
            {"constraint_name": "PK_Users", "columns": "Id", "index_type": "CLUSTERED"}
        ],
    }
    responses.update(extra or {})
    return make_mock_client(responses=responses)


def _index_row(index_name: str, table_name: str, key_columns: str) -> dict:
    return {
        "index_name": index_name, "schema_name": "dbo", "table_name": table_name,
        "index_type": "NONCLUSTERED", "is_unique": False, "filter_definition": None,
        "key_columns": key_columns, "included_columns": None,
    }


# ============================================================================
# Test: Helpers
# ============================================================================


class TestHelpers:
    def test_preview_skips_comments_and_blank_lines(self) -> None:
        assert preview_script("-- header\n\nSELECT 1\nSELECT 2") == "SELECT 1"

    def test_preview_truncates(self) -> None:
        preview = preview_script("SELECT " + "x" * 100)
        assert preview == ("SELECT " + "x" * 100)[:60] + "..."

    async def test_gather_or_raise_returns_in_order(self) -> None:
        async def value(v: int) -> int:
            await asyncio.sleep(0)
            return v

        assert await gather_or_raise(value(1), value(2), value(3)) == [1, 2, 3]

    async def test_gather_or_raise_raises_original_error(self) -> None:
        """The first failure surfaces as itself, not as an ExceptionGroup."""

        async def boom() -> None:
            raise QueryError("catalog query failed")

        async def slow() -> None:
            await asyncio.sleep(10)

        with pytest.raises(QueryError, match="catalog query failed"):
            await gather_or_raise(slow(), boom())


# ============================================================================
# Test: Connection Lifecycle
# ============================================================================


class TestConnection:
    """Verify connect() / disconnect() semantics."""

    async def test_connect_and_disconnect(self, client, factory, credentials) -> None:
        extractor = SchemaExtractor(factory)

        await extractor.connect(credentials, "AppDb")
        assert extractor.is_connected
        factory.assert_awaited_once_with(credentials, "AppDb")

        await extractor.disconnect()
        assert not extractor.is_connected
        client.close.assert_awaited_once()

    async def test_disconnect_is_idempotent(self, client, factory, credentials) -> None:
        extractor = SchemaExtractor(factory)
        await extractor.disconnect()

        await extractor.connect(credentials, "AppDb")
        await extractor.disconnect()
        await extractor.disconnect()

        assert not extractor.is_connected
        client.close.assert_awaited_once()

    async def test_connect_replaces_previous_client(self, credentials) -> None:
        first, second = make_mock_client(), make_mock_client()
        extractor = SchemaExtractor(AsyncMock(side_effect=[first, second]))

        await extractor.connect(credentials, "A")
        await extractor.connect(credentials, "B")

        first.close.assert_awaited_once()
        second.close.assert_not_awaited()

    async def test_connect_failure_keeps_first_line(self, credentials) -> None:
        factory = AsyncMock(side_effect=OSError("Login failed for user 'sa'.\n(18456) (SQLDriverConnect)"))
        extractor = SchemaExtractor(factory)

        with pytest.raises(DatabaseConnectionError, match="^Login failed for user 'sa'.$"):
            await extractor.connect(credentials, "AppDb")
        assert not extractor.is_connected

    async def test_connection_error_passes_through(self, credentials) -> None:
        factory = AsyncMock(side_effect=DatabaseConnectionError("server unreachable"))

        with pytest.raises(DatabaseConnectionError, match="server unreachable"):
            await SchemaExtractor(factory).connect(credentials, "AppDb")

    async def test_not_connected(self, factory) -> None:
        extractor = SchemaExtractor(factory)

        with pytest.raises(DatabaseConnectionError, match="Not connected to database"):
            await extractor.extract_all_objects()
        with pytest.raises(DatabaseConnectionError):
            await extractor.extract_views()
        with pytest.raises(DatabaseConnectionError):
            await extractor.execute_scripts(["SELECT 1"])
        with pytest.raises(DatabaseConnectionError):
            await extractor.list_history_objects()

    async def test_context_manager_disconnects(self, client, factory, credentials) -> None:
        async with SchemaExtractor(factory) as extractor:
            await extractor.connect(credentials, "AppDb")
        client.close.assert_awaited_once()


# ============================================================================
# Test: Inventory
# ============================================================================


class TestExtraction:
    """Verify objects produced per catalog query."""

    async def test_extract_tables(self, credentials) -> None:
        extractor = await _connected(_users_client(), credentials)

        (table,) = await extractor.extract_tables()

        assert table.qualified_name == "dbo.Users"
        assert table.type is SchemaObjectType.TABLE
        assert table.definition == (
            "CREATE TABLE [dbo].[Users] (\n"
            "  [Id] [int] IDENTITY(1,1) NOT NULL,\n"
            "  [Email] [nvarchar](256) NOT NULL,\n"
            "  CONSTRAINT [PK_Users] PRIMARY KEY CLUSTERED (Id)\n"
            ");"
        )

    async def test_extraction_is_deterministic(self, credentials) -> None:
        first = await (await _connected(_users_client(), credentials)).extract_all_objects()
        second = await (await _connected(_users_client(), credentials)).extract_all_objects()
        assert first == second

    async def test_modules_default_schema_and_empty_definition(self, credentials) -> None:
        client = make_mock_client(
            responses={
                catalog.VIEWS_QUERY: [
                    {"object_name": "vw_A", "schema_name": "rpt", "definition": "CREATE VIEW rpt.vw_A AS SELECT 1"}
                ],
                catalog.TRIGGERS_QUERY: [
                    {"object_name": "tr_X", "schema_name": None, "definition": None}
                ],
            }
        )
        extractor = await _connected(client, credentials)

        (view,) = await extractor.extract_views()
        (trigger,) = await extractor.extract_triggers()

        assert view.qualified_name == "rpt.vw_A"
        assert trigger.schema == "dbo"
        assert trigger.definition == ""

    async def test_extract_all_objects_type_order(self, credentials) -> None:
        client = _users_client(
            {
                catalog.VIEWS_QUERY: [{"object_name": "v", "schema_name": "dbo", "definition": "CREATE VIEW v"}],
                catalog.PROCEDURES_QUERY: [{"object_name": "p", "schema_name": "dbo", "definition": "CREATE PROC p"}],
                catalog.FUNCTIONS_QUERY: [{"object_name": "f", "schema_name": "dbo", "definition": "CREATE FUNCTION f"}],
                catalog.SYNONYMS_QUERY: [
                    {"synonym_name": "s", "schema_name": "dbo", "base_object_name": "[x].[dbo].[y]"}
                ],
            }
        )
        extractor = await _connected(client, credentials)

        objects = await extractor.extract_all_objects()

        assert [obj.type for obj in objects] == [
            SchemaObjectType.TABLE,
            SchemaObjectType.VIEW,
            SchemaObjectType.STORED_PROCEDURE,
            SchemaObjectType.FUNCTION,
            SchemaObjectType.SYNONYM,
        ]

    async def test_extract_indexes(self, credentials) -> None:
        row = _index_row("IX_Users_Email", "Users", "Email ASC") | {"is_unique": True}
        client = make_mock_client(responses={catalog.INDEXES_QUERY: [row]})
        extractor = await _connected(client, credentials)

        (index,) = await extractor.extract_indexes()

        assert index.qualified_name == "dbo.Users.IX_Users_Email"
        assert index.definition == "CREATE UNIQUE NONCLUSTERED INDEX [IX_Users_Email]\nON [dbo].[Users] (Email ASC);"

    async def test_same_index_name_on_two_tables(self, credentials) -> None:
        """Index names are unique per table only; keys must still be distinct."""
        client = make_mock_client(
            responses={
                catalog.INDEXES_QUERY: [
                    _index_row("IX_CreatedAt", "Orders", "CreatedAt ASC"),
                    _index_row("IX_CreatedAt", "Users", "CreatedAt ASC"),
                ]
            }
        )
        extractor = await _connected(client, credentials)

        indexes = await extractor.extract_indexes()

        keys = [index.key for index in indexes]
        assert keys == ["dbo.orders.ix_createdat", "dbo.users.ix_createdat"]

    def test_index_aggregates_share_one_ordering(self) -> None:
        """SQL Server rejects ordered aggregates with different orderings in one scope."""
        orderings = re.findall(r"WITHIN GROUP \(ORDER BY ([^)]+)\)", catalog.INDEXES_QUERY)
        assert len(orderings) == 2
        assert len(set(orderings)) == 1

    async def test_sequences_unsupported_returns_empty(self, credentials) -> None:
        client = make_mock_client(
            errors={catalog.SEQUENCES_QUERY: UnsupportedFeatureError("Invalid object name 'sys.sequences'.")}
        )
        extractor = await _connected(client, credentials)

        assert await extractor.extract_sequences() == []

    async def test_sequences(self, credentials) -> None:
        client = make_mock_client(
            responses={
                catalog.SEQUENCES_QUERY: [
                    {
                        "sequence_name": "OrderNo", "schema_name": "dbo", "data_type": "int",
                        "start_value": "1", "increment": "1", "minimum_value": "1",
                        "maximum_value": "1000", "is_cycling": False, "cache_size": None,
                    }
                ]
            }
        )
        extractor = await _connected(client, credentials)

        (sequence,) = await extractor.extract_sequences()

        assert sequence.type is SchemaObjectType.SEQUENCE
        assert sequence.definition.startswith("CREATE SEQUENCE [dbo].[OrderNo]")

    async def test_query_failure_aborts_extraction(self, credentials) -> None:
        """Other query failures propagate; no partial inventory is returned."""
        client = make_mock_client(errors={catalog.VIEWS_QUERY: QueryError("permission denied")})
        extractor = await _connected(client, credentials)

        with pytest.raises(QueryError, match="permission denied"):
            await extractor.extract_all_objects()

    async def test_user_defined_types(self, credentials) -> None:
        def table_type_columns(params):
            assert params == {"object_id": 555}
            return [{"column_name": "Id", "data_type": "int", "is_nullable": False}]

        client = make_mock_client(
            responses={
                catalog.ALIAS_TYPES_QUERY: [
                    {"type_name": "Phone", "schema_name": "dbo", "base_type": "varchar",
                     "max_length": 20, "precision": 0, "scale": 0, "is_nullable": True}
                ],
                catalog.TABLE_TYPES_QUERY: [
                    {"type_name": "IdList", "schema_name": "dbo", "type_table_object_id": 555}
                ],
                catalog.TABLE_TYPE_COLUMNS_QUERY: table_type_columns,
            }
        )
        extractor = await _connected(client, credentials)

        alias, table_type = await extractor.extract_user_defined_types()

        assert alias.definition == "CREATE TYPE [dbo].[Phone]\nFROM [varchar](20) NULL;"
        assert table_type.definition == "CREATE TYPE [dbo].[IdList] AS TABLE (\n  [Id] [int] NOT NULL\n);"
        assert {alias.type, table_type.type} == {SchemaObjectType.USER_DEFINED_TYPE}

    async def test_list_databases(self, credentials) -> None:
        client = make_mock_client(
            responses={catalog.DATABASES_QUERY: [{"name": "AppDb"}, {"name": "Reporting"}]}
        )
        extractor = await _connected(client, credentials)

        assert await extractor.list_databases() == ["AppDb", "Reporting"]


# ============================================================================
# Test: ChangeControl History
# ============================================================================


class TestHistory:
    """Verify ChangeControl lookups."""

    async def test_list_history_objects(self, credentials) -> None:
        client = make_mock_client(
            responses={catalog.HISTORY_OBJECTS_QUERY: [{"object_name": "usp_A"}, {"object_name": "vw_B"}]}
        )
        extractor = await _connected(client, credentials)

        assert await extractor.list_history_objects() == ["usp_A", "vw_B"]

    async def test_list_snapshots(self, credentials) -> None:
        def snapshots(params):
            assert params == {"object_name": "usp_A"}
            return [
                {"snapshot_id": 57, "changed_at": datetime(2024, 3, 1, 9, 30)},
                {"snapshot_id": 41, "changed_at": datetime(2024, 2, 1, 8, 0)},
            ]

        client = make_mock_client(responses={catalog.SNAPSHOTS_QUERY: snapshots})
        extractor = await _connected(client, credentials)

        result = await extractor.list_snapshots("usp_A")

        assert [s.snapshot_id for s in result] == [57, 41]
        assert result[0].changed_at == datetime(2024, 3, 1, 9, 30)

    async def test_get_snapshot(self, credentials) -> None:
        def content(params):
            return [{"definition": f"CREATE PROCEDURE usp_A AS SELECT {params['snapshot_id']}"}]

        client = make_mock_client(responses={catalog.SNAPSHOT_CONTENT_QUERY: content})
        extractor = await _connected(client, credentials)

        assert await extractor.get_snapshot(41) == "CREATE PROCEDURE usp_A AS SELECT 41"

    async def test_get_snapshot_missing(self, credentials) -> None:
        extractor = await _connected(make_mock_client(), credentials)

        with pytest.raises(SnapshotNotFoundError, match="Snapshot 99 not found"):
            await extractor.get_snapshot(99)

    async def test_missing_change_control_table(self, credentials) -> None:
        client = make_mock_client(
            errors={catalog.HISTORY_OBJECTS_QUERY: UnsupportedFeatureError("Invalid object name 'ChangeControl'.")}
        )
        extractor = await _connected(client, credentials)

        with pytest.raises(UnsupportedFeatureError, match="ChangeControl"):
            await extractor.list_history_objects()


# ============================================================================
# Test: Script Execution
# ============================================================================


class TestExecuteScripts:
    """Verify execute_scripts() outcomes."""

    async def test_nothing_to_execute(self, client, credentials) -> None:
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(["", "   \n"])

        assert result.success
        assert result.results == ["No scripts to execute"]
        client.begin.assert_not_awaited()

    async def test_commit(self, client, transaction, credentials) -> None:
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(["CREATE VIEW dbo.v AS SELECT 1", "SELECT 2"])

        assert result.success
        assert result.errors == []
        assert result.rolled_back is None
        assert result.results == [
            "Transaction started",
            "[1/2] Successfully executed: CREATE VIEW dbo.v AS SELECT 1",
            "[2/2] Successfully executed: SELECT 2",
            "Transaction committed successfully",
        ]
        transaction.commit.assert_awaited_once()
        transaction.rollback.assert_not_awaited()

    async def test_batches_are_split_on_go(self, client, transaction, credentials) -> None:
        extractor = await _connected(client, credentials)

        await extractor.execute_scripts(["SELECT 1\nGO\nSELECT 2"])

        assert executed_sql(transaction.execute) == ["SELECT 1", "SELECT 2"]

    async def test_failure_rolls_back(self, client, transaction, credentials) -> None:
        """A bad script rolls back the whole transaction and stops."""
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(["SELECT 1", "BAD SQL", "SELECT 3"])

        assert not result.success
        assert result.rolled_back is True
        assert result.errors == ["[2/3] Error: Incorrect syntax near 'BAD'."]
        assert result.results[-1] == "Transaction rolled back due to error"
        assert "SELECT 3" not in executed_sql(transaction.execute)
        transaction.commit.assert_not_awaited()
        transaction.rollback.assert_awaited_once()

    async def test_continue_on_error_still_rolls_back(self, client, transaction, credentials) -> None:
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(
            ["BAD one", "SELECT 2", "BAD three"], stop_on_error=False
        )

        assert not result.success
        assert result.rolled_back is True
        assert result.errors == [
            "[1/3] Error: Incorrect syntax near 'BAD'.",
            "[3/3] Error: Incorrect syntax near 'BAD'.",
        ]
        assert "[2/3] Successfully executed: SELECT 2" in result.results
        assert result.results[-1] == "Transaction rolled back due to errors"
        transaction.rollback.assert_awaited_once()

    async def test_rollback_failure_is_reported(self, client, transaction, credentials) -> None:
        transaction.rollback.side_effect = TransactionError("connection lost")
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(["BAD SQL"])

        assert not result.success
        assert result.rolled_back is False
        assert "Rollback failed: connection lost" in result.errors

    async def test_begin_failure_raises(self, client, credentials) -> None:
        client.begin.side_effect = TransactionError("Could not begin transaction: timeout")
        extractor = await _connected(client, credentials)

        with pytest.raises(TransactionError, match="Could not begin transaction"):
            await extractor.execute_scripts(["SELECT 1"])

    async def test_commit_failure_raises_after_rollback(self, client, transaction, credentials) -> None:
        transaction.commit.side_effect = TransactionError("Commit failed: deadlock")
        extractor = await _connected(client, credentials)

        with pytest.raises(TransactionError, match="Commit failed"):
            await extractor.execute_scripts(["SELECT 1"])
        transaction.rollback.assert_awaited_once()

    async def test_cancellation_rolls_back(self, client, transaction, credentials) -> None:
        """A cancelled run releases its transaction before the cancellation propagates."""
        transaction.execute.side_effect = asyncio.CancelledError()
        extractor = await _connected(client, credentials)

        with pytest.raises(asyncio.CancelledError):
            await extractor.execute_scripts(["SELECT 1", "SELECT 2"])

        transaction.rollback.assert_awaited_once()
        transaction.commit.assert_not_awaited()

    async def test_unexpected_error_rolls_back(self, client, transaction, credentials) -> None:
        transaction.execute.side_effect = RuntimeError("driver crashed")
        extractor = await _connected(client, credentials)

        with pytest.raises(RuntimeError, match="driver crashed"):
            await extractor.execute_scripts(["SELECT 1"])

        transaction.rollback.assert_awaited_once()

    async def test_unexpected_error_with_failed_rollback(self, client, transaction, credentials) -> None:
        """The original error propagates even when the rollback also fails."""
        transaction.execute.side_effect = RuntimeError("driver crashed")
        transaction.rollback.side_effect = TransactionError("connection lost")
        extractor = await _connected(client, credentials)

        with pytest.raises(RuntimeError, match="driver crashed"):
            await extractor.execute_scripts(["SELECT 1"])

    async def test_autocommit(self, client, credentials) -> None:
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(["SELECT 1", "SELECT 2"], use_transaction=False)

        assert result.success
        assert result.results[0] == "Executing without transaction (changes cannot be rolled back)"
        assert executed_sql(client.execute) == ["SELECT 1", "SELECT 2"]
        client.begin.assert_not_awaited()
        assert result.rolled_back is None

    async def test_autocommit_stops_on_error(self, client, credentials) -> None:
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(["SELECT 1", "BAD", "SELECT 3"], use_transaction=False)

        assert not result.success
        assert executed_sql(client.execute) == ["SELECT 1", "BAD"]
        assert result.errors == ["[2/3] Error: Incorrect syntax near 'BAD'."]

    async def test_autocommit_continue_on_error(self, client, credentials) -> None:
        """Earlier scripts stay applied; nothing is rolled back."""
        extractor = await _connected(client, credentials)

        result = await extractor.execute_scripts(
            ["BAD", "SELECT 2"], use_transaction=False, stop_on_error=False
        )

        assert not result.success
        assert executed_sql(client.execute) == ["BAD", "SELECT 2"]
        assert result.rolled_back is None

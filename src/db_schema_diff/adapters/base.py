"""Database client protocol definitions.

Defines the ``DatabaseClient`` and ``Transaction`` Protocols the schema
extractor depends on.  All methods are ``async def`` -- the library is
async-first.

Usage:
    from db_schema_diff.adapters.base import DatabaseClient

    async def count_tables(client: DatabaseClient) -> int:
        rows = await client.fetch("SELECT name FROM sys.tables")
        await client.close()
        return len(rows)
"""

from typing import Any, Protocol


class Transaction(Protocol):
    """An open transaction on a single connection.

    ``commit()`` and ``rollback()`` both end the transaction and release the
    connection; call exactly one of them.
    """

    async def execute(self, sql: str) -> None:
        """Execute one batch inside the transaction.

        Raises:
            ExecutionError: If the server rejects the batch.
        """
        ...

    async def commit(self) -> None:
        """Commit and release the connection."""
        ...

    async def rollback(self) -> None:
        """Roll back and release the connection."""
        ...


class DatabaseClient(Protocol):
    """Database client interface that adapters must implement.

    All methods are async -- callers must ``await`` every operation.
    """

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a catalog query and return its rows.

        Args:
            sql: Query text with ``:name`` placeholders.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.  Empty list if no rows.

        Raises:
            UnsupportedFeatureError: If the query references a catalog object
                this server does not have.
            QueryError: For any other query failure.

        Example:
            rows = await client.fetch(
                "SELECT name FROM sys.objects WHERE schema_id = :sid",
                {"sid": 1},
            )
        """
        ...

    async def execute(self, sql: str) -> None:
        """Execute one batch outside any transaction (autocommit).

        Raises:
            ExecutionError: If the server rejects the batch.
        """
        ...

    async def begin(self) -> Transaction:
        """Open a transaction on a dedicated connection.

        Raises:
            TransactionError: If the transaction cannot be started.
        """
        ...

    async def close(self) -> None:
        """Close the client and release all connections."""
        ...

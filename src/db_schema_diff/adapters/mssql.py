"""Async SQL Server database adapter.

Provides ``AsyncMssqlAdapter``, an async implementation of the
``DatabaseClient`` protocol using SQLAlchemy's async engine with the
``aioodbc`` driver.

Driver errors are translated into the ``db_schema_diff.errors`` taxonomy at
this boundary, keeping only the first line of the server message.

Usage:
    from db_schema_diff.adapters.mssql import AsyncMssqlAdapter

    adapter = await AsyncMssqlAdapter.connect(credentials, "AppDb")
    rows = await adapter.fetch("SELECT name FROM sys.tables")
    await adapter.close()
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from db_schema_diff.errors import (
    DatabaseConnectionError,
    ExecutionError,
    QueryError,
    TransactionError,
    UnsupportedFeatureError,
    first_line,
)
from db_schema_diff.schema.models import ServerCredentials

logger = logging.getLogger(__name__)

DRIVER_NAME = "mssql+aioodbc"

# Server message for a catalog view the engine version does not have
_MISSING_OBJECT = "Invalid object name"


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def build_url(credentials: ServerCredentials, database: str) -> URL:
    """Build the ``mssql+aioodbc`` URL for one database.

    Example:
        url = build_url(ServerCredentials(server="localhost", username="sa"), "AppDb")
        url.query["driver"]
        # 'ODBC Driver 18 for SQL Server'
    """
    return URL.create(
        DRIVER_NAME,
        username=credentials.username,
        password=credentials.password,
        host=credentials.server,
        port=credentials.port,
        database=database,
        query={
            "driver": credentials.driver,
            "Encrypt": _yes_no(credentials.encrypt),
            "TrustServerCertificate": _yes_no(credentials.trust_server_certificate),
        },
    )


def create_async_engine_pooled(url: URL | str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings:

    - ``pool_size=5``: One extraction runs at most five detail queries at once.
    - ``max_overflow=10``: Allow burst connections.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.
    - ``connect_args={"timeout": 15}``: ODBC login timeout in seconds.

    Args:
        url: Connection URL with the ``mssql+aioodbc://`` scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {"timeout": 15},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(url, **merged)


def driver_message(error: BaseException) -> str:
    """First line of the driver's own message, without SQLAlchemy's wrapping."""
    original = getattr(error, "orig", None)
    return first_line(str(original if original is not None else error))


class MssqlTransaction:
    """``Transaction`` bound to one checked-out connection."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def execute(self, sql: str) -> None:
        try:
            await self._conn.exec_driver_sql(sql)
        except SQLAlchemyError as e:
            raise ExecutionError(driver_message(e)) from e

    async def commit(self) -> None:
        """Commit, then release the connection.

        On failure the connection stays open so the caller can roll back.
        """
        try:
            await self._conn.commit()
        except SQLAlchemyError as e:
            raise TransactionError(f"Commit failed: {driver_message(e)}") from e
        await self._conn.close()

    async def rollback(self) -> None:
        try:
            await self._conn.rollback()
        except SQLAlchemyError as e:
            raise TransactionError(driver_message(e)) from e
        finally:
            await self._conn.close()


class AsyncMssqlAdapter:
    """Async SQL Server implementation of the ``DatabaseClient`` protocol.

    Uses SQLAlchemy's async engine with the ``aioodbc`` driver for
    connection pooling, automatic stale connection detection
    (``pool_pre_ping``), and proactive connection recycling.

    Prefer ``AsyncMssqlAdapter.connect()``, which also verifies the server
    is reachable.

    Args:
        url: Connection URL (see ``build_url``).
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_async_engine_pooled``.
    """

    def __init__(self, url: URL | str, **engine_kwargs: Any) -> None:
        self._engine: AsyncEngine = create_async_engine_pooled(url, **engine_kwargs)

    @classmethod
    async def connect(
        cls, credentials: ServerCredentials, database: str, **engine_kwargs: Any
    ) -> "AsyncMssqlAdapter":
        """Create an adapter for ``database`` and verify the connection.

        Raises:
            DatabaseConnectionError: If the server cannot be reached or the
                logon is rejected.
        """
        adapter = cls(build_url(credentials, database), **engine_kwargs)
        try:
            await adapter.test_connection()
        except SQLAlchemyError as e:
            await adapter.close()
            raise DatabaseConnectionError(driver_message(e)) from e
        logger.debug("Connected to %s/%s", credentials.server, database)
        return adapter

    # ------------------------------------------------------------------
    # Query and Execution
    # ------------------------------------------------------------------

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a catalog query and return rows as dicts."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            message = driver_message(e)
            if _MISSING_OBJECT in message:
                raise UnsupportedFeatureError(message) from e
            raise QueryError(message) from e

    async def execute(self, sql: str) -> None:
        """Execute one batch in autocommit mode.

        The batch is sent to the driver verbatim, so ``:name`` text inside
        scripts is never treated as a bind parameter.
        """
        try:
            async with self._engine.connect() as conn:
                autocommit = await conn.execution_options(isolation_level="AUTOCOMMIT")
                await autocommit.exec_driver_sql(sql)
        except SQLAlchemyError as e:
            raise ExecutionError(driver_message(e)) from e

    async def begin(self) -> MssqlTransaction:
        """Check out a connection and start a transaction on it."""
        conn: AsyncConnection | None = None
        try:
            conn = await self._engine.connect()
            await conn.begin()
        except SQLAlchemyError as e:
            if conn is not None:
                await conn.close()
            raise TransactionError(f"Could not begin transaction: {driver_message(e)}") from e
        return MssqlTransaction(conn)

    async def close(self) -> None:
        """Close the async engine and dispose of the connection pool."""
        if self._engine:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Connection Test
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` to verify the connection is alive.

        Raises:
            SQLAlchemyError: If the database connection fails.
        """
        async with self._engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1

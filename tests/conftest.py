"""Shared mock adapters for extractor and service tests.

``make_mock_client`` builds an ``AsyncMock`` with the ``DatabaseClient``
interface: catalog queries are answered from a dict keyed by the exact
query text, and batches containing a failure marker raise ExecutionError.
Calls are asserted through the usual mock API (``await_args_list``,
``assert_awaited_once``).
"""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from db_schema_diff.adapters.base import DatabaseClient, Transaction
from db_schema_diff.errors import ExecutionError
from db_schema_diff.schema.models import ServerCredentials

Rows = list[dict] | Callable[[dict[str, Any] | None], list[dict]]

# Batches containing this marker fail
FAIL_MARKER = "BAD"


async def _execute(sql: str) -> None:
    if FAIL_MARKER in sql:
        raise ExecutionError(f"Incorrect syntax near '{FAIL_MARKER}'.")


def make_mock_transaction() -> AsyncMock:
    """Create an AsyncMock transaction; batches containing ``BAD`` fail."""
    transaction = AsyncMock(spec=Transaction)
    transaction.execute = AsyncMock(side_effect=_execute)
    transaction.commit = AsyncMock()
    transaction.rollback = AsyncMock()
    return transaction


def make_mock_client(
    responses: dict[str, Rows] | None = None,
    errors: dict[str, Exception] | None = None,
) -> AsyncMock:
    """Create an AsyncMock client that answers catalog queries.

    Args:
        responses: Query text -> rows, or a callable ``(params) -> rows``.
            Unknown queries return no rows.
        errors: Query text -> exception raised by ``fetch``.
    """
    responses = responses or {}
    errors = errors or {}

    async def _fetch(sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        if sql in errors:
            raise errors[sql]
        rows = responses.get(sql, [])
        return rows(params) if callable(rows) else list(rows)

    client = AsyncMock(spec=DatabaseClient)
    client.fetch = AsyncMock(side_effect=_fetch)
    client.execute = AsyncMock(side_effect=_execute)
    client.begin = AsyncMock(return_value=make_mock_transaction())
    client.close = AsyncMock()
    return client


def executed_sql(method: AsyncMock) -> list[str]:
    """SQL passed to each await of an ``execute`` mock."""
    return [call.args[0] for call in method.await_args_list]


@pytest.fixture
def credentials() -> ServerCredentials:
    return ServerCredentials(server="localhost", username="sa", password="secret")


@pytest.fixture
def client() -> AsyncMock:
    return make_mock_client()


@pytest.fixture
def transaction(client: AsyncMock) -> AsyncMock:
    return client.begin.return_value


@pytest.fixture
def factory(client: AsyncMock) -> AsyncMock:
    """Adapter factory handing out ``client``."""
    return AsyncMock(return_value=client)

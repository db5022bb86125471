"""Database adapters package.

Provides the ``DatabaseClient`` and ``Transaction`` Protocols and the async
SQL Server adapter.

Usage:
    from db_schema_diff.adapters import AsyncMssqlAdapter, DatabaseClient
"""

from db_schema_diff.adapters.base import DatabaseClient, Transaction
from db_schema_diff.adapters.mssql import AsyncMssqlAdapter

__all__ = [
    "DatabaseClient",
    "Transaction",
    "AsyncMssqlAdapter",
]

"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_schema_diff.config import load_db_config, database_source
"""

from db_schema_diff.config.loader import (
    database_source,
    get_profile,
    load_db_config,
    resolve_credentials,
)
from db_schema_diff.config.models import DatabaseConfig, DatabaseProfile

__all__ = [
    "load_db_config",
    "get_profile",
    "resolve_credentials",
    "database_source",
    "DatabaseConfig",
    "DatabaseProfile",
]

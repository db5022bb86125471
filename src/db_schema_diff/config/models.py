"""Pydantic models for db.toml profiles."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """SQL Server connection profile from db.toml.

    A profile names a server and its logon; the database is chosen per
    command, so one profile serves every database on the server.
    """

    server: str
    username: str
    password: str | None = None  # Falls back to <PREFIX>DB_PASSWORD
    port: int | None = None
    driver: str = "ODBC Driver 18 for SQL Server"
    encrypt: bool = True
    trust_server_certificate: bool = True
    description: str = ""


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)

"""Load db.toml profiles and turn them into schema sources.

The config file is located in this order:
1. The ``config_path`` argument (``--config`` on the CLI)
2. ``{env_prefix}DB_SCHEMA_DIFF_CONFIG`` environment variable
3. ``db.toml`` in the current working directory

Usage:
    from db_schema_diff.config.loader import database_source, load_db_config

    config = load_db_config()
    source = database_source(config, "dev", "AppDb")
"""

import logging
import os
import tomllib
from pathlib import Path

from db_schema_diff.config.models import DatabaseConfig, DatabaseProfile
from db_schema_diff.errors import ProfileNotFoundError
from db_schema_diff.schema.models import SchemaSource, ServerCredentials

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DB_SCHEMA_DIFF_CONFIG"
PASSWORD_ENV_VAR = "DB_PASSWORD"
DEFAULT_CONFIG_FILE = "db.toml"


def resolve_config_path(config_path: Path | str | None = None, env_prefix: str = "") -> Path:
    """Pick the db.toml path from argument, environment, or working directory."""
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(f"{env_prefix}{CONFIG_ENV_VAR}")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILE


def load_db_config(config_path: Path | str | None = None, env_prefix: str = "") -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: see module docstring).
        env_prefix: Prefix for the environment variables consulted.

    Returns:
        DatabaseConfig with all profiles.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        pydantic.ValidationError: If a profile is missing required fields.

    Example:
        >>> config = load_db_config("db.toml")
        >>> sorted(config.profiles)
        ['dev', 'prod']
    """
    path = resolve_config_path(config_path, env_prefix)

    if not path.exists():
        raise FileNotFoundError(
            f"Database config not found: {path}\n"
            f"Copy db.toml.example to db.toml and configure your profiles."
        )

    with open(path, "rb") as f:
        data = tomllib.load(f)

    config = DatabaseConfig.model_validate({"profiles": data.get("profiles", {})})
    logger.debug("Loaded %d profile(s) from %s", len(config.profiles), path)
    return config


def get_profile(config: DatabaseConfig, profile_name: str) -> DatabaseProfile:
    """Look up a profile by name.

    Raises:
        ProfileNotFoundError: If the profile is not defined.
    """
    if profile_name not in config.profiles:
        available = ", ".join(sorted(config.profiles)) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml. Available profiles: {available}"
        )
    return config.profiles[profile_name]


def resolve_credentials(profile: DatabaseProfile, env_prefix: str = "") -> ServerCredentials:
    """Build ServerCredentials from a profile.

    A profile without a password takes it from ``{env_prefix}DB_PASSWORD``.
    """
    password = profile.password
    if password is None:
        password = os.environ.get(f"{env_prefix}{PASSWORD_ENV_VAR}")

    return ServerCredentials(
        server=profile.server,
        username=profile.username,
        password=password,
        port=profile.port,
        driver=profile.driver,
        encrypt=profile.encrypt,
        trust_server_certificate=profile.trust_server_certificate,
    )


def database_source(
    config: DatabaseConfig, profile_name: str, database: str, env_prefix: str = ""
) -> SchemaSource:
    """Describe ``database`` on a profile's server as a comparison source.

    Example:
        source = database_source(config, "dev", "AppDb")
        source.name
        # 'dev/AppDb'
    """
    profile = get_profile(config, profile_name)
    return SchemaSource(
        type="database",
        name=f"{profile_name}/{database}",
        database=database,
        server=profile.server,
        credentials=resolve_credentials(profile, env_prefix),
    )

"""Migration tool configuration.

Per-backend connection and migration-path settings, persisted as JSON in
``.migrator.json`` in the working directory. Environment variables of the form
``MIGRATOR_<BACKEND>_<FIELD>`` override values from the file, e.g.
``MIGRATOR_POSTGRES_PASSWORD`` or ``MIGRATOR_CQL_HOSTS=10.0.0.1,10.0.0.2``.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".migrator.json"
CONFIG_ENV_VAR = "MIGRATOR_CONFIG"
ENV_PREFIX = "MIGRATOR_"

BACKEND_ALIASES = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "cql": "cql",
    "cassandra": "cql",
    "scylla": "cql",
    "scylladb": "cql",
    "sqlite": "sqlite",
}


class ConfigError(Exception):
    """Configuration could not be loaded, parsed or saved."""

    pass


class MigrationPathConfig(BaseModel):
    """Settings shared by every backend.

    Attributes:
        migration_path: Root directory for this backend's migrations
        folder: Sub-folder holding the migration files
        ledger_table: Name of the ledger table
    """

    migration_path: str = "migrations"
    folder: str = "sql"
    ledger_table: str = "migrations"

    @property
    def migrations_dir(self) -> Path:
        """Directory the migration files are read from and written to."""
        return Path(self.migration_path) / self.folder

    def validate_settings(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        if not self.migration_path:
            errors.append("migration_path is required")
        if not self.ledger_table or not self.ledger_table.replace("_", "").isalnum():
            errors.append("ledger_table must be a plain identifier")
        return errors


class PostgresConfig(MigrationPathConfig):
    """PostgreSQL connection configuration."""

    migration_path: str = "migrations/postgres"
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    dbname: str = "postgres"
    sslmode: str = "disable"
    connect_timeout: int = 10
    super_user: str = "postgres"
    super_pass: str = ""

    def validate_settings(self) -> list[str]:
        errors = super().validate_settings()
        if not self.host:
            errors.append("host is required")
        if not self.dbname:
            errors.append("dbname is required")
        return errors


class MySQLConfig(MigrationPathConfig):
    """MySQL / MariaDB connection configuration."""

    migration_path: str = "migrations/mysql"
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    dbname: str = "mysql"
    connect_timeout: int = 10
    super_user: str = "root"
    super_pass: str = ""

    def validate_settings(self) -> list[str]:
        errors = super().validate_settings()
        if not self.host:
            errors.append("host is required")
        if not self.dbname:
            errors.append("dbname is required")
        return errors


class CQLConfig(MigrationPathConfig):
    """Cassandra / ScyllaDB connection configuration."""

    migration_path: str = "migrations/cql"
    folder: str = "cql"
    hosts: list[str] = Field(default_factory=lambda: ["localhost"])
    port: int = 9042
    keyspace: str = "system"
    user: str = ""
    password: str = ""
    super_user: str = ""
    super_pass: str = ""
    datacenter: str = ""
    consistency: str = "QUORUM"
    protocol_version: int = 4
    connect_timeout: int = 10

    def validate_settings(self) -> list[str]:
        errors = super().validate_settings()
        if not self.hosts:
            errors.append("at least one host is required")
        if not self.keyspace:
            errors.append("keyspace is required")
        return errors


class SQLiteConfig(MigrationPathConfig):
    """SQLite configuration (local file database)."""

    migration_path: str = "migrations/sqlite"
    database: str = "migrator.db"

    def validate_settings(self) -> list[str]:
        errors = super().validate_settings()
        if not self.database:
            errors.append("database is required")
        return errors


BackendConfig = Union[PostgresConfig, MySQLConfig, CQLConfig, SQLiteConfig]

_CONFIG_TYPES: dict[str, type[MigrationPathConfig]] = {
    "postgres": PostgresConfig,
    "mysql": MySQLConfig,
    "cql": CQLConfig,
    "sqlite": SQLiteConfig,
}


class MigratorConfig(BaseModel):
    """The complete configuration file."""

    postgres: Optional[PostgresConfig] = None
    mysql: Optional[MySQLConfig] = None
    cql: Optional[CQLConfig] = None
    sqlite: Optional[SQLiteConfig] = None

    def backend(self, backend: str) -> BackendConfig:
        """Get the configuration for a backend, falling back to defaults.

        Environment overrides are applied to the returned copy.

        Args:
            backend: Backend name or alias (e.g. ``postgres``, ``cassandra``)

        Returns:
            Backend configuration

        Raises:
            ConfigError: If the backend is unknown or an override is invalid
        """
        key = normalize_backend(backend)
        return _apply_env_overrides(key, self.stored(key))  # type: ignore[return-value]

    def stored(self, backend: str) -> BackendConfig:
        """Copy of the section as stored in the file (defaults if absent), without overrides."""
        key = normalize_backend(backend)
        section = getattr(self, key)
        if section is None:
            return _CONFIG_TYPES[key]()  # type: ignore[return-value]
        return section.model_copy(deep=True)

    def set_backend(self, backend: str, section: MigrationPathConfig) -> None:
        """Replace the configuration for a backend."""
        setattr(self, normalize_backend(backend), section)


def normalize_backend(backend: str) -> str:
    """Resolve a backend alias to its canonical name.

    Raises:
        ConfigError: If the backend is unknown
    """
    key = BACKEND_ALIASES.get(backend.strip().lower())
    if key is None:
        raise ConfigError(
            f"Invalid database type '{backend}'. Use 'postgres', 'mysql', 'cql' or 'sqlite'"
        )
    return key


def _apply_env_overrides(key: str, section: MigrationPathConfig) -> MigrationPathConfig:
    """Apply MIGRATOR_<BACKEND>_<FIELD> environment overrides."""
    prefix = f"{ENV_PREFIX}{key.upper()}_"
    updates: dict[str, Any] = {}

    for field_name in type(section).model_fields:
        value = os.getenv(prefix + field_name.upper())
        if value is None:
            continue
        if field_name == "hosts":
            updates[field_name] = [h.strip() for h in value.split(",") if h.strip()]
        else:
            updates[field_name] = value

    if not updates:
        return section

    try:
        return type(section).model_validate({**section.model_dump(), **updates})
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid {prefix}* environment override: {e}") from e


def get_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the configuration file path.

    Order: explicit argument, ``MIGRATOR_CONFIG``, ``./.migrator.json``.
    """
    if path:
        return Path(path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.cwd() / CONFIG_FILE_NAME


def load_config(path: Optional[Union[str, Path]] = None) -> MigratorConfig:
    """Load the configuration file.

    A missing file yields an empty configuration (every backend on defaults).

    Raises:
        ConfigError: If the file exists but cannot be read or parsed
    """
    config_path = get_config_path(path)
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return MigratorConfig()

    try:
        return MigratorConfig.model_validate_json(config_path.read_text())
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e
    except PydanticValidationError as e:
        raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e


def save_config(config: MigratorConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Write the configuration file and create the migration directories.

    Returns:
        Path of the written file

    Raises:
        ConfigError: If the file or directories cannot be written
    """
    config_path = get_config_path(path)

    try:
        for key in _CONFIG_TYPES:
            section = getattr(config, key)
            if section is not None:
                section.migrations_dir.mkdir(parents=True, exist_ok=True)

        data = config.model_dump(exclude_none=True)
        config_path.write_text(json.dumps(data, indent=2) + "\n")
    except OSError as e:
        raise ConfigError(f"Failed to write config file {config_path}: {e}") from e

    logger.info(f"Saved configuration to {config_path}")
    return config_path

"""Database integration for migrator.

Provides:
- Per-backend configuration loaded from ``.migrator.json``
- Backend adapters (PostgreSQL, MySQL, Cassandra/ScyllaDB, SQLite)
- Administrative provisioning (databases, users, keyspaces)

Usage:
    from migrator.db import load_config, get_connection
    from migrator.db.migrations import MigrationRunner

    config = load_config().backend("postgres")
    with get_connection("postgres", config) as adapter:
        MigrationRunner(adapter, config).migrate()

Environment Variables:
    MIGRATOR_CONFIG: Path to the config file
    MIGRATOR_<BACKEND>_<FIELD>: Override a single field, e.g.
        MIGRATOR_POSTGRES_PASSWORD or MIGRATOR_CQL_HOSTS=10.0.0.1,10.0.0.2
"""

from .config import (
    BackendConfig,
    ConfigError,
    CQLConfig,
    MigratorConfig,
    MySQLConfig,
    PostgresConfig,
    SQLiteConfig,
    load_config,
    normalize_backend,
    save_config,
)

from .connection import (
    BackendAdapter,
    ConnectionError,
    QueryError,
    get_adapter,
    get_connection,
    split_statements,
)

__all__ = [
    # Config
    "BackendConfig",
    "ConfigError",
    "CQLConfig",
    "MigratorConfig",
    "MySQLConfig",
    "PostgresConfig",
    "SQLiteConfig",
    "load_config",
    "normalize_backend",
    "save_config",
    # Connection
    "BackendAdapter",
    "ConnectionError",
    "QueryError",
    "get_adapter",
    "get_connection",
    "split_statements",
]

"""Schema migration engine.

Provides a file-based migration framework with:
- Versioned ``{version}_{name}.{ext}`` files with up/down sections
- A ledger table recording applied versions
- Apply, rollback (last, N, all) and fresh reset
- Dry-run mode for apply and rollback

Usage:
    from migrator.db.migrations import apply_migrations, rollback_migrations

    result = apply_migrations("postgres", config)
    result = rollback_migrations("postgres", config, steps=1)

CLI Usage:
    migrator postgres-migration create_users_table
    migrator postgres-migrate
    migrator postgres-rollback:all
    migrator postgres-list
"""

from .base import (
    DOWN_MARKER,
    UP_MARKER,
    ExecutionError,
    LedgerEntry,
    LedgerError,
    MigrationError,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    MigrationStatusRow,
    MissingMigrationError,
    ParseError,
    ValidationError,
)

from .ledger import Ledger

from .registry import (
    MigrationFileStore,
    NameValidator,
    parse_migration_file,
    table_name_for,
)

from .runner import (
    MigrationRunner,
    apply_migrations,
    rollback_migrations,
    get_migration_status,
)

__all__ = [
    # Base classes
    "DOWN_MARKER",
    "UP_MARKER",
    "LedgerEntry",
    "MigrationRecord",
    "MigrationResult",
    "MigrationStatus",
    "MigrationStatusRow",
    # Errors
    "MigrationError",
    "ParseError",
    "ValidationError",
    "ExecutionError",
    "MissingMigrationError",
    "LedgerError",
    # Store and ledger
    "MigrationFileStore",
    "NameValidator",
    "parse_migration_file",
    "table_name_for",
    "Ledger",
    # Runner
    "MigrationRunner",
    "apply_migrations",
    "rollback_migrations",
    "get_migration_status",
]

"""Migration runner for applying and rolling back migrations.

Provides:
- Apply pending migrations
- Rollback the last, N, or all applied migrations
- Fresh reset (drop everything, reapply from empty)
- Migration status reporting
- Dry-run support
"""

import logging
import time
from typing import Optional

from ..config import BackendConfig
from ..connection import BackendAdapter, QueryError, get_connection
from .base import (
    ExecutionError,
    LedgerEntry,
    LedgerError,
    MigrationError,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    MigrationStatusRow,
    MissingMigrationError,
)
from .ledger import Ledger
from .registry import MigrationFileStore, table_name_for

logger = logging.getLogger(__name__)

ROLLBACK_ALL = -1


class MigrationRunner:
    """Runner for executing migrations against one backend."""

    def __init__(
        self,
        adapter: BackendAdapter,
        config: Optional[BackendConfig] = None,
        store: Optional[MigrationFileStore] = None,
    ):
        """Initialize the runner.

        Args:
            adapter: Backend adapter (connected before any database operation)
            config: Backend configuration (defaults to the adapter's)
            store: Optional file store (built from the configuration if not provided)
        """
        self.adapter = adapter
        self.config = config or adapter.config
        self.store = store or MigrationFileStore(
            self.config.migrations_dir, extension=adapter.extension
        )
        self.ledger = Ledger(adapter, table=self.config.ledger_table)

    @property
    def _atomic(self) -> bool:
        """Whether a failed scope leaves the schema untouched."""
        return self.adapter.supports_transactions() and self.adapter.atomic_ddl

    # -- creation ------------------------------------------------------------

    def create_migration(self, name: str) -> MigrationRecord:
        """Validate ``name`` and write a new migration file from the backend template."""
        table = table_name_for(name).lower()
        return self.store.create(
            name,
            up_template=self.adapter.create_table_template(table),
            down_template=f"DROP TABLE IF EXISTS {table};",
        )

    # -- status --------------------------------------------------------------

    def get_pending_migrations(self) -> list[MigrationRecord]:
        """Get migrations that haven't been applied, in version order."""
        self.ledger.ensure_exists()
        applied = {e.version for e in self.ledger.applied_set()}
        return [m for m in self.store.load() if m.version not in applied]

    def get_status(self) -> list[MigrationStatusRow]:
        """Get status of all migrations.

        Ledger entries whose file no longer exists are reported as MISSING.

        Returns:
            Status rows sorted by version
        """
        self.ledger.ensure_exists()
        applied = {e.version: e for e in self.ledger.applied_set()}
        rows: list[MigrationStatusRow] = []

        for migration in self.store.load():
            entry = applied.pop(migration.version, None)
            rows.append(
                MigrationStatusRow(
                    version=migration.version,
                    name=migration.name,
                    status=MigrationStatus.APPLIED if entry else MigrationStatus.PENDING,
                    applied_at=entry.applied_at if entry else None,
                )
            )

        for entry in applied.values():
            rows.append(
                MigrationStatusRow(
                    version=entry.version,
                    name=entry.name,
                    status=MigrationStatus.MISSING,
                    applied_at=entry.applied_at,
                )
            )

        rows.sort(key=lambda r: r.version)
        return rows

    # -- apply ---------------------------------------------------------------

    def migrate(self, dry_run: bool = False) -> MigrationResult:
        """Apply pending migrations in version order.

        Stops at the first failure; migrations applied earlier in the run
        stay applied.

        Args:
            dry_run: If True, log what would run without executing anything

        Returns:
            Result with applied and skipped migrations

        Raises:
            ParseError: If the migration files cannot be loaded
            ExecutionError: If a statement fails
            LedgerError: If the ledger cannot be read or written
        """
        result = MigrationResult(dry_run=dry_run)
        migrations = self.store.load()

        applied_versions: set[int] = set()
        if dry_run:
            applied_versions = self._applied_versions_readonly()
        else:
            self.ledger.ensure_exists()

        for migration in migrations:
            if dry_run:
                already = migration.version in applied_versions
            else:
                already = self.ledger.is_applied(migration.version)

            if already:
                logger.info(f"[SKIPPED] Migration {migration.full_name} already applied")
                result.skipped.append(migration)
                continue

            if dry_run:
                self._log_dry_run("apply", migration, migration.up_script)
            else:
                self._apply(migration)
            result.applied.append(migration)

        return result

    def _applied_versions_readonly(self) -> set[int]:
        return {e.version for e in self._applied_entries(dry_run=True)}

    def _applied_entries(self, dry_run: bool) -> list[LedgerEntry]:
        """Ledger entries, newest first. A dry run never creates the ledger."""
        if not dry_run:
            self.ledger.ensure_exists()
            return self.ledger.applied_set()
        try:
            tables = self.adapter.list_tables()
        except QueryError as e:
            raise MigrationError(f"Failed to list tables: {e}") from e
        if self.ledger.table not in tables:
            return []
        return self.ledger.applied_set()

    def _apply(self, migration: MigrationRecord) -> None:
        statements = self.adapter.split_statements(migration.up_script)
        logger.info(f"[MIGRATING] {migration.full_name} ({len(statements)} statement(s))...")

        start_time = time.time()
        executed = 0
        try:
            with self.adapter.scope():
                for stmt in statements:
                    self.adapter.execute(stmt)
                    executed += 1
                self.ledger.record(migration.version, migration.name)
        except QueryError as e:
            error = self._execution_error("apply", migration, e, executed, len(statements))
            logger.error(str(error))
            raise error from e
        except LedgerError as e:
            if self._atomic:
                raise
            error = self._execution_error(
                "apply", migration, e, executed, len(statements),
                where="while recording it in the ledger",
            )
            logger.error(str(error))
            raise error from e

        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Applied {migration.full_name} in {execution_time_ms}ms")

    # -- rollback ------------------------------------------------------------

    def rollback_last(self, dry_run: bool = False) -> MigrationResult:
        """Rollback the most recently applied migration.

        Raises:
            MissingMigrationError: If the applied migration's file is gone
            ExecutionError: If a down statement fails
            LedgerError: If the ledger cannot be read or written
        """
        result = MigrationResult(dry_run=dry_run)
        applied = self._applied_entries(dry_run)
        if not applied:
            result.note("No migrations to rollback")
            return result

        entry = applied[0]
        self._rollback_entry(entry, result, dry_run)
        return result

    def rollback_steps(self, steps: int, dry_run: bool = False) -> MigrationResult:
        """Rollback the last ``steps`` applied migrations, newest first.

        The order comes from the ledger, not from the files. A count larger
        than the number of applied migrations is clamped with a note.

        Args:
            steps: Number of migrations to rollback, or -1 for all
            dry_run: If True, log what would run without executing anything

        Raises:
            ValueError: If ``steps`` is 0 or below -1
            MissingMigrationError: If an applied migration's file is gone
            ExecutionError: If a down statement fails
            LedgerError: If the ledger cannot be read or written
        """
        if steps == 0 or steps < ROLLBACK_ALL:
            raise ValueError(f"Invalid rollback steps: {steps}")

        result = MigrationResult(dry_run=dry_run)
        applied = self._applied_entries(dry_run)
        if not applied:
            result.note("No migrations to rollback")
            return result

        count = len(applied) if steps == ROLLBACK_ALL else steps
        if count > len(applied):
            count = len(applied)
            result.note(f"Note: Only {count} migrations available to rollback")

        for entry in applied[:count]:
            self._rollback_entry(entry, result, dry_run)
        return result

    def _rollback_entry(
        self, entry: LedgerEntry, result: MigrationResult, dry_run: bool
    ) -> None:
        migration = self.store.get(entry.version, entry.name)
        if migration is None:
            error = MissingMigrationError(
                f"Migration {entry.full_name} is applied but its file "
                f"{entry.full_name}.{self.adapter.extension} was not found in "
                f"{self.store.directory}; cannot rollback without its down migration",
                version=entry.version,
                name=entry.name,
            )
            logger.error(str(error))
            raise error

        if dry_run:
            self._log_dry_run("rollback", migration, migration.down_script)
        else:
            self._rollback(migration)
        result.rolled_back.append(migration)

    def _rollback(self, migration: MigrationRecord) -> None:
        statements = self.adapter.split_statements(migration.down_script)
        logger.info(f"[ROLLBACK] Rolling back migration {migration.full_name}...")

        start_time = time.time()
        executed = 0
        try:
            with self.adapter.scope():
                for stmt in statements:
                    self.adapter.execute(stmt)
                    executed += 1
                self.ledger.remove(migration.version)
        except QueryError as e:
            error = self._execution_error("rollback", migration, e, executed, len(statements))
            logger.error(str(error))
            raise error from e
        except LedgerError as e:
            if self._atomic:
                raise
            error = self._execution_error(
                "rollback", migration, e, executed, len(statements),
                where="while removing it from the ledger",
            )
            logger.error(str(error))
            raise error from e

        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Rolled back {migration.full_name} in {execution_time_ms}ms")

    # -- fresh ---------------------------------------------------------------

    def fresh(self) -> MigrationResult:
        """Drop every user table and the ledger, then apply all migrations.

        Destructive. Callers are responsible for confirming with the user.

        Raises:
            MigrationError: If a table cannot be listed or dropped
            ExecutionError: If reapplying a migration fails
        """
        try:
            tables = [
                t
                for t in self.adapter.list_tables()
                if t != self.ledger.table and not self.adapter.is_reserved(t)
            ]
        except QueryError as e:
            raise MigrationError(f"Failed to list tables: {e}") from e

        logger.warning(f"[FRESH] Dropping {len(tables)} table(s) from {self.adapter.describe()}")
        dropped: list[str] = []
        with self.adapter.foreign_keys_disabled():
            for table in tables:
                try:
                    self.adapter.execute(self.adapter.drop_table_sql(table))
                except QueryError as e:
                    raise MigrationError(f"Failed to drop table {table}: {e}") from e
                logger.info(f"[DROP] Dropped table {table}")
                dropped.append(table)

        self.ledger.drop()
        logger.info("[FRESH] All tables dropped, reapplying all migrations...")

        result = self.migrate()
        result.dropped = dropped
        return result

    # -- helpers -------------------------------------------------------------

    def _log_dry_run(self, action: str, migration: MigrationRecord, script: str) -> None:
        logger.info(f"[DRY-RUN] Would {action} {migration.full_name}")
        for stmt in self.adapter.split_statements(script):
            logger.info(f"[DRY-RUN]   {stmt[:200]}")

    def _execution_error(
        self,
        action: str,
        migration: MigrationRecord,
        cause: Exception,
        executed: int,
        total: int,
        where: Optional[str] = None,
    ) -> ExecutionError:
        backend = self.adapter.backend
        if where is None:
            where = f"at statement {executed + 1} of {total}" if executed < total else "at commit"
        message = f"Failed to {action} migration {migration.full_name} {where}: {cause}."
        ledger_state = "recorded" if action == "apply" else "removed from the ledger"

        if not self.adapter.supports_transactions():
            partial = executed > 0
            message += (
                f" {backend} does not support transactions: "
                f"{executed} earlier statement(s) remain applied and the migration "
                f"was NOT {ledger_state}. Repair the schema manually before retrying."
            )
        elif not self.adapter.atomic_ddl:
            partial = executed > 0
            message += (
                f" The transaction was rolled back and the migration was not {ledger_state}, "
                f"but {backend} commits DDL implicitly, so changes from the "
                f"{executed} earlier statement(s) may persist."
            )
        else:
            partial = False
            message += " The transaction was rolled back; no changes were made."

        return ExecutionError(
            message,
            version=migration.version,
            name=migration.name,
            cause=cause,
            partial=partial,
        )


# Convenience functions


def apply_migrations(
    backend: str,
    config: BackendConfig,
    dry_run: bool = False,
) -> MigrationResult:
    """Apply pending migrations for a backend.

    Args:
        backend: Backend name
        config: Backend configuration
        dry_run: If True, don't execute migrations

    Returns:
        Migration result
    """
    with get_connection(backend, config) as adapter:
        return MigrationRunner(adapter, config).migrate(dry_run=dry_run)


def rollback_migrations(
    backend: str,
    config: BackendConfig,
    steps: int = 1,
    dry_run: bool = False,
) -> MigrationResult:
    """Rollback migrations for a backend.

    Args:
        backend: Backend name
        config: Backend configuration
        steps: Number of migrations to rollback, -1 for all
        dry_run: If True, don't execute rollback

    Returns:
        Migration result
    """
    with get_connection(backend, config) as adapter:
        runner = MigrationRunner(adapter, config)
        if steps == 1:
            return runner.rollback_last(dry_run=dry_run)
        return runner.rollback_steps(steps, dry_run=dry_run)


def get_migration_status(backend: str, config: BackendConfig) -> list[MigrationStatusRow]:
    """Get migration status for a backend."""
    with get_connection(backend, config) as adapter:
        return MigrationRunner(adapter, config).get_status()

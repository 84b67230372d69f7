"""Migrations ledger.

The ledger is a table inside the target database recording which migration
versions have been applied and when. It is the single source of truth for
"applied" state. ``version`` is the primary key, so a concurrent run that
tries to record the same version fails instead of double-applying.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from ..connection import BackendAdapter, QueryError
from .base import LedgerEntry, LedgerError

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TABLE = "migrations"


def _to_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return value


class Ledger:
    """Read and write access to the ledger table."""

    def __init__(self, adapter: BackendAdapter, table: str = DEFAULT_LEDGER_TABLE):
        """Initialize the ledger.

        Args:
            adapter: Connected backend adapter
            table: Ledger table name
        """
        self.adapter = adapter
        self.table = table

    @property
    def _quoted(self) -> str:
        return self.adapter.quote_identifier(self.table)

    def ensure_exists(self) -> None:
        """Create the ledger table if it doesn't exist. Safe to call repeatedly."""
        try:
            self.adapter.execute(self.adapter.ledger_ddl(self.table))
        except QueryError as e:
            raise LedgerError(f"Failed to create ledger table {self.table}: {e}") from e

    def is_applied(self, version: int) -> bool:
        """Check if a version has been applied."""
        try:
            rows = self.adapter.query(
                f"SELECT version FROM {self._quoted} WHERE version = {self.adapter.placeholder}",
                (version,),
            )
        except QueryError as e:
            raise LedgerError(f"Failed to check if migration {version} is applied: {e}") from e
        return bool(rows)

    def applied_set(self) -> list[LedgerEntry]:
        """Get all applied migrations.

        Returns:
            Ledger entries sorted descending by version
        """
        try:
            rows = self.adapter.query(f"SELECT version, name, applied_at FROM {self._quoted}")
        except QueryError as e:
            raise LedgerError(f"Failed to query applied migrations: {e}") from e

        entries = [
            LedgerEntry(
                version=int(row["version"]),
                name=row["name"],
                applied_at=_to_datetime(row.get("applied_at")),
            )
            for row in rows
        ]
        entries.sort(key=lambda e: e.version, reverse=True)
        return entries

    def latest_applied(self) -> int:
        """Get the latest applied version (0 if no migrations applied)."""
        entries = self.applied_set()
        return entries[0].version if entries else 0

    def record(self, version: int, name: str) -> None:
        """Record a migration as applied.

        Raises:
            LedgerError: If the write fails or the version is already recorded
        """
        applied_at = datetime.now(timezone.utc)
        try:
            inserted = self.adapter.insert_ledger_row(self.table, version, name, applied_at)
        except QueryError as e:
            raise LedgerError(f"Failed to record migration {version}_{name}: {e}") from e

        if not inserted:
            raise LedgerError(
                f"Migration {version}_{name} is already recorded; "
                "another process may have applied it concurrently"
            )
        logger.debug(f"Recorded migration {version}_{name}")

    def remove(self, version: int) -> None:
        """Remove a migration record."""
        try:
            self.adapter.execute(
                f"DELETE FROM {self._quoted} WHERE version = {self.adapter.placeholder}",
                (version,),
            )
        except QueryError as e:
            raise LedgerError(f"Failed to remove migration record {version}: {e}") from e
        logger.debug(f"Removed migration record {version}")

    def drop(self) -> None:
        """Drop the ledger table."""
        try:
            self.adapter.execute(f"DROP TABLE IF EXISTS {self._quoted}")
        except QueryError as e:
            raise LedgerError(f"Failed to drop ledger table {self.table}: {e}") from e

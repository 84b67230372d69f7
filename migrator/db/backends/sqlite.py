"""SQLite backend adapter (sqlite3).

SQLite DDL is transactional. The connection runs in autocommit mode and
scopes are opened with an explicit ``BEGIN``.
"""

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from ..config import SQLiteConfig
from ..connection import BackendAdapter, ConnectionError

logger = logging.getLogger(__name__)


class SQLiteAdapter(BackendAdapter):
    """Adapter for a local SQLite database file."""

    backend = "sqlite"
    extension = "sql"
    placeholder = "?"
    identifier_quote = '"'
    reserved_prefixes = ("sqlite_",)
    driver_errors = (sqlite3.Error,)
    integrity_errors = (sqlite3.IntegrityError,)

    config: SQLiteConfig

    def describe(self) -> str:
        return f"sqlite:///{self.config.database}"

    def connect(self) -> None:
        if self._conn is not None:
            return

        try:
            self._conn = sqlite3.connect(self.config.database, isolation_level=None)
        except sqlite3.Error as e:
            raise ConnectionError(f"Unable to open SQLite database: {e}") from e

        self._conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to {self.describe()}")

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None

    def _adapt_param(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def _execute(self, statement: str, params: Optional[Sequence[Any]]) -> None:
        self._conn.execute(statement, params or ())

    def _query(self, statement: str, params: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        return [dict(row) for row in self._conn.execute(statement, params or ()).fetchall()]

    def begin_scope(self) -> None:
        self._conn.execute("BEGIN")

    def commit(self) -> None:
        self._conn.execute("COMMIT")

    def rollback_scope(self) -> None:
        self._conn.execute("ROLLBACK")

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} ("
            "version INTEGER PRIMARY KEY, "
            "name TEXT NOT NULL, "
            "applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        )

    def list_tables(self) -> list[str]:
        rows = self.query("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        return [row["name"] for row in rows]

    @contextmanager
    def foreign_keys_disabled(self) -> Iterator[None]:
        self.execute("PRAGMA foreign_keys = OFF")
        try:
            yield
        finally:
            self.execute("PRAGMA foreign_keys = ON")

    def create_table_template(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            "    created_at TEXT DEFAULT CURRENT_TIMESTAMP NOT NULL,\n"
            "    updated_at TEXT DEFAULT CURRENT_TIMESTAMP NOT NULL\n"
            ");"
        )

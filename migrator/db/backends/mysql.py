"""MySQL / MariaDB backend adapter (mysql-connector-python).

Migrations run inside a transaction, but MySQL commits implicitly around
most DDL statements. Only the ledger insert and DML are guaranteed to be
discarded when a migration fails.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import mysql.connector

from ..config import MySQLConfig
from ..connection import BackendAdapter, ConnectionError

logger = logging.getLogger(__name__)


class MySQLAdapter(BackendAdapter):
    """Adapter for MySQL and MariaDB."""

    backend = "mysql"
    extension = "sql"
    placeholder = "%s"
    identifier_quote = "`"
    backslash_escapes = True
    atomic_ddl = False
    reserved_tables = frozenset()
    reserved_prefixes = ()
    driver_errors = (mysql.connector.Error,)
    integrity_errors = (mysql.connector.IntegrityError,)

    config: MySQLConfig

    def describe(self) -> str:
        c = self.config
        return f"mysql://{c.user}@{c.host}:{c.port}/{c.dbname}"

    def connect(self) -> None:
        if self._conn is not None:
            return

        c = self.config
        try:
            self._conn = mysql.connector.connect(
                host=c.host,
                port=c.port,
                user=c.user,
                password=c.password,
                database=c.dbname or None,
                connection_timeout=c.connect_timeout,
                autocommit=True,
            )
        except mysql.connector.Error as e:
            raise ConnectionError(f"Unable to connect to MySQL: {e}") from e

        logger.debug(f"Connected to {self.describe()}")

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except mysql.connector.Error as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            self._conn = None

    def _adapt_param(self, value: Any) -> Any:
        # TIMESTAMP columns take naive values in the session time zone (UTC)
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def _execute(self, statement: str, params: Optional[Sequence[Any]]) -> None:
        cur = self._conn.cursor()
        try:
            cur.execute(statement, params)
            if cur.with_rows:
                cur.fetchall()
        finally:
            cur.close()

    def _query(self, statement: str, params: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        cur = self._conn.cursor(dictionary=True)
        try:
            cur.execute(statement, params)
            return list(cur.fetchall())
        finally:
            cur.close()

    def begin_scope(self) -> None:
        self._conn.start_transaction()

    def commit(self) -> None:
        self._conn.commit()

    def rollback_scope(self) -> None:
        self._conn.rollback()

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} ("
            "version BIGINT UNSIGNED PRIMARY KEY, "
            "name VARCHAR(255) NOT NULL, "
            "applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP"
            ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci"
        )

    def list_tables(self) -> list[str]:
        rows = self.query(
            "SELECT table_name AS table_name FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        )
        return [row["table_name"] for row in rows]

    @contextmanager
    def foreign_keys_disabled(self) -> Iterator[None]:
        self.execute("SET FOREIGN_KEY_CHECKS = 0")
        try:
            yield
        finally:
            self.execute("SET FOREIGN_KEY_CHECKS = 1")

    def create_table_template(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    id BIGINT UNSIGNED AUTO_INCREMENT PRIMARY KEY,\n"
            "    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP NOT NULL,\n"
            "    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP NOT NULL\n"
            ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COLLATE=utf8mb4_unicode_ci;"
        )

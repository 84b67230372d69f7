"""PostgreSQL backend adapter (psycopg2).

DDL is transactional in PostgreSQL, so a failed migration leaves neither
schema changes nor a ledger row behind.
"""

import logging
from collections.abc import Sequence
from typing import Any, Optional

import psycopg2
import psycopg2.extras

from ..config import PostgresConfig
from ..connection import BackendAdapter, ConnectionError

logger = logging.getLogger(__name__)


class PostgresAdapter(BackendAdapter):
    """Adapter for PostgreSQL."""

    backend = "postgres"
    extension = "sql"
    placeholder = "%s"
    identifier_quote = '"'
    dollar_quotes = True
    reserved_tables = frozenset({"spatial_ref_sys", "geography_columns", "geometry_columns"})
    reserved_prefixes = ("pg_", "sql_")
    driver_errors = (psycopg2.Error,)
    integrity_errors = (psycopg2.IntegrityError,)

    config: PostgresConfig

    def describe(self) -> str:
        c = self.config
        return f"postgres://{c.user}@{c.host}:{c.port}/{c.dbname}"

    def connect(self) -> None:
        if self._conn is not None:
            return

        c = self.config
        try:
            self._conn = psycopg2.connect(
                host=c.host,
                port=c.port,
                user=c.user,
                password=c.password,
                dbname=c.dbname,
                sslmode=c.sslmode,
                connect_timeout=c.connect_timeout,
            )
        except psycopg2.Error as e:
            raise ConnectionError(f"Unable to connect to PostgreSQL: {e}") from e

        self._conn.autocommit = True
        logger.debug(f"Connected to {self.describe()}")

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except psycopg2.Error as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            self._conn = None

    def _execute(self, statement: str, params: Optional[Sequence[Any]]) -> None:
        with self._conn.cursor() as cur:
            cur.execute(statement, params)

    def _query(self, statement: str, params: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(statement, params)
            return [dict(row) for row in cur.fetchall()]

    def begin_scope(self) -> None:
        # With autocommit off psycopg2 opens the transaction on the next statement
        self._conn.autocommit = False

    def commit(self) -> None:
        try:
            self._conn.commit()
        finally:
            self._conn.autocommit = True

    def rollback_scope(self) -> None:
        try:
            self._conn.rollback()
        finally:
            self._conn.autocommit = True

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} ("
            "version BIGINT PRIMARY KEY, "
            "name TEXT NOT NULL, "
            "applied_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        )

    def list_tables(self) -> list[str]:
        rows = self.query(
            "SELECT tablename FROM pg_tables WHERE schemaname = current_schema() "
            "ORDER BY tablename"
        )
        return [row["tablename"] for row in rows]

    def drop_table_sql(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {self.quote_identifier(table)} CASCADE"

    def create_table_template(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    id BIGSERIAL PRIMARY KEY,\n"
            "    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,\n"
            "    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL\n"
            ");"
        )

"""Backend connection management.

Defines the Backend Adapter contract the migration engine is written
against, the dialect-aware statement splitter shared by every adapter, and
the ``get_connection`` context manager that opens the adapter for one
invocation.
"""

import importlib
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Generator, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from .config import BackendConfig, normalize_backend

logger = logging.getLogger(__name__)

_DOLLAR_TAG = re.compile(r"\$[A-Za-z_][A-Za-z0-9_]*\$|\$\$")

# backend -> "module:Class", imported lazily so only the selected driver loads
ADAPTERS = {
    "postgres": "migrator.db.backends.postgres:PostgresAdapter",
    "mysql": "migrator.db.backends.mysql:MySQLAdapter",
    "cql": "migrator.db.backends.cql:CQLAdapter",
    "sqlite": "migrator.db.backends.sqlite:SQLiteAdapter",
}


class ConnectionError(Exception):
    """Database connection error."""

    pass


class QueryError(Exception):
    """Database query error."""

    pass


def split_statements(
    script: str,
    dollar_quotes: bool = False,
    backslash_escapes: bool = False,
) -> list[str]:
    """Split a script into individual statements on top-level semicolons.

    Semicolons inside quoted strings, quoted identifiers and comments do not
    split. Fragments holding nothing but whitespace and comments are dropped.

    Args:
        script: Script text
        dollar_quotes: Treat ``$tag$ ... $tag$`` as a quoted body (PostgreSQL)
        backslash_escapes: Backslash escapes the next character inside
            string literals (MySQL)

    Returns:
        Statements in script order, stripped, without the trailing semicolon
    """
    statements: list[str] = []
    current: list[str] = []
    has_code = False
    i = 0
    n = len(script)

    def flush() -> None:
        nonlocal has_code
        text = "".join(current).strip()
        if text and has_code:
            statements.append(text)
        current.clear()
        has_code = False

    while i < n:
        ch = script[i]
        nxt = script[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = script.find("\n", i)
            end = n if end == -1 else end
            current.append(script[i:end])
            i = end
            continue

        if ch == "/" and nxt == "*":
            end = script.find("*/", i + 2)
            end = n if end == -1 else end + 2
            current.append(script[i:end])
            i = end
            continue

        if ch in ("'", '"', "`"):
            j = i + 1
            while j < n:
                if backslash_escapes and script[j] == "\\":
                    j += 2
                    continue
                if script[j] == ch:
                    if j + 1 < n and script[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            end = min(j + 1, n)
            current.append(script[i:end])
            has_code = True
            i = end
            continue

        if ch == "$" and dollar_quotes:
            match = _DOLLAR_TAG.match(script, i)
            if match:
                tag = match.group(0)
                close = script.find(tag, match.end())
                end = n if close == -1 else close + len(tag)
                current.append(script[i:end])
                has_code = True
                i = end
                continue

        if ch == ";":
            flush()
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        current.append(ch)
        i += 1

    flush()
    return statements


class BackendAdapter(ABC):
    """Capability interface between the migration engine and one backend.

    Subclasses wrap a driver connection/session and describe the backend's
    dialect: statement splitting, identifier quoting, the ledger table DDL,
    how user tables are enumerated and dropped, and whether multi-statement
    transactions are available.
    """

    backend: str = ""
    extension: str = "sql"
    placeholder: str = "%s"
    identifier_quote: str = '"'
    dollar_quotes: bool = False
    backslash_escapes: bool = False
    # False when DDL commits implicitly even inside an open transaction
    atomic_ddl: bool = True
    reserved_tables: frozenset[str] = frozenset()
    reserved_prefixes: tuple[str, ...] = ()
    driver_errors: tuple[type[BaseException], ...] = ()
    integrity_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, config: BackendConfig):
        """Initialize adapter.

        Args:
            config: Backend configuration
        """
        self.config = config
        self._conn: Any = None
        self._in_scope = False

    @property
    def is_connected(self) -> bool:
        """Check if connection is active."""
        return self._conn is not None

    @abstractmethod
    def connect(self) -> None:
        """Open the connection/session.

        Raises:
            ConnectionError: If the backend cannot be reached
        """

    @abstractmethod
    def close(self) -> None:
        """Close the connection/session."""

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable target description (no password)."""

    def __enter__(self) -> "BackendAdapter":
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- statement execution -------------------------------------------------

    @abstractmethod
    def _execute(self, statement: str, params: Optional[Sequence[Any]]) -> None:
        """Driver-level execute."""

    @abstractmethod
    def _query(self, statement: str, params: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        """Driver-level query returning rows as dicts."""

    def _adapt_param(self, value: Any) -> Any:
        """Convert a parameter into something the driver accepts."""
        return value

    def _prepare(self, params: Optional[Sequence[Any]]) -> Optional[tuple[Any, ...]]:
        if params is None:
            return None
        return tuple(self._adapt_param(p) for p in params)

    def execute(self, statement: str, params: Optional[Sequence[Any]] = None) -> None:
        """Execute a single statement.

        Args:
            statement: Statement text (one statement, no trailing semicolon)
            params: Optional positional parameters using ``placeholder``

        Raises:
            QueryError: If the backend rejects the statement
        """
        if not self.is_connected:
            self.connect()

        logger.debug(f"Executing: {statement[:200]}")
        try:
            self._execute(statement, self._prepare(params))
        except self.driver_errors as e:
            raise QueryError(f"Query failed: {e}") from e

    def query(
        self, statement: str, params: Optional[Sequence[Any]] = None
    ) -> list[dict[str, Any]]:
        """Execute a statement and return its rows.

        Raises:
            QueryError: If the backend rejects the statement
        """
        if not self.is_connected:
            self.connect()

        try:
            return self._query(statement, self._prepare(params))
        except self.driver_errors as e:
            raise QueryError(f"Query failed: {e}") from e

    # -- transactions --------------------------------------------------------

    def supports_transactions(self) -> bool:
        """Whether multi-statement atomic transactions are available."""
        return True

    @abstractmethod
    def begin_scope(self) -> None:
        """Open a transaction scope."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the open scope."""

    @abstractmethod
    def rollback_scope(self) -> None:
        """Discard the open scope."""

    @contextmanager
    def scope(self) -> Iterator["BackendAdapter"]:
        """Run the block in one transaction where the backend supports it.

        On backends without transactions the block runs statement by
        statement and nothing is undone on failure.
        """
        if not self.supports_transactions():
            yield self
            return

        try:
            self.begin_scope()
        except self.driver_errors as e:
            raise QueryError(f"Failed to start transaction: {e}") from e
        self._in_scope = True
        try:
            yield self
        except BaseException:
            try:
                self.rollback_scope()
            except self.driver_errors as e:
                logger.warning(f"Rollback of failed scope raised: {e}")
            raise
        else:
            try:
                self.commit()
            except self.driver_errors as e:
                raise QueryError(f"Failed to commit transaction: {e}") from e
        finally:
            self._in_scope = False

    # -- dialect -------------------------------------------------------------

    def split_statements(self, script: str) -> list[str]:
        """Split a migration script using this backend's quoting rules."""
        return split_statements(
            script,
            dollar_quotes=self.dollar_quotes,
            backslash_escapes=self.backslash_escapes,
        )

    def quote_identifier(self, name: str) -> str:
        """Quote a table or column name."""
        q = self.identifier_quote
        return f"{q}{name.replace(q, q * 2)}{q}"

    @abstractmethod
    def ledger_ddl(self, table: str) -> str:
        """CREATE TABLE IF NOT EXISTS statement for the ledger."""

    def insert_ledger_row(
        self, table: str, version: int, name: str, applied_at: datetime
    ) -> bool:
        """Insert a ledger row.

        Returns:
            False if a row for ``version`` already exists
        """
        p = self.placeholder
        try:
            self.execute(
                f"INSERT INTO {self.quote_identifier(table)} (version, name, applied_at) "
                f"VALUES ({p}, {p}, {p})",
                (version, name, applied_at),
            )
        except QueryError as e:
            if isinstance(e.__cause__, self.integrity_errors):
                return False
            raise
        return True

    @abstractmethod
    def list_tables(self) -> list[str]:
        """Names of all tables in the active schema/keyspace."""

    def is_reserved(self, table: str) -> bool:
        """Whether a table belongs to the system and must survive a fresh reset."""
        return table in self.reserved_tables or table.startswith(self.reserved_prefixes)

    def drop_table_sql(self, table: str) -> str:
        """DROP statement for one table."""
        return f"DROP TABLE IF EXISTS {self.quote_identifier(table)}"

    @contextmanager
    def foreign_keys_disabled(self) -> Iterator[None]:
        """Suspend foreign-key enforcement while tables are dropped."""
        yield

    @abstractmethod
    def create_table_template(self, table: str) -> str:
        """Starter CREATE TABLE statement for a new migration file."""


def get_adapter_class(backend: str) -> type[BackendAdapter]:
    """Resolve the adapter class for a backend name or alias."""
    key = normalize_backend(backend)
    module_name, class_name = ADAPTERS[key].split(":")
    module = importlib.import_module(module_name)
    adapter_class: type[BackendAdapter] = getattr(module, class_name)
    return adapter_class


def get_adapter(backend: str, config: BackendConfig) -> BackendAdapter:
    """Construct (but do not connect) the adapter for a backend."""
    return get_adapter_class(backend)(config)


@contextmanager
def get_connection(
    backend: str,
    config: BackendConfig,
) -> Generator[BackendAdapter, None, None]:
    """Context manager for a connected backend adapter.

    Usage:
        with get_connection("postgres", config) as adapter:
            MigrationRunner(adapter).migrate()

    Args:
        backend: Backend name or alias
        config: Backend configuration

    Yields:
        Connected adapter
    """
    adapter = get_adapter(backend, config)
    adapter.connect()
    try:
        yield adapter
    finally:
        adapter.close()

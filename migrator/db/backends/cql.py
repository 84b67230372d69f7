"""Cassandra / ScyllaDB backend adapter (cassandra-driver).

CQL has no multi-statement transactions. Statements of a migration and its
ledger insert run one after another; a failure part-way leaves the earlier
statements applied and the migration unrecorded.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Optional

from cassandra import (
    ConsistencyLevel,
    DriverException,
    OperationTimedOut,
    RequestExecutionException,
    RequestValidationException,
)
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, NoHostAvailable
from cassandra.policies import DCAwareRoundRobinPolicy
from cassandra.query import SimpleStatement, dict_factory

from ..config import CQLConfig
from ..connection import BackendAdapter, ConnectionError, QueryError

logger = logging.getLogger(__name__)

SYSTEM_KEYSPACES = frozenset(
    {"system", "system_schema", "system_auth", "system_distributed", "system_traces"}
)


class CQLAdapter(BackendAdapter):
    """Adapter for Cassandra and ScyllaDB."""

    backend = "cql"
    extension = "cql"
    placeholder = "%s"
    identifier_quote = '"'
    atomic_ddl = False
    reserved_tables = SYSTEM_KEYSPACES
    reserved_prefixes = ("system_", "scylla_")
    driver_errors = (
        DriverException,
        RequestExecutionException,
        RequestValidationException,
        NoHostAvailable,
        OperationTimedOut,
    )

    config: CQLConfig

    def __init__(self, config: CQLConfig):
        super().__init__(config)
        self._cluster: Any = None

    def describe(self) -> str:
        c = self.config
        return f"cql://{','.join(c.hosts)}:{c.port}/{c.keyspace or '-'}"

    @property
    def keyspace(self) -> str:
        """Keyspace of the open session, falling back to configuration."""
        if self._conn is not None and getattr(self._conn, "keyspace", None):
            return str(self._conn.keyspace)
        return self.config.keyspace

    def connect(self) -> None:
        if self._conn is not None:
            return

        c = self.config
        try:
            consistency = ConsistencyLevel.name_to_value[(c.consistency or "QUORUM").upper()]
        except KeyError as e:
            raise ConnectionError(f"Invalid consistency level: {c.consistency}") from e

        auth = PlainTextAuthProvider(username=c.user, password=c.password) if c.user else None
        policy = DCAwareRoundRobinPolicy(local_dc=c.datacenter) if c.datacenter else None
        cluster = Cluster(
            contact_points=c.hosts,
            port=c.port,
            auth_provider=auth,
            protocol_version=c.protocol_version,
            connect_timeout=c.connect_timeout,
            load_balancing_policy=policy,
        )
        try:
            session = cluster.connect(c.keyspace or None)
        except self.driver_errors as e:
            cluster.shutdown()
            raise ConnectionError(f"Unable to connect to CQL database: {e}") from e

        session.row_factory = dict_factory
        session.default_consistency_level = consistency
        self._cluster = cluster
        self._conn = session
        logger.debug(f"Connected to {self.describe()}")

    def close(self) -> None:
        if self._cluster is None:
            return
        try:
            self._cluster.shutdown()
        except self.driver_errors as e:
            logger.warning(f"Error closing session: {e}")
        finally:
            self._cluster = None
            self._conn = None

    def _execute(self, statement: str, params: Optional[Sequence[Any]]) -> None:
        self._conn.execute(SimpleStatement(statement), params)

    def _query(self, statement: str, params: Optional[Sequence[Any]]) -> list[dict[str, Any]]:
        return list(self._conn.execute(SimpleStatement(statement), params))

    def supports_transactions(self) -> bool:
        return False

    def begin_scope(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback_scope(self) -> None:
        pass

    def ledger_ddl(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} ("
            "version bigint PRIMARY KEY, "
            "name text, "
            "applied_at timestamp)"
        )

    def insert_ledger_row(
        self, table: str, version: int, name: str, applied_at: datetime
    ) -> bool:
        # Plain INSERT is an upsert in CQL, so use a lightweight transaction
        rows = self.query(
            f"INSERT INTO {self.quote_identifier(table)} (version, name, applied_at) "
            "VALUES (%s, %s, %s) IF NOT EXISTS",
            (version, name, applied_at),
        )
        if not rows:
            raise QueryError(f"No result returned for ledger insert of version {version}")
        return bool(rows[0].get("[applied]", True))

    def list_tables(self) -> list[str]:
        rows = self.query(
            "SELECT table_name FROM system_schema.tables WHERE keyspace_name = %s",
            (self.keyspace,),
        )
        return sorted(row["table_name"] for row in rows)

    def create_table_template(self, table: str) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    id uuid PRIMARY KEY,\n"
            "    created_at timestamp,\n"
            "    updated_at timestamp\n"
            ");"
        )

"""Tests for the PostgreSQL, MySQL and CQL adapters with mocked drivers."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import mysql.connector
import psycopg2
import pytest
from cassandra import ConsistencyLevel, InvalidRequest
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import NoHostAvailable
from cassandra.policies import DCAwareRoundRobinPolicy
from cassandra.query import dict_factory

from migrator.db.backends.cql import CQLAdapter
from migrator.db.backends.mysql import MySQLAdapter
from migrator.db.backends.postgres import PostgresAdapter
from migrator.db.config import CQLConfig, MySQLConfig, PostgresConfig
from migrator.db.connection import ConnectionError, QueryError
from migrator.db.migrations.base import ExecutionError
from migrator.db.migrations.runner import MigrationRunner
from tests.helpers.mock_factories import (
    create_mock_cql_cluster,
    create_mock_mysql_connection,
    create_mock_psycopg2_connection,
    migration_text,
)


class TestPostgresAdapter:
    """Tests for PostgresAdapter."""

    @pytest.fixture
    def pg(self):
        """Connected adapter over a mocked psycopg2 connection."""
        conn, cursor = create_mock_psycopg2_connection()
        with patch("migrator.db.backends.postgres.psycopg2.connect", return_value=conn) as mock_connect:
            adapter = PostgresAdapter(PostgresConfig(password="pw", dbname="app"))
            adapter.connect()
            yield adapter, conn, cursor, mock_connect

    def test_connect(self, pg):
        """Test connection parameters and autocommit."""
        adapter, conn, _, mock_connect = pg

        mock_connect.assert_called_once_with(
            host="localhost",
            port=5432,
            user="postgres",
            password="pw",
            dbname="app",
            sslmode="disable",
            connect_timeout=10,
        )
        assert conn.autocommit is True
        assert adapter.is_connected

    def test_connect_failure(self):
        """Test driver errors on connect become ConnectionError."""
        with patch(
            "migrator.db.backends.postgres.psycopg2.connect",
            side_effect=psycopg2.OperationalError("connection refused"),
        ):
            with pytest.raises(ConnectionError, match="Unable to connect to PostgreSQL"):
                PostgresAdapter(PostgresConfig()).connect()

    def test_execute(self, pg):
        """Test statements and parameters reach the cursor."""
        adapter, _, cursor, _ = pg

        adapter.execute("DELETE FROM t WHERE id = %s", (1,))

        cursor.execute.assert_called_once_with("DELETE FROM t WHERE id = %s", (1,))

    def test_execute_error(self, pg):
        """Test driver errors become QueryError."""
        adapter, _, cursor, _ = pg
        cursor.execute.side_effect = psycopg2.ProgrammingError("syntax error")

        with pytest.raises(QueryError, match="syntax error"):
            adapter.execute("SELEC 1")

    def test_scope_commit(self, pg):
        """Test a scope turns autocommit off and commits."""
        adapter, conn, _, _ = pg

        with adapter.scope():
            assert conn.autocommit is False

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        assert conn.autocommit is True

    def test_scope_rollback(self, pg):
        """Test a failing scope rolls back."""
        adapter, conn, _, _ = pg

        with pytest.raises(QueryError):
            with adapter.scope():
                raise QueryError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        assert conn.autocommit is True

    def test_list_tables(self, pg):
        """Test tables are read from the current schema."""
        adapter, _, cursor, _ = pg
        cursor.fetchall.return_value = [{"tablename": "posts"}, {"tablename": "users"}]

        assert adapter.list_tables() == ["posts", "users"]
        assert "current_schema()" in cursor.execute.call_args[0][0]

    def test_duplicate_ledger_row(self, pg):
        """Test a unique violation reports the lost race."""
        adapter, _, cursor, _ = pg
        cursor.execute.side_effect = psycopg2.IntegrityError("duplicate key")

        assert adapter.insert_ledger_row("migrations", 1, "create_users_table", datetime.now()) is False

    def test_dialect(self):
        """Test PostgreSQL-specific dialect behavior."""
        adapter = PostgresAdapter(PostgresConfig(password="pw"))

        assert adapter.drop_table_sql("users") == 'DROP TABLE IF EXISTS "users" CASCADE'
        assert adapter.is_reserved("spatial_ref_sys")
        assert adapter.is_reserved("pg_stat_statements")
        assert not adapter.is_reserved("users")
        assert adapter.split_statements("DO $$ BEGIN PERFORM 1; END $$; SELECT 1") == [
            "DO $$ BEGIN PERFORM 1; END $$",
            "SELECT 1",
        ]
        assert "pw" not in adapter.describe()
        assert "BIGINT PRIMARY KEY" in adapter.ledger_ddl("migrations")


class TestMySQLAdapter:
    """Tests for MySQLAdapter."""

    @pytest.fixture
    def my(self):
        """Connected adapter over a mocked mysql-connector connection."""
        conn, cursor = create_mock_mysql_connection()
        with patch("migrator.db.backends.mysql.mysql.connector.connect", return_value=conn) as mock_connect:
            adapter = MySQLAdapter(MySQLConfig(dbname="app"))
            adapter.connect()
            yield adapter, conn, cursor, mock_connect

    def test_connect(self, my):
        """Test connection parameters."""
        _, _, _, mock_connect = my

        kwargs = mock_connect.call_args.kwargs
        assert kwargs["database"] == "app"
        assert kwargs["port"] == 3306
        assert kwargs["autocommit"] is True

    def test_connect_failure(self):
        """Test driver errors on connect become ConnectionError."""
        with patch(
            "migrator.db.backends.mysql.mysql.connector.connect",
            side_effect=mysql.connector.Error("Access denied"),
        ):
            with pytest.raises(ConnectionError, match="Unable to connect to MySQL"):
                MySQLAdapter(MySQLConfig()).connect()

    def test_scope(self, my):
        """Test scopes use explicit transactions."""
        adapter, conn, _, _ = my

        with adapter.scope():
            pass

        conn.start_transaction.assert_called_once()
        conn.commit.assert_called_once()

    def test_execute_error(self, my):
        """Test driver errors become QueryError."""
        adapter, _, cursor, _ = my
        cursor.execute.side_effect = mysql.connector.ProgrammingError("You have an error")

        with pytest.raises(QueryError):
            adapter.execute("SELEC 1")
        cursor.close.assert_called_once()

    def test_foreign_keys_disabled(self, my):
        """Test checks are switched off and back on."""
        adapter, _, cursor, _ = my

        with adapter.foreign_keys_disabled():
            pass

        statements = [c[0][0] for c in cursor.execute.call_args_list]
        assert statements == ["SET FOREIGN_KEY_CHECKS = 0", "SET FOREIGN_KEY_CHECKS = 1"]

    def test_aware_datetime_is_stored_as_utc(self):
        """Test timestamps are converted to naive UTC."""
        adapter = MySQLAdapter(MySQLConfig())
        value = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

        assert adapter._adapt_param(value) == datetime(2024, 1, 1, 10, 0)

    def test_dialect(self):
        """Test MySQL-specific dialect behavior."""
        adapter = MySQLAdapter(MySQLConfig())

        assert adapter.quote_identifier("order") == "`order`"
        assert adapter.atomic_ddl is False
        assert adapter.supports_transactions()
        assert adapter.split_statements("INSERT INTO t VALUES ('it\\'s;'); SELECT 1") == [
            "INSERT INTO t VALUES ('it\\'s;')",
            "SELECT 1",
        ]


class TestCQLAdapter:
    """Tests for CQLAdapter."""

    @pytest.fixture
    def cql(self):
        """Connected adapter over a mocked cassandra cluster."""
        cluster, session = create_mock_cql_cluster()
        with patch("migrator.db.backends.cql.Cluster", return_value=cluster) as mock_cluster:
            adapter = CQLAdapter(CQLConfig(keyspace="app", user="cassandra", password="pw"))
            adapter.connect()
            yield adapter, cluster, session, mock_cluster

    def test_connect(self, cql):
        """Test the cluster and session are configured."""
        _, cluster, session, mock_cluster = cql

        kwargs = mock_cluster.call_args.kwargs
        assert kwargs["contact_points"] == ["localhost"]
        assert kwargs["port"] == 9042
        assert isinstance(kwargs["auth_provider"], PlainTextAuthProvider)
        cluster.connect.assert_called_once_with("app")
        assert session.row_factory is dict_factory
        assert session.default_consistency_level == ConsistencyLevel.QUORUM

    def test_connect_datacenter_policy(self):
        """Test a configured datacenter becomes the local DC for load balancing."""
        cluster, _ = create_mock_cql_cluster()
        with patch("migrator.db.backends.cql.Cluster", return_value=cluster) as mock_cluster:
            CQLAdapter(CQLConfig(keyspace="app", datacenter="dc1")).connect()

        policy = mock_cluster.call_args.kwargs["load_balancing_policy"]
        assert isinstance(policy, DCAwareRoundRobinPolicy)
        assert policy.local_dc == "dc1"

    def test_connect_without_datacenter(self, cql):
        """Test the driver's default policy is kept without a datacenter."""
        _, _, _, mock_cluster = cql
        assert mock_cluster.call_args.kwargs["load_balancing_policy"] is None

    def test_invalid_consistency(self):
        """Test an unknown consistency level is rejected before connecting."""
        with patch("migrator.db.backends.cql.Cluster") as mock_cluster:
            with pytest.raises(ConnectionError, match="Invalid consistency level"):
                CQLAdapter(CQLConfig(consistency="MOSTLY")).connect()
        mock_cluster.assert_not_called()

    def test_connect_failure(self):
        """Test an unreachable cluster is shut down and reported."""
        cluster, _ = create_mock_cql_cluster()
        cluster.connect.side_effect = NoHostAvailable("Unable to connect", {})

        with patch("migrator.db.backends.cql.Cluster", return_value=cluster):
            with pytest.raises(ConnectionError, match="Unable to connect to CQL"):
                CQLAdapter(CQLConfig()).connect()
        cluster.shutdown.assert_called_once()

    def test_close(self, cql):
        """Test close shuts the cluster down."""
        adapter, cluster, _, _ = cql

        adapter.close()

        cluster.shutdown.assert_called_once()
        assert not adapter.is_connected

    def test_no_transactions(self, cql):
        """Test scopes do nothing on CQL."""
        adapter, _, session, _ = cql

        assert not adapter.supports_transactions()
        with adapter.scope():
            pass
        session.execute.assert_not_called()

    @pytest.mark.parametrize("applied,expected", [(True, True), (False, False)])
    def test_insert_ledger_row(self, cql, applied, expected):
        """Test the lightweight transaction result is honored."""
        adapter, _, session, _ = cql
        session.execute.return_value = [{"[applied]": applied}]

        assert adapter.insert_ledger_row("migrations", 1, "create_users_table", datetime.now()) is expected
        assert "IF NOT EXISTS" in session.execute.call_args[0][0].query_string

    def test_list_tables(self, cql):
        """Test tables are read for the session keyspace."""
        adapter, _, session, _ = cql
        session.execute.return_value = [{"table_name": "users"}, {"table_name": "migrations"}]

        assert adapter.list_tables() == ["migrations", "users"]
        assert session.execute.call_args[0][1] == ("app",)

    def test_reserved(self):
        """Test system tables survive a fresh reset."""
        adapter = CQLAdapter(CQLConfig())

        assert adapter.is_reserved("system_auth")
        assert adapter.is_reserved("scylla_local")
        assert not adapter.is_reserved("users")

    def test_migration_failure_is_partial(self, cql, tmp_path):
        """Test a failure part-way through a migration is reported as partial."""
        adapter, _, session, _ = cql
        config = CQLConfig(migration_path=str(tmp_path), keyspace="app")
        config.migrations_dir.mkdir(parents=True)
        (config.migrations_dir / "1_create_users_table.cql").write_text(
            migration_text(
                "CREATE TABLE users (id uuid PRIMARY KEY);\nCREATE INDEX ON users (missing);",
                "DROP TABLE users;",
            )
        )
        session.execute.side_effect = [None, [], None, InvalidRequest("Undefined column name missing")]

        with pytest.raises(ExecutionError) as exc_info:
            MigrationRunner(adapter, config).migrate()

        assert exc_info.value.partial
        assert "does not support transactions" in str(exc_info.value)
        # ledger DDL, is_applied, two statements; no ledger insert
        assert session.execute.call_count == 4

    def test_migration_success_records_with_lwt(self, cql, tmp_path):
        """Test a successful migration is recorded with IF NOT EXISTS."""
        adapter, _, session, _ = cql
        config = CQLConfig(migration_path=str(tmp_path), keyspace="app")
        config.migrations_dir.mkdir(parents=True)
        (config.migrations_dir / "1_create_users_table.cql").write_text(
            migration_text("CREATE TABLE users (id uuid PRIMARY KEY);", "DROP TABLE users;")
        )
        session.execute.side_effect = [None, [], None, [{"[applied]": True}]]

        result = MigrationRunner(adapter, config).migrate()

        assert [m.version for m in result.applied] == [1]
        assert "IF NOT EXISTS" in session.execute.call_args[0][0].query_string

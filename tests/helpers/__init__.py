"""Test helpers package for shared fixtures and mock factories."""

from tests.helpers.mock_factories import (
    ImplicitCommitSQLiteAdapter,
    NonTransactionalSQLiteAdapter,
    create_mock_cql_cluster,
    create_mock_mysql_connection,
    create_mock_psycopg2_connection,
    migration_text,
    table_names,
)

__all__ = [
    "ImplicitCommitSQLiteAdapter",
    "NonTransactionalSQLiteAdapter",
    "create_mock_cql_cluster",
    "create_mock_mysql_connection",
    "create_mock_psycopg2_connection",
    "migration_text",
    "table_names",
]

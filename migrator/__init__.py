"""migrator: file-defined schema migrations for PostgreSQL, MySQL, Cassandra/ScyllaDB and SQLite."""

__version__ = "0.1.0"

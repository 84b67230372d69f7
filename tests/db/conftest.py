"""DB-specific pytest fixtures.

Provides an SQLite-backed adapter and runner for end-to-end engine tests
and a helper to write migration files.
"""

from pathlib import Path

import pytest

from migrator.db.backends.sqlite import SQLiteAdapter
from migrator.db.config import SQLiteConfig
from migrator.db.migrations.runner import MigrationRunner
from tests.helpers.mock_factories import migration_text


@pytest.fixture
def sqlite_config(tmp_path) -> SQLiteConfig:
    """SQLite configuration rooted in the test's temp directory."""
    return SQLiteConfig(
        migration_path=str(tmp_path / "migrations"),
        database=str(tmp_path / "test.db"),
    )


@pytest.fixture
def migrations_dir(sqlite_config) -> Path:
    """Existing, empty migrations directory."""
    directory = sqlite_config.migrations_dir
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def write_migration(migrations_dir):
    """Write ``{version}_{name}.sql`` into the migrations directory."""

    def _write(version: int, name: str, up: str, down: str, ext: str = "sql") -> Path:
        path = migrations_dir / f"{version}_{name}.{ext}"
        path.write_text(migration_text(up, down))
        return path

    return _write


@pytest.fixture
def sqlite_adapter(sqlite_config):
    """Connected SQLite adapter."""
    adapter = SQLiteAdapter(sqlite_config)
    adapter.connect()
    yield adapter
    adapter.close()


@pytest.fixture
def runner(sqlite_adapter, sqlite_config) -> MigrationRunner:
    """Runner over the SQLite adapter."""
    return MigrationRunner(sqlite_adapter, sqlite_config)


@pytest.fixture
def users_and_posts(write_migration):
    """Two dependent migrations: users, then posts referencing users."""
    write_migration(
        20240101000000,
        "create_users_table",
        "CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, email TEXT NOT NULL);",
        "DROP TABLE IF EXISTS users;",
    )
    write_migration(
        20240102000000,
        "create_posts_table",
        "CREATE TABLE posts (\n"
        "    id INTEGER PRIMARY KEY,\n"
        "    user_id INTEGER REFERENCES users(id),\n"
        "    title TEXT DEFAULT 'untitled; draft'\n"
        ");\n"
        "CREATE INDEX idx_posts_user ON posts (user_id);",
        "DROP INDEX IF EXISTS idx_posts_user;\nDROP TABLE IF EXISTS posts;",
    )

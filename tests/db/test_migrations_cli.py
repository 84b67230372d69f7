"""Tests for the migrations CLI."""

import json
import logging
from unittest.mock import patch

import pytest

from migrator import __version__
from migrator.db.backends.sqlite import SQLiteAdapter
from migrator.db.config import ConfigError, SQLiteConfig
from migrator.db.migrations.cli import main, parse_command, parse_rollback_steps
from tests.helpers.mock_factories import migration_text, table_names


@pytest.fixture
def project(tmp_path):
    """Config file pointing the sqlite backend into tmp_path."""
    config_path = tmp_path / ".migrator.json"
    config_path.write_text(
        json.dumps(
            {
                "sqlite": {
                    "migration_path": str(tmp_path / "migrations"),
                    "database": str(tmp_path / "app.db"),
                }
            }
        )
    )
    return config_path


def run_cli(*argv) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(list(argv))
    return exc_info.value.code


class TestParseCommand:
    """Tests for parse_command()."""

    def test_simple(self):
        """Test backend and action."""
        cmd = parse_command("postgres-migrate")
        assert (cmd.backend, cmd.action, cmd.arg) == ("postgres", "migrate", None)

    def test_alias_and_argument(self):
        """Test aliases resolve and the argument is split off."""
        cmd = parse_command("cassandra-rollback:3")
        assert (cmd.backend, cmd.action, cmd.arg) == ("cql", "rollback", "3")

    def test_hyphenated_action(self):
        """Test actions containing hyphens and multi-part arguments."""
        cmd = parse_command("cql-create-keyspace:SimpleStrategy:3")
        assert (cmd.action, cmd.arg) == ("create-keyspace", "SimpleStrategy:3")

    @pytest.mark.parametrize("command", ["migrate", "postgres-", "postgres-explode"])
    def test_unknown(self, command):
        """Test malformed commands."""
        with pytest.raises(ValueError, match="Unknown command"):
            parse_command(command)

    def test_unknown_backend(self):
        """Test unknown backends."""
        with pytest.raises(ConfigError):
            parse_command("oracle-migrate")


class TestParseRollbackSteps:
    """Tests for parse_rollback_steps()."""

    @pytest.mark.parametrize("arg,steps", [(None, 1), ("all", -1), ("3", 3)])
    def test_valid(self, arg, steps):
        """Test accepted forms."""
        assert parse_rollback_steps(arg) == steps

    @pytest.mark.parametrize("arg", ["0", "-1", "two"])
    def test_invalid(self, arg):
        """Test rejected forms."""
        with pytest.raises(ValueError, match="Invalid rollback steps"):
            parse_rollback_steps(arg)


class TestCommands:
    """Tests for running commands end to end against SQLite."""

    def test_version(self, capsys):
        """Test version output."""
        assert run_cli("version") == 0
        assert f"migrator version {__version__}" in capsys.readouterr().out

    def test_create_migration(self, project, tmp_path, capsys):
        """Test a migration file is created."""
        assert run_cli("sqlite-migration", "create_users_table", "--config", str(project)) == 0

        files = list((tmp_path / "migrations" / "sql").glob("*_create_users_table.sql"))
        assert len(files) == 1
        assert "Created migration" in capsys.readouterr().out

    def test_create_migration_requires_name(self, project, capsys):
        """Test the name argument is required."""
        assert run_cli("sqlite-migration", "--config", str(project)) == 1
        assert "Usage" in capsys.readouterr().err

    def test_create_migration_invalid_name(self, project, capsys):
        """Test naming errors exit with 1."""
        assert run_cli("sqlite-migration", "create_user_table", "--config", str(project)) == 1
        assert "plural" in capsys.readouterr().err

    def test_migrate_list_rollback(self, project, migrations_dir, tmp_path, capsys):
        """Test the apply, list and rollback cycle."""
        migration = migrations_dir / "1_create_users_table.sql"
        migration.write_text(
            migration_text("CREATE TABLE users (id INTEGER);", "DROP TABLE users;")
        )

        assert run_cli("sqlite-migrate", "--config", str(project)) == 0
        assert "Applied 1 migration(s)" in capsys.readouterr().out

        assert run_cli("sqlite-list", "--config", str(project)) == 0
        out = capsys.readouterr().out
        assert "create_users_table" in out
        assert "APPLIED" in out

        assert run_cli("sqlite-rollback:all", "--config", str(project)) == 0
        assert "Rolled back 1 migration(s)" in capsys.readouterr().out

        assert run_cli("sqlite-migrate", "--config", str(project)) == 0
        assert run_cli("sqlite-rollback", "--config", str(project)) == 0
        assert "Rolled back 1 migration(s)" in capsys.readouterr().out

        adapter = SQLiteAdapter(SQLiteConfig(database=str(tmp_path / "app.db")))
        with adapter:
            assert "users" not in table_names(adapter)

        assert run_cli("sqlite-list", "--config", str(project)) == 0
        assert "PENDING" in capsys.readouterr().out

        migration.unlink()
        assert run_cli("sqlite-list", "--config", str(project)) == 0
        assert "No migrations found" in capsys.readouterr().out

    def test_migrate_nothing_pending(self, project, migrations_dir, capsys, caplog):
        """Test the empty run is reported once."""
        with caplog.at_level(logging.INFO):
            assert run_cli("sqlite-migrate", "-v", "--config", str(project)) == 0

        captured = capsys.readouterr()
        assert (captured.out + captured.err).count("No pending migrations") == 1
        assert "No pending migrations" not in caplog.text

    def test_migrate_dry_run(self, project, migrations_dir, tmp_path, capsys):
        """Test dry-run leaves the database untouched."""
        (migrations_dir / "1_create_users_table.sql").write_text(
            migration_text("CREATE TABLE users (id INTEGER);", "DROP TABLE users;")
        )

        assert run_cli("sqlite-migrate", "--dry-run", "--config", str(project)) == 0

        assert "[DRY-RUN] Would apply 1 migration(s)" in capsys.readouterr().out
        assert run_cli("sqlite-list", "--config", str(project)) == 0
        assert "PENDING" in capsys.readouterr().out

    def test_failed_migration(self, project, migrations_dir, capsys):
        """Test execution errors exit with 1."""
        (migrations_dir / "1_create_users_table.sql").write_text(
            migration_text("CREATE TABLEX users;", "DROP TABLE users;")
        )

        assert run_cli("sqlite-migrate", "--config", str(project)) == 1
        assert "Error:" in capsys.readouterr().err

    def test_invalid_rollback(self, project, capsys):
        """Test invalid rollback steps exit with 1."""
        assert run_cli("sqlite-rollback:0", "--config", str(project)) == 1
        assert "Invalid rollback steps" in capsys.readouterr().err

    def test_unknown_command(self, project, capsys):
        """Test unknown commands exit with 1."""
        assert run_cli("sqlite-explode", "--config", str(project)) == 1
        assert "Unknown command" in capsys.readouterr().err

    def test_fresh_cancelled(self, project, migrations_dir, capsys):
        """Test declining the confirmation changes nothing."""
        with patch("migrator.db.migrations.cli.Confirm.ask", return_value=False) as mock_ask:
            assert run_cli("sqlite-fresh", "--config", str(project)) == 0

        mock_ask.assert_called_once()
        assert "Operation cancelled" in capsys.readouterr().out

    def test_fresh_with_yes(self, project, migrations_dir, capsys):
        """Test --yes skips the confirmation."""
        (migrations_dir / "1_create_users_table.sql").write_text(
            migration_text("CREATE TABLE users (id INTEGER);", "DROP TABLE users;")
        )

        with patch("migrator.db.migrations.cli.Confirm.ask") as mock_ask:
            assert run_cli("sqlite-fresh", "--yes", "--config", str(project)) == 0

        mock_ask.assert_not_called()
        assert "Fresh migration completed" in capsys.readouterr().out

    def test_init(self, project, tmp_path):
        """Test interactive configuration is saved."""
        answers = [str(tmp_path / "other.db"), str(tmp_path / "db")]
        with patch("migrator.db.migrations.cli.Prompt.ask", side_effect=answers):
            assert run_cli("sqlite-init", "--config", str(project)) == 0

        data = json.loads(project.read_text())
        assert data["sqlite"]["database"] == str(tmp_path / "other.db")
        assert (tmp_path / "db" / "sql").is_dir()

    def test_config_masks_secrets(self, project, monkeypatch, capsys):
        """Test the resolved configuration hides passwords."""
        monkeypatch.setenv("MIGRATOR_POSTGRES_PASSWORD", "hunter2")

        assert run_cli("config", "--config", str(project)) == 0

        out = capsys.readouterr().out
        assert "********" in out
        assert "hunter2" not in out

    def test_create_db_unsupported(self, project, capsys):
        """Test admin errors exit with 1."""
        assert run_cli("sqlite-create-db", "--config", str(project)) == 1
        assert "not supported" in capsys.readouterr().err

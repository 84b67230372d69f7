"""CLI for database migrations.

Usage:
    migrator postgres-migration create_users_table
    migrator postgres-migrate
    migrator postgres-migrate --dry-run
    migrator postgres-rollback
    migrator postgres-rollback:3
    migrator postgres-rollback:all
    migrator postgres-fresh --yes
    migrator postgres-list
"""

import argparse
import logging
import sys
from textwrap import dedent
from typing import NamedTuple, Optional

from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from ... import __version__
from ..admin import AdminError, create_database, create_keyspace, create_user
from ..config import (
    BackendConfig,
    ConfigError,
    MigratorConfig,
    get_config_path,
    load_config,
    normalize_backend,
    save_config,
)
from ..connection import ConnectionError, QueryError, get_adapter, get_connection
from .base import ExecutionError, MigrationError, MigrationResult, MigrationStatus
from .runner import ROLLBACK_ALL, MigrationRunner

logger = logging.getLogger(__name__)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

ACTIONS = (
    "migration",
    "migrate",
    "rollback",
    "fresh",
    "list",
    "init",
    "create-db",
    "create-user",
    "create-keyspace",
)

# Fields asked for by <backend>-init, in prompt order
INIT_FIELDS = {
    "postgres": ("host", "port", "dbname", "user", "password", "migration_path"),
    "mysql": ("host", "port", "dbname", "user", "password", "migration_path"),
    "cql": ("hosts", "keyspace", "user", "password", "migration_path"),
    "sqlite": ("database", "migration_path"),
}
SECRET_FIELDS = ("password", "super_pass")


class Command(NamedTuple):
    """A parsed ``<backend>-<action>[:arg]`` command."""

    backend: str
    action: str
    arg: Optional[str] = None


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_command(command: str) -> Command:
    """Split ``<backend>-<action>[:arg]`` into its parts.

    Raises:
        ConfigError: If the backend is unknown
        ValueError: If the command or action is malformed
    """
    backend, sep, rest = command.partition("-")
    if not sep or not rest:
        raise ValueError(f"Unknown command: {command}")

    action, _, arg = rest.partition(":")
    if action not in ACTIONS:
        raise ValueError(f"Unknown command: {command}")

    return Command(normalize_backend(backend), action, arg or None)


def parse_rollback_steps(arg: Optional[str]) -> int:
    """Steps for ``rollback[:n|:all]`` (1 when absent, -1 for ``all``).

    Raises:
        ValueError: If the argument is not ``all`` or a positive integer
    """
    if arg is None:
        return 1
    if arg == "all":
        return ROLLBACK_ALL
    try:
        steps = int(arg)
    except ValueError:
        raise ValueError(f"Invalid rollback steps: {arg}") from None
    if steps < 1:
        raise ValueError(f"Invalid rollback steps: {arg}")
    return steps


def print_result(result: MigrationResult, action: str) -> None:
    """Print the outcome of an apply or rollback."""
    for note in result.notes:
        console.print(note, style="yellow", markup=False)

    records = result.applied if action == "apply" else result.rolled_back
    if not records:
        return

    if result.dry_run:
        prefix = f"[DRY-RUN] Would {action}"
    else:
        prefix = "Applied" if action == "apply" else "Rolled back"
    sign = "+" if action == "apply" else "-"

    console.print(f"{prefix} {len(records)} migration(s):", markup=False)
    for record in records:
        console.print(f"  {sign} {record.full_name}", markup=False)


def cmd_migration(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Create a new migration file."""
    if not args.name:
        raise ValueError(f"Usage: migrator {cmd.backend}-migration <name>")

    runner = MigrationRunner(get_adapter(cmd.backend, config), config)
    record = runner.create_migration(args.name)

    console.print(f"[green]Created migration:[/green] {runner.store.directory / record.filename}")
    console.print(f"  Version: {record.version}")
    console.print(f"  Name: {record.name}")
    return 0


def cmd_migrate(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Apply pending migrations."""
    if args.dry_run:
        console.print("[DRY-RUN] Simulating migration...", markup=False)

    with get_connection(cmd.backend, config) as adapter:
        result = MigrationRunner(adapter, config).migrate(dry_run=args.dry_run)

    if not result.applied:
        console.print("[blue]No pending migrations[/blue]")
    print_result(result, "apply")
    return 0


def cmd_rollback(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Rollback applied migrations."""
    steps = parse_rollback_steps(cmd.arg)

    if args.dry_run:
        label = "all" if steps == ROLLBACK_ALL else str(steps)
        console.print(f"[DRY-RUN] Simulating rollback of {label} migration(s)...", markup=False)

    with get_connection(cmd.backend, config) as adapter:
        runner = MigrationRunner(adapter, config)
        if steps == 1:
            result = runner.rollback_last(dry_run=args.dry_run)
        else:
            result = runner.rollback_steps(steps, dry_run=args.dry_run)

    print_result(result, "rollback")
    return 0


def cmd_fresh(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Drop all tables and reapply every migration."""
    if args.dry_run:
        raise ValueError("--dry-run is not supported for fresh")

    if not args.yes:
        console.print(
            "[bold red]\\[WARNING][/bold red] This will drop all tables and reapply all migrations."
        )
        if not Confirm.ask("Are you sure you want to continue?", default=False, console=console):
            console.print("[yellow]Operation cancelled[/yellow]")
            return 0

    with get_connection(cmd.backend, config) as adapter:
        result = MigrationRunner(adapter, config).fresh()

    console.print(f"Dropped {len(result.dropped)} table(s)")
    print_result(result, "apply")
    console.print("[green]Fresh migration completed successfully[/green]")
    return 0


def cmd_list(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Show migration status."""
    with get_connection(cmd.backend, config) as adapter:
        rows = MigrationRunner(adapter, config).get_status()

    if not rows:
        console.print("No migrations found")
        return 0

    styles = {
        MigrationStatus.APPLIED: "green",
        MigrationStatus.PENDING: "yellow",
        MigrationStatus.MISSING: "red",
    }

    table = Table(title=f"Migrations ({cmd.backend})")
    table.add_column("Version")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Applied At")

    for row in rows:
        applied_at = row.applied_at.strftime("%Y-%m-%d %H:%M:%S") if row.applied_at else "-"
        table.add_row(
            str(row.version),
            row.name,
            f"[{styles[row.status]}]{row.status.value.upper()}[/{styles[row.status]}]",
            applied_at,
        )

    console.print(table)

    applied = sum(1 for r in rows if r.status == MigrationStatus.APPLIED)
    pending = sum(1 for r in rows if r.status == MigrationStatus.PENDING)
    summary = f"Total: {len(rows)} | Applied: {applied} | Pending: {pending}"
    missing = len(rows) - applied - pending
    if missing:
        summary += f" | Missing files: {missing}"
    console.print(summary)
    return 0


def cmd_init(args: argparse.Namespace, cmd: Command, full_config: MigratorConfig) -> int:
    """Interactively configure a backend and save it to the config file."""
    section = full_config.stored(cmd.backend)
    console.print(f"\n[bold cyan]{cmd.backend} configuration[/bold cyan]")

    values = section.model_dump()
    for field_name in INIT_FIELDS[cmd.backend]:
        current = values[field_name]
        default = ",".join(current) if isinstance(current, list) else str(current)
        secret = field_name in SECRET_FIELDS
        answer = Prompt.ask(
            field_name.replace("_", " ").title(),
            default=default,
            password=secret,
            show_default=not secret,
            console=console,
        )
        if field_name == "hosts":
            values[field_name] = [h.strip() for h in answer.split(",") if h.strip()]
        else:
            values[field_name] = answer

    try:
        section = type(section).model_validate(values)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid {cmd.backend} configuration: {e}") from e

    errors = section.validate_settings()
    if errors:
        raise ConfigError(f"Invalid {cmd.backend} configuration: {'; '.join(errors)}")

    full_config.set_backend(cmd.backend, section)
    path = save_config(full_config, args.config)
    console.print(f"\n[green]Configuration saved to {path}[/green]")
    return 0


def cmd_create_db(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Create the configured database."""
    created = create_database(cmd.backend, config)
    name = config.dbname  # type: ignore[union-attr]
    if created:
        console.print(f"[green]Database '{name}' created successfully[/green]")
    else:
        console.print(f"[blue]Database '{name}' already exists[/blue]")
    return 0


def cmd_create_user(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Create the configured user and grant privileges."""
    if not cmd.arg:
        raise ValueError(f"Usage: migrator {cmd.backend}-create-user:[read|write|all|admin]")

    created = create_user(cmd.backend, config, cmd.arg)
    user = config.user  # type: ignore[union-attr]
    if not created:
        console.print(f"[blue]User '{user}' already exists[/blue]")
    console.print(f"[green]Privileges '{cmd.arg}' granted to user '{user}'[/green]")
    return 0


def cmd_create_keyspace(args: argparse.Namespace, cmd: Command, config: BackendConfig) -> int:
    """Create the configured keyspace."""
    if cmd.backend != "cql":
        raise ValueError("create-keyspace is only available for cql")

    strategy, _, factor = (cmd.arg or "").partition(":")
    if not strategy or not factor.isdigit():
        raise ValueError("Usage: migrator cql-create-keyspace:<strategy>:<replication_factor>")

    created = create_keyspace(config, strategy, int(factor))  # type: ignore[arg-type]
    keyspace = config.keyspace  # type: ignore[union-attr]
    if created:
        console.print(
            f"[green]Keyspace '{keyspace}' created successfully with {strategy} (RF: {factor})[/green]"
        )
    else:
        console.print(f"[blue]Keyspace '{keyspace}' already exists[/blue]")
    return 0


def cmd_config(args: argparse.Namespace, full_config: MigratorConfig) -> int:
    """Show the resolved configuration with secrets masked."""
    console.print(f"Config file: {get_config_path(args.config)}")
    data = {}
    for key in INIT_FIELDS:
        section = full_config.backend(key).model_dump()
        for secret in SECRET_FIELDS:
            if section.get(secret):
                section[secret] = "********"
        data[key] = section
    console.print_json(data=data)
    return 0


COMMANDS = {
    "migration": cmd_migration,
    "migrate": cmd_migrate,
    "rollback": cmd_rollback,
    "fresh": cmd_fresh,
    "list": cmd_list,
    "create-db": cmd_create_db,
    "create-user": cmd_create_user,
    "create-keyspace": cmd_create_keyspace,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="migrator",
        description="File-defined schema migrations for PostgreSQL, MySQL, Cassandra/ScyllaDB and SQLite",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=dedent("""
            Commands (<backend> is postgres, mysql, cql or sqlite):
              <backend>-migration <name>   Create a new migration file
              <backend>-migrate            Apply all pending migrations
              <backend>-rollback           Rollback the last migration
              <backend>-rollback:<n>       Rollback the last n migrations
              <backend>-rollback:all       Rollback all migrations
              <backend>-fresh              Drop all tables and reapply migrations
              <backend>-list               List migrations and their status
              <backend>-init               Configure the backend interactively
              <backend>-create-db          Create the database (postgres, mysql)
              <backend>-create-user:<lvl>  Create the user (read|write|all|admin)
              cql-create-keyspace:<strategy>:<rf>
                                           Create the keyspace
              config                       Show the resolved configuration
              version                      Show version information

            Examples:
              migrator postgres-migration create_users_table
              migrator postgres-migrate --dry-run
              migrator cql-rollback:2
              migrator cql-create-keyspace:SimpleStrategy:3
        """),
    )

    parser.add_argument(
        "command",
        help="Command to run, e.g. postgres-migrate",
    )
    parser.add_argument(
        "name",
        nargs="?",
        help="Migration name for <backend>-migration (e.g. create_users_table)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--config",
        help="Path to the config file (default: ./.migrator.json or $MIGRATOR_CONFIG)",
    )
    parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Do not ask for confirmation (fresh)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview migrate/rollback without executing",
    )

    return parser


def run(args: argparse.Namespace) -> int:
    """Dispatch a parsed command and map failures to an exit code."""
    try:
        if args.command == "version":
            console.print(f"migrator version {__version__}")
            return 0

        full_config = load_config(args.config)
        if args.command == "config":
            return cmd_config(args, full_config)

        cmd = parse_command(args.command)
        if cmd.action == "init":
            return cmd_init(args, cmd, full_config)

        config = full_config.backend(cmd.backend)
        errors = config.validate_settings()
        if errors:
            raise ConfigError(f"Invalid {cmd.backend} configuration: {'; '.join(errors)}")

        return COMMANDS[cmd.action](args, cmd, config)

    except ExecutionError as e:
        logger.debug("Migration failed", exc_info=True)
        err_console.print(f"Error: {e}", style="red", markup=False)
        if e.partial:
            err_console.print(
                f"Migration {e.full_name} was partially applied; the database needs manual repair.",
                style="bold red",
                markup=False,
            )
        return 1
    except (MigrationError, ConnectionError, QueryError, ConfigError, AdminError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        err_console.print(f"Error: {e}", style="red", markup=False)
        return 1


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    exit_code = run(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

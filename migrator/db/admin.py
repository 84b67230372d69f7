"""Administrative provisioning.

Creates the configured database, user or keyspace using the super-user
credentials from the configuration. Every operation is idempotent: an
existing database, user or keyspace is reported and left as is.
"""

import logging
from typing import Any

from .config import BackendConfig, CQLConfig, MySQLConfig, PostgresConfig, normalize_backend
from .connection import BackendAdapter, QueryError, get_connection

logger = logging.getLogger(__name__)

PRIVILEGE_LEVELS = ("read", "write", "all", "admin")
REPLICATION_STRATEGIES = ("SimpleStrategy", "NetworkTopologyStrategy")


class AdminError(Exception):
    """A provisioning operation was rejected or failed."""

    pass


def _superuser_config(config: BackendConfig, **updates: Any) -> BackendConfig:
    """Copy of ``config`` that authenticates as the super user."""
    if config.super_user:  # type: ignore[union-attr]
        updates.setdefault("user", config.super_user)  # type: ignore[union-attr]
        updates.setdefault("password", config.super_pass)  # type: ignore[union-attr]
    return config.model_copy(update=updates)


def _run(adapter: BackendAdapter, statement: str, params: Any = None) -> None:
    try:
        adapter.execute(statement, params)
    except QueryError as e:
        raise AdminError(f"{statement.split(' WITH PASSWORD')[0]} failed: {e}") from e


def _exists(adapter: BackendAdapter, statement: str, params: Any) -> bool:
    try:
        return bool(adapter.query(statement, params))
    except QueryError as e:
        raise AdminError(f"Existence check failed: {e}") from e


def _check_privileges(privileges: str) -> None:
    if privileges not in PRIVILEGE_LEVELS:
        raise AdminError(
            f"Invalid privilege level: {privileges}. Use one of: {', '.join(PRIVILEGE_LEVELS)}"
        )


# -- databases -----------------------------------------------------------------


def create_database(backend: str, config: BackendConfig) -> bool:
    """Create the configured database if it doesn't exist.

    Args:
        backend: ``postgres`` or ``mysql``
        config: Backend configuration (``dbname`` is the database to create)

    Returns:
        True if the database was created, False if it already existed

    Raises:
        AdminError: If the backend has no databases or a statement fails
        ConnectionError: If the server cannot be reached
    """
    key = normalize_backend(backend)
    if key == "postgres":
        return _create_postgres_database(config)  # type: ignore[arg-type]
    if key == "mysql":
        return _create_mysql_database(config)  # type: ignore[arg-type]
    raise AdminError(f"create-db is not supported for {key}")


def _create_postgres_database(config: PostgresConfig) -> bool:
    admin_config = _superuser_config(config, dbname="postgres")
    with get_connection("postgres", admin_config) as adapter:
        if _exists(adapter, "SELECT 1 FROM pg_database WHERE datname = %s", (config.dbname,)):
            logger.info(f"Database '{config.dbname}' already exists")
            return False
        _run(adapter, f"CREATE DATABASE {adapter.quote_identifier(config.dbname)}")
    logger.info(f"Database '{config.dbname}' created successfully")
    return True


def _create_mysql_database(config: MySQLConfig) -> bool:
    admin_config = _superuser_config(config, dbname="")
    with get_connection("mysql", admin_config) as adapter:
        existed = _exists(
            adapter,
            "SELECT schema_name FROM information_schema.schemata WHERE schema_name = %s",
            (config.dbname,),
        )
        _run(adapter, f"CREATE DATABASE IF NOT EXISTS {adapter.quote_identifier(config.dbname)}")
    if existed:
        logger.info(f"Database '{config.dbname}' already exists")
        return False
    logger.info(f"Database '{config.dbname}' created successfully")
    return True


# -- users ---------------------------------------------------------------------


def grant_statements(backend: str, config: BackendConfig, privileges: str) -> list[str]:
    """GRANT statements giving the configured user a privilege level.

    Args:
        backend: Backend name or alias
        config: Backend configuration (``user`` receives the grants)
        privileges: One of ``read``, ``write``, ``all``, ``admin``

    Raises:
        AdminError: If the level or backend is not supported
    """
    _check_privileges(privileges)
    key = normalize_backend(backend)

    if key == "postgres":
        db = f'"{config.dbname}"'  # type: ignore[union-attr]
        user = f'"{config.user}"'  # type: ignore[union-attr]
        table_privs = {
            "read": "SELECT",
            "write": "SELECT, INSERT, UPDATE, DELETE",
            "all": "ALL PRIVILEGES",
            "admin": "ALL PRIVILEGES",
        }[privileges]
        suffix = " WITH GRANT OPTION" if privileges == "admin" else ""
        db_privs = "ALL PRIVILEGES" if privileges in ("all", "admin") else "CONNECT"
        return [
            f"GRANT {db_privs} ON DATABASE {db} TO {user}{suffix}",
            f"GRANT USAGE ON SCHEMA public TO {user}{suffix}",
            f"GRANT {table_privs} ON ALL TABLES IN SCHEMA public TO {user}{suffix}",
        ]

    if key == "mysql":
        target = f"`{config.dbname}`.*"  # type: ignore[union-attr]
        account = f"'{config.user}'@'%'"  # type: ignore[union-attr]
        return [
            {
                "read": f"GRANT SELECT ON {target} TO {account}",
                "write": f"GRANT SELECT, INSERT, UPDATE, DELETE ON {target} TO {account}",
                "all": f"GRANT ALL PRIVILEGES ON {target} TO {account}",
                "admin": f"GRANT ALL PRIVILEGES ON {target} TO {account} WITH GRANT OPTION",
            }[privileges],
            "FLUSH PRIVILEGES",
        ]

    if key == "cql":
        ks = config.keyspace  # type: ignore[union-attr]
        user = config.user  # type: ignore[union-attr]
        return [
            {
                "read": f"GRANT SELECT ON KEYSPACE {ks} TO {user}",
                "write": f"GRANT SELECT, MODIFY ON KEYSPACE {ks} TO {user}",
                "all": f"GRANT ALL PERMISSIONS ON KEYSPACE {ks} TO {user}",
                "admin": f"GRANT ALL PERMISSIONS ON ALL KEYSPACES TO {user}",
            }[privileges]
        ]

    raise AdminError(f"create-user is not supported for {key}")


def create_user(backend: str, config: BackendConfig, privileges: str) -> bool:
    """Create the configured user if it doesn't exist and grant privileges.

    Args:
        backend: Backend name or alias
        config: Backend configuration (``user``/``password`` are created)
        privileges: One of ``read``, ``write``, ``all``, ``admin``

    Returns:
        True if the user was created, False if it already existed

    Raises:
        AdminError: If the level is invalid, the backend is unsupported or a
            statement fails
        ConnectionError: If the server cannot be reached
    """
    key = normalize_backend(backend)
    grants = grant_statements(key, config, privileges)
    user = config.user  # type: ignore[union-attr]
    if not user:
        raise AdminError("No user configured to create")

    if key == "postgres":
        admin_config = _superuser_config(config)
        exists_sql = "SELECT 1 FROM pg_roles WHERE rolname = %s"
        create_sql = f'CREATE USER "{user}" WITH PASSWORD %s'
    elif key == "mysql":
        admin_config = _superuser_config(config, dbname="")
        exists_sql = "SELECT user FROM mysql.user WHERE user = %s"
        create_sql = f"CREATE USER IF NOT EXISTS '{user}'@'%' IDENTIFIED BY %s"
    else:
        admin_config = _superuser_config(config, keyspace="")
        exists_sql = "SELECT role FROM system_auth.roles WHERE role = %s"
        create_sql = f"CREATE USER {user} WITH PASSWORD %s NOSUPERUSER"

    with get_connection(key, admin_config) as adapter:
        created = not _exists(adapter, exists_sql, (user,))
        if created:
            _run(adapter, create_sql, (config.password,))  # type: ignore[union-attr]
            logger.info(f"User '{user}' created successfully")
        else:
            logger.info(f"User '{user}' already exists")

        for grant in grants:
            _run(adapter, grant)

    logger.info(f"Privileges '{privileges}' granted to user '{user}'")
    return created


# -- keyspaces -----------------------------------------------------------------


def keyspace_statement(config: CQLConfig, strategy: str, replication_factor: int) -> str:
    """CREATE KEYSPACE statement for a replication strategy.

    Raises:
        AdminError: If the strategy is unknown, the factor is not positive,
            or NetworkTopologyStrategy is used without a datacenter
    """
    if replication_factor < 1:
        raise AdminError(f"Replication factor must be at least 1, got {replication_factor}")

    if strategy == "SimpleStrategy":
        replication = f"'class': 'SimpleStrategy', 'replication_factor': {replication_factor}"
    elif strategy == "NetworkTopologyStrategy":
        if not config.datacenter:
            raise AdminError("datacenter must be specified for NetworkTopologyStrategy")
        replication = (
            f"'class': 'NetworkTopologyStrategy', '{config.datacenter}': {replication_factor}"
        )
    else:
        raise AdminError(
            f"Unsupported replication strategy: {strategy}. "
            f"Use one of: {', '.join(REPLICATION_STRATEGIES)}"
        )

    return f"CREATE KEYSPACE IF NOT EXISTS {config.keyspace} WITH REPLICATION = {{{replication}}}"


def create_keyspace(config: CQLConfig, strategy: str, replication_factor: int) -> bool:
    """Create the configured keyspace if it doesn't exist.

    Returns:
        True if the keyspace was created, False if it already existed

    Raises:
        AdminError: If the arguments are invalid or a statement fails
        ConnectionError: If the cluster cannot be reached
    """
    statement = keyspace_statement(config, strategy, replication_factor)
    admin_config = _superuser_config(config, keyspace="")

    with get_connection("cql", admin_config) as adapter:
        if _exists(
            adapter,
            "SELECT keyspace_name FROM system_schema.keyspaces WHERE keyspace_name = %s",
            (config.keyspace,),
        ):
            logger.info(f"Keyspace '{config.keyspace}' already exists")
            return False
        _run(adapter, statement)

    logger.info(
        f"Keyspace '{config.keyspace}' created successfully with {strategy} "
        f"(RF: {replication_factor})"
    )
    return True

"""Entry point for running migrations as a module.

Usage:
    python -m migrator.db.migrations postgres-migrate
    python -m migrator.db.migrations postgres-rollback:2
    python -m migrator.db.migrations postgres-list
    python -m migrator.db.migrations postgres-migration create_users_table
"""

from .cli import main

if __name__ == "__main__":
    main()

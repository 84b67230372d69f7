"""Base types for the migration system.

Defines the core abstractions:
- MigrationRecord: A parsed migration file (version, name, up/down scripts)
- LedgerEntry: A row of the migrations ledger table
- MigrationStatus: Enum for migration states shown by ``list``
- MigrationResult: Outcome of an apply/rollback/fresh operation
- The error taxonomy raised by the engine
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

UP_MARKER = "-- Up Migration"
DOWN_MARKER = "-- Down Migration"


class MigrationError(Exception):
    """Base exception for migration errors."""

    pass


class ParseError(MigrationError):
    """A migration file could not be parsed. Aborts the whole load."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Invalid migration file {filename}: {reason}")


class ValidationError(MigrationError):
    """A new migration name was rejected before any file was written."""

    pass


class LedgerError(MigrationError):
    """Reading or writing the migrations ledger failed."""

    pass


class ExecutionError(MigrationError):
    """A statement failed while applying or rolling back a migration.

    Attributes:
        version: Version of the offending migration
        name: Name of the offending migration
        cause: Underlying exception, if any
        partial: True when the backend could not undo statements that ran
            before the failure
    """

    def __init__(
        self,
        message: str,
        version: int,
        name: str,
        cause: Optional[BaseException] = None,
        partial: bool = False,
    ):
        self.version = version
        self.name = name
        self.cause = cause
        self.partial = partial
        super().__init__(message)

    @property
    def full_name(self) -> str:
        return f"{self.version}_{self.name}"


class MissingMigrationError(ExecutionError):
    """An applied migration has no file left to read its down-script from."""

    pass


class MigrationStatus(str, Enum):
    """Status of a migration as reported by ``list``."""

    PENDING = "pending"
    APPLIED = "applied"
    MISSING = "missing"


@dataclass(frozen=True)
class MigrationRecord:
    """A migration parsed from ``{version}_{name}.{ext}``."""

    version: int
    name: str
    up_script: str
    down_script: str
    filename: str = ""

    @property
    def full_name(self) -> str:
        """Get full migration name (version_name)."""
        return f"{self.version}_{self.name}"

    def __repr__(self) -> str:
        return f"<Migration {self.full_name}>"


@dataclass
class LedgerEntry:
    """A row of the migrations ledger."""

    version: int
    name: str
    applied_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.version}_{self.name}"


@dataclass
class MigrationStatusRow:
    """One line of the ``list`` report."""

    version: int
    name: str
    status: MigrationStatus
    applied_at: Optional[datetime] = None


@dataclass
class MigrationResult:
    """Result of a migration operation."""

    applied: list[MigrationRecord] = field(default_factory=list)
    rolled_back: list[MigrationRecord] = field(default_factory=list)
    skipped: list[MigrationRecord] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    dry_run: bool = False

    def note(self, message: str) -> None:
        """Record a notice and log it."""
        self.notes.append(message)
        logger.warning(message)

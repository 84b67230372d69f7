"""Migration file store and name validation.

Provides:
- Discovery and parsing of ``{version}_{name}.{ext}`` files
- Version ordering of the discovered set
- Name validation and duplicate-table detection for new migrations
- Creation of new migration files from a backend template
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .base import DOWN_MARKER, UP_MARKER, MigrationRecord, ParseError, ValidationError

logger = logging.getLogger(__name__)

VERSION_FORMAT = "%Y%m%d%H%M%S"
CREATION_PREFIXES = ("create_", "add_")
TABLE_SUFFIX = "_table"

_FILENAME_RE = re.compile(r"^(?P<version>\d+)_(?P<name>.+)$")
_CAMEL_BOUNDARY = re.compile(r"(?<=.)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    """Convert CamelCase to snake_case ("UserComments" -> "user_comments")."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def table_name_for(name: str) -> str:
    """Get the target table a migration name refers to.

    Strips one creation prefix and the table suffix, then folds camel case.

    Examples:
        >>> table_name_for("create_user_comments_table")
        'user_comments'
        >>> table_name_for("add_UserComments_table")
        'user_comments'
    """
    for prefix in CREATION_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
            break
    if name.endswith(TABLE_SUFFIX):
        name = name[: -len(TABLE_SUFFIX)]
    return camel_to_snake(name)


def parse_migration_file(path: Path) -> MigrationRecord:
    """Parse a single migration file.

    Args:
        path: Path to ``{version}_{name}.{ext}``

    Returns:
        Parsed migration record

    Raises:
        ParseError: If the file name or content is malformed
    """
    match = _FILENAME_RE.match(path.stem)
    if not match:
        raise ParseError(path.name, "file name must be {version}_{name}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(path.name, f"cannot read file: {e}") from e

    sections = content.split(DOWN_MARKER)
    if len(sections) != 2:
        found = len(sections) - 1
        raise ParseError(
            path.name, f"expected exactly one '{DOWN_MARKER}' marker, found {found}"
        )

    up, down = sections
    up = up.replace(UP_MARKER, "", 1)

    return MigrationRecord(
        version=int(match.group("version")),
        name=match.group("name"),
        up_script=up.strip(),
        down_script=down.strip(),
        filename=path.name,
    )


class MigrationFileStore:
    """Loads migration files for one backend.

    The set is re-read from disk on every call so it always reflects the
    current file system.
    """

    def __init__(self, directory: Union[str, Path], extension: str = "sql"):
        """Initialize the store.

        Args:
            directory: Directory holding the migration files
            extension: File extension to pick up, without the dot
        """
        self.directory = Path(directory)
        self.extension = extension.lstrip(".")

    def load(self) -> list[MigrationRecord]:
        """Load all migrations in version order.

        Returns:
            Migrations sorted ascending by version

        Raises:
            ParseError: If any file is malformed or two files share a version
        """
        if not self.directory.is_dir():
            logger.debug(f"Migration directory {self.directory} does not exist")
            return []

        suffix = f".{self.extension}"
        records: dict[int, MigrationRecord] = {}

        for path in sorted(self.directory.iterdir()):
            if not path.is_file() or path.suffix != suffix:
                continue

            record = parse_migration_file(path)
            existing = records.get(record.version)
            if existing is not None:
                raise ParseError(
                    path.name, f"version {record.version} already used by {existing.filename}"
                )
            records[record.version] = record
            logger.debug(f"Discovered migration: {record.full_name}")

        return [records[v] for v in sorted(records)]

    def get(self, version: int, name: Optional[str] = None) -> Optional[MigrationRecord]:
        """Get a migration by version (and name, when given).

        Returns:
            Migration record or None
        """
        for record in self.load():
            if record.version == version and (name is None or record.name == name):
                return record
        return None

    def get_versions(self) -> list[int]:
        """Get all versions in order."""
        return [m.version for m in self.load()]

    def next_version(self, now: Optional[datetime] = None) -> int:
        """Version for a new migration: the current timestamp, kept monotonic."""
        version = int((now or datetime.now()).strftime(VERSION_FORMAT))
        versions = self.get_versions()
        if versions and versions[-1] >= version:
            version = versions[-1] + 1
        return version

    def create(
        self,
        name: str,
        up_template: str,
        down_template: str,
        now: Optional[datetime] = None,
    ) -> MigrationRecord:
        """Validate ``name`` and write a new migration file.

        Args:
            name: Migration name, e.g. ``create_users_table``
            up_template: Body of the up-section
            down_template: Body of the down-section
            now: Timestamp to derive the version from (defaults to now)

        Returns:
            The created migration

        Raises:
            ValidationError: If the name is invalid or targets an existing table
            ParseError: If the existing set cannot be loaded
        """
        NameValidator(self).validate(name)

        version = self.next_version(now)
        filename = f"{version}_{name}.{self.extension}"
        path = self.directory / filename

        content = (
            f"{UP_MARKER}\n"
            "----------------------- Write your up migration here ----------------------------\n\n"
            f"{up_template}\n\n\n"
            f"{DOWN_MARKER}\n"
            "----------------------- Write your down migration here ----------------------------\n\n"
            f"{down_template}\n"
        )

        self.directory.mkdir(parents=True, exist_ok=True)
        if path.exists():
            raise ValidationError(f"Migration file already exists: {path}")
        path.write_text(content, encoding="utf-8")

        logger.info(f"Created migration file: {path}")
        return parse_migration_file(path)


class NameValidator:
    """Validates new migration names against the naming rules and the existing set."""

    def __init__(self, store: Optional[MigrationFileStore] = None):
        """Initialize the validator.

        Args:
            store: File store used for the duplicate-table check; without
                one only the naming grammar is checked
        """
        self.store = store

    def validate(self, name: str) -> str:
        """Validate a migration name.

        Args:
            name: Proposed migration name

        Returns:
            The normalized target table name

        Raises:
            ValidationError: If the name breaks the grammar or duplicates a table
        """
        self.check_format(name)
        table = table_name_for(name)

        if self.store is not None:
            for record in self.store.load():
                if table_name_for(record.name).lower() == table.lower():
                    raise ValidationError(
                        f"table name '{table}' already exists in migration '{record.full_name}'"
                    )
        return table

    @staticmethod
    def check_format(name: str) -> None:
        """Check the naming grammar only.

        Raises:
            ValidationError: If the name breaks the grammar
        """
        if not name.startswith(CREATION_PREFIXES) or not name.endswith(TABLE_SUFFIX):
            raise ValidationError(
                "Migration name must follow format: create_<name>_table "
                "(e.g. create_users_table, create_post_comments_table)"
            )

        words = [w for w in table_name_for(name).split("_") if w]
        if not words:
            raise ValidationError(f"Migration name '{name}' does not name a table")

        if len(words) == 1 and not words[0].endswith("s"):
            raise ValidationError(
                "Single table names should be plural: "
                f"'{name}' should be 'create_{words[0]}s_table'"
            )

        if len(words) > 1 and not words[-1].endswith("s"):
            raise ValidationError(
                "In relation tables, the last word should be plural: "
                f"'{name}' should end in '{words[-1]}s_table'"
            )

"""Finding migration files on disk."""

from __future__ import annotations

import enum
import logging
import os
import re
from collections.abc import Iterator
from pathlib import Path

from .errors import InvalidMigrationPathError

log = logging.getLogger(__name__)


class MigrationType(enum.Enum):
    """Which migration files to search for: SQL only, or SQL and Python."""

    ALL = "all"
    SQL = "sql"

    def file_match_re(self) -> re.Pattern[str]:
        """Regular expression matching migration file names of this type."""
        ext = "(py|sql)" if self is MigrationType.ALL else "sql"
        return re.compile(rf"^(U|V)(\d+(?:\.\d+)?)__(\w+)\.{ext}$")


def _walk(root: Path) -> Iterator[Path]:
    yield root
    try:
        entries = sorted(os.scandir(root), key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        path = Path(entry.path)
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(path)
        else:
            yield path


def find_migration_files(
    location: str | os.PathLike[str],
    migration_type: MigrationType = MigrationType.ALL,
) -> Iterator[Path]:
    """Recursively find migration files under ``location``.

    The location is resolved first; an unresolvable location raises
    :class:`InvalidMigrationPathError` immediately. Files that do not follow
    the naming convention are skipped with a warning.
    """
    try:
        root = Path(location).resolve(strict=True)
    except OSError as err:
        raise InvalidMigrationPathError(location, err) from err

    pattern = migration_type.file_match_re()

    def matching() -> Iterator[Path]:
        for path in _walk(root):
            file_name = path.name
            if not file_name:
                continue
            if pattern.fullmatch(file_name):
                yield path
            else:
                log.warning(
                    'File "%s" does not adhere to the migration naming convention. '
                    "Migrations must be named in the format [U|V]{1}__{2}.sql or "
                    "[U|V]{1}__{2}.py, where {1} represents the migration version "
                    "and {2} the name.",
                    file_name,
                )

    return matching()
"""Exceptions raised while parsing, verifying and applying migrations."""

from __future__ import annotations

from pathlib import Path
from typing import Any


class RefineryError(Exception):
    """Base class for every error raised by this package.

    ``report`` holds the migrations that were applied before the failure,
    when that is known.
    """

    def __init__(self, message: str, report: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.report = report

    def __str__(self) -> str:
        return self.message


class InvalidNameError(RefineryError):
    """A migration name does not follow the ``[U|V]{version}__{name}`` convention."""

    def __init__(self) -> None:
        super().__init__(
            "migration name must be in the format V{number}__{name} or U{number}__{name}"
        )


class InvalidVersionError(RefineryError):
    """A migration version could not be parsed as a 32-bit signed integer."""

    def __init__(self) -> None:
        super().__init__("migration version must be a valid integer")


class MissingVersionError(RefineryError):
    """An applied migration is missing, or an older migration was never applied."""

    def __init__(self, migration: Any) -> None:
        super().__init__(f"migration {migration} is missing from the filesystem")
        self.migration = migration


class DivergentVersionError(RefineryError):
    """An applied migration differs from the one with the same version on disk."""

    def __init__(self, applied: Any, divergent: Any) -> None:
        super().__init__(
            f"applied migration {applied} is different than filesystem one {divergent}"
        )
        self.applied = applied
        self.divergent = divergent


class RepeatedVersionError(RefineryError):
    """Two migrations to be applied share the same version."""

    def __init__(self, migration: Any) -> None:
        super().__init__(
            f"migration {migration} is repeated, migration versions must be unique"
        )
        self.migration = migration


class InvalidMigrationPathError(RefineryError):
    """The directory given to search for migrations cannot be resolved."""

    def __init__(self, path: str | Path, cause: BaseException) -> None:
        super().__init__(f"invalid migrations path {path}, {cause}")
        self.path = Path(path)
        self.cause = cause


class ConnectionFailedError(RefineryError):
    """The database connection reported an error while running a statement."""

    def __init__(self, message: str, report: Any = None) -> None:
        super().__init__(message, report)
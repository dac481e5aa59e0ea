"""Migrations, migration targets and run reports."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .checksum import migration_checksum
from .errors import InvalidNameError, InvalidVersionError

_NAME_RE = re.compile(r"^([U|V])(\d+(?:\.\d+)?)__(\w+)")
_I32_MAX = 2**31 - 1


class MigrationPrefix(enum.Enum):
    """Whether a migration is versioned (``V``) or unversioned (``U``)."""

    VERSIONED = "V"
    UNVERSIONED = "U"

    def __str__(self) -> str:
        return self.value


class MigrationState(enum.Enum):
    """Whether a migration has been applied to the database yet."""

    APPLIED = "applied"
    UNAPPLIED = "unapplied"


@dataclass(frozen=True)
class Target:
    """The version up to which migrations run, and whether they are only recorded.

    ``version`` of ``None`` means the latest available migration. A fake target
    only records migrations in the history table without running them.
    """

    version: int | None = None
    is_fake: bool = False

    def __post_init__(self) -> None:
        if self.version is not None and not 0 <= self.version <= 2**32 - 1:
            raise ValueError(f"target version out of range: {self.version}")

    @classmethod
    def latest(cls) -> Target:
        return cls()

    @classmethod
    def fake(cls) -> Target:
        return cls(is_fake=True)

    @classmethod
    def to_version(cls, version: int) -> Target:
        return cls(version=version)

    @classmethod
    def fake_version(cls, version: int) -> Target:
        return cls(version=version, is_fake=True)


@dataclass(eq=False)
class Migration:
    """A schema migration, either read from disk or recorded in the database.

    Two migrations are equal when version, name and checksum match; they are
    ordered by version alone.
    """

    name: str
    version: int
    prefix: MigrationPrefix
    checksum: int
    sql: str | None = None
    applied_on: datetime | None = None
    state: MigrationState = MigrationState.UNAPPLIED

    @classmethod
    def unapplied(cls, input_name: str, sql: str) -> Migration:
        """Build a migration from a name such as ``V1__initial.sql`` and its SQL."""
        match = _NAME_RE.match(input_name)
        if match is None:
            raise InvalidNameError()
        prefix_text, version_text, name = match.groups()
        if prefix_text == "V":
            prefix = MigrationPrefix.VERSIONED
        elif prefix_text == "U":
            prefix = MigrationPrefix.UNVERSIONED
        else:
            raise InvalidNameError()

        if not (version_text.isascii() and version_text.isdigit()):
            raise InvalidVersionError()
        version = int(version_text)
        if version > _I32_MAX:
            raise InvalidVersionError()

        return cls(
            name=name,
            version=version,
            prefix=prefix,
            checksum=migration_checksum(name, version, sql),
            sql=sql,
        )

    @classmethod
    def applied(
        cls, version: int, name: str, applied_on: datetime, checksum: int
    ) -> Migration:
        """Build a migration from a row of the schema history table."""
        return cls(
            name=name,
            version=version,
            prefix=MigrationPrefix.VERSIONED,
            checksum=checksum,
            sql=None,
            applied_on=applied_on,
            state=MigrationState.APPLIED,
        )

    def set_applied(self) -> None:
        """Mark this migration as applied now."""
        self.applied_on = datetime.now(timezone.utc)
        self.state = MigrationState.APPLIED

    def __str__(self) -> str:
        return f"{self.prefix}{self.version}__{self.name}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Migration):
            return NotImplemented
        return (
            self.version == other.version
            and self.name == other.name
            and self.checksum == other.checksum
        )

    def __hash__(self) -> int:
        return hash((self.version, self.name, self.checksum))

    def __lt__(self, other: Migration) -> bool:
        if not isinstance(other, Migration):
            return NotImplemented
        return self.version < other.version

    def __le__(self, other: Migration) -> bool:
        if not isinstance(other, Migration):
            return NotImplemented
        return self.version <= other.version

    def __gt__(self, other: Migration) -> bool:
        if not isinstance(other, Migration):
            return NotImplemented
        return self.version > other.version

    def __ge__(self, other: Migration) -> bool:
        if not isinstance(other, Migration):
            return NotImplemented
        return self.version >= other.version


@dataclass
class Report:
    """The migrations applied during one run."""

    applied_migrations: list[Migration] = field(default_factory=list)
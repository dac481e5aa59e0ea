"""The entry point that gathers migrations and runs them against a connection."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field

from .async_traits import AsyncMigrate
from .migration import Migration, Report, Target
from .traits import DEFAULT_MIGRATION_TABLE_NAME, Migrate


@dataclass
class Runner:
    """A set of migrations together with the options for running them.

    The ``set_*`` methods other than :meth:`set_migration_table_name` return a
    new runner and leave this one unchanged.
    """

    migrations: list[Migration]
    target: Target = field(default_factory=Target.latest)
    grouped: bool = False
    abort_divergent: bool = True
    abort_missing: bool = True
    migration_table_name: str = DEFAULT_MIGRATION_TABLE_NAME

    def __init__(self, migrations: Iterable[Migration]) -> None:
        self.migrations = list(migrations)
        self.target = Target.latest()
        self.grouped = False
        self.abort_divergent = True
        self.abort_missing = True
        self.migration_table_name = DEFAULT_MIGRATION_TABLE_NAME

    def _with(self, **changes: object) -> Runner:
        clone = Runner(self.migrations)
        for item in dataclasses.fields(self):
            if item.name != "migrations":
                setattr(clone, item.name, changes.get(item.name, getattr(self, item.name)))
        return clone

    def get_migrations(self) -> list[Migration]:
        """The gathered migrations."""
        return self.migrations

    def set_target(self, target: Target) -> Runner:
        """Migrate up to ``target``; the default is the latest version."""
        return self._with(target=target)

    def set_grouped(self, grouped: bool) -> Runner:
        """Run all migrations in one transaction instead of one each."""
        return self._with(grouped=grouped)

    def set_abort_divergent(self, abort_divergent: bool) -> Runner:
        """Abort when an applied migration differs from the one on disk."""
        return self._with(abort_divergent=abort_divergent)

    def set_abort_missing(self, abort_missing: bool) -> Runner:
        """Abort when applied migrations are missing or older ones were skipped."""
        return self._with(abort_missing=abort_missing)

    def set_migration_table_name(self, migration_table_name: str) -> Runner:
        """Use another history table; raises ``ValueError`` for an empty name."""
        if not migration_table_name:
            raise ValueError("Migration table name must not be empty")
        self.migration_table_name = str(migration_table_name)
        return self

    def get_last_applied_migration(self, conn: Migrate) -> Migration | None:
        """The last applied migration on ``conn``, or ``None``."""
        return conn.get_last_applied_migration(self.migration_table_name)

    async def get_last_applied_migration_async(
        self, conn: AsyncMigrate
    ) -> Migration | None:
        """The last applied migration on an asynchronous ``conn``, or ``None``."""
        return await conn.get_last_applied_migration(self.migration_table_name)

    def get_applied_migrations(self, conn: Migrate) -> list[Migration]:
        """All migrations applied on ``conn``."""
        return conn.get_applied_migrations(self.migration_table_name)

    async def get_applied_migrations_async(self, conn: AsyncMigrate) -> list[Migration]:
        """All migrations applied on an asynchronous ``conn``."""
        return await conn.get_applied_migrations(self.migration_table_name)

    def run(self, conn: Migrate) -> Report:
        """Run the migrations on ``conn``."""
        return conn.migrate(
            self.migrations,
            self.abort_divergent,
            self.abort_missing,
            self.grouped,
            self.target,
            self.migration_table_name,
        )

    async def run_async(self, conn: AsyncMigrate) -> Report:
        """Run the migrations on an asynchronous ``conn``."""
        return await conn.migrate(
            self.migrations,
            self.abort_divergent,
            self.abort_missing,
            self.grouped,
            self.target,
            self.migration_table_name,
        )
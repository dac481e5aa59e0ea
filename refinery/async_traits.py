"""Applying migrations through an asynchronous database connection."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable, Sequence
from typing import TypeVar

from .errors import ConnectionFailedError
from .migration import Migration, Report, Target
from .traits import (
    ASSERT_MIGRATIONS_TABLE_QUERY,
    DEFAULT_MIGRATION_TABLE_NAME,
    GET_APPLIED_MIGRATIONS_QUERY,
    GET_LAST_APPLIED_MIGRATION_QUERY,
    _copy,
    _insert_query,
    _sql_of,
    _with_table,
    verify_migrations,
)

log = logging.getLogger(__name__)

_T = TypeVar("_T")


async def _guarded(
    pending: Awaitable[_T],
    message: str,
    applied: Sequence[Migration] | None = None,
) -> _T:
    """Await ``pending``, turning any failure into :class:`ConnectionFailedError`."""
    try:
        return await pending
    except ConnectionFailedError:
        raise
    except Exception as err:
        report = Report(list(applied)) if applied is not None else None
        raise ConnectionFailedError(f"{message}, {err}", report) from err


class AsyncMigrate(ABC):
    """An asynchronous database connection that migrations can be run against.

    Subclasses implement the coroutines :meth:`execute`, which runs a batch of
    statements in one transaction, and :meth:`query`, which returns the history
    rows as applied :class:`Migration` objects.
    """

    @abstractmethod
    async def execute(self, queries: Sequence[str]) -> int:
        """Run ``queries`` in a single transaction and return the affected row count."""

    @abstractmethod
    async def query(self, query: str) -> list[Migration]:
        """Run a history query and return its rows as applied migrations."""

    @classmethod
    def assert_migrations_table_query(cls, migration_table_name: str) -> str:
        """Statement creating the history table when it does not exist."""
        return _with_table(ASSERT_MIGRATIONS_TABLE_QUERY, migration_table_name)

    async def get_last_applied_migration(
        self, migration_table_name: str = DEFAULT_MIGRATION_TABLE_NAME
    ) -> Migration | None:
        """The most recently applied migration, or ``None`` if there is none."""
        migrations = await _guarded(
            self.query(_with_table(GET_LAST_APPLIED_MIGRATION_QUERY, migration_table_name)),
            "error getting last applied migration",
        )
        return migrations[-1] if migrations else None

    async def get_applied_migrations(
        self, migration_table_name: str = DEFAULT_MIGRATION_TABLE_NAME
    ) -> list[Migration]:
        """All applied migrations, ordered by version."""
        migrations = await _guarded(
            self.query(_with_table(GET_APPLIED_MIGRATIONS_QUERY, migration_table_name)),
            "error getting applied migrations",
        )
        return list(migrations)

    async def migrate(
        self,
        migrations: Iterable[Migration],
        abort_divergent: bool = True,
        abort_missing: bool = True,
        grouped: bool = False,
        target: Target | None = None,
        migration_table_name: str = DEFAULT_MIGRATION_TABLE_NAME,
    ) -> Report:
        """Verify ``migrations`` against the history and apply the pending ones."""
        target = target if target is not None else Target.latest()
        await _guarded(
            self.execute([self.assert_migrations_table_query(migration_table_name)]),
            "error asserting migrations table",
        )
        applied = await _guarded(
            self.query(_with_table(GET_APPLIED_MIGRATIONS_QUERY, migration_table_name)),
            "error getting current schema version",
        )
        pending = verify_migrations(
            list(applied), [_copy(m) for m in migrations], abort_divergent, abort_missing
        )
        if not pending:
            log.info("no migrations to apply")

        if grouped or target.is_fake:
            return await _migrate_grouped(self, pending, target, migration_table_name)
        return await _migrate_each(self, pending, target, migration_table_name)


async def _migrate_each(
    conn: AsyncMigrate,
    migrations: list[Migration],
    target: Target,
    migration_table_name: str,
) -> Report:
    applied: list[Migration] = []
    for migration in migrations:
        if target.version is not None and target.version < migration.version:
            log.info("stopping at migration: %s, due to user option", target.version)
            break
        log.info("applying migration: %s", migration)
        migration.set_applied()
        statements = [_sql_of(migration), _insert_query(migration, migration_table_name)]
        await _guarded(
            conn.execute(statements),
            f"error applying migration {migration}",
            applied,
        )
        applied.append(migration)
    return Report(applied)


async def _migrate_grouped(
    conn: AsyncMigrate,
    migrations: list[Migration],
    target: Target,
    migration_table_name: str,
) -> Report:
    statements: list[str] = []
    applied: list[Migration] = []
    for migration in migrations:
        if target.version is not None and target.version < migration.version:
            break
        migration.set_applied()
        insert = _insert_query(migration, migration_table_name)
        sql = _sql_of(migration)
        # a fake target only records migrations in the history table
        if not target.is_fake:
            applied.append(migration)
            statements.append(sql)
        statements.append(insert)

    if target.is_fake:
        log.info("not going to apply any migration as fake flag is enabled")
    else:
        log.info(
            "going to apply batch migrations in single transaction: %s",
            [str(m) for m in applied],
        )
        if target.version is not None:
            log.info("stopping at migration: %s, due to user option", target.version)

    await _guarded(conn.execute(statements), "error applying migrations")
    return Report(applied)
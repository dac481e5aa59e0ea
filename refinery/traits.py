"""Verifying migrations against the schema history and applying them."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import TypeVar

from .errors import (
    ConnectionFailedError,
    DivergentVersionError,
    MissingVersionError,
    RepeatedVersionError,
)
from .migration import Migration, MigrationPrefix, Report, Target

log = logging.getLogger(__name__)
_missing_log = logging.getLogger(f"{__name__}.missing")
_divergent_log = logging.getLogger(f"{__name__}.divergent")

_T = TypeVar("_T")

TABLE_NAME_PLACEHOLDER = "%MIGRATION_TABLE_NAME%"

ASSERT_MIGRATIONS_TABLE_QUERY = """CREATE TABLE IF NOT EXISTS %MIGRATION_TABLE_NAME%(
             version INT4 PRIMARY KEY,
             name VARCHAR(255),
             applied_on VARCHAR(255),
             checksum VARCHAR(255));"""

GET_APPLIED_MIGRATIONS_QUERY = (
    "SELECT version, name, applied_on, checksum "
    "FROM %MIGRATION_TABLE_NAME% ORDER BY version ASC;"
)

GET_LAST_APPLIED_MIGRATION_QUERY = """SELECT version, name, applied_on, checksum
    FROM %MIGRATION_TABLE_NAME% WHERE version=(SELECT MAX(version) from refinery_schema_history)"""

DEFAULT_MIGRATION_TABLE_NAME = "refinery_schema_history"


def _with_table(query: str, migration_table_name: str) -> str:
    return query.replace(TABLE_NAME_PLACEHOLDER, migration_table_name)


def _format_rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.isoformat()
    return text[: -len("+00:00")] + "Z" if text.endswith("+00:00") else text


def _insert_query(migration: Migration, migration_table_name: str) -> str:
    assert migration.applied_on is not None
    return (
        f"INSERT INTO {migration_table_name} (version, name, applied_on, checksum) "
        f"VALUES ({migration.version}, '{migration.name}', "
        f"'{_format_rfc3339(migration.applied_on)}', '{migration.checksum}')"
    )


def _sql_of(migration: Migration) -> str:
    if migration.sql is None:
        raise ValueError(f"migration {migration} has no SQL to apply")
    return migration.sql


def _connection_call(
    call: Callable[[], _T], message: str, applied: Sequence[Migration] | None = None
) -> _T:
    """Run ``call``, turning any failure into :class:`ConnectionFailedError`."""
    try:
        return call()
    except ConnectionFailedError:
        raise
    except Exception as err:
        report = Report(list(applied)) if applied is not None else None
        raise ConnectionFailedError(f"{message}, {err}", report) from err


def verify_migrations(
    applied: Iterable[Migration],
    migrations: Iterable[Migration],
    abort_divergent: bool,
    abort_missing: bool,
) -> list[Migration]:
    """Return the migrations still to apply, checking them against the history.

    Raises :class:`DivergentVersionError` when ``abort_divergent`` is set and an
    applied migration differs from the one of the same version,
    :class:`MissingVersionError` when ``abort_missing`` is set and a migration is
    missing on either side, and :class:`RepeatedVersionError` when a migration
    to be applied appears twice.
    """
    applied = list(applied)
    migrations = sorted(migrations)

    for app in applied:
        migration = next((m for m in migrations if m.version == app.version), None)
        if migration is None:
            if abort_missing:
                raise MissingVersionError(app)
            _missing_log.error("migration %s is missing from the filesystem", app)
        elif migration != app:
            if abort_divergent:
                raise DivergentVersionError(app, migration)
            _divergent_log.error(
                "applied migration %s is different than filesystem one %s",
                app,
                migration,
            )

    if applied:
        current = applied[-1].version
        log.info("current version: %s", current)
    else:
        log.info("schema history table is empty, going to apply all migrations")
        # versions may start at 0
        current = -1

    applied_versions = {app.version for app in applied}
    to_be_applied: list[Migration] = []
    for migration in migrations:
        if migration.version in applied_versions:
            continue
        if migration in to_be_applied:
            raise RepeatedVersionError(migration)
        if migration.prefix is MigrationPrefix.VERSIONED and current >= migration.version:
            if abort_missing:
                raise MissingVersionError(migration)
            _missing_log.error("found migration on file system %s not applied", migration)
        else:
            to_be_applied.append(migration)
    return to_be_applied


class Migrate(ABC):
    """A database connection that migrations can be run against.

    Subclasses implement :meth:`execute`, which runs a batch of statements in
    one transaction, and :meth:`query`, which returns the history rows as
    applied :class:`Migration` objects.
    """

    @abstractmethod
    def execute(self, queries: Sequence[str]) -> int:
        """Run ``queries`` in a single transaction and return the affected row count."""

    @abstractmethod
    def query(self, query: str) -> list[Migration]:
        """Run a history query and return its rows as applied migrations."""

    @classmethod
    def assert_migrations_table_query(cls, migration_table_name: str) -> str:
        """Statement creating the history table when it does not exist."""
        return _with_table(ASSERT_MIGRATIONS_TABLE_QUERY, migration_table_name)

    def get_last_applied_migration(
        self, migration_table_name: str = DEFAULT_MIGRATION_TABLE_NAME
    ) -> Migration | None:
        """The most recently applied migration, or ``None`` if there is none."""
        migrations = _connection_call(
            lambda: self.query(
                _with_table(GET_LAST_APPLIED_MIGRATION_QUERY, migration_table_name)
            ),
            "error getting last applied migration",
        )
        return migrations[-1] if migrations else None

    def get_applied_migrations(
        self, migration_table_name: str = DEFAULT_MIGRATION_TABLE_NAME
    ) -> list[Migration]:
        """All applied migrations, ordered by version."""
        return list(
            _connection_call(
                lambda: self.query(
                    _with_table(GET_APPLIED_MIGRATIONS_QUERY, migration_table_name)
                ),
                "error getting applied migrations",
            )
        )

    def migrate(
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
        _connection_call(
            lambda: self.execute(
                [self.assert_migrations_table_query(migration_table_name)]
            ),
            "error asserting migrations table",
        )
        applied = self.get_applied_migrations(migration_table_name)
        pending = verify_migrations(
            applied, [_copy(m) for m in migrations], abort_divergent, abort_missing
        )
        if not pending:
            log.info("no migrations to apply")

        if grouped or target.is_fake:
            return _migrate_grouped(self, pending, target, migration_table_name)
        return _migrate_each(self, pending, target, migration_table_name)


def _copy(migration: Migration) -> Migration:
    return Migration(
        name=migration.name,
        version=migration.version,
        prefix=migration.prefix,
        checksum=migration.checksum,
        sql=migration.sql,
        applied_on=migration.applied_on,
        state=migration.state,
    )


def _migrate_each(
    conn: Migrate,
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
        _connection_call(
            lambda: conn.execute(statements),
            f"error applying migration {migration}",
            applied,
        )
        applied.append(migration)
    return Report(applied)


def _migrate_grouped(
    conn: Migrate,
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

    _connection_call(lambda: conn.execute(statements), "error applying migrations")
    return Report(applied)
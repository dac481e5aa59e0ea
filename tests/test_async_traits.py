import sqlite3
from datetime import datetime, timezone

import pytest

from refinery.async_traits import AsyncMigrate
from refinery.errors import (
    ConnectionFailedError,
    DivergentVersionError,
    MissingVersionError,
)
from refinery.migration import Migration, Target

TABLE = "refinery_schema_history"


def _parse_time(text):
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


class AsyncSqlite(AsyncMigrate):
    def __init__(self):
        self.db = sqlite3.connect(":memory:", isolation_level=None)

    async def execute(self, queries):
        count = 0
        self.db.execute("BEGIN")
        try:
            for statement in queries:
                count += max(self.db.execute(statement).rowcount, 0)
        except Exception:
            self.db.execute("ROLLBACK")
            raise
        self.db.execute("COMMIT")
        return count

    async def query(self, query):
        rows = self.db.execute(query).fetchall()
        return [
            Migration.applied(int(version), name, _parse_time(applied_on), int(checksum))
            for version, name, applied_on, checksum in rows
        ]

    def has_table(self, name):
        rows = self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
        ).fetchall()
        return bool(rows)


def _migrations():
    return [
        Migration.unapplied(
            "V1__initial",
            "CREATE TABLE persons (id int, name varchar(255), city varchar(255));",
        ),
        Migration.unapplied(
            "V2__add_cars_table", "CREATE TABLE cars (id int, name varchar(255));"
        ),
        Migration.unapplied(
            "V3__add_brand_to_cars_table", "ALTER TABLE cars ADD brand varchar(255);"
        ),
    ]


def _broken():
    migrations = _migrations()[:2]
    migrations.append(Migration.unapplied("V3__broken", "CREATE TABLE broken ("))
    return migrations


@pytest.mark.asyncio
async def test_report_contains_applied_migrations():
    conn = AsyncSqlite()
    migrations = _migrations()
    report = await conn.migrate(migrations)
    assert report.applied_migrations == migrations
    assert conn.has_table("persons")
    assert conn.has_table(TABLE)


@pytest.mark.asyncio
async def test_originals_are_not_marked_applied():
    conn = AsyncSqlite()
    migrations = _migrations()
    await conn.migrate(migrations)
    assert all(m.applied_on is None for m in migrations)


@pytest.mark.asyncio
async def test_updates_schema_history():
    conn = AsyncSqlite()
    migrations = _migrations()
    await conn.migrate(migrations)
    current = await conn.get_last_applied_migration(TABLE)
    assert current.version == 3
    assert current.checksum == migrations[2].checksum
    assert current.applied_on.date() == datetime.now(timezone.utc).date()


@pytest.mark.asyncio
async def test_gets_applied_migrations():
    conn = AsyncSqlite()
    migrations = _migrations()
    await conn.migrate(migrations, grouped=True)
    applied = await conn.get_applied_migrations(TABLE)
    assert [m.version for m in applied] == [1, 2, 3]
    assert [m.name for m in applied] == [m.name for m in migrations]
    assert [m.checksum for m in applied] == [m.checksum for m in migrations]


@pytest.mark.asyncio
async def test_last_applied_is_none_on_empty_history():
    conn = AsyncSqlite()
    report = await AsyncMigrate.migrate(conn, [])
    assert report.applied_migrations == []
    assert await AsyncMigrate.get_last_applied_migration(conn, TABLE) is None


@pytest.mark.parametrize("grouped", [False, True])
@pytest.mark.asyncio
async def test_migrates_to_target_version(grouped):
    conn = AsyncSqlite()
    migrations = _migrations()
    report = await conn.migrate(migrations, grouped=grouped, target=Target.to_version(2))
    assert [m.version for m in report.applied_migrations] == [1, 2]
    current = await conn.get_last_applied_migration(TABLE)
    assert current.version == 2


@pytest.mark.asyncio
async def test_applies_new_migration():
    conn = AsyncSqlite()
    migrations = _migrations()
    await conn.migrate(migrations[:2])
    report = await conn.migrate(migrations)
    assert report.applied_migrations == [migrations[2]]
    current = await conn.get_last_applied_migration(TABLE)
    assert current.checksum == migrations[2].checksum


@pytest.mark.asyncio
async def test_fake_does_not_run_migrations():
    conn = AsyncSqlite()
    migrations = _migrations()
    report = await conn.migrate(migrations, target=Target.fake())
    assert report.applied_migrations == []
    current = await conn.get_last_applied_migration(TABLE)
    assert current.version == 3
    assert current.checksum == migrations[2].checksum
    assert not conn.has_table("persons")


@pytest.mark.asyncio
async def test_fake_version_records_up_to_version():
    conn = AsyncSqlite()
    migrations = _migrations()
    report = await conn.migrate(migrations, target=Target.fake_version(2))
    assert report.applied_migrations == []
    current = await conn.get_last_applied_migration(TABLE)
    assert current.version == 2
    assert current.checksum == migrations[1].checksum
    assert not conn.has_table("persons")


@pytest.mark.asyncio
async def test_updates_to_last_working_if_not_grouped():
    conn = AsyncSqlite()
    with pytest.raises(ConnectionFailedError) as info:
        await conn.migrate(_broken())
    applied = info.value.report.applied_migrations
    assert [m.version for m in applied] == [1, 2]
    assert applied[1].name == "add_cars_table"
    current = await conn.get_last_applied_migration(TABLE)
    assert current.version == 2


@pytest.mark.asyncio
async def test_doesnt_update_to_last_working_if_grouped():
    conn = AsyncSqlite()
    with pytest.raises(ConnectionFailedError) as info:
        await conn.migrate(_broken(), grouped=True)
    assert info.value.report is None
    assert await conn.get_applied_migrations(TABLE) == []
    assert not conn.has_table("persons")


@pytest.mark.asyncio
async def test_aborts_on_missing_migration_on_filesystem():
    conn = AsyncSqlite()
    migrations = _migrations()
    await AsyncMigrate.migrate(conn, migrations)
    extra = Migration.unapplied(
        "V4__add_year_field_to_cars", "ALTER TABLE cars ADD year INTEGER;"
    )
    with pytest.raises(MissingVersionError) as info:
        await AsyncMigrate.migrate(conn, [extra])
    assert info.value.migration.version == 1
    assert info.value.migration.name == "initial"
    history = await AsyncMigrate.get_applied_migrations(conn, TABLE)
    assert [m.version for m in history] == [1, 2, 3]


@pytest.mark.asyncio
async def test_aborts_on_divergent_migration():
    conn = AsyncSqlite()
    await conn.migrate(_migrations())
    divergent = Migration.unapplied(
        "V2__add_year_field_to_cars", "ALTER TABLE cars ADD year INTEGER;"
    )
    with pytest.raises(DivergentVersionError) as info:
        await conn.migrate([divergent], abort_missing=False)
    assert info.value.divergent == divergent
    assert info.value.applied.version == 2
    assert info.value.applied.name == "add_cars_table"


@pytest.mark.asyncio
async def test_query_failure_is_wrapped():
    conn = AsyncSqlite()
    with pytest.raises(ConnectionFailedError) as info:
        await AsyncMigrate.get_applied_migrations(conn, TABLE)
    assert str(info.value).startswith("error getting applied migrations")
    assert isinstance(info.value.__cause__, sqlite3.Error)


@pytest.mark.asyncio
async def test_custom_table_name():
    conn = AsyncSqlite()
    migrations = _migrations()
    await conn.migrate(migrations, migration_table_name="custom_history")
    assert conn.has_table("custom_history")
    assert not conn.has_table(TABLE)
    assert await conn.get_applied_migrations("custom_history") == migrations


def test_assert_migrations_table_query_substitutes_name():
    query = AsyncMigrate.assert_migrations_table_query("custom_history")
    assert query.startswith("CREATE TABLE IF NOT EXISTS custom_history(")
    assert "%MIGRATION_TABLE_NAME%" not in query
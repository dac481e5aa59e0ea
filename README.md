# refinery

A small library for running SQL schema migrations. It finds migration files,
checks them against the migrations a database has already recorded, and
applies the rest in version order, writing each one into a schema history
table.

The package has no runtime dependencies. You supply the database connection.

## What it does not do

- It ships no database drivers. You connect a database by subclassing
  `Migrate` or `AsyncMigrate` (see below).
- It has no command-line tool and reads no configuration files. Everything is
  done from Python code.
- It does not roll migrations back. It only applies them forwards.

## Migration files

A migration is named `V{version}__{name}` (versioned) or
`U{version}__{name}` (unversioned). The version is a whole number and the name
is made of letters, digits and `_`. On disk the file ends in `.sql` or `.py`:

```
migrations/
    V1__initial.sql
    V2__add_cars_table.py
    U3__merge_out_of_order.sql
```

A `.sql` file holds the SQL to run. A `.py` file must define a function
`migration()` that returns the SQL as a string. The file is parsed and never
run, so `migration()` must have a single `return` of a string literal, of names
bound to string literals (in the module or in the function), or of such strings
joined with `+`:

```python
TABLE = "cars"

def migration():
    return "CREATE TABLE " + TABLE + " (id int, brand varchar(255));"
```

`refinery.util.find_migration_files(location, migration_type)` walks a
directory tree and yields the resolved paths of matching files.
`MigrationType.ALL` accepts `.sql` and `.py` and `MigrationType.SQL` accepts
only `.sql`. Files that do not follow the naming pattern are skipped and a
warning is logged. If the location cannot be resolved,
`InvalidMigrationPathError` is raised straight away.

## Migrations

```python
from refinery.migration import Migration

m = Migration.unapplied("V1__initial", "CREATE TABLE persons (id int, name varchar(255));")
print(m)           # V1__initial
print(m.version)   # 1
print(m.checksum)  # stable 64-bit checksum of name, version and SQL
```

Anything after the name is ignored, so `"V1__initial.sql"` gives the same
migration. A name that does not match the pattern raises `InvalidNameError`.
A version that is not a whole number within the 32-bit signed range (such as
`V1.2__x`) raises `InvalidVersionError`.

Two migrations are equal when their version, name and checksum match.
Migrations sort by version. The checksum is SipHash-1-3 with a zero key. It is
available on its own as `refinery.checksum.migration_checksum(name, version,
sql)`, and the hash function as `refinery.checksum.siphash13(data, k0, k1)`.

`refinery.embed.embed_migrations(location)` gathers every migration under a
directory into a `Runner`. With no argument it looks in `migrations` under the
current working directory:

```python
from refinery.embed import embed_migrations

runner = embed_migrations("migrations")
```

## Connecting a database

A connection takes part by subclassing `refinery.traits.Migrate`, or
`refinery.async_traits.AsyncMigrate` where both methods are coroutines. It
provides two methods:

- `execute(queries)` runs a sequence of SQL statements in one transaction and
  returns a count.
- `query(query)` runs a select on the history table (columns `version`,
  `name`, `applied_on`, `checksum`) and returns the rows as
  `Migration.applied(version, name, applied_on, checksum)` objects.

`applied_on` is written to the table as an RFC 3339 timestamp in UTC, for
example `2024-05-01T12:00:00.123456Z`, and `checksum` as decimal text.

```python
import sqlite3
from datetime import datetime

from refinery.migration import Migration
from refinery.traits import Migrate


class SqliteConnection(Migrate):
    def __init__(self, path):
        self.conn = sqlite3.connect(path, isolation_level=None)

    def execute(self, queries):
        script = "BEGIN;\n" + ";\n".join(queries) + ";\nCOMMIT;"
        try:
            self.conn.executescript(script)
        except sqlite3.Error:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        return len(queries)

    def query(self, query):
        rows = self.conn.execute(query).fetchall()
        return [
            Migration.applied(
                version,
                name,
                datetime.fromisoformat(applied_on.replace("Z", "+00:00")),
                int(checksum),
            )
            for version, name, applied_on, checksum in rows
        ]
```

A connection can also be used directly through
`migrate(migrations, abort_divergent, abort_missing, grouped, target,
migration_table_name)`, `get_applied_migrations(migration_table_name)` and
`get_last_applied_migration(migration_table_name)`. Before it applies
anything, `migrate` creates the history table if it does not exist.

## Running

```python
from refinery.embed import embed_migrations
from refinery.migration import Target

conn = SqliteConnection("app.db")
runner = (
    embed_migrations("migrations")
    .set_grouped(True)
    .set_target(Target.to_version(3))
)

report = runner.run(conn)
for migration in report.applied_migrations:
    print("applied", migration)
```

`Runner(migrations)` can also be built directly from a list of `Migration`
objects. Its settings:

- `set_target(target)`: `Target.latest()` (the default),
  `Target.to_version(n)` to stop after version `n`, or `Target.fake()` /
  `Target.fake_version(n)` to record migrations in the history table without
  running their SQL. A fake run always goes as one batch and reports no
  applied migrations.
- `set_grouped(grouped)`: run every pending migration in one transaction
  instead of one transaction per migration. Off by default.
- `set_abort_divergent(flag)`: fail when an applied migration has the same
  version as a local one but a different name or checksum. On by default.
- `set_abort_missing(flag)`: fail when an applied migration is missing
  locally, or when a local versioned migration older than the current version
  was never applied. On by default. Unversioned (`U`) migrations may be older
  than the current version and are still applied.
- `set_migration_table_name(name)`: the history table. The default is
  `refinery_schema_history`. An empty name raises `ValueError`.

`set_target`, `set_grouped`, `set_abort_divergent` and `set_abort_missing`
return a new runner and leave the original unchanged, so chain them or keep
the result. `set_migration_table_name` changes the runner in place and returns
it.

`get_migrations()`, `get_applied_migrations(conn)` and
`get_last_applied_migration(conn)` let you inspect state. With asynchronous
connections, use `run_async`, `get_applied_migrations_async` and
`get_last_applied_migration_async`.

The query behind `get_last_applied_migration` always takes the highest
version from `refinery_schema_history`, even when another table name is set.

## Errors

All errors derive from `refinery.errors.RefineryError`.

- `InvalidNameError` and `InvalidVersionError` are raised for bad migration
  names.
- `InvalidMigrationPathError` is raised for a location that cannot be found.
- `MissingVersionError`, `DivergentVersionError` and `RepeatedVersionError`
  are raised when the migrations are checked before a run. They carry the
  offending migration(s) as `migration`, or as `applied` and `divergent`.
- `ConnectionFailedError` wraps any exception raised by the connection. When
  migrations run one per transaction, its `report` holds the migrations
  applied before the failure. Otherwise `report` is `None`.

## Development

```
pip install -e ".[test]"
pytest
```
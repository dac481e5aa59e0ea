import pytest

from refinery.errors import InvalidMigrationPathError
from refinery.util import MigrationType, find_migration_files


@pytest.fixture
def migrations_dir(tmp_path):
    path = tmp_path / "migrations"
    path.mkdir()
    return path


def _touch(directory, name):
    path = directory / name
    path.touch()
    return path


def test_finds_mod_migrations(migrations_dir):
    first = _touch(migrations_dir, "V1__first.py")
    second = _touch(migrations_dir, "V2__second.py")
    mods = sorted(find_migration_files(migrations_dir, MigrationType.ALL))
    assert mods == [first.resolve(), second.resolve()]


def test_ignores_mod_files_without_migration_regex_match(migrations_dir):
    _touch(migrations_dir, "V1first.py")
    _touch(migrations_dir, "V2second.py")
    mods = find_migration_files(migrations_dir, MigrationType.ALL)
    assert next(mods, None) is None


def test_finds_sql_migrations(migrations_dir):
    first = _touch(migrations_dir, "V1__first.sql")
    second = _touch(migrations_dir, "V2__second.sql")
    mods = sorted(find_migration_files(migrations_dir, MigrationType.ALL))
    assert mods == [first.resolve(), second.resolve()]


def test_finds_unversioned_migrations(migrations_dir):
    first = _touch(migrations_dir, "U1__first.sql")
    second = _touch(migrations_dir, "U2__second.sql")
    mods = sorted(find_migration_files(migrations_dir, MigrationType.ALL))
    assert mods == [first.resolve(), second.resolve()]


def test_ignores_sql_files_without_migration_regex_match(migrations_dir):
    _touch(migrations_dir, "V1first.sql")
    _touch(migrations_dir, "V2second.sql")
    mods = find_migration_files(migrations_dir, MigrationType.ALL)
    assert next(mods, None) is None


def test_sql_type_skips_python_migrations(migrations_dir):
    _touch(migrations_dir, "V1__first.py")
    sql = _touch(migrations_dir, "V2__second.sql")
    mods = list(find_migration_files(migrations_dir, MigrationType.SQL))
    assert mods == [sql.resolve()]


def test_finds_migrations_in_subdirectories(migrations_dir):
    nested = migrations_dir / "V1-2"
    nested.mkdir()
    first = _touch(nested, "V1__initial.py")
    third = _touch(migrations_dir, "V3__brand.sql")
    mods = sorted(find_migration_files(migrations_dir))
    assert mods == sorted([first.resolve(), third.resolve()])


def test_invalid_location_raises(tmp_path):
    missing = tmp_path / "does_not_exist"
    with pytest.raises(InvalidMigrationPathError) as info:
        find_migration_files(missing, MigrationType.ALL)
    assert info.value.path == missing


@pytest.mark.parametrize(
    "name, kind, expected",
    [
        ("V1__first.sql", MigrationType.SQL, True),
        ("V1__first.py", MigrationType.SQL, False),
        ("V1__first.py", MigrationType.ALL, True),
        ("U10.5__dotted.sql", MigrationType.ALL, True),
        ("V1__first.sql.bak", MigrationType.ALL, False),
        ("v1__first.sql", MigrationType.ALL, False),
    ],
)
def test_file_match_re(name, kind, expected):
    assert (kind.file_match_re().fullmatch(name) is not None) is expected
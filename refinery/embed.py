"""Gathering migration files from a directory into a runner."""

from __future__ import annotations

import ast
import os
from pathlib import Path

from .errors import RefineryError
from .migration import Migration
from .runner import Runner
from .util import MigrationType, find_migration_files


def _literal_bindings(statements: list[ast.stmt], known: dict[str, object]) -> dict[str, object]:
    """Collect names bound to constant string expressions in ``statements``."""
    bindings = dict(known)
    for node in statements:
        if isinstance(node, ast.Assign):
            targets, value = node.targets, node.value
        elif isinstance(node, ast.AnnAssign) and node.value is not None:
            targets, value = [node.target], node.value
        else:
            continue
        if len(targets) != 1 or not isinstance(targets[0], ast.Name):
            continue
        try:
            bindings[targets[0].id] = _evaluate(value, bindings)
        except ValueError:
            bindings.pop(targets[0].id, None)
    return bindings


def _evaluate(node: ast.expr, bindings: dict[str, object]) -> object:
    if isinstance(node, ast.Name):
        if node.id in bindings:
            return bindings[node.id]
        raise ValueError(f"unknown name {node.id!r}")
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
        left = _evaluate(node.left, bindings)
        right = _evaluate(node.right, bindings)
        if isinstance(left, str) and isinstance(right, str):
            return left + right
        raise ValueError("only strings may be joined")
    return ast.literal_eval(node)


def _python_migration(path: Path) -> str:
    """Read the SQL returned by ``migration()`` in a Python migration file.

    The file is parsed, never run: ``migration()`` must return a string built
    from literals and names bound to literals.
    """
    try:
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    except SyntaxError as exc:
        raise RefineryError(f"migration file {path} is not valid Python") from exc

    function = next(
        (
            node
            for node in tree.body
            if isinstance(node, ast.FunctionDef) and node.name == "migration"
        ),
        None,
    )
    if function is None:
        raise RefineryError(f"migration file {path} does not define a migration() function")

    module_bindings = _literal_bindings(tree.body, {})
    local_bindings = _literal_bindings(function.body, module_bindings)
    returns = [node for node in ast.walk(function) if isinstance(node, ast.Return)]
    if len(returns) != 1 or returns[0].value is None:
        raise RefineryError(f"migration() in {path} must have a single return of a string")

    try:
        sql = _evaluate(returns[0].value, local_bindings)
    except (ValueError, TypeError, SyntaxError) as exc:
        raise RefineryError(f"migration() in {path} must return a constant string") from exc
    if not isinstance(sql, str):
        raise RefineryError(f"migration() in {path} must return a string")
    return sql


def embed_migrations(location: str | os.PathLike[str] | None = None) -> Runner:
    """Collect SQL and Python migrations under ``location`` into a :class:`Runner`.

    Without a location, the ``migrations`` directory of the working directory
    is searched. A Python migration file must define ``migration()`` returning
    the SQL to run.
    """
    root = Path("migrations") if location is None else Path(location)
    migrations = []
    for path in find_migration_files(root, MigrationType.ALL):
        if path.suffix == ".sql":
            sql = path.read_text(encoding="utf-8")
        else:
            sql = _python_migration(path)
        migrations.append(Migration.unapplied(path.stem, sql))
    return Runner(migrations)
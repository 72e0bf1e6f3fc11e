"""
Schema migrations.

SQL files live in taskly/migrations/<dialect>/NNN_name.sql and are applied in
name order, once each, tracked in a schema_migrations table.
"""

import logging
from pathlib import Path

from taskly.db.interface import DatabaseAdapter

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).resolve().parent.parent / "migrations"


def split_statements(sql: str) -> list[str]:
    """Split a migration file into statements, dropping comment lines."""
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    statements = []
    for statement in "\n".join(lines).split(";"):
        statement = statement.strip()
        if statement:
            statements.append(statement)
    return statements


async def applied_versions(adapter: DatabaseAdapter) -> set[str]:
    table = adapter.table("schema_migrations")
    try:
        rows = await adapter.fetch(f"SELECT version FROM {table}")
    except Exception:
        # Table doesn't exist yet, run all migrations
        return set()
    return {row["version"] for row in rows}


async def run_migrations(adapter: DatabaseAdapter, migrations_dir: Path | None = None) -> list[str]:
    """
    Apply pending migrations for the adapter's dialect.

    Returns:
        Names of the files that were applied
    """
    migrations_dir = migrations_dir or MIGRATIONS_ROOT / adapter.dialect
    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return []

    await adapter.ensure_schema()
    done = await applied_versions(adapter)
    applied = []

    for sql_file in sorted(migrations_dir.glob("*.sql")):
        version = sql_file.name.split("_")[0]
        if version in done:
            continue

        logger.info(f"Running migration: {sql_file.name}")
        for statement in split_statements(sql_file.read_text()):
            try:
                await adapter.execute(statement)
            except Exception as e:
                logger.error(f"Migration error in {sql_file.name}: {e}")
                raise

        await adapter.execute(
            f"INSERT INTO {adapter.table('schema_migrations')} (version) VALUES ($1)",
            version,
        )
        applied.append(sql_file.name)

    return applied

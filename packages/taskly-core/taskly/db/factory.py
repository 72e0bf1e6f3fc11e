"""
Database adapter factory.

Creates the appropriate adapter based on configuration.
"""

import logging

from taskly.db.interface import DatabaseAdapter

logger = logging.getLogger(__name__)

# Process-wide adapter shared by the ops server commands
_adapter: DatabaseAdapter | None = None


def create_adapter(config) -> DatabaseAdapter:
    """
    Build a new adapter from configuration, without caching it.

    Args:
        config: TasklyConfig

    Raises:
        ValueError: If database configuration is invalid
    """
    db_type = config.database.type.lower()

    if db_type in ("postgres", "postgresql"):
        from taskly.db.postgres import PostgresAdapter

        url = config.database.postgres_url
        if not url:
            raise ValueError(
                "PostgreSQL URL not configured. "
                "Set database.postgres.url in config or TASKLY_DATABASE_URL env var."
            )

        logger.info("Using PostgreSQL adapter")
        return PostgresAdapter(url, command_timeout=config.scheduler.store_timeout)

    if db_type == "sqlite":
        from taskly.db.sqlite import SQLiteAdapter

        path = config.database.sqlite_path
        logger.info(f"Using SQLite adapter: {path}")
        return SQLiteAdapter(path)

    raise ValueError(
        f"Unknown database type: {db_type}. "
        "Use 'postgres' or 'sqlite'."
    )


def get_adapter(config=None) -> DatabaseAdapter:
    """
    Get or create the shared database adapter.

    Returns the same adapter instance on subsequent calls.

    Args:
        config: Optional TasklyConfig. If not provided, loads from default location.
    """
    global _adapter

    if _adapter is not None:
        return _adapter

    if config is None:
        from taskly.config import load_config
        config = load_config()

    _adapter = create_adapter(config)
    return _adapter


async def init_adapter(config=None) -> DatabaseAdapter:
    """
    Initialize the shared adapter, connect, and apply pending migrations.

    Args:
        config: Optional TasklyConfig

    Returns:
        Connected DatabaseAdapter instance
    """
    from taskly.db.migrations import run_migrations

    adapter = get_adapter(config)
    await adapter.connect()
    await run_migrations(adapter)
    return adapter


async def close_adapter() -> None:
    """Close the shared adapter connection."""
    global _adapter

    if _adapter is not None:
        await _adapter.close()
        _adapter = None


def reset_adapter() -> None:
    """
    Forget the shared adapter instance.

    Useful for testing or when configuration changes.
    """
    global _adapter
    _adapter = None

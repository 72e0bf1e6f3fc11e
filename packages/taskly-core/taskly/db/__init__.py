"""
Database abstraction layer supporting PostgreSQL and SQLite.
"""

from taskly.db.factory import close_adapter, create_adapter, get_adapter, init_adapter, reset_adapter
from taskly.db.interface import DatabaseAdapter, UniqueViolation, rowcount
from taskly.db.migrations import run_migrations

__all__ = [
    "DatabaseAdapter",
    "UniqueViolation",
    "rowcount",
    "create_adapter",
    "get_adapter",
    "init_adapter",
    "close_adapter",
    "reset_adapter",
    "run_migrations",
]

"""
SQLite database adapter using aiosqlite.

Stores dates and timestamps as ISO-8601 text, booleans as 0/1 and JSON values
as text. Timestamps are always written in UTC with microsecond precision so that
text comparison matches time order.
"""

import json
import logging
import sqlite3
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Optional, List, Any

import aiosqlite

from taskly.db.interface import DatabaseAdapter, UniqueViolation

logger = logging.getLogger(__name__)


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter for local development and tests.

    Uses aiosqlite for async database operations.
    Automatically creates the database file and parent directories.
    """

    def __init__(self, db_path: str = "~/.taskly/taskly.db"):
        """
        Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite database file.
                    Supports ~ expansion for home directory.
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Initialize database connection and create file if needed."""
        if self._conn is not None:
            return

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Connect (creates file if doesn't exist)
        self._conn = await aiosqlite.connect(str(self.db_path))

        await self._conn.execute("PRAGMA foreign_keys = ON")

        # Use WAL mode for better concurrent access
        await self._conn.execute("PRAGMA journal_mode = WAL")

        # Row factory to return dicts
        self._conn.row_factory = aiosqlite.Row

        logger.info(f"SQLite database connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite connection closed")

    async def _get_conn(self) -> aiosqlite.Connection:
        """Get or create connection."""
        if self._conn is None:
            await self.connect()
        return self._conn

    def adapt_param(self, value: Any) -> Any:
        """Convert dates, times and JSON values to their stored text form."""
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    def _params(self, args: tuple) -> tuple:
        return tuple(self.adapt_param(a) for a in args)

    async def execute(self, query: str, *args) -> str:
        """Execute query and return status."""
        conn = await self._get_conn()
        query = self.format_query(query)

        try:
            cursor = await conn.execute(query, self._params(args))
            await conn.commit()
        except sqlite3.IntegrityError as e:
            await conn.rollback()
            if "UNIQUE" in str(e).upper():
                raise UniqueViolation(str(e)) from e
            raise

        # Return a status string similar to PostgreSQL
        verb = query.strip().split(None, 1)[0].upper() if query.strip() else ""
        if verb == "INSERT":
            return f"INSERT 0 {cursor.rowcount}"
        elif verb in ("UPDATE", "DELETE"):
            return f"{verb} {cursor.rowcount}"
        return "OK"

    async def executescript(self, script: str) -> None:
        """Run a multi-statement SQL script (used for migrations)."""
        conn = await self._get_conn()
        await conn.executescript(script)
        await conn.commit()

    async def fetch(self, query: str, *args) -> List[dict]:
        """Fetch rows as list of dicts."""
        conn = await self._get_conn()
        query = self.format_query(query)

        cursor = await conn.execute(query, self._params(args))
        rows = await cursor.fetchall()

        # Convert Row objects to dicts
        return [dict(row) for row in rows]

    async def fetchrow(self, query: str, *args) -> Optional[dict]:
        """Fetch single row as dict."""
        conn = await self._get_conn()
        query = self.format_query(query)

        cursor = await conn.execute(query, self._params(args))
        row = await cursor.fetchone()

        return dict(row) if row else None

    async def fetchval(self, query: str, *args) -> Any:
        """Fetch single value."""
        conn = await self._get_conn()
        query = self.format_query(query)

        cursor = await conn.execute(query, self._params(args))
        row = await cursor.fetchone()

        if row:
            # Return first column value
            return row[0]
        return None

    @property
    def placeholder_style(self) -> str:
        """SQLite uses ? style placeholders."""
        return "qmark"

    @property
    def dialect(self) -> str:
        return "sqlite"

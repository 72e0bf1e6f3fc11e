"""
Abstract database adapter interface.

Supports both PostgreSQL (Supabase) and SQLite. Queries are written once with
$1, $2 placeholders and converted per adapter.
"""

import re
from abc import ABC, abstractmethod
from typing import Any


class UniqueViolation(Exception):
    """
    A write was rejected by a uniqueness constraint.

    Raised by adapters in place of the driver-specific integrity error so that
    callers can treat "row already exists" as a distinct outcome.
    """


def rowcount(status: str) -> int:
    """
    Number of affected rows from an execute() status string.

    "UPDATE 1" -> 1, "INSERT 0 1" -> 1, "DELETE 3" -> 3, "OK" -> 0.
    """
    parts = (status or "").split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Implementations must support:
    - Basic CRUD operations (execute, fetch, fetchrow, fetchval)
    - Translating uniqueness errors into UniqueViolation
    - Converting Python values (dates, dicts) into driver parameters
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection/pool."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connection/pool."""
        pass

    @abstractmethod
    async def execute(self, query: str, *args) -> str:
        """
        Execute a query and return status.

        Args:
            query: SQL query with $1, $2 placeholders
            *args: Query parameters

        Returns:
            Status string (e.g., "INSERT 0 1", "UPDATE 2")

        Raises:
            UniqueViolation: If a uniqueness constraint rejected the write
        """
        pass

    @abstractmethod
    async def fetch(self, query: str, *args) -> list[dict]:
        """
        Fetch multiple rows as list of dicts.

        Args:
            query: SQL SELECT query
            *args: Query parameters

        Returns:
            List of row dicts
        """
        pass

    @abstractmethod
    async def fetchrow(self, query: str, *args) -> dict | None:
        """
        Fetch single row as dict.

        Returns:
            Row dict or None if no results
        """
        pass

    @abstractmethod
    async def fetchval(self, query: str, *args) -> Any:
        """
        Fetch single value.

        Returns:
            The value or None
        """
        pass

    @property
    @abstractmethod
    def placeholder_style(self) -> str:
        """
        Return the placeholder style for this adapter.

        Returns:
            "dollar" for PostgreSQL ($1, $2, ...)
            "qmark" for SQLite (?, ?, ...)
        """
        pass

    @property
    @abstractmethod
    def dialect(self) -> str:
        """"postgres" or "sqlite"; selects the migration set."""
        pass

    @property
    def schema(self) -> str | None:
        """Schema that holds Taskly's tables, or None for the default one."""
        return None

    def table(self, name: str) -> str:
        """Fully qualified table name."""
        if self.schema:
            return f"{self.schema}.{name}"
        return name

    def format_query(self, query: str) -> str:
        """
        Convert query placeholders to the adapter's style.

        Input uses $1, $2 style (PostgreSQL).
        For SQLite, converts to ? style.
        """
        if self.placeholder_style == "dollar":
            return query
        return re.sub(r'\$\d+', '?', query)

    def adapt_param(self, value: Any) -> Any:
        """Convert a Python value into something the driver accepts."""
        return value

    async def ensure_schema(self) -> None:
        """
        Create the Taskly schema if needed (PostgreSQL only).
        Default implementation does nothing.
        """
        pass

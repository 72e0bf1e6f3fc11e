"""
Tests for SQLite database adapter and migrations.
"""

import pytest
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path


@pytest.fixture
async def sqlite_adapter():
    """Create a temporary SQLite adapter for testing."""
    from taskly.db.sqlite import SQLiteAdapter

    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        adapter = SQLiteAdapter(str(db_path))
        await adapter.connect()

        # Create test table
        await adapter.execute("""
            CREATE TABLE test_items (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                value INTEGER,
                payload TEXT,
                seen_at TEXT
            )
        """)

        yield adapter

        await adapter.close()


@pytest.mark.asyncio
async def test_sqlite_connect(sqlite_adapter):
    """Test SQLite connection."""
    result = await sqlite_adapter.fetchval("SELECT 1")
    assert result == 1


@pytest.mark.asyncio
async def test_sqlite_execute_insert(sqlite_adapter):
    """Test inserting data returns a postgres-like status."""
    result = await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, value) VALUES ($1, $2, $3)",
        "test-1", "Test Item", 42,
    )

    assert result == "INSERT 0 1"


@pytest.mark.asyncio
async def test_sqlite_update_status_counts_rows(sqlite_adapter):
    """UPDATE status carries the affected row count."""
    from taskly.db import rowcount

    for i in range(3):
        await sqlite_adapter.execute(
            "INSERT INTO test_items (id, name, value) VALUES ($1, $2, $3)",
            f"item-{i}", f"Item {i}", i,
        )

    result = await sqlite_adapter.execute("UPDATE test_items SET value = $1 WHERE value > $2", 99, 0)
    assert result == "UPDATE 2"
    assert rowcount(result) == 2

    result = await sqlite_adapter.execute("UPDATE test_items SET value = $1 WHERE id = $2", 1, "missing")
    assert rowcount(result) == 0


@pytest.mark.asyncio
async def test_sqlite_fetch(sqlite_adapter):
    """Test fetching multiple rows."""
    # Insert test data
    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, value) VALUES ($1, $2, $3)",
        "item-1", "Item 1", 10,
    )
    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, value) VALUES ($1, $2, $3)",
        "item-2", "Item 2", 20,
    )

    rows = await sqlite_adapter.fetch("SELECT * FROM test_items ORDER BY name")

    assert len(rows) == 2
    assert rows[0]["name"] == "Item 1"
    assert rows[1]["name"] == "Item 2"


@pytest.mark.asyncio
async def test_sqlite_fetchrow_not_found(sqlite_adapter):
    """Test fetchrow returns None when not found."""
    row = await sqlite_adapter.fetchrow(
        "SELECT * FROM test_items WHERE id = $1", "nonexistent"
    )

    assert row is None


@pytest.mark.asyncio
async def test_sqlite_unique_violation(sqlite_adapter):
    """Duplicate keys surface as UniqueViolation and leave the connection usable."""
    from taskly.db import UniqueViolation

    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name) VALUES ($1, $2)", "a", "same",
    )

    with pytest.raises(UniqueViolation):
        await sqlite_adapter.execute(
            "INSERT INTO test_items (id, name) VALUES ($1, $2)", "b", "same",
        )

    assert await sqlite_adapter.fetchval("SELECT COUNT(*) FROM test_items") == 1


@pytest.mark.asyncio
async def test_sqlite_adapts_params(sqlite_adapter):
    """Datetimes are stored as UTC text, dicts as JSON."""
    moscow_noon = datetime.fromisoformat("2024-03-01T12:00:00+03:00")

    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, payload, seen_at) VALUES ($1, $2, $3, $4)",
        "x", "Adapted", {"a": 1}, moscow_noon,
    )

    row = await sqlite_adapter.fetchrow("SELECT * FROM test_items WHERE id = $1", "x")

    assert row["payload"] == '{"a": 1}'
    assert row["seen_at"] == "2024-03-01T09:00:00.000000+00:00"
    assert sqlite_adapter.adapt_param(date(2024, 3, 1)) == "2024-03-01"
    assert sqlite_adapter.adapt_param(datetime(2024, 3, 1)) == "2024-03-01T00:00:00.000000+00:00"


@pytest.mark.asyncio
async def test_sqlite_format_query(sqlite_adapter):
    """Test query placeholder conversion."""
    # PostgreSQL style
    pg_query = "SELECT * FROM items WHERE id = $1 AND name = $2"

    # Should convert to SQLite style
    sqlite_query = sqlite_adapter.format_query(pg_query)

    assert "$1" not in sqlite_query
    assert "$2" not in sqlite_query
    assert sqlite_query.count("?") == 2
    assert sqlite_adapter.placeholder_style == "qmark"
    assert sqlite_adapter.dialect == "sqlite"
    assert sqlite_adapter.table("tasks") == "tasks"


class TestMigrations:
    """Tests for the shipped schema migrations."""

    @pytest.mark.asyncio
    async def test_migrations_apply_once(self, sqlite_adapter):
        from taskly.db.migrations import run_migrations

        applied = await run_migrations(sqlite_adapter)
        again = await run_migrations(sqlite_adapter)

        assert applied == ["001_initial.sql", "002_notification_status.sql"]
        assert again == []

        tables = await sqlite_adapter.fetch("SELECT name FROM sqlite_master WHERE type = 'table'")
        names = {row["name"] for row in tables}
        assert {"users", "tasks", "notifications", "schema_migrations"} <= names

    @pytest.mark.asyncio
    async def test_upgrade_keeps_sent_flags_and_allows_evening_reminders(self, sqlite_adapter, tmp_path):
        """A database created before notified_status keeps its existing flags blocking."""
        import shutil
        from taskly.db.migrations import MIGRATIONS_ROOT, run_migrations

        initial_only = tmp_path / "initial"
        initial_only.mkdir()
        shutil.copy(MIGRATIONS_ROOT / "sqlite" / "001_initial.sql", initial_only)
        await run_migrations(sqlite_adapter, initial_only)
        await sqlite_adapter.execute(
            "INSERT INTO users (id, telegram_id, settings) VALUES ($1, $2, $3)", "u1", 1, "{}",
        )
        await sqlite_adapter.execute(
            "INSERT INTO tasks (id, owner_id, title, due_date, notification_sent) VALUES ($1, $2, $3, $4, $5)",
            "t1", "u1", "Old", "2024-03-01", 1,
        )
        await sqlite_adapter.execute(
            "INSERT INTO notifications (id, user_id, type, sent_at) VALUES ($1, $2, $3, $4)",
            "n1", "u1", "overdue", "2024-03-01T09:00:00+00:00",
        )

        assert await run_migrations(sqlite_adapter) == ["002_notification_status.sql"]

        assert await sqlite_adapter.fetchval("SELECT notified_status FROM tasks WHERE id = $1", "t1") == "overdue"
        assert await sqlite_adapter.fetchval("SELECT type FROM notifications WHERE id = $1", "n1") == "overdue"
        await sqlite_adapter.execute(
            "INSERT INTO notifications (id, user_id, type, sent_at) VALUES ($1, $2, $3, $4)",
            "n2", "u1", "evening_reminder", "2024-03-01T20:00:00+00:00",
        )

    @pytest.mark.asyncio
    async def test_one_instance_per_template_and_date(self, sqlite_adapter):
        """The schema itself rejects a second instance for the same date."""
        from taskly.db import UniqueViolation
        from taskly.db.migrations import run_migrations

        await run_migrations(sqlite_adapter)
        await sqlite_adapter.execute(
            "INSERT INTO users (id, telegram_id, settings) VALUES ($1, $2, $3)", "u1", 1, "{}",
        )
        await sqlite_adapter.execute(
            "INSERT INTO tasks (id, owner_id, title, is_recurring, repeat_type, repeat_interval, due_date) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7)",
            "tpl", "u1", "Template", 1, "daily", 1, "2024-03-01",
        )
        insert = (
            "INSERT INTO tasks (id, owner_id, title, parent_task_id, due_date) VALUES ($1, $2, $3, $4, $5)"
        )
        await sqlite_adapter.execute(insert, "i1", "u1", "Instance", "tpl", "2024-03-02")

        with pytest.raises(UniqueViolation):
            await sqlite_adapter.execute(insert, "i2", "u1", "Instance", "tpl", "2024-03-02")

    def test_split_statements_drops_comments(self):
        from taskly.db.migrations import split_statements

        sql = "-- header\nCREATE TABLE a (x INT);\n\n-- note\nCREATE INDEX i ON a (x);\n"

        assert split_statements(sql) == ["CREATE TABLE a (x INT)", "CREATE INDEX i ON a (x)"]


def test_rowcount_parses_status():
    from taskly.db import rowcount

    assert rowcount("INSERT 0 1") == 1
    assert rowcount("UPDATE 3") == 3
    assert rowcount("DELETE 0") == 0
    assert rowcount("OK") == 0

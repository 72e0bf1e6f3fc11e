"""
Integration tests for the taskly ops server.

These tests verify the full stack works together:
- MCP server registers its tools
- ensure_initialized() builds a migrated database from configuration
- A recurring series flows from template to reminder through one tick
"""

import pytest
from datetime import date, datetime, timezone
from unittest.mock import patch

EXPECTED_TOOLS = {
    "taskly_tick",
    "taskly_generate",
    "taskly_maintenance",
    "taskly_complete",
    "taskly_recurring_info",
    "taskly_stop_recurring",
    "taskly_classify",
    "taskly_send_reminder",
    "taskly_notifications",
    "taskly_set_delivery_status",
    "taskly_migrate",
    "taskly_health",
}


class TestMCPServerStartup:
    """Test that the MCP server registers its tools."""

    @pytest.mark.asyncio
    async def test_server_has_tools(self):
        """Test server registers expected tools."""
        from taskly_mcp.server import mcp

        tool_names = {tool.name for tool in await mcp.list_tools()}

        assert EXPECTED_TOOLS <= tool_names


@pytest.fixture
def file_config(tmp_path, config):
    """Config pointing at a fresh SQLite file."""
    config.database.sqlite_path = str(tmp_path / "full.db")
    return config


@pytest.fixture
async def live_runtime(file_config, channel):
    """Initialize the server the way the CLI does, with a recording channel."""
    from taskly.db import reset_adapter
    from taskly_mcp import server

    file_config.telegram.bot_token = "123:abc"
    reset_adapter()
    with patch("taskly.config.get_config", return_value=file_config), \
            patch("taskly.channels.TelegramChannel.from_config", return_value=channel):
        runtime = await server.ensure_initialized()
        yield runtime
        await server.shutdown()


class TestFullStack:
    """Template to reminder, end to end."""

    @pytest.mark.asyncio
    async def test_initialize_creates_schema(self, live_runtime, file_config):
        from pathlib import Path

        assert Path(file_config.database.sqlite_path).exists()
        tables = await live_runtime.adapter.fetch(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        assert {"notifications", "schema_migrations", "tasks", "users"} <= {t["name"] for t in tables}

    @pytest.mark.asyncio
    async def test_recurring_reminder_flow(self, live_runtime, channel):
        from taskly.recurrence import RepeatRule
        from taskly_mcp.server import taskly_complete, taskly_health, taskly_tick

        user = await live_runtime.users.resolve(telegram_id=555, first_name="Lev", timezone="UTC")
        template, first = await live_runtime.generator.create_template(
            user.id, "Take vitamins", RepeatRule("daily"), date(2024, 3, 10),
            now=datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc),
        )
        assert first is not None

        tick = await taskly_tick("2024-03-10T14:00:00Z")
        assert tick["generation"]["skipped"] == 1
        assert tick["dispatch"]["sent"] == 1
        assert channel.sent[0]["chat_id"] == 555

        done = await taskly_complete(first.id, user.id)
        assert done["next_instance"]["due_date"] == "2024-03-11"

        # Tomorrow's instance is reminded once
        await taskly_tick("2024-03-10T15:00:00Z")
        assert "Don't forget" in channel.sent[-1]["text"]
        await taskly_tick("2024-03-10T15:15:00Z")
        assert len(channel.sent) == 2

        health = await taskly_health()
        assert health["status"] == "healthy"
        assert health["channel_configured"] is True

    @pytest.mark.asyncio
    async def test_shutdown_closes_channel(self, file_config, channel):
        from taskly.db import reset_adapter
        from taskly_mcp import server

        reset_adapter()
        file_config.telegram.bot_token = "123:abc"
        with patch("taskly.config.get_config", return_value=file_config), \
                patch("taskly.channels.TelegramChannel.from_config", return_value=channel):
            await server.ensure_initialized()
            await server.shutdown()

        assert channel.closed is True
        assert server._runtime is None

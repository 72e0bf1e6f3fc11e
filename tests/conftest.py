"""
Pytest configuration and fixtures for taskly tests.
"""

import pytest
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add packages to path for testing
packages_dir = Path(__file__).parent.parent / "packages"
sys.path.insert(0, str(packages_dir / "taskly-core"))
sys.path.insert(0, str(packages_dir / "taskly-mcp"))


class FakeChannel:
    """MessageChannel stand-in that records messages instead of sending them."""

    def __init__(self, fail_chats=(), fail_text=(), fail_always=False):
        self.sent = []
        self.fail_chats = set(fail_chats)
        self.fail_text = tuple(fail_text)
        self.fail_always = fail_always
        self.closed = False

    async def send(self, chat_id, text, keyboard=None):
        from taskly.channels import ChannelError

        if self.fail_always or chat_id in self.fail_chats or any(t in text for t in self.fail_text):
            raise ChannelError(f"Delivery to {chat_id} refused")
        self.sent.append({"chat_id": chat_id, "text": text, "keyboard": keyboard})
        return str(len(self.sent))

    async def close(self):
        self.closed = True


def utc(*args) -> datetime:
    """Aware UTC datetime shorthand."""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / ".taskly"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config():
    """Config with no pauses between sends."""
    from taskly.config import TasklyConfig

    config = TasklyConfig()
    config.scheduler.send_delay = 0
    config.defaults.timezone = "UTC"
    return config


@pytest.fixture
async def db(tmp_path):
    """A migrated SQLite database in a temporary directory."""
    from taskly.db.migrations import run_migrations
    from taskly.db.sqlite import SQLiteAdapter

    adapter = SQLiteAdapter(str(tmp_path / "test.db"))
    await adapter.connect()
    await run_migrations(adapter)

    yield adapter

    await adapter.close()


@pytest.fixture
def tasks(db):
    from taskly.services import TaskService

    return TaskService(adapter=db)


@pytest.fixture
def users(db):
    from taskly.services import UserService

    return UserService(adapter=db)


@pytest.fixture
def notifications(db):
    from taskly.services import NotificationService

    return NotificationService(adapter=db)


@pytest.fixture
async def owner(users):
    """A user in UTC with default notification settings."""
    return await users.resolve(telegram_id=1001, first_name="Anna", timezone="UTC")


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def generator(tasks, users, config):
    from taskly.generator import InstanceGenerator

    return InstanceGenerator(tasks, users, config)


@pytest.fixture
def dispatcher(tasks, users, notifications, channel, config):
    from taskly.dispatcher import NotificationDispatcher

    return NotificationDispatcher(tasks, users, notifications, channel, config)


@pytest.fixture
def make_channel():
    """Factory for FakeChannels with failure settings."""
    return FakeChannel

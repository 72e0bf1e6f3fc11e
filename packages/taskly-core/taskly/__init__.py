"""
Taskly Core Library

Recurring task generation and due-date notifications for a Telegram to-do
app, on PostgreSQL or SQLite.
"""

__version__ = "0.1.0"

from taskly.config import TasklyConfig, load_config
from taskly.db import DatabaseAdapter, get_adapter

__all__ = [
    "load_config",
    "TasklyConfig",
    "get_adapter",
    "DatabaseAdapter",
]

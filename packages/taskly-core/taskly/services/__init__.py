"""
Storage services for Taskly.
"""

from taskly.services.notifications import NotificationService
from taskly.services.tasks import TaskService
from taskly.services.users import UserService

__all__ = [
    "TaskService",
    "UserService",
    "NotificationService",
]

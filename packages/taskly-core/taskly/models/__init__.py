"""
Core data models for Taskly.
"""

from taskly.models.notification import DeliveryStatus, Notification, NotificationType
from taskly.models.task import Task, TaskInstance, TaskTemplate, task_from_row
from taskly.models.user import User, UserSettings

__all__ = [
    "Task",
    "TaskTemplate",
    "TaskInstance",
    "task_from_row",
    "User",
    "UserSettings",
    "Notification",
    "NotificationType",
    "DeliveryStatus",
]

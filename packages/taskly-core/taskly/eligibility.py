"""
Due-status classification and reminder eligibility.

Pure functions of a task and the owner's local "today".
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from taskly.clock import local_date
from taskly.models.notification import NotificationType
from taskly.models.task import Task


class DueStatus(str, Enum):
    NO_DATE = "no_date"
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    DUE_TOMORROW = "due_tomorrow"
    DUE_THIS_WEEK = "due_this_week"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


# Statuses that earn one reminder, and the notification each one sends
OWED_STATUSES = {
    DueStatus.OVERDUE: NotificationType.OVERDUE,
    DueStatus.DUE_TODAY: NotificationType.DUE_TODAY,
    DueStatus.DUE_TOMORROW: NotificationType.DUE_TOMORROW,
}


def classify(task: Task, today: date) -> DueStatus:
    """Due status of a task relative to the owner's local `today`."""
    if task.completed:
        return DueStatus.COMPLETED
    if task.due_date is None:
        return DueStatus.NO_DATE

    delta = (task.due_date - today).days
    if delta < 0:
        return DueStatus.OVERDUE
    if delta == 0:
        return DueStatus.DUE_TODAY
    if delta == 1:
        return DueStatus.DUE_TOMORROW
    if delta <= 7:
        return DueStatus.DUE_THIS_WEEK
    return DueStatus.UPCOMING


def classify_at(task: Task, now: datetime, zone: ZoneInfo) -> DueStatus:
    """classify() with `today` taken from an instant in the owner's zone."""
    return classify(task, local_date(now, zone))


def is_notification_owed(task: Task, today: date) -> bool:
    """
    Whether the task's current status still owes its owner a reminder.

    Each of due tomorrow, due today and overdue earns one reminder. A task
    already notified is owed again only when its status has moved on since;
    a sent flag with no recorded status never is. Templates are never due,
    so they never owe one.
    """
    if task.completed or task.is_template:
        return False
    type = notification_type_for(classify(task, today))
    if type is None:
        return False
    if task.notification_sent:
        return task.notified_status is not None and task.notified_status != type.value
    return True


def notification_type_for(status: DueStatus) -> Optional[NotificationType]:
    return OWED_STATUSES.get(status)

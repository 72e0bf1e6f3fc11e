"""
Task models for Taskly.

A stored task row is one of three shapes:

- Task: a one-off task with no recurrence
- TaskTemplate: a recurring definition; carries the repeat rule, is never due itself
- TaskInstance: a dated task generated from a template; never carries a rule
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union
from uuid import uuid4

from taskly.recurrence import RepeatRule

# Valid priority values
TASK_PRIORITIES = ("low", "medium", "high")


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_time(value: Any) -> Optional[time]:
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Union[date, time, datetime, None]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Task:
    """
    A one-off task, and the common shape of templates and instances.

    Attributes:
        owner_id: Internal id of the owning user
        title: Task title
        id: Unique identifier (UUID)
        description: Free-text details
        due_date: Calendar date the task is due (owner's local calendar)
        due_time: Local clock time, only meaningful with due_date
        priority: low, medium or high
        completed: Whether the task is done
        completed_at: When it was completed (set iff completed)
        notification_sent: Whether the reminder for the current due status went out
        notified_status: Notification type the last reminder was sent as (due_tomorrow,
            due_today or overdue), so a change of status earns a fresh one
        created_at: When the task was created
        updated_at: When last modified
    """

    owner_id: str
    title: str
    id: str = field(default_factory=lambda: str(uuid4()))
    description: Optional[str] = None
    due_date: Optional[date] = None
    due_time: Optional[time] = None
    priority: str = "medium"
    completed: bool = False
    completed_at: Optional[datetime] = None
    notification_sent: bool = False
    notified_status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_recurring(self) -> bool:
        return False

    @property
    def is_template(self) -> bool:
        return False

    def to_dict(self) -> dict:
        """Convert to a flat dictionary matching the tasks table."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "due_time": self.due_time.strftime("%H:%M") if self.due_time else None,
            "priority": self.priority,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "is_recurring": self.is_recurring,
            "repeat_type": None,
            "repeat_interval": None,
            "repeat_unit": None,
            "repeat_end_date": None,
            "parent_task_id": None,
            "notification_sent": self.notification_sent,
            "notified_status": self.notified_status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def _common_fields(cls, data: dict) -> dict:
        return {
            "id": data.get("id"),
            "owner_id": data.get("owner_id"),
            "title": data.get("title", ""),
            "description": data.get("description"),
            "due_date": _parse_date(data.get("due_date")),
            "due_time": _parse_time(data.get("due_time")),
            "priority": data.get("priority") or "medium",
            "completed": bool(data.get("completed")),
            "completed_at": _parse_datetime(data.get("completed_at")),
            "notification_sent": bool(data.get("notification_sent")),
            "notified_status": data.get("notified_status"),
            "created_at": _parse_datetime(data.get("created_at")),
            "updated_at": _parse_datetime(data.get("updated_at")),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create from a dictionary (e.g., database row)."""
        return cls(**cls._common_fields(data))


@dataclass(kw_only=True)
class TaskTemplate(Task):
    """A recurring task definition. Only its instances are ever due."""

    rule: RepeatRule
    repeat_end_date: Optional[date] = None

    @property
    def is_recurring(self) -> bool:
        return True

    @property
    def is_template(self) -> bool:
        return True

    def to_dict(self) -> dict:
        result = super().to_dict()
        result.update({
            "repeat_type": self.rule.type,
            "repeat_interval": self.rule.interval,
            "repeat_unit": self.rule.unit,
            "repeat_end_date": _iso(self.repeat_end_date),
        })
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "TaskTemplate":
        interval = data.get("repeat_interval")
        rule = RepeatRule(
            type=data.get("repeat_type") or "",
            interval=int(interval) if interval is not None else 0,
            unit=data.get("repeat_unit"),
        )
        return cls(
            **cls._common_fields(data),
            rule=rule,
            repeat_end_date=_parse_date(data.get("repeat_end_date")),
        )

    def new_instance(self, due_date: date) -> "TaskInstance":
        """Build (unsaved) the instance of this template due on `due_date`."""
        return TaskInstance(
            owner_id=self.owner_id,
            title=self.title,
            description=self.description,
            due_date=due_date,
            due_time=self.due_time,
            priority=self.priority,
            parent_task_id=self.id,
        )


@dataclass(kw_only=True)
class TaskInstance(Task):
    """A dated task generated from a template."""

    parent_task_id: str

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["parent_task_id"] = self.parent_task_id
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "TaskInstance":
        return cls(**cls._common_fields(data), parent_task_id=data["parent_task_id"])


AnyTask = Union[Task, TaskTemplate, TaskInstance]


def task_from_row(row: dict) -> AnyTask:
    """
    Build the right task variant from a stored row.

    A row with a parent is always an instance, even if it (invalidly) also
    carries recurrence fields; those are dropped.
    """
    if row.get("parent_task_id"):
        return TaskInstance.from_dict(row)
    if row.get("is_recurring"):
        return TaskTemplate.from_dict(row)
    return Task.from_dict(row)

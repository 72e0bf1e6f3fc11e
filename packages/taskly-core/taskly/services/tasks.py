"""
Task Service for Taskly.

Storage operations for tasks, templates and generated instances, shared by the
owner-facing edits and the scheduled jobs. Every owner-facing call is scoped by
owner_id.
"""

import builtins
import logging
from datetime import date, datetime, time
from typing import Optional

from taskly.clock import utc_now
from taskly.db import get_adapter, rowcount
from taskly.models.task import TASK_PRIORITIES, AnyTask, Task, TaskInstance, TaskTemplate, task_from_row
from taskly.recurrence import RepeatRule

logger = logging.getLogger(__name__)

COLUMNS = (
    "id", "owner_id", "title", "description", "due_date", "due_time", "priority",
    "completed", "completed_at", "is_recurring", "repeat_type", "repeat_interval",
    "repeat_unit", "repeat_end_date", "parent_task_id", "notification_sent",
    "notified_status", "created_at", "updated_at",
)


def _column_values(task: AnyTask) -> dict:
    """Column values for a task, as Python values (the adapter converts them)."""
    values = {
        "id": task.id,
        "owner_id": task.owner_id,
        "title": task.title,
        "description": task.description,
        "due_date": task.due_date,
        "due_time": task.due_time,
        "priority": task.priority,
        "completed": task.completed,
        "completed_at": task.completed_at,
        "is_recurring": task.is_recurring,
        "repeat_type": None,
        "repeat_interval": None,
        "repeat_unit": None,
        "repeat_end_date": None,
        "parent_task_id": None,
        "notification_sent": task.notification_sent,
        "notified_status": task.notified_status,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }
    if isinstance(task, TaskTemplate):
        values.update({
            "repeat_type": task.rule.type,
            "repeat_interval": task.rule.interval,
            "repeat_unit": task.rule.unit,
            "repeat_end_date": task.repeat_end_date,
        })
    elif isinstance(task, TaskInstance):
        values["parent_task_id"] = task.parent_task_id
    return values


class TaskService:
    """
    Service for managing tasks.

    Provides the record-store operations the generator and dispatcher rely on,
    plus the owner edits that must keep `notification_sent` honest.
    """

    def __init__(self, adapter=None):
        """
        Initialize task service.

        Args:
            adapter: Optional DatabaseAdapter. If not provided, uses the shared adapter.
        """
        self._adapter = adapter

    @property
    def adapter(self):
        """Get the database adapter."""
        if self._adapter is None:
            self._adapter = get_adapter()
        return self._adapter

    def _table_name(self) -> str:
        return self.adapter.table("tasks")

    async def _insert(self, task: AnyTask) -> AnyTask:
        values = _column_values(task)
        placeholders = ", ".join(f"${i + 1}" for i in range(len(COLUMNS)))
        await self.adapter.execute(
            f"INSERT INTO {self._table_name()} ({', '.join(COLUMNS)}) VALUES ({placeholders})",
            *[values[col] for col in COLUMNS],
        )
        return task

    # ------------------------------------------------------------------
    # Owner-facing operations
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        title: str,
        description: str | None = None,
        due_date: date | None = None,
        due_time: time | None = None,
        priority: str = "medium",
    ) -> Task:
        """
        Create a one-off task.

        Raises:
            ValueError: On an invalid priority or a due_time without a due_date
        """
        _check_fields(priority, due_date, due_time)

        task = Task(
            owner_id=owner_id,
            title=title,
            description=description,
            due_date=due_date,
            due_time=due_time,
            priority=priority,
        )
        await self._insert(task)
        logger.info(f"Created task: {task.id} - {task.title}")
        return task

    async def create_template(
        self,
        owner_id: str,
        title: str,
        rule: RepeatRule,
        due_date: date,
        description: str | None = None,
        due_time: time | None = None,
        priority: str = "medium",
        repeat_end_date: date | None = None,
    ) -> TaskTemplate:
        """
        Create a recurring template anchored at `due_date`.

        Raises:
            RuleError: If the rule is malformed
            ValueError: On invalid fields
        """
        _check_fields(priority, due_date, due_time)
        if due_date is None:
            raise ValueError("Recurring tasks need a due_date to anchor the repeat rule")
        if repeat_end_date is not None and repeat_end_date < due_date:
            raise ValueError("repeat_end_date cannot be before due_date")

        template = TaskTemplate(
            owner_id=owner_id,
            title=title,
            description=description,
            due_date=due_date,
            due_time=due_time,
            priority=priority,
            rule=rule.validate().normalized(),
            repeat_end_date=repeat_end_date,
        )
        await self._insert(template)
        logger.info(f"Created recurring template: {template.id} - {template.title} ({template.rule.describe()})")
        return template

    async def get(self, task_id: str, owner_id: str | None = None) -> AnyTask | None:
        """Get a task by ID, optionally restricted to one owner."""
        table = self._table_name()
        if owner_id is None:
            row = await self.adapter.fetchrow(f"SELECT * FROM {table} WHERE id = $1", task_id)
        else:
            row = await self.adapter.fetchrow(
                f"SELECT * FROM {table} WHERE id = $1 AND owner_id = $2", task_id, owner_id
            )
        return task_from_row(row) if row else None

    async def list_for_owner(
        self,
        owner_id: str,
        include_completed: bool = False,
        limit: int = 100,
    ) -> builtins.list[AnyTask]:
        """List an owner's tasks, soonest due first; undated tasks last."""
        table = self._table_name()
        conditions = ["owner_id = $1"]
        params: list = [owner_id]
        if not include_completed:
            conditions.append(f"completed = ${len(params) + 1}")
            params.append(False)
        params.append(limit)

        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {table}
            WHERE {' AND '.join(conditions)}
            ORDER BY due_date IS NULL, due_date, due_time, created_at
            LIMIT ${len(params)}
            """,
            *params,
        )
        return [task_from_row(row) for row in rows]

    async def update(
        self,
        task_id: str,
        owner_id: str,
        title: str | None = None,
        description: str | None = None,
        priority: str | None = None,
    ) -> AnyTask | None:
        """
        Update text fields and priority.

        Due date and completion have their own methods because they reset
        the notification state.
        """
        if priority and priority not in TASK_PRIORITIES:
            raise ValueError(f"Invalid priority. Must be one of: {', '.join(TASK_PRIORITIES)}")

        updates = {}
        if title is not None:
            updates["title"] = title
        if description is not None:
            updates["description"] = description
        if priority is not None:
            updates["priority"] = priority

        if not updates:
            return await self.get(task_id, owner_id)

        await self._update_fields(task_id, owner_id, updates)
        return await self.get(task_id, owner_id)

    async def update_due_date(
        self,
        task_id: str,
        owner_id: str,
        due_date: date | None,
        due_time: time | None = None,
    ) -> AnyTask | None:
        """Move a task's due date; the task becomes eligible for a fresh reminder."""
        _check_fields("medium", due_date, due_time)
        await self._update_fields(task_id, owner_id, {
            "due_date": due_date,
            "due_time": due_time,
            "notification_sent": False,
            "notified_status": None,
        })
        return await self.get(task_id, owner_id)

    async def complete(self, task_id: str, owner_id: str) -> AnyTask | None:
        """
        Mark a task completed.

        Returns:
            The task, or None if it does not exist for this owner
        """
        task = await self.get(task_id, owner_id)
        if task is None or task.completed:
            return task

        now = utc_now()
        await self._update_fields(task_id, owner_id, {
            "completed": True,
            "completed_at": now,
            "notification_sent": False,
            "notified_status": None,
        })
        logger.info(f"Completed task: {task_id}")
        return await self.get(task_id, owner_id)

    async def uncomplete(self, task_id: str, owner_id: str) -> AnyTask | None:
        """Reopen a completed task."""
        await self._update_fields(task_id, owner_id, {
            "completed": False,
            "completed_at": None,
            "notification_sent": False,
            "notified_status": None,
        })
        return await self.get(task_id, owner_id)

    async def delete(self, task_id: str, owner_id: str) -> bool:
        """Delete a task (and, for a template, its instances)."""
        table = self._table_name()
        result = await self.adapter.execute(
            f"DELETE FROM {table} WHERE id = $1 AND owner_id = $2",
            task_id, owner_id,
        )
        return rowcount(result) > 0

    async def _update_fields(self, task_id: str, owner_id: str | None, updates: dict) -> bool:
        updates = dict(updates, updated_at=utc_now())
        params = builtins.list(updates.values())
        set_clause = ", ".join(f"{col} = ${i + 1}" for i, col in enumerate(updates))

        params.append(task_id)
        where = f"id = ${len(params)}"
        if owner_id is not None:
            params.append(owner_id)
            where += f" AND owner_id = ${len(params)}"

        result = await self.adapter.execute(
            f"UPDATE {self._table_name()} SET {set_clause} WHERE {where}",
            *params,
        )
        return rowcount(result) > 0

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    async def find_templates_due_for_generation(self) -> builtins.list[TaskTemplate]:
        """Active templates: recurring, not completed, no parent."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self._table_name()}
            WHERE is_recurring = $1 AND completed = $2 AND parent_task_id IS NULL
            ORDER BY created_at
            """,
            True, False,
        )
        return [TaskTemplate.from_dict(row) for row in rows]

    async def instance_exists(self, template_id: str, due_date: date) -> bool:
        """Whether the template already has an instance on `due_date`."""
        found = await self.adapter.fetchval(
            f"SELECT 1 FROM {self._table_name()} WHERE parent_task_id = $1 AND due_date = $2",
            template_id, due_date,
        )
        return found is not None

    async def insert_instance(self, instance: TaskInstance) -> TaskInstance:
        """
        Store a generated instance.

        Raises:
            UniqueViolation: If the template already has an instance on that date
        """
        await self._insert(instance)
        logger.debug(f"Inserted instance {instance.id} of {instance.parent_task_id} for {instance.due_date}")
        return instance

    async def list_instances(self, template_id: str) -> builtins.list[TaskInstance]:
        rows = await self.adapter.fetch(
            f"SELECT * FROM {self._table_name()} WHERE parent_task_id = $1 ORDER BY due_date",
            template_id,
        )
        return [TaskInstance.from_dict(row) for row in rows]

    async def complete_template(self, template_id: str) -> bool:
        """Mark a template completed so no more instances are generated."""
        now = utc_now()
        result = await self.adapter.execute(
            f"""
            UPDATE {self._table_name()}
            SET completed = $1, completed_at = $2, updated_at = $3
            WHERE id = $4 AND is_recurring = $5 AND parent_task_id IS NULL AND completed = $6
            """,
            True, now, now, template_id, True, False,
        )
        return rowcount(result) > 0

    async def find_expired_templates(self, before: date) -> builtins.list[TaskTemplate]:
        """Active templates whose repeat_end_date is before `before`."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self._table_name()}
            WHERE is_recurring = $1 AND completed = $2 AND parent_task_id IS NULL
              AND repeat_end_date IS NOT NULL AND repeat_end_date < $3
            """,
            True, False, before,
        )
        return [TaskTemplate.from_dict(row) for row in rows]

    async def delete_completed_instances(self, completed_before: datetime) -> int:
        """Delete completed instances finished before the cutoff."""
        result = await self.adapter.execute(
            f"""
            DELETE FROM {self._table_name()}
            WHERE completed = $1 AND parent_task_id IS NOT NULL AND completed_at < $2
            """,
            True, completed_before,
        )
        return rowcount(result)

    async def find_templates_missing_rule(self) -> builtins.list[TaskTemplate]:
        """Templates stored without a repeat_type or repeat_interval."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self._table_name()}
            WHERE is_recurring = $1 AND parent_task_id IS NULL
              AND (repeat_type IS NULL OR repeat_interval IS NULL)
            ORDER BY created_at
            """,
            True,
        )
        return [TaskTemplate.from_dict(row) for row in rows]

    async def fill_repeat_defaults(self, template_id: str, repeat_type: str, repeat_interval: int) -> bool:
        """Set repeat_type and repeat_interval where they are missing; present values are kept."""
        result = await self.adapter.execute(
            f"""
            UPDATE {self._table_name()}
            SET repeat_type = COALESCE(repeat_type, $1),
                repeat_interval = COALESCE(repeat_interval, $2),
                updated_at = $3
            WHERE id = $4 AND is_recurring = $5 AND parent_task_id IS NULL
            """,
            repeat_type, repeat_interval, utc_now(), template_id, True,
        )
        return rowcount(result) > 0

    async def find_orphaned_instances(self) -> builtins.list[TaskInstance]:
        """Instances whose parent is gone or is not a recurring template."""
        table = self._table_name()
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {table} child
            WHERE child.parent_task_id IS NOT NULL
              AND NOT EXISTS (
                SELECT 1 FROM {table} parent
                WHERE parent.id = child.parent_task_id
                  AND parent.is_recurring = $1 AND parent.parent_task_id IS NULL
              )
            ORDER BY child.created_at
            """,
            True,
        )
        return [TaskInstance.from_dict(row) for row in rows]

    async def detach_instance(self, task_id: str) -> bool:
        """Turn an instance into a plain one-off task."""
        return await self._update_fields(task_id, None, {
            "parent_task_id": None,
            "is_recurring": False,
            "repeat_type": None,
            "repeat_interval": None,
            "repeat_unit": None,
            "repeat_end_date": None,
        })

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def find_tasks_owed_notification(self, owner_id: str, through: date) -> builtins.list[AnyTask]:
        """
        Candidate tasks for a reminder: open, dated on or before `through`, not
        templates, and either never notified or last notified for a status
        other than overdue (the last one a task can reach).
        """
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self._table_name()}
            WHERE owner_id = $1 AND completed = $2 AND is_recurring = $3
              AND due_date IS NOT NULL AND due_date <= $4
              AND (notification_sent = $5 OR notified_status <> $6)
            ORDER BY due_date, due_time
            """,
            owner_id, False, False, through, False, "overdue",
        )
        return [task_from_row(row) for row in rows]

    async def find_open_dated(self, owner_id: str, through: date, limit: int = 50) -> builtins.list[AnyTask]:
        """Open, non-template tasks due on or before `through` (for summaries)."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self._table_name()}
            WHERE owner_id = $1 AND completed = $2 AND is_recurring = $3
              AND due_date IS NOT NULL AND due_date <= $4
            ORDER BY due_date, due_time
            LIMIT $5
            """,
            owner_id, False, False, through, limit,
        )
        return [task_from_row(row) for row in rows]

    async def count_open(self, owner_id: str) -> int:
        """Open tasks an owner sees (templates excluded)."""
        count = await self.adapter.fetchval(
            f"SELECT COUNT(*) FROM {self._table_name()} WHERE owner_id = $1 AND completed = $2 AND is_recurring = $3",
            owner_id, False, False,
        )
        return int(count or 0)

    async def count_open_due_on(self, owner_id: str, due_date: date) -> int:
        """Open, non-template tasks due exactly on `due_date`."""
        count = await self.adapter.fetchval(
            f"""
            SELECT COUNT(*) FROM {self._table_name()}
            WHERE owner_id = $1 AND completed = $2 AND is_recurring = $3 AND due_date = $4
            """,
            owner_id, False, False, due_date,
        )
        return int(count or 0)

    async def claim_notification(self, task_id: str, status: str) -> bool:
        """
        Atomically record that the reminder for `status` is being sent.

        Succeeds when the task is open and has not been notified yet, or was
        last notified for a different status (a task due tomorrow is now due
        today, for example).

        Returns:
            True if this caller made the claim, False if it was already taken
        """
        result = await self.adapter.execute(
            f"""
            UPDATE {self._table_name()}
            SET notification_sent = $1, notified_status = $2
            WHERE id = $3 AND completed = $4
              AND (notification_sent = $5 OR notified_status <> $6)
            """,
            True, status, task_id, False, False, status,
        )
        return rowcount(result) == 1

    async def mark_notification_sent(self, task_id: str, status: str | None = None) -> bool:
        result = await self.adapter.execute(
            f"UPDATE {self._table_name()} SET notification_sent = $1, notified_status = $2 WHERE id = $3",
            True, status, task_id,
        )
        return rowcount(result) == 1

    async def release_notification(self, task_id: str, previous_status: str | None = None) -> bool:
        """
        Undo a claim after a failed send so the next tick retries.

        `previous_status` restores the status notified before the claim, if any.
        """
        result = await self.adapter.execute(
            f"UPDATE {self._table_name()} SET notification_sent = $1, notified_status = $2 WHERE id = $3",
            previous_status is not None, previous_status, task_id,
        )
        return rowcount(result) == 1


def _check_fields(priority: str, due_date: Optional[date], due_time: Optional[time]) -> None:
    if priority not in TASK_PRIORITIES:
        raise ValueError(f"Invalid priority. Must be one of: {', '.join(TASK_PRIORITIES)}")
    if due_time is not None and due_date is None:
        raise ValueError("due_time requires a due_date")

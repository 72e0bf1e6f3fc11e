"""
Recurring instance generation.

Templates never appear as due items; the generator materialises one dated
instance per occurrence. Two paths create instances:

- the scheduled batch (generate_due_instances), which fills owner-local today
  and an optional lookahead window;
- the lazy path (complete_task), which creates the next occurrence as soon as
  an instance is completed.

Both go through ensure_instance(), which holds a per-template lock around the
existence check and the insert. The unique (parent_task_id, due_date) index is
the final guard: a UniqueViolation just means another worker got there first.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional

from taskly.clock import ensure_utc, local_date, resolve_zone
from taskly.config import TasklyConfig
from taskly.db import UniqueViolation
from taskly.locks import KeyedLock
from taskly.models.task import AnyTask, TaskInstance, TaskTemplate
from taskly.models.user import User
from taskly.recurrence import RepeatRule, RuleError, next_occurrence, occurrences_between

logger = logging.getLogger(__name__)

# Repeat settings given to templates stored without them
DEFAULT_REPEAT_TYPE = "daily"
DEFAULT_REPEAT_INTERVAL = 1


@dataclass
class GenerationResult:
    """Counts from one batch run."""

    templates: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    created_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "templates": self.templates,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "created_ids": list(self.created_ids),
        }


@dataclass
class CompletionResult:
    """Outcome of completing a task through the generator."""

    task: Optional[AnyTask]
    next_instance: Optional[TaskInstance] = None


@dataclass
class RecurringInfo:
    """A template, its instances, and where it goes next."""

    is_recurring: bool
    template: Optional[TaskTemplate] = None
    instances: list[TaskInstance] = field(default_factory=list)
    next_occurrence: Optional[date] = None

    @property
    def total_instances(self) -> int:
        return len(self.instances)

    @property
    def completed_instances(self) -> int:
        return sum(1 for i in self.instances if i.completed)

    def to_dict(self) -> dict:
        return {
            "is_recurring": self.is_recurring,
            "template": self.template.to_dict() if self.template else None,
            "instances": [
                {"id": i.id, "due_date": i.due_date.isoformat() if i.due_date else None, "completed": i.completed}
                for i in self.instances
            ],
            "next_occurrence": self.next_occurrence.isoformat() if self.next_occurrence else None,
            "total_instances": self.total_instances,
            "completed_instances": self.completed_instances,
        }


class InstanceGenerator:
    """
    Creates task instances from recurring templates, at most one per date.

    Args:
        tasks: TaskService
        users: UserService (owner time zones)
        config: TasklyConfig; defaults are used when omitted
        locks: Shared KeyedLock, so several generators in one process serialise
    """

    def __init__(self, tasks, users, config: TasklyConfig | None = None, locks: KeyedLock | None = None):
        self.tasks = tasks
        self.users = users
        self.config = config or TasklyConfig()
        self.locks = locks or KeyedLock()

    @property
    def _timeout(self) -> float:
        return self.config.scheduler.store_timeout

    def _zone_for(self, user: Optional[User]):
        return resolve_zone(user.timezone if user else None, self.config.default_timezone)

    # ------------------------------------------------------------------
    # Batch path
    # ------------------------------------------------------------------

    async def generate_due_instances(self, now: datetime, lookahead_days: int | None = None) -> GenerationResult:
        """
        Make sure every active template has its instances for owner-local today
        (and `lookahead_days` days after it).

        A failure on one template is logged and counted; the rest still run.
        Failing to list templates or owners propagates to the caller.
        """
        lookahead = self.config.scheduler.lookahead_days if lookahead_days is None else lookahead_days
        if lookahead < 0:
            raise ValueError("lookahead_days cannot be negative")

        templates = await asyncio.wait_for(self.tasks.find_templates_due_for_generation(), self._timeout)
        result = GenerationResult(templates=len(templates))
        if not templates:
            logger.debug("No recurring templates to process")
            return result

        owners = await asyncio.wait_for(
            self.users.get_many([t.owner_id for t in templates]), self._timeout
        )

        for template in templates:
            today = local_date(now, self._zone_for(owners.get(template.owner_id)))
            try:
                await asyncio.wait_for(self._fill_template(template, today, lookahead, result), self._timeout)
            except RuleError as e:
                result.failed += 1
                logger.warning(f"Skipping template {template.id} with a bad repeat rule: {e}")
            except asyncio.TimeoutError:
                result.failed += 1
                logger.error(f"Timed out generating instances for template {template.id}")
            except Exception:
                result.failed += 1
                logger.exception(f"Failed to generate instances for template {template.id}")

        logger.info(
            f"Recurring generation finished: {result.templates} templates, "
            f"{result.created} created, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def _fill_template(self, template: TaskTemplate, today: date, lookahead: int, result: GenerationResult) -> None:
        rule = _checked_rule(template)
        window = occurrences_between(
            template.due_date, rule, today, today + timedelta(days=lookahead), template.repeat_end_date
        )

        for target in window:
            instance = await self.ensure_instance(template, target)
            if instance is None:
                result.skipped += 1
            else:
                result.created += 1
                result.created_ids.append(instance.id)

    async def ensure_instance(self, template: TaskTemplate, due_date: date) -> Optional[TaskInstance]:
        """
        Create the template's instance for `due_date` unless it already exists.

        Returns:
            The new instance, or None if one was already there
        """
        async with self.locks.hold(template.id):
            if await self.tasks.instance_exists(template.id, due_date):
                logger.debug(f"Instance of {template.id} for {due_date} already exists")
                return None
            try:
                instance = await self.tasks.insert_instance(template.new_instance(due_date))
            except UniqueViolation:
                logger.debug(f"Instance of {template.id} for {due_date} was created concurrently")
                return None

        logger.info(f"Created recurring instance {instance.id} of {template.id} for {due_date}")
        return instance

    # ------------------------------------------------------------------
    # Lazy path
    # ------------------------------------------------------------------

    async def complete_task(self, task_id: str, owner_id: str) -> CompletionResult:
        """
        Complete a task; for an instance of an active template, also create the
        next occurrence right away.

        The completion itself is never undone by a failure to create the next
        instance; the batch job will pick that date up when it comes.
        """
        task = await self.tasks.complete(task_id, owner_id)
        if not isinstance(task, TaskInstance) or not task.completed:
            return CompletionResult(task=task)

        try:
            next_instance = await self.create_next_after(task)
        except RuleError as e:
            logger.warning(f"Not creating next instance after {task.id}: {e}")
            next_instance = None
        except Exception:
            logger.exception(f"Failed to create next instance after {task.id}")
            next_instance = None

        return CompletionResult(task=task, next_instance=next_instance)

    async def create_next_after(self, instance: TaskInstance) -> Optional[TaskInstance]:
        """Create the occurrence that follows `instance`, if the template still wants one."""
        template = await self.tasks.get(instance.parent_task_id)
        if not isinstance(template, TaskTemplate) or template.completed or instance.due_date is None:
            return None

        next_date = next_occurrence(instance.due_date, _checked_rule(template))
        if next_date is None:
            return None
        if template.repeat_end_date is not None and next_date > template.repeat_end_date:
            logger.info(f"Template {template.id} ended on {template.repeat_end_date}, no instance for {next_date}")
            return None

        return await self.ensure_instance(template, next_date)

    # ------------------------------------------------------------------
    # Template lifecycle
    # ------------------------------------------------------------------

    async def create_template(
        self,
        owner_id: str,
        title: str,
        rule: RepeatRule,
        due_date: date,
        now: datetime,
        description: str | None = None,
        due_time: time | None = None,
        priority: str = "medium",
        repeat_end_date: date | None = None,
    ) -> tuple[TaskTemplate, Optional[TaskInstance]]:
        """
        Create a template, and its first instance when the anchor date is
        owner-local today or later.
        """
        template = await self.tasks.create_template(
            owner_id=owner_id,
            title=title,
            rule=rule,
            due_date=due_date,
            description=description,
            due_time=due_time,
            priority=priority,
            repeat_end_date=repeat_end_date,
        )

        owner = await self.users.get(owner_id)
        today = local_date(now, self._zone_for(owner))
        first = None
        if due_date >= today:
            first = await self.ensure_instance(template, due_date)
        return template, first

    async def stop_recurring(self, task_id: str, owner_id: str) -> TaskTemplate:
        """
        Stop a recurring series, given its template or any of its instances.

        Raises:
            LookupError: If the task does not exist for this owner
            ValueError: If the task is not part of a recurring series
        """
        template = await self._template_for(task_id, owner_id)
        if template is None:
            raise ValueError("Task is not recurring")

        if await self.tasks.complete_template(template.id):
            logger.info(f"Stopped recurring template {template.id} - {template.title}")
        return await self.tasks.get(template.id, owner_id)

    async def recurring_info(self, task_id: str, owner_id: str) -> RecurringInfo:
        """
        Template, instances, and next occurrence for a task's series.

        The next occurrence follows the latest existing instance (or the anchor
        when there is none) and is None once the series is stopped or past its
        end date.

        Raises:
            LookupError: If the task does not exist for this owner
        """
        template = await self._template_for(task_id, owner_id)
        if template is None:
            return RecurringInfo(is_recurring=False)

        instances = await self.tasks.list_instances(template.id)
        info = RecurringInfo(is_recurring=True, template=template, instances=instances)

        if not template.completed and template.due_date is not None:
            try:
                rule = template.rule.validate()
            except RuleError as e:
                logger.warning(f"Template {template.id} has a bad repeat rule: {e}")
                return info
            dated = [i.due_date for i in instances if i.due_date is not None]
            base = max(dated) if dated else template.due_date
            upcoming = next_occurrence(base, rule)
            if upcoming is not None and (template.repeat_end_date is None or upcoming <= template.repeat_end_date):
                info.next_occurrence = upcoming

        return info

    async def _template_for(self, task_id: str, owner_id: str) -> Optional[TaskTemplate]:
        task = await self.tasks.get(task_id, owner_id)
        if task is None:
            raise LookupError(f"Task {task_id} not found")
        if isinstance(task, TaskTemplate):
            return task
        if isinstance(task, TaskInstance):
            parent = await self.tasks.get(task.parent_task_id, owner_id)
            return parent if isinstance(parent, TaskTemplate) else None
        return None

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def expire_finished_templates(self, now: datetime) -> int:
        """Mark templates whose repeat_end_date has passed (UTC calendar) as completed."""
        today = ensure_utc(now).date()
        expired = await self.tasks.find_expired_templates(before=today)

        count = 0
        for template in expired:
            try:
                if await self.tasks.complete_template(template.id):
                    count += 1
                    logger.info(f"Marked expired recurring template as completed: {template.id}")
            except Exception:
                logger.exception(f"Failed to expire template {template.id}")

        logger.info(f"Expired {count} recurring templates")
        return count

    async def archive_completed_instances(self, now: datetime, older_than_days: int | None = None) -> int:
        """Delete completed instances finished more than `older_than_days` ago."""
        days = self.config.scheduler.instance_retention_days if older_than_days is None else older_than_days
        removed = await self.tasks.delete_completed_instances(now - timedelta(days=days))
        logger.info(f"Archived {removed} completed recurring instances older than {days} days")
        return removed

    async def repair_templates(self) -> int:
        """
        Give templates stored without a repeat_type or repeat_interval the
        defaults (daily, every 1 day) so the batch job can generate them again.
        """
        broken = await self.tasks.find_templates_missing_rule()

        count = 0
        for template in broken:
            try:
                if await self.tasks.fill_repeat_defaults(template.id, DEFAULT_REPEAT_TYPE, DEFAULT_REPEAT_INTERVAL):
                    count += 1
                    logger.info(f"Filled in missing repeat settings on template {template.id}")
            except Exception:
                logger.exception(f"Failed to repair template {template.id}")

        logger.info(f"Repaired {count} recurring templates")
        return count

    async def detach_orphaned_instances(self) -> int:
        """Turn instances whose template is gone into plain tasks."""
        orphans = await self.tasks.find_orphaned_instances()

        count = 0
        for instance in orphans:
            try:
                if await self.tasks.detach_instance(instance.id):
                    count += 1
                    logger.info(f"Detached orphaned instance {instance.id} (parent {instance.parent_task_id})")
            except Exception:
                logger.exception(f"Failed to detach instance {instance.id}")

        logger.info(f"Detached {count} orphaned recurring instances")
        return count


def _checked_rule(template: TaskTemplate) -> RepeatRule:
    if template.due_date is None:
        raise RuleError(f"Template {template.id} has no due date to anchor its rule")
    return template.rule.validate()

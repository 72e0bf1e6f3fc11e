"""
Notification dispatch.

One tick walks every user with notifications switched on:

1. Inside the user's summary window (local reminder_time plus a few minutes),
   send the daily summary once.
2. Inside the evening window (the configured local evening_time), nudge the
   user about tasks due today that are still open.
3. Send one reminder per task each time it becomes due tomorrow, due today or
   overdue.

A task is claimed with an atomic update of notification_sent and
notified_status before its message goes out, so two overlapping ticks never
both send the same reminder. A failed send releases the claim and the next
tick tries again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from taskly.channels import MessageChannel, button, inline_keyboard
from taskly.clock import ensure_utc, last_clock_time, parse_clock_time, resolve_zone, to_local
from taskly.config import TasklyConfig
from taskly.eligibility import classify, is_notification_owed, notification_type_for
from taskly.formatters import (
    COMPLETE_PREFIX,
    EDIT_PREFIX,
    format_custom,
    format_daily_summary,
    format_evening_reminder,
    format_task_notification,
)
from taskly.models.notification import DeliveryStatus, Notification, NotificationType
from taskly.models.task import Task
from taskly.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Counts from one dispatch tick."""

    users: int = 0
    sent: int = 0
    summaries: int = 0
    evening: int = 0
    skipped: int = 0
    failed: int = 0
    attempts: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "users": self.users,
            "sent": self.sent,
            "summaries": self.summaries,
            "evening": self.evening,
            "skipped": self.skipped,
            "failed": self.failed,
            "attempts": self.attempts,
            "errors": list(self.errors),
        }


class NotificationDispatcher:
    """
    Sends due-date reminders and daily summaries through a MessageChannel.

    Args:
        tasks: TaskService
        users: UserService
        notifications: NotificationService (audit trail)
        channel: MessageChannel to deliver through; None disables sending
        config: TasklyConfig; defaults are used when omitted
        sleep: Awaitable used for the pause between sends
    """

    def __init__(
        self,
        tasks,
        users,
        notifications,
        channel: Optional[MessageChannel],
        config: TasklyConfig | None = None,
        sleep=asyncio.sleep,
    ):
        self.tasks = tasks
        self.users = users
        self.notifications = notifications
        self.channel = channel
        self.config = config or TasklyConfig()
        self._sleep = sleep

    async def _store(self, awaitable):
        return await asyncio.wait_for(awaitable, self.config.scheduler.store_timeout)

    async def run_tick(self, now: datetime) -> DispatchResult:
        """
        Run one dispatch pass at instant `now`.

        Per-user and per-task failures are logged and counted. Failing to list
        users propagates to the caller.
        """
        result = DispatchResult()
        if self.channel is None:
            logger.warning("No message channel configured, skipping notifications")
            return result

        users = await self._store(self.users.list_notifiable())
        result.users = len(users)

        for user in users:
            try:
                await self._dispatch_for_user(user, now, result)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"user {user.id}: {e}")
                logger.exception(f"Notification dispatch failed for user {user.id}")

        logger.info(
            f"Notification tick finished: {result.users} users, {result.sent} sent, "
            f"{result.summaries} summaries, {result.evening} evening, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    async def _dispatch_for_user(self, user: User, now: datetime, result: DispatchResult) -> None:
        now = ensure_utc(now)
        zone = resolve_zone(user.timezone, self.config.default_timezone)
        today = to_local(now, zone).date()

        if user.settings.daily_summary:
            opened = self._window_opened(now, zone, self._summary_time(user))
            if opened is not None:
                await self._send_daily_summary(user, now, today, opened, result)

        evening = self._evening_time()
        if evening is not None:
            opened = self._window_opened(now, zone, evening)
            if opened is not None:
                await self._send_evening_reminder(user, now, today, opened, result)

        candidates = await self._store(
            self.tasks.find_tasks_owed_notification(user.id, through=today + timedelta(days=1))
        )
        for task in candidates:
            if not is_notification_owed(task, today):
                result.skipped += 1
                continue
            try:
                await self._notify_task(user, task, today, now, result)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"task {task.id}: {e}")
                logger.exception(f"Failed to notify task {task.id}")

    def _window_opened(self, now: datetime, zone: ZoneInfo, clock_time: time) -> Optional[datetime]:
        """
        UTC instant the current window for `clock_time` opened, or None when
        `now` is outside it.
        """
        opened = last_clock_time(now, zone, clock_time)
        if now - opened < timedelta(minutes=self.config.scheduler.summary_window_minutes):
            return opened
        return None

    def _summary_time(self, user: User) -> time:
        try:
            return parse_clock_time(user.settings.reminder_time)
        except ValueError:
            logger.warning(f"User {user.id} has an invalid reminder_time {user.settings.reminder_time!r}")
            return parse_clock_time(self.config.defaults.reminder_time)

    def _evening_time(self) -> Optional[time]:
        value = self.config.defaults.evening_time
        if not value:
            return None
        try:
            return parse_clock_time(value)
        except ValueError:
            logger.warning(f"Invalid evening_time {value!r}, evening reminders disabled")
            return None

    async def _send_daily_summary(
        self, user: User, now: datetime, today: date, since: datetime, result: DispatchResult
    ) -> None:
        if await self._store(self.notifications.sent_since(user.id, NotificationType.DAILY_SUMMARY, since)):
            logger.debug(f"Daily summary already sent to user {user.id} in this window")
            return

        dated = await self._store(self.tasks.find_open_dated(user.id, through=today))
        due_today = [t for t in dated if t.due_date == today]
        overdue = [t for t in dated if t.due_date < today]
        if not due_today and not overdue:
            logger.debug(f"Nothing due for user {user.id}, no daily summary")
            return

        open_count = await self._store(self.tasks.count_open(user.id))
        text = format_daily_summary(due_today, overdue, open_count)
        record = Notification(user_id=user.id, type=NotificationType.DAILY_SUMMARY, message=text, sent_at=now)

        if await self._deliver(user, record, self.summary_keyboard(), result):
            result.summaries += 1
            logger.info(f"Daily summary sent to user {user.id}")

    async def _send_evening_reminder(
        self, user: User, now: datetime, today: date, since: datetime, result: DispatchResult
    ) -> None:
        if await self._store(self.notifications.sent_since(user.id, NotificationType.EVENING_REMINDER, since)):
            logger.debug(f"Evening reminder already sent to user {user.id} in this window")
            return

        open_today = await self._store(self.tasks.count_open_due_on(user.id, today))
        if not open_today:
            return

        text = format_evening_reminder(open_today)
        record = Notification(user_id=user.id, type=NotificationType.EVENING_REMINDER, message=text, sent_at=now)

        if await self._deliver(user, record, self.evening_keyboard(), result):
            result.evening += 1
            logger.info(f"Evening reminder sent to user {user.id} ({open_today} open today)")

    async def _notify_task(self, user: User, task: Task, today: date, now: datetime, result: DispatchResult) -> None:
        type = notification_type_for(classify(task, today))
        if type is None:
            result.skipped += 1
            return

        previous = task.notified_status if task.notification_sent else None
        if not await self._store(self.tasks.claim_notification(task.id, type.value)):
            logger.debug(f"Task {task.id} already claimed by another tick")
            result.skipped += 1
            return

        text = format_task_notification(task, type, today)
        record = Notification(user_id=user.id, type=type, task_id=task.id, message=text, sent_at=now)

        if await self._deliver(user, record, self.task_keyboard(task), result):
            result.sent += 1
            logger.info(f"Sent {type.value} notification for task {task.id} to user {user.id}")
            return

        try:
            await self._store(self.tasks.release_notification(task.id, previous))
        except Exception as e:
            result.errors.append(f"release {task.id}: {e}")
            logger.exception(f"Failed to release the notification claim on task {task.id}")

    async def _deliver(self, user: User, record: Notification, keyboard: Optional[dict], result: DispatchResult) -> bool:
        """
        Send one message and write its audit record, whatever the outcome.

        Returns:
            True if the channel accepted the message
        """
        try:
            record.delivery_id = await self._send(user.chat_id, record.message, keyboard, result)
            return True
        except Exception as e:
            record.delivery_status = DeliveryStatus.FAILED
            record.error = str(e)
            result.failed += 1
            result.errors.append(f"{record.type.value} {record.task_id or user.id}: {e}")
            logger.error(f"{record.type.value} notification to user {user.id} failed: {e}")
            return False
        finally:
            await self._record(record)

    async def _send(self, chat_id: int, text: str, keyboard: Optional[dict], result: DispatchResult) -> str:
        delay = self.config.scheduler.send_delay
        if result.attempts and delay > 0:
            await self._sleep(delay)
        result.attempts += 1
        return await asyncio.wait_for(
            self.channel.send(chat_id, text, keyboard), self.config.scheduler.send_timeout
        )

    async def _record(self, record: Notification) -> None:
        try:
            await self._store(self.notifications.insert(record))
        except Exception:
            logger.exception(f"Failed to record {record.type.value} notification for user {record.user_id}")

    def task_keyboard(self, task: Task) -> dict:
        return inline_keyboard([
            [button("✅ Done", f"{COMPLETE_PREFIX}{task.id}"), button("📝 Edit", f"{EDIT_PREFIX}{task.id}")],
            [button("📋 All tasks", "all_tasks")],
        ])

    def summary_keyboard(self) -> dict:
        app_url = self.config.telegram.app_url
        return inline_keyboard([
            [button("🚀 Open app", web_app_url=app_url)] if app_url else [],
            [button("➕ Add task", "add_task")],
        ])

    def evening_keyboard(self) -> dict:
        app_url = self.config.telegram.app_url
        return inline_keyboard([
            [button("🚀 Open app", web_app_url=app_url)] if app_url else [],
            [button("📋 All tasks", "all_tasks")],
        ])

    async def send_custom(self, user_id: str, text: str, now: datetime) -> Notification:
        """
        Send an operator-written reminder to one user and record it.

        Raises:
            LookupError: If the user does not exist
            RuntimeError: If no channel is configured
        """
        if self.channel is None:
            raise RuntimeError("No message channel configured")
        user = await self._store(self.users.get(user_id))
        if user is None:
            raise LookupError(f"User {user_id} not found")

        message = format_custom(text)
        record = Notification(user_id=user.id, type=NotificationType.REMINDER, message=message, sent_at=now)
        try:
            record.delivery_id = await asyncio.wait_for(
                self.channel.send(user.chat_id, message), self.config.scheduler.send_timeout
            )
        except Exception as e:
            record.delivery_status = DeliveryStatus.FAILED
            record.error = str(e)
            logger.error(f"Custom reminder to user {user.id} failed: {e}")

        await self._record(record)
        return record

    async def cleanup_notifications(self, now: datetime, days: int | None = None) -> int:
        """Delete notification records older than the retention window."""
        days = self.config.scheduler.notification_retention_days if days is None else days
        return await self.notifications.delete_older_than(now - timedelta(days=days))

"""
Telegram message text for reminders and summaries.

All text is Telegram MarkdownV2; anything that comes from a user goes through
escape_markdown() first.
"""

import re
from datetime import date
from typing import Optional

from taskly.eligibility import DueStatus, classify
from taskly.models.notification import NotificationType
from taskly.models.task import Task

COMPLETE_PREFIX = "task_complete_"
EDIT_PREFIX = "task_edit_"

PRIORITY_EMOJI = {
    "high": "🔴",
    "medium": "🟡",
    "low": "🟢",
}

STATUS_EMOJI = {
    DueStatus.DUE_TODAY: "📅",
    DueStatus.DUE_TOMORROW: "📆",
    DueStatus.OVERDUE: "🔥",
}

_MARKDOWN_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")

# Overdue tasks listed by name in a daily summary
SUMMARY_OVERDUE_SHOWN = 3


def escape_markdown(text: Optional[str]) -> str:
    """Escape MarkdownV2 special characters."""
    if not text:
        return ""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def priority_emoji(priority: str) -> str:
    return PRIORITY_EMOJI.get(priority, PRIORITY_EMOJI["medium"])


def relative_date(due: date, today: date) -> str:
    """Human-readable distance from `today`: today, tomorrow, in 3 days, ..."""
    days = (due - today).days
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    if days == -1:
        return "yesterday"
    if 1 < days <= 7:
        return f"in {days} days"
    if -7 <= days < -1:
        return f"{-days} days ago"
    return due.strftime("%d.%m.%Y")


def format_task_line(task: Task, today: date) -> str:
    """Compact one-task block: status, title, and when it is due."""
    status = classify(task, today)
    if task.completed:
        icon = "✅"
    elif status == DueStatus.OVERDUE:
        icon = "🔥"
    else:
        icon = "⏳"

    text = f"{icon} *{escape_markdown(task.title)}*"
    if task.due_date is not None:
        when = relative_date(task.due_date, today)
        if task.due_time is not None:
            when += f" at {task.due_time.strftime('%H:%M')}"
        text += f"\n{STATUS_EMOJI.get(status, '🗓️')} {escape_markdown(when)}"
    return text


def format_task_notification(task: Task, type: NotificationType, today: date) -> str:
    """Reminder text for a single task."""
    type = NotificationType(type)
    if type == NotificationType.DUE_TODAY:
        header = "📅 *Reminder*\n\nScheduled for today:\n\n"
    elif type == NotificationType.DUE_TOMORROW:
        header = "📆 *Tomorrow*\n\nDon't forget:\n\n"
    elif type == NotificationType.OVERDUE:
        header = "🔥 *Overdue*\n\nYou missed:\n\n"
    else:
        header = "🔔 *Reminder*\n\n"
    return header + format_task_line(task, today)


def format_daily_summary(today_tasks: list[Task], overdue_tasks: list[Task], open_count: int) -> str:
    """
    Morning digest: every task due today, the first few overdue ones, and the
    owner's open task count.
    """
    text = "🗓️ *Today's summary*\n\n"

    if today_tasks:
        text += f"📅 *Due today \\({len(today_tasks)}\\):*\n"
        for index, task in enumerate(today_tasks, start=1):
            text += f"{index}\\. {priority_emoji(task.priority)} {escape_markdown(task.title)}\n"
        text += "\n"

    if overdue_tasks:
        text += f"🔥 *Overdue \\({len(overdue_tasks)}\\):*\n"
        for index, task in enumerate(overdue_tasks[:SUMMARY_OVERDUE_SHOWN], start=1):
            text += f"{index}\\. {escape_markdown(task.title)}\n"
        hidden = len(overdue_tasks) - SUMMARY_OVERDUE_SHOWN
        if hidden > 0:
            text += f"and {hidden} more\\.\\.\\.\n"
        text += "\n"

    if not today_tasks and not overdue_tasks:
        text += "🎉 Nothing due today\\!\n"

    text += f"📊 Open tasks: *{open_count}*"
    return text


def format_custom(text: str) -> str:
    """Operator-supplied reminder text."""
    return f"🔔 *Reminder*\n\n{escape_markdown(text)}"


def format_evening_reminder(open_today: int) -> str:
    """Evening nudge about tasks due today that are still open."""
    noun = "task" if open_today == 1 else "tasks"
    return (
        "🌆 *Evening reminder*\n\n"
        f"You have {open_today} unfinished {noun} for today\\.\n\n"
        "💡 Finish them now or move them to tomorrow\\!"
    )

"""
Tests for Telegram message formatting.
"""

from datetime import date, time

TODAY = date(2024, 3, 10)


def _task(title="Buy milk", **fields):
    from taskly.models.task import Task

    return Task(owner_id="u1", title=title, **fields)


def test_escape_markdown():
    from taskly.formatters import escape_markdown

    assert escape_markdown("Call (mom) at 5.30!") == "Call \\(mom\\) at 5\\.30\\!"
    assert escape_markdown("a_b*c[d]~e`f>g#h+i-j=k|l{m}n") == (
        "a\\_b\\*c\\[d\\]\\~e\\`f\\>g\\#h\\+i\\-j\\=k\\|l\\{m\\}n"
    )
    assert escape_markdown("back\\slash") == "back\\\\slash"
    assert escape_markdown(None) == ""


def test_relative_date():
    from taskly.formatters import relative_date

    assert relative_date(TODAY, TODAY) == "today"
    assert relative_date(date(2024, 3, 11), TODAY) == "tomorrow"
    assert relative_date(date(2024, 3, 9), TODAY) == "yesterday"
    assert relative_date(date(2024, 3, 13), TODAY) == "in 3 days"
    assert relative_date(date(2024, 3, 5), TODAY) == "5 days ago"
    assert relative_date(date(2024, 4, 1), TODAY) == "01.04.2024"


def test_task_notification_headers():
    from taskly.formatters import format_task_notification
    from taskly.models.notification import NotificationType

    today = format_task_notification(_task(due_date=TODAY, due_time=time(18, 30)), NotificationType.DUE_TODAY, TODAY)
    overdue = format_task_notification(_task(due_date=date(2024, 3, 8)), NotificationType.OVERDUE, TODAY)

    assert today == "📅 *Reminder*\n\nScheduled for today:\n\n⏳ *Buy milk*\n📅 today at 18:30"
    assert overdue.startswith("🔥 *Overdue*\n\nYou missed:\n\n🔥 *Buy milk*")
    assert overdue.endswith("2 days ago")


def test_daily_summary_truncates_overdue():
    from taskly.formatters import format_daily_summary

    due_today = [_task("Gym", due_date=TODAY, priority="high")]
    overdue = [_task(f"Old {n}", due_date=date(2024, 3, n)) for n in range(1, 6)]

    text = format_daily_summary(due_today, overdue, open_count=9)

    assert text.startswith("🗓️ *Today's summary*")
    assert "1\\. 🔴 Gym" in text
    assert "🔥 *Overdue \\(5\\):*" in text
    assert "Old 3" in text
    assert "Old 4" not in text
    assert "and 2 more\\.\\.\\." in text
    assert text.endswith("📊 Open tasks: *9*")


def test_custom_text_is_escaped():
    from taskly.formatters import format_custom

    assert format_custom("Stand up.") == "🔔 *Reminder*\n\nStand up\\."


def test_evening_reminder_counts_open_tasks():
    from taskly.formatters import format_evening_reminder

    text = format_evening_reminder(3)

    assert text.startswith("🌆 *Evening reminder*")
    assert "You have 3 unfinished tasks for today\\." in text
    assert "1 unfinished task for" in format_evening_reminder(1)

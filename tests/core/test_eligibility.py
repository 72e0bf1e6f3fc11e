"""
Tests for due-status classification and reminder eligibility.
"""

import pytest
from datetime import date, datetime, timedelta, timezone

TODAY = date(2024, 3, 10)


def _task(**fields):
    from taskly.models.task import Task

    return Task(owner_id="u1", title="t", **fields)


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize(
        "offset, expected",
        [
            (-30, "overdue"),
            (-1, "overdue"),
            (0, "due_today"),
            (1, "due_tomorrow"),
            (2, "due_this_week"),
            (7, "due_this_week"),
            (8, "upcoming"),
            (400, "upcoming"),
        ],
    )
    def test_by_offset(self, offset, expected):
        from taskly.eligibility import classify

        task = _task(due_date=TODAY + timedelta(days=offset))

        assert classify(task, TODAY).value == expected

    def test_completed_wins_over_date(self):
        """Completed comes first, even for an overdue date."""
        from taskly.eligibility import DueStatus, classify

        task = _task(due_date=TODAY - timedelta(days=3), completed=True)

        assert classify(task, TODAY) == DueStatus.COMPLETED

    def test_no_date(self):
        from taskly.eligibility import DueStatus, classify

        assert classify(_task(), TODAY) == DueStatus.NO_DATE

    def test_classify_at_uses_owner_zone(self):
        """Late evening UTC is already tomorrow in Moscow."""
        from taskly.clock import resolve_zone
        from taskly.eligibility import DueStatus, classify_at

        task = _task(due_date=date(2024, 3, 11))
        now = datetime(2024, 3, 10, 22, 0, tzinfo=timezone.utc)

        assert classify_at(task, now, resolve_zone("UTC")) == DueStatus.DUE_TOMORROW
        assert classify_at(task, now, resolve_zone("Europe/Moscow")) == DueStatus.DUE_TODAY


class TestIsNotificationOwed:
    """Tests for is_notification_owed()."""

    @pytest.mark.parametrize("offset", [-2, 0, 1])
    def test_owed_for_overdue_today_tomorrow(self, offset):
        from taskly.eligibility import is_notification_owed

        assert is_notification_owed(_task(due_date=TODAY + timedelta(days=offset)), TODAY)

    @pytest.mark.parametrize("offset", [2, 7, 30])
    def test_not_owed_for_later_dates(self, offset):
        from taskly.eligibility import is_notification_owed

        assert not is_notification_owed(_task(due_date=TODAY + timedelta(days=offset)), TODAY)

    def test_not_owed_once_sent_or_completed(self):
        from taskly.eligibility import is_notification_owed

        assert not is_notification_owed(_task(due_date=TODAY, notification_sent=True), TODAY)
        assert not is_notification_owed(_task(due_date=TODAY, completed=True), TODAY)
        assert not is_notification_owed(_task(), TODAY)

    def test_owed_again_when_status_moves_on(self):
        """Tomorrow, today and overdue each earn their own reminder."""
        from taskly.eligibility import is_notification_owed

        notified_tomorrow = _task(due_date=TODAY, notification_sent=True, notified_status="due_tomorrow")
        notified_today = _task(due_date=TODAY, notification_sent=True, notified_status="due_today")
        notified_overdue = _task(due_date=TODAY - timedelta(days=1), notification_sent=True, notified_status="overdue")

        assert is_notification_owed(notified_tomorrow, TODAY)
        assert not is_notification_owed(notified_today, TODAY)
        assert is_notification_owed(notified_today, TODAY + timedelta(days=1))
        assert not is_notification_owed(notified_overdue, TODAY)

    def test_templates_never_owe_a_reminder(self):
        from taskly.eligibility import is_notification_owed
        from taskly.models.task import TaskTemplate
        from taskly.recurrence import RepeatRule

        template = TaskTemplate(owner_id="u1", title="t", due_date=TODAY, rule=RepeatRule("daily"))

        assert not is_notification_owed(template, TODAY)


def test_notification_type_for():
    from taskly.eligibility import DueStatus, notification_type_for
    from taskly.models.notification import NotificationType

    assert notification_type_for(DueStatus.OVERDUE) == NotificationType.OVERDUE
    assert notification_type_for(DueStatus.DUE_TODAY) == NotificationType.DUE_TODAY
    assert notification_type_for(DueStatus.DUE_TOMORROW) == NotificationType.DUE_TOMORROW
    assert notification_type_for(DueStatus.DUE_THIS_WEEK) is None
    assert notification_type_for(DueStatus.COMPLETED) is None

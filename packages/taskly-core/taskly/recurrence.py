"""
Recurrence rules for repeating tasks.

A rule says how far apart occurrences are. Dates are plain calendar dates; the
caller decides which zone "today" belongs to.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional

from dateutil.relativedelta import relativedelta

REPEAT_TYPES = ("daily", "weekly", "monthly", "custom")
REPEAT_UNITS = ("days", "weeks", "months")

MIN_INTERVAL = 1
MAX_INTERVAL = 365


class RuleError(ValueError):
    """A repeat rule that cannot be evaluated."""


@dataclass(frozen=True)
class RepeatRule:
    """
    How a template repeats.

    Attributes:
        type: daily, weekly, monthly or custom
        interval: Number of units between occurrences (1..365)
        unit: days, weeks or months; only used when type is custom
    """

    type: str
    interval: int = 1
    unit: Optional[str] = None

    def validate(self) -> "RepeatRule":
        """Raise RuleError if the rule cannot be evaluated; return self otherwise."""
        if self.type not in REPEAT_TYPES:
            raise RuleError(f"Invalid repeat type {self.type!r}. Must be one of: {', '.join(REPEAT_TYPES)}")
        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise RuleError(f"Repeat interval must be an integer, got {self.interval!r}")
        if not MIN_INTERVAL <= self.interval <= MAX_INTERVAL:
            raise RuleError(f"Repeat interval must be between {MIN_INTERVAL} and {MAX_INTERVAL}, got {self.interval}")
        if self.type == "custom" and self.unit not in REPEAT_UNITS:
            raise RuleError(f"Custom repeat needs a unit ({', '.join(REPEAT_UNITS)}), got {self.unit!r}")
        return self

    def normalized(self) -> "RepeatRule":
        """Drop the unit from non-custom rules, where it carries no meaning."""
        if self.type != "custom" and self.unit is not None:
            return RepeatRule(type=self.type, interval=self.interval)
        return self

    @property
    def effective_unit(self) -> Optional[str]:
        """The unit the rule actually steps in, or None for an unknown type."""
        if self.type == "daily":
            return "days"
        if self.type == "weekly":
            return "weeks"
        if self.type == "monthly":
            return "months"
        if self.type == "custom" and self.unit in REPEAT_UNITS:
            return self.unit
        return None

    def describe(self) -> str:
        """Short human-readable form, e.g. "every 2 weeks"."""
        unit = self.effective_unit or "?"
        if self.interval == 1:
            return f"every {unit[:-1]}"
        return f"every {self.interval} {unit}"


def _months_between(anchor: date, target: date) -> int:
    return (target.year - anchor.year) * 12 + (target.month - anchor.month)


def next_occurrence(anchor: date, rule: RepeatRule) -> Optional[date]:
    """
    Date of the occurrence following `anchor`.

    Monthly steps keep the anchor's day of month and clamp to the last day of
    shorter months (Jan 31 + 1 month = Feb 28/29).

    Returns None for an unrecognised rule type or custom unit.
    """
    unit = rule.effective_unit
    if unit == "days":
        return anchor + timedelta(days=rule.interval)
    if unit == "weeks":
        return anchor + timedelta(weeks=rule.interval)
    if unit == "months":
        return anchor + relativedelta(months=rule.interval)
    return None


def is_occurrence_date(
    anchor: date,
    target: date,
    rule: RepeatRule,
    end_date: Optional[date] = None,
) -> bool:
    """
    Whether `target` is a date on which the rule anchored at `anchor` fires.

    Month-based rules require the same day of month as the anchor, so a rule
    anchored on the 29th-31st does not fire in months without that day.
    """
    if target < anchor:
        return False
    if target == anchor:
        return True
    if end_date is not None and target > end_date:
        return False

    unit = rule.effective_unit
    if unit == "days":
        return (target - anchor).days % rule.interval == 0
    if unit == "weeks":
        return (target - anchor).days % (rule.interval * 7) == 0
    if unit == "months":
        return target.day == anchor.day and _months_between(anchor, target) % rule.interval == 0
    return False


def occurrences_between(
    anchor: date,
    rule: RepeatRule,
    start: date,
    end: date,
    end_date: Optional[date] = None,
) -> Iterator[date]:
    """Yield every occurrence date in the inclusive window [start, end]."""
    day = max(start, anchor)
    while day <= end:
        if end_date is not None and day > end_date:
            return
        if is_occurrence_date(anchor, day, rule, end_date):
            yield day
        day += timedelta(days=1)

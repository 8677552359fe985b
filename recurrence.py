"""
Recurrence rules for master tasks and the per-day expansion of the task list.

Rules are stored as short RRULE-style strings. Only five shapes exist:
none (no rule), daily, weekdays, weekly on the anchor's weekday and monthly on
the anchor's day of month. Series are unbounded and start at the master's
scheduled_date (the anchor). Matching is closed-form arithmetic on naive
calendar dates; no occurrence list is ever materialized.
"""
import calendar
from collections import namedtuple
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from date_helpers import parse_day_value
from task_records import TaskKind, TaskRecord, VirtualOccurrence

FREQUENCIES = ("none", "daily", "weekdays", "weekly", "monthly")

# Index matches date.weekday(): Monday is 0.
WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
WORKWEEK = frozenset(range(5))

RULE_DAILY = "FREQ=DAILY"
RULE_WEEKDAYS = "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"

RecurrenceRule = namedtuple("RecurrenceRule", ["frequency", "weekdays", "month_day"])


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def build_rule(frequency: str, anchor_date) -> Optional[str]:
    """Encode a picker choice for a series anchored at anchor_date."""
    freq = (frequency or "none").strip().lower()
    if freq == "none":
        return None
    if freq == "daily":
        return RULE_DAILY
    if freq == "weekdays":
        return RULE_WEEKDAYS
    if freq not in FREQUENCIES:
        raise ValueError(f"Unsupported frequency: {frequency}")

    anchor = parse_day_value(anchor_date) if anchor_date else None
    if not anchor:
        raise ValueError(f"A valid anchor date is required for {freq} rules")
    if freq == "weekly":
        return f"FREQ=WEEKLY;BYDAY={WEEKDAY_CODES[anchor.weekday()]}"
    return f"FREQ=MONTHLY;BYMONTHDAY={anchor.day}"


def parse_rule(rule: Optional[str]) -> Optional[RecurrenceRule]:
    """Decode a stored rule string; None if it is not one of the supported shapes."""
    if not rule or not isinstance(rule, str):
        return None
    parts = {}
    for chunk in rule.upper().split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        key, sep, value = chunk.partition("=")
        if not sep or key.strip() in parts:
            return None
        parts[key.strip()] = value.strip()

    freq = parts.pop("FREQ", None)
    if freq == "DAILY" and not parts:
        return RecurrenceRule("daily", None, None)

    if freq == "WEEKLY" and set(parts) <= {"BYDAY"}:
        if "BYDAY" not in parts:
            return RecurrenceRule("weekly", None, None)
        codes = [c.strip() for c in parts["BYDAY"].split(",")]
        if not codes or any(c not in WEEKDAY_CODES for c in codes):
            return None
        weekdays = frozenset(WEEKDAY_CODES.index(c) for c in codes)
        if weekdays == WORKWEEK:
            return RecurrenceRule("weekdays", weekdays, None)
        if len(weekdays) == 1:
            return RecurrenceRule("weekly", weekdays, None)
        return None

    if freq == "MONTHLY" and set(parts) <= {"BYMONTHDAY"}:
        if "BYMONTHDAY" not in parts:
            return RecurrenceRule("monthly", None, None)
        try:
            month_day = int(parts["BYMONTHDAY"])
        except ValueError:
            return None
        if not 1 <= month_day <= 31:
            return None
        return RecurrenceRule("monthly", None, month_day)

    return None


def describe_rule(rule: Optional[str]) -> str:
    """Human-readable label for a stored rule. Unknown rules are 'Custom'."""
    parsed = parse_rule(rule)
    if parsed is None:
        return "Custom"
    if parsed.frequency == "daily":
        return "Daily"
    if parsed.frequency == "weekdays":
        return "Weekdays"
    if parsed.frequency == "weekly" and parsed.weekdays:
        (weekday,) = parsed.weekdays
        return f"Weekly on {WEEKDAY_NAMES[weekday]}"
    if parsed.frequency == "monthly" and parsed.month_day:
        return f"Monthly on the {ordinal(parsed.month_day)}"
    # Shapes whose parameter comes from the anchor cannot be named without it.
    return "Custom"


def recurrence_options(anchor_date) -> List[Dict[str, Optional[str]]]:
    """Choices offered by the repeat picker for a task scheduled on anchor_date."""
    anchor = parse_day_value(anchor_date)
    if not anchor:
        raise ValueError("Invalid anchor date")
    options = [{'frequency': 'none', 'label': 'None', 'rule': None}]
    for freq in FREQUENCIES[1:]:
        rule = build_rule(freq, anchor)
        options.append({'frequency': freq, 'label': describe_rule(rule), 'rule': rule})
    return options


def occurs_on(master, day) -> bool:
    """Does the master's rule produce an occurrence on day?"""
    rule_str = getattr(master, "recurrence_rule", None)
    anchor = parse_day_value(getattr(master, "scheduled_date", None))
    if not rule_str or not anchor:
        return False
    day = parse_day_value(day)
    if not day or day < anchor:
        return False

    rule = parse_rule(rule_str)
    if rule is None:
        return False

    if rule.frequency == "daily":
        return True
    if rule.frequency in ("weekly", "weekdays"):
        weekdays = rule.weekdays or frozenset([anchor.weekday()])
        return day.weekday() in weekdays
    if rule.frequency == "monthly":
        month_day = rule.month_day or anchor.day
        # Months without that day have no occurrence; never clamped to month end.
        _, last_dom = calendar.monthrange(day.year, day.month)
        return month_day <= last_dom and day.day == month_day
    return False


def index_exceptions(tasks: Iterable[TaskRecord]) -> Dict[Tuple[str, date], TaskRecord]:
    """Map (recurring_parent_id, original_date) to its exception row."""
    index = {}
    for task in tasks:
        if task.is_exception():
            index[(task.recurring_parent_id, parse_day_value(task.original_date))] = task
    return index


def expand_for_date(tasks: Iterable[TaskRecord], day) -> List[TaskRecord]:
    """
    Materialize the task list for one calendar date.

    - Regular tasks pass through unchanged (and come first).
    - Masters that do not occur on day contribute nothing.
    - A cancellation marker for (master, day) suppresses the occurrence.
    - A stored override for (master, day) is emitted as-is.
    - Otherwise a VirtualOccurrence copy of the master is emitted.

    Exception rows never appear on their own, so orphans stay invisible.
    """
    day = parse_day_value(day)
    tasks = list(tasks)
    if not day:
        return [t for t in tasks if t.kind is TaskKind.REGULAR]

    masters = [t for t in tasks if t.kind is TaskKind.MASTER]
    regular = [t for t in tasks if t.kind is TaskKind.REGULAR]
    exceptions = index_exceptions(tasks)

    result = list(regular)
    for master in masters:
        if not occurs_on(master, day):
            continue
        exception = exceptions.get((master.id, day))
        if exception is not None:
            if not exception.cancelled:
                result.append(exception)
        else:
            result.append(VirtualOccurrence.from_master(master, day))
    return result


def expand_for_range(tasks: Iterable[TaskRecord], start_day, end_day) -> Dict[str, List[TaskRecord]]:
    """Expansion for every date from start_day to end_day inclusive, keyed by ISO date."""
    start = parse_day_value(start_day)
    end = parse_day_value(end_day)
    if not start or not end:
        raise ValueError("Invalid date range")
    if end < start:
        raise ValueError("end must be on/after start")
    tasks = list(tasks)
    by_day = {}
    current = start
    while current <= end:
        by_day[current.isoformat()] = expand_for_date(tasks, current)
        current += timedelta(days=1)
    return by_day

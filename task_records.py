"""
In-memory task records shared by the recurrence engine, reconciliation and the store.

A record's kind is decided by which recurrence fields are set. Construction
rejects combinations that do not correspond to any kind, so a record that
exists is always one of: regular, master, exception override, cancellation
marker. Virtual occurrences are a separate type produced only by expansion.
"""
import enum
from dataclasses import dataclass, field, fields, replace
from datetime import date, time
from typing import Any, Dict, Optional

from date_helpers import parse_bool, parse_day_value, parse_int, parse_time_str


class InvalidTaskState(ValueError):
    """Raised when a record or a transition would break the task kind rules."""


class TaskKind(enum.Enum):
    REGULAR = "regular"
    MASTER = "master"
    EXCEPTION = "exception"
    CANCELLATION = "cancellation"
    VIRTUAL = "virtual"


# Fields an exception inherits from its master and "update all" may change.
SHARED_FIELDS = (
    "title",
    "description",
    "points",
    "estimated_minutes",
    "group_id",
    "scheduled_start",
    "scheduled_end",
    "all_day",
)


@dataclass
class TaskRecord:
    id: str
    title: str = ""
    description: Optional[str] = None
    points: Optional[int] = None
    estimated_minutes: Optional[int] = None
    group_id: Optional[str] = None
    completed: bool = False
    scheduled_date: Optional[date] = None
    scheduled_start: Optional[time] = None
    scheduled_end: Optional[time] = None
    all_day: bool = False
    position: int = 0
    recurrence_rule: Optional[str] = None
    recurring_parent_id: Optional[str] = None
    original_date: Optional[date] = None
    cancelled: bool = False

    is_virtual_recurrence = False

    def __post_init__(self):
        # Payload-shaped values ('2024-01-05', '9:30am') become date/time objects;
        # unparseable ones become None.
        if self.scheduled_date is not None:
            self.scheduled_date = parse_day_value(self.scheduled_date)
        if self.original_date is not None:
            self.original_date = parse_day_value(self.original_date)
        if self.scheduled_start is not None:
            self.scheduled_start = parse_time_str(self.scheduled_start)
        if self.scheduled_end is not None:
            self.scheduled_end = parse_time_str(self.scheduled_end)
        if not self.recurrence_rule:
            self.recurrence_rule = None
        if self.recurring_parent_id is not None:
            if self.recurrence_rule is not None:
                raise InvalidTaskState(f"Task {self.id} cannot be both a master and an exception")
            if self.original_date is None:
                raise InvalidTaskState(f"Exception {self.id} is missing original_date")
        else:
            if self.original_date is not None:
                raise InvalidTaskState(f"Task {self.id} has original_date without a parent")
            if self.cancelled:
                raise InvalidTaskState(f"Task {self.id} is cancelled but is not an exception")

    @property
    def kind(self) -> TaskKind:
        if self.recurrence_rule:
            return TaskKind.MASTER
        if self.recurring_parent_id is not None:
            return TaskKind.CANCELLATION if self.cancelled else TaskKind.EXCEPTION
        return TaskKind.REGULAR

    def is_master(self) -> bool:
        return self.kind is TaskKind.MASTER

    def is_exception(self) -> bool:
        """True for override rows and cancellation markers alike."""
        return self.recurring_parent_id is not None

    def evolve(self, **changes) -> "TaskRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'kind': self.kind.value,
            'title': self.title,
            'description': self.description,
            'points': self.points,
            'estimated_minutes': self.estimated_minutes,
            'group_id': self.group_id,
            'completed': self.completed,
            'scheduled_date': self.scheduled_date.isoformat() if self.scheduled_date else None,
            'scheduled_start': self.scheduled_start.strftime('%H:%M') if self.scheduled_start else None,
            'scheduled_end': self.scheduled_end.strftime('%H:%M') if self.scheduled_end else None,
            'all_day': self.all_day,
            'position': self.position,
            'recurrence_rule': self.recurrence_rule,
            'recurring_parent_id': self.recurring_parent_id,
            'original_date': self.original_date.isoformat() if self.original_date else None,
            'cancelled': self.cancelled,
        }
        return data


@dataclass
class VirtualOccurrence(TaskRecord):
    """One occurrence of a master with no stored override. Never persisted."""

    master_id: Optional[str] = field(default=None)

    is_virtual_recurrence = True

    @property
    def kind(self) -> TaskKind:
        return TaskKind.VIRTUAL

    @classmethod
    def from_master(cls, master: TaskRecord, day: date) -> "VirtualOccurrence":
        values = {f.name: getattr(master, f.name) for f in fields(TaskRecord)}
        values.update(scheduled_date=day, completed=False)
        return cls(master_id=master.id, **values)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['is_virtual_recurrence'] = True
        data['master_id'] = self.master_id
        return data


def record_from_dict(data: Dict[str, Any]) -> TaskRecord:
    """Build a stored-kind record from an API-shaped dict. Virtual markers are ignored."""
    if not data.get('id'):
        raise InvalidTaskState("Task id is required")
    return TaskRecord(
        id=str(data['id']),
        title=data.get('title') or '',
        description=data.get('description'),
        points=parse_int(data.get('points')),
        estimated_minutes=parse_int(data.get('estimated_minutes')),
        group_id=data.get('group_id'),
        completed=parse_bool(data.get('completed')),
        scheduled_date=parse_day_value(data.get('scheduled_date')) if data.get('scheduled_date') else None,
        scheduled_start=parse_time_str(data.get('scheduled_start')),
        scheduled_end=parse_time_str(data.get('scheduled_end')),
        all_day=parse_bool(data.get('all_day')),
        position=parse_int(data.get('position')) or 0,
        recurrence_rule=data.get('recurrence_rule'),
        recurring_parent_id=data.get('recurring_parent_id'),
        original_date=parse_day_value(data.get('original_date')) if data.get('original_date') else None,
        cancelled=parse_bool(data.get('cancelled')),
    )

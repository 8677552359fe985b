"""
Write-side recurrence handling: user edits become master/exception mutations.

Every operation takes the current flat list of task records and returns a list
of mutation intents without touching its input. task_store applies the intents
to the database in one transaction; apply_mutations replays them in memory.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from date_helpers import parse_day_value
from recurrence import occurs_on, parse_rule
from task_records import SHARED_FIELDS, InvalidTaskState, TaskKind, TaskRecord

EXCEPTION_FIELDS = SHARED_FIELDS + ("scheduled_date", "completed", "cancelled")
MASTER_FIELDS = SHARED_FIELDS + ("recurrence_rule",)


class TaskNotFound(LookupError):
    """The task a reconciliation operation refers to does not exist."""

    def __init__(self, task_id):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


@dataclass(frozen=True)
class InsertTask:
    record: TaskRecord


@dataclass(frozen=True)
class UpdateTask:
    task_id: str
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteTask:
    task_id: str


@dataclass(frozen=True)
class DeleteExceptions:
    """Remove every exception row (overrides and cancellations) of a master."""
    parent_id: str


def new_task_id() -> str:
    return uuid.uuid4().hex


def find_task(tasks: Iterable[TaskRecord], task_id) -> TaskRecord:
    for task in tasks:
        if task.id == task_id and not task.is_virtual_recurrence:
            return task
    raise TaskNotFound(task_id)


def find_exception(tasks: Iterable[TaskRecord], master_id, original_date) -> Optional[TaskRecord]:
    for task in tasks:
        if task.recurring_parent_id == master_id and task.original_date == original_date:
            return task
    return None


def _require_master(tasks, master_id) -> TaskRecord:
    master = find_task(tasks, master_id)
    if master.kind is not TaskKind.MASTER:
        raise InvalidTaskState(f"Task {master_id} is not a recurring task")
    return master


def _require_rule(rule):
    if parse_rule(rule) is None:
        raise ValueError(f"Unsupported recurrence rule: {rule}")


def _next_position(tasks) -> int:
    return max((t.position or 0 for t in tasks), default=0) + 1


def set_recurrence(tasks: List[TaskRecord], task_id, rule: Optional[str], new_id=None) -> List[Any]:
    """Attach (or with an empty rule, remove) a recurrence rule on a task."""
    task = find_task(tasks, task_id)
    if not rule:
        return remove_recurrence(tasks, task_id)
    _require_rule(rule)
    if task.is_exception():
        raise InvalidTaskState("An occurrence of a recurring task cannot itself recur")
    if not task.scheduled_date:
        raise InvalidTaskState("Schedule the task on a day before making it recurring")
    if task.completed and task.kind is TaskKind.REGULAR:
        return promote_completed_to_recurring(tasks, task_id, rule, new_id=new_id)
    return [UpdateTask(task.id, {'recurrence_rule': rule})]


def promote_completed_to_recurring(tasks: List[TaskRecord], task_id, rule: str, new_id=None) -> List[Any]:
    """
    Make a completed task the first occurrence of a new series.

    A completed row cannot become the master itself: its completed flag would
    read as the state of the whole series. Instead a fresh master is created
    with the same fields and anchor, and the completed row becomes that
    master's exception for the anchor date, keeping its completion.
    """
    task = find_task(tasks, task_id)
    _require_rule(rule)
    if task.kind is not TaskKind.REGULAR:
        raise InvalidTaskState(f"Task {task_id} is already part of a series")
    if not task.completed:
        raise InvalidTaskState(f"Task {task_id} is not completed")
    if not task.scheduled_date:
        raise InvalidTaskState("Schedule the task on a day before making it recurring")

    master = task.evolve(id=new_id or new_task_id(), recurrence_rule=rule, completed=False)
    return [
        InsertTask(master),
        UpdateTask(task.id, {
            'recurring_parent_id': master.id,
            'original_date': task.scheduled_date,
        }),
    ]


def remove_recurrence(tasks: List[TaskRecord], master_id) -> List[Any]:
    """Clear the rule and drop all per-occurrence history of the series."""
    task = find_task(tasks, master_id)
    if task.is_exception():
        raise InvalidTaskState("Recurrence is removed from the series, not from one occurrence")
    if task.kind is not TaskKind.MASTER:
        return []
    return [
        UpdateTask(task.id, {'recurrence_rule': None}),
        DeleteExceptions(task.id),
    ]


def upsert_exception(tasks: List[TaskRecord], master_id, original_date, new_id=None, **fields) -> List[Any]:
    """
    Create or overwrite the exception row for (master_id, original_date).

    Fields not given are taken from the master's current values; scheduled_date
    defaults to original_date. cancelled=True produces a cancellation marker
    and ignores every other field.
    """
    master = _require_master(tasks, master_id)
    day = parse_day_value(original_date)
    if not day:
        raise ValueError(f"Invalid occurrence date: {original_date}")
    unknown = set(fields) - set(EXCEPTION_FIELDS)
    if unknown:
        raise ValueError(f"Cannot override fields: {', '.join(sorted(unknown))}")
    if not occurs_on(master, day):
        raise InvalidTaskState(f"Task {master_id} has no occurrence on {day.isoformat()}")

    if fields.get('cancelled'):
        values = {name: None for name in SHARED_FIELDS}
        values.update(title='', all_day=False, scheduled_date=None, completed=False, cancelled=True)
    else:
        values = {name: getattr(master, name) for name in SHARED_FIELDS}
        values.update(scheduled_date=day, completed=False, cancelled=False)
        values.update(fields)
        if not values.get('scheduled_date'):
            values['scheduled_date'] = day

    existing = find_exception(tasks, master.id, day)
    if existing is not None:
        return [UpdateTask(existing.id, values)]
    record = TaskRecord(
        id=new_id or new_task_id(),
        recurring_parent_id=master.id,
        original_date=day,
        position=master.position,
        **values
    )
    return [InsertTask(record)]


def cancel_occurrence(tasks: List[TaskRecord], master_id, original_date, new_id=None) -> List[Any]:
    return upsert_exception(tasks, master_id, original_date, new_id=new_id, cancelled=True)


def update_all_occurrences(tasks: List[TaskRecord], master_id, **changes) -> List[Any]:
    """
    Change the series template. Existing exceptions keep whatever they store;
    virtual occurrences pick the new values up on the next expansion.
    """
    master = _require_master(tasks, master_id)
    unknown = set(changes) - set(MASTER_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    mutations = []
    if 'recurrence_rule' in changes:
        rule = changes.pop('recurrence_rule')
        if not rule:
            mutations.extend(remove_recurrence(tasks, master.id))
        else:
            _require_rule(rule)
            changes['recurrence_rule'] = rule
    if changes:
        mutations.insert(0, UpdateTask(master.id, changes))
    return mutations


def toggle_occurrence(tasks: List[TaskRecord], task_id, day=None, new_id=None) -> List[Any]:
    """Flip completion of a stored task, or of one occurrence of a master when day is given."""
    task = find_task(tasks, task_id)
    if task.kind is TaskKind.MASTER:
        occurrence_day = parse_day_value(day) if day else None
        if not occurrence_day:
            raise InvalidTaskState("Toggle an occurrence of a recurring task by its date")
        existing = find_exception(tasks, task.id, occurrence_day)
        if existing is not None:
            if existing.cancelled:
                raise InvalidTaskState("This occurrence was cancelled")
            return [UpdateTask(existing.id, {'completed': not existing.completed})]
        return upsert_exception(tasks, task.id, occurrence_day, new_id=new_id, completed=True)
    if task.kind is TaskKind.CANCELLATION:
        raise InvalidTaskState("This occurrence was cancelled")
    return [UpdateTask(task.id, {'completed': not task.completed})]


def copy_and_schedule(tasks: List[TaskRecord], source_id, day, start=None, end=None,
                      all_day=False, new_id=None) -> List[Any]:
    """Duplicate a task onto a new day/time as a plain one-off task."""
    source = find_task(tasks, source_id)
    target_day = parse_day_value(day)
    if not target_day:
        raise ValueError(f"Invalid day: {day}")
    values = {name: getattr(source, name) for name in SHARED_FIELDS}
    values.update(
        scheduled_start=None if all_day else start,
        scheduled_end=None if all_day else end,
        all_day=bool(all_day),
    )
    record = TaskRecord(
        id=new_id or new_task_id(),
        scheduled_date=target_day,
        position=_next_position(tasks),
        **values
    )
    return [InsertTask(record)]


def delete_task(tasks: List[TaskRecord], task_id) -> List[Any]:
    task = find_task(tasks, task_id)
    mutations = [DeleteTask(task.id)]
    if task.kind is TaskKind.MASTER:
        mutations.append(DeleteExceptions(task.id))
    return mutations


def delete_group_tasks(tasks: List[TaskRecord], group_id) -> List[Any]:
    """Deleting a group takes its tasks with it, including the history of its series."""
    members = [t for t in tasks if t.group_id == group_id]
    deleted_masters = {t.id for t in members if t.kind is TaskKind.MASTER}
    mutations = []
    for task in members:
        if task.is_exception() and task.recurring_parent_id in deleted_masters:
            continue
        mutations.extend(delete_task(tasks, task.id))
    return mutations


def apply_mutations(tasks: Iterable[TaskRecord], mutations: Iterable[Any]) -> List[TaskRecord]:
    """Replay mutation intents over an in-memory task list and return the new list."""
    result = list(tasks)
    for mutation in mutations:
        if isinstance(mutation, InsertTask):
            result = [t for t in result if t.id != mutation.record.id]
            result.append(mutation.record)
        elif isinstance(mutation, UpdateTask):
            current = find_task(result, mutation.task_id)
            updated = current.evolve(**mutation.changes)
            result = [updated if t.id == current.id else t for t in result]
        elif isinstance(mutation, DeleteTask):
            result = [t for t in result if t.id != mutation.task_id]
        elif isinstance(mutation, DeleteExceptions):
            result = [t for t in result if t.recurring_parent_id != mutation.parent_id]
        else:
            raise TypeError(f"Unknown mutation: {mutation!r}")
    return result

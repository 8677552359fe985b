from datetime import date, time

import pytest

from reconciliation import (
    DeleteExceptions,
    DeleteTask,
    InsertTask,
    TaskNotFound,
    UpdateTask,
    apply_mutations,
    cancel_occurrence,
    copy_and_schedule,
    delete_group_tasks,
    delete_task,
    promote_completed_to_recurring,
    remove_recurrence,
    set_recurrence,
    toggle_occurrence,
    update_all_occurrences,
    upsert_exception,
)
from recurrence import expand_for_date
from task_records import InvalidTaskState, TaskKind, TaskRecord

ANCHOR = date(2024, 1, 1)
DAILY = "FREQ=DAILY"


def make_master(**kwargs):
    values = dict(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule=DAILY,
                  scheduled_start=time(9, 0), scheduled_end=time(9, 15), points=1, group_id="g1")
    values.update(kwargs)
    return TaskRecord(**values)


def run(tasks, operation, *args, **kwargs):
    return apply_mutations(tasks, operation(tasks, *args, **kwargs))


def test_set_recurrence_on_open_task_makes_it_master_in_place():
    task = TaskRecord(id="t1", title="Gym", scheduled_date=ANCHOR)
    mutations = set_recurrence([task], "t1", DAILY)
    assert mutations == [UpdateTask("t1", {"recurrence_rule": DAILY})]
    (updated,) = apply_mutations([task], mutations)
    assert updated.kind is TaskKind.MASTER
    assert updated.scheduled_date == ANCHOR


def test_set_recurrence_requires_anchor_and_supported_rule():
    task = TaskRecord(id="t1", title="Gym")
    with pytest.raises(InvalidTaskState):
        set_recurrence([task], "t1", DAILY)
    with pytest.raises(ValueError):
        set_recurrence([task.evolve(scheduled_date=ANCHOR)], "t1", "FREQ=YEARLY")


def test_set_recurrence_on_exception_is_rejected():
    master = make_master()
    exception = TaskRecord(id="e1", recurring_parent_id="m1", original_date=ANCHOR, scheduled_date=ANCHOR)
    with pytest.raises(InvalidTaskState):
        set_recurrence([master, exception], "e1", DAILY)


def test_set_recurrence_on_completed_task_promotes_new_master():
    done = TaskRecord(id="t1", title="Gym", scheduled_date=ANCHOR, completed=True, points=2)
    mutations = set_recurrence([done], "t1", DAILY, new_id="m-new")
    tasks = apply_mutations([done], mutations)

    masters = [t for t in tasks if t.kind is TaskKind.MASTER]
    assert len(masters) == 1
    new_master = masters[0]
    assert new_master.id == "m-new"
    assert new_master.completed is False
    assert new_master.points == 2
    assert new_master.scheduled_date == ANCHOR

    original = next(t for t in tasks if t.id == "t1")
    assert original.kind is TaskKind.EXCEPTION
    assert original.recurring_parent_id == "m-new"
    assert original.original_date == ANCHOR
    assert original.completed is True

    # The anchor day shows the completed history, later days a fresh occurrence.
    assert expand_for_date(tasks, ANCHOR) == [original]
    (next_day,) = expand_for_date(tasks, date(2024, 1, 2))
    assert next_day.is_virtual_recurrence and not next_day.completed


def test_promote_rejects_open_tasks():
    task = TaskRecord(id="t1", scheduled_date=ANCHOR)
    with pytest.raises(InvalidTaskState):
        promote_completed_to_recurring([task], "t1", DAILY)


def test_set_recurrence_with_empty_rule_removes_it():
    master = make_master()
    assert set_recurrence([master], "m1", None) == remove_recurrence([master], "m1")


def test_remove_recurrence_cascades_to_exceptions():
    master = make_master()
    tasks = [
        master,
        TaskRecord(id="e1", recurring_parent_id="m1", original_date=date(2024, 1, 2),
                   scheduled_date=date(2024, 1, 2)),
        TaskRecord(id="c1", recurring_parent_id="m1", original_date=date(2024, 1, 3), cancelled=True),
        TaskRecord(id="other", recurring_parent_id="m2", original_date=date(2024, 1, 3),
                   scheduled_date=date(2024, 1, 3)),
    ]
    mutations = remove_recurrence(tasks, "m1")
    assert mutations == [UpdateTask("m1", {"recurrence_rule": None}), DeleteExceptions("m1")]
    result = apply_mutations(tasks, mutations)
    assert [t.id for t in result] == ["m1", "other"]
    assert result[0].kind is TaskKind.REGULAR


def test_remove_recurrence_on_regular_task_changes_nothing():
    assert remove_recurrence([TaskRecord(id="t1")], "t1") == []


def test_upsert_exception_inherits_master_fields():
    master = make_master()
    (mutation,) = upsert_exception([master], "m1", "2024-01-05", new_id="e1", title="Standup (late)")
    assert isinstance(mutation, InsertTask)
    record = mutation.record
    assert record.id == "e1"
    assert record.recurring_parent_id == "m1"
    assert record.original_date == date(2024, 1, 5)
    assert record.scheduled_date == date(2024, 1, 5)
    assert record.title == "Standup (late)"
    assert record.points == 1
    assert record.group_id == "g1"
    assert record.scheduled_start == time(9, 0)
    assert record.completed is False


def test_upsert_exception_can_move_the_occurrence():
    master = make_master()
    (mutation,) = upsert_exception([master], "m1", ANCHOR, new_id="e1", scheduled_date=date(2024, 1, 2))
    assert mutation.record.original_date == ANCHOR
    assert mutation.record.scheduled_date == date(2024, 1, 2)


def test_upsert_exception_overwrites_existing_row_for_key():
    master = make_master()
    existing = TaskRecord(id="e1", title="old", recurring_parent_id="m1", original_date=ANCHOR,
                          scheduled_date=ANCHOR)
    tasks = [master, existing]
    mutations = upsert_exception(tasks, "m1", ANCHOR, completed=True)
    assert len(mutations) == 1
    assert mutations[0].task_id == "e1"
    result = apply_mutations(tasks, mutations)
    assert len(result) == 2
    updated = next(t for t in result if t.id == "e1")
    assert updated.completed is True
    assert updated.title == "Standup"


def test_upsert_exception_rejects_dates_without_occurrence():
    master = make_master(recurrence_rule="FREQ=WEEKLY;BYDAY=MO")
    with pytest.raises(InvalidTaskState):
        upsert_exception([master], "m1", "2024-01-02", title="x")


def test_upsert_exception_rejects_unknown_fields():
    with pytest.raises(ValueError):
        upsert_exception([make_master()], "m1", ANCHOR, recurrence_rule=DAILY)


def test_cancel_occurrence_writes_empty_marker():
    master = make_master()
    tasks = run([master], cancel_occurrence, "m1", "2024-01-05", new_id="c1")
    marker = next(t for t in tasks if t.id == "c1")
    assert marker.kind is TaskKind.CANCELLATION
    assert marker.title == ""
    assert marker.points is None
    assert marker.scheduled_date is None
    assert expand_for_date(tasks, "2024-01-05") == []


def test_cancel_replaces_an_existing_override():
    master = make_master()
    existing = TaskRecord(id="e1", title="moved", recurring_parent_id="m1", original_date=ANCHOR,
                          scheduled_date=ANCHOR)
    tasks = run([master, existing], cancel_occurrence, "m1", ANCHOR)
    assert len(tasks) == 2
    assert next(t for t in tasks if t.id == "e1").cancelled


def test_update_all_occurrences_leaves_exceptions_alone():
    master = make_master()
    exception = TaskRecord(id="e1", title="custom", recurring_parent_id="m1",
                           original_date=date(2024, 1, 2), scheduled_date=date(2024, 1, 2))
    tasks = run([master, exception], update_all_occurrences, "m1", title="Daily sync", points=3)
    assert next(t for t in tasks if t.id == "m1").title == "Daily sync"
    assert next(t for t in tasks if t.id == "e1").title == "custom"
    (virtual,) = expand_for_date(tasks, date(2024, 1, 3))
    assert virtual.title == "Daily sync"
    assert virtual.points == 3


def test_update_all_occurrences_with_empty_rule_removes_series_history():
    master = make_master()
    exception = TaskRecord(id="e1", recurring_parent_id="m1", original_date=date(2024, 1, 2),
                           scheduled_date=date(2024, 1, 2))
    mutations = update_all_occurrences([master, exception], "m1", title="Once", recurrence_rule=None)
    assert mutations[0] == UpdateTask("m1", {"title": "Once"})
    assert DeleteExceptions("m1") in mutations


def test_update_all_occurrences_requires_master():
    with pytest.raises(InvalidTaskState):
        update_all_occurrences([TaskRecord(id="t1")], "t1", title="x")


def test_toggle_virtual_occurrence_creates_completed_exception():
    master = make_master()
    tasks = run([master], toggle_occurrence, "m1", day="2024-01-03", new_id="e1")
    exception = next(t for t in tasks if t.id == "e1")
    assert exception.completed is True
    assert exception.original_date == date(2024, 1, 3)
    assert expand_for_date(tasks, "2024-01-03") == [exception]


def test_toggle_existing_exception_flips_it():
    master = make_master()
    exception = TaskRecord(id="e1", recurring_parent_id="m1", original_date=ANCHOR,
                           scheduled_date=ANCHOR, completed=True)
    assert toggle_occurrence([master, exception], "m1", day=ANCHOR) == [
        UpdateTask("e1", {"completed": False})
    ]
    assert toggle_occurrence([master, exception], "e1") == [UpdateTask("e1", {"completed": False})]


def test_toggle_master_without_day_is_rejected():
    with pytest.raises(InvalidTaskState):
        toggle_occurrence([make_master()], "m1")


def test_copy_and_schedule_strips_recurrence_markers():
    master = make_master(completed=True)
    (mutation,) = copy_and_schedule([master], "m1", "2024-02-01", start=time(14, 0),
                                    end=time(15, 0), new_id="copy")
    copy = mutation.record
    assert copy.kind is TaskKind.REGULAR
    assert copy.id == "copy"
    assert copy.title == "Standup"
    assert copy.scheduled_date == date(2024, 2, 1)
    assert copy.scheduled_start == time(14, 0)
    assert copy.completed is False
    assert copy.recurrence_rule is None


def test_copy_all_day_drops_times():
    task = TaskRecord(id="t1", title="Read", scheduled_start=time(8, 0), scheduled_end=time(9, 0))
    (mutation,) = copy_and_schedule([task], "t1", ANCHOR, all_day=True)
    assert mutation.record.all_day
    assert mutation.record.scheduled_start is None
    assert mutation.record.position == 1


def test_delete_master_cascades():
    assert delete_task([make_master()], "m1") == [DeleteTask("m1"), DeleteExceptions("m1")]
    assert delete_task([TaskRecord(id="t1")], "t1") == [DeleteTask("t1")]


def test_delete_group_tasks():
    master = make_master()
    tasks = [
        master,
        TaskRecord(id="e1", recurring_parent_id="m1", original_date=ANCHOR, scheduled_date=ANCHOR, group_id="g1"),
        TaskRecord(id="t1", group_id="g1"),
        TaskRecord(id="t2", group_id="g2"),
    ]
    result = run(tasks, delete_group_tasks, "g1")
    assert [t.id for t in result] == ["t2"]


@pytest.mark.parametrize(
    "operation,args",
    [
        (set_recurrence, ("missing", DAILY)),
        (promote_completed_to_recurring, ("missing", DAILY)),
        (remove_recurrence, ("missing",)),
        (upsert_exception, ("missing", ANCHOR)),
        (cancel_occurrence, ("missing", ANCHOR)),
        (update_all_occurrences, ("missing",)),
        (toggle_occurrence, ("missing",)),
        (copy_and_schedule, ("missing", ANCHOR)),
        (delete_task, ("missing",)),
    ],
)
def test_operations_on_missing_task_raise_not_found(operation, args):
    with pytest.raises(TaskNotFound):
        operation([make_master()], *args)


def test_apply_mutations_does_not_touch_input():
    tasks = [make_master()]
    apply_mutations(tasks, update_all_occurrences(tasks, "m1", title="new"))
    assert tasks[0].title == "Standup"

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

import task_store
from models import Task, db
from reconciliation import (
    InsertTask,
    TaskNotFound,
    cancel_occurrence,
    remove_recurrence,
    set_recurrence,
    upsert_exception,
)
from recurrence import expand_for_date
from task_records import InvalidTaskState, TaskRecord, VirtualOccurrence
from task_store import StorageError, load_records, run_reconciliation

ANCHOR = date(2024, 1, 1)


def add_task(**kwargs):
    task = Task(**kwargs)
    db.session.add(task)
    db.session.commit()
    return task


def test_load_records_round_trips_rows(flask_app):
    add_task(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule="FREQ=DAILY", position=1)
    add_task(id="t1", title="Backlog", position=2)
    records = load_records()
    assert [r.id for r in records] == ["m1", "t1"]
    assert records[0].is_master()
    assert len(expand_for_date(records, "2024-01-05")) == 2


def test_load_records_skips_corrupt_rows(flask_app):
    add_task(id="bad", title="broken", recurrence_rule="FREQ=DAILY",
             recurring_parent_id="m1", original_date=ANCHOR)
    add_task(id="ok", title="fine")
    assert [r.id for r in load_records()] == ["ok"]


def test_exception_upsert_is_committed(flask_app):
    add_task(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule="FREQ=DAILY")
    run_reconciliation(upsert_exception, "m1", date(2024, 1, 5), new_id="e1", title="Holiday")
    row = db.session.get(Task, "e1")
    assert row.recurring_parent_id == "m1"
    assert row.original_date == date(2024, 1, 5)
    assert row.title == "Holiday"

    run_reconciliation(cancel_occurrence, "m1", date(2024, 1, 5))
    rows = Task.query.filter_by(recurring_parent_id="m1").all()
    assert [r.id for r in rows] == ["e1"]
    assert rows[0].cancelled


def test_promote_completed_task_in_one_transaction(flask_app):
    add_task(id="t1", title="Gym", scheduled_date=ANCHOR, completed=True)
    run_reconciliation(set_recurrence, "t1", "FREQ=DAILY", new_id="m-new")
    master = db.session.get(Task, "m-new")
    original = db.session.get(Task, "t1")
    assert master.recurrence_rule == "FREQ=DAILY"
    assert not master.completed
    assert original.recurring_parent_id == "m-new"
    assert original.completed


def test_remove_recurrence_deletes_exception_rows(flask_app):
    add_task(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule="FREQ=DAILY")
    add_task(id="e1", recurring_parent_id="m1", original_date=date(2024, 1, 2), scheduled_date=date(2024, 1, 2))
    add_task(id="c1", recurring_parent_id="m1", original_date=date(2024, 1, 3), cancelled=True)
    run_reconciliation(remove_recurrence, "m1")
    assert [t.id for t in Task.query.all()] == ["m1"]
    assert db.session.get(Task, "m1").recurrence_rule is None


def test_not_found_writes_nothing(flask_app):
    add_task(id="t1", title="Gym", scheduled_date=ANCHOR)
    with pytest.raises(TaskNotFound):
        run_reconciliation(upsert_exception, "missing", ANCHOR, title="x")
    assert Task.query.count() == 1


def test_failure_midway_rolls_back_everything(flask_app):
    add_task(id="t1", title="Gym", scheduled_date=ANCHOR)

    def insert_then_break(tasks):
        return [
            InsertTask(TaskRecord(id="new", title="partial")),
            InsertTask(VirtualOccurrence(id="v", master_id="t1")),
        ]

    with pytest.raises(InvalidTaskState):
        run_reconciliation(insert_then_break)
    assert db.session.get(Task, "new") is None
    assert Task.query.count() == 1


def test_database_errors_surface_as_retryable_storage_error(flask_app, monkeypatch):
    add_task(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule="FREQ=DAILY")

    real_apply = task_store.apply_mutations

    def apply_then_fail(mutations):
        real_apply(mutations)
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(task_store, "apply_mutations", apply_then_fail)
    with pytest.raises(StorageError) as excinfo:
        run_reconciliation(upsert_exception, "m1", ANCHOR, title="x")
    monkeypatch.undo()
    assert excinfo.value.retryable
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert Task.query.filter_by(recurring_parent_id="m1").count() == 0


def test_unique_occurrence_constraint(flask_app):
    add_task(id="e1", recurring_parent_id="m1", original_date=ANCHOR)
    db.session.add(Task(id="e2", recurring_parent_id="m1", original_date=ANCHOR))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_apply_mutations_rejects_unknown_intent(flask_app):
    with pytest.raises(TypeError):
        task_store.apply_mutations([object()])


def test_concurrent_upserts_of_same_occurrence_last_write_wins(flask_app):
    add_task(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule="FREQ=DAILY")
    day = date(2024, 1, 5)
    attempts = []

    def upsert_while_another_writer_commits(tasks, *args, **kwargs):
        mutations = upsert_exception(tasks, *args, **kwargs)
        if not attempts:
            db.session.add(Task(id="theirs", title="Other writer", recurring_parent_id="m1",
                                original_date=day, scheduled_date=day))
            db.session.commit()
        attempts.append(mutations)
        return mutations

    run_reconciliation(upsert_while_another_writer_commits, "m1", day, new_id="mine", title="Mine")

    assert len(attempts) == 2
    rows = Task.query.filter_by(recurring_parent_id="m1").all()
    assert [r.id for r in rows] == ["theirs"]
    assert rows[0].title == "Mine"


def test_repeated_conflicts_surface_as_storage_error(flask_app, monkeypatch):
    add_task(id="m1", title="Standup", scheduled_date=ANCHOR, recurrence_rule="FREQ=DAILY")
    calls = []

    def always_conflicts(mutations):
        calls.append(mutations)
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(task_store, "apply_mutations", always_conflicts)
    with pytest.raises(StorageError):
        run_reconciliation(upsert_exception, "m1", ANCHOR, title="x")
    assert len(calls) == 2

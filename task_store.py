"""
Persistence side of the planner: loads task rows as records and applies
reconciliation mutations to the database as one atomic unit.
"""
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import Task, db
from reconciliation import DeleteExceptions, DeleteTask, InsertTask, TaskNotFound, UpdateTask
from task_records import InvalidTaskState

logger = logging.getLogger(__name__)

# A unique-key conflict means another writer stored the same occurrence first;
# one rerun on fresh records turns the insert into an overwrite.
CONFLICT_ATTEMPTS = 2


class StorageError(RuntimeError):
    """The database rejected or failed a write. Safe for the caller to retry."""
    retryable = True


def load_records():
    """All stored task rows as records, in backlog order. Corrupt rows are skipped."""
    rows = Task.query.order_by(Task.position.asc(), Task.created_at.asc()).all()
    records = []
    seen_keys = set()
    for row in rows:
        try:
            record = row.to_record()
        except InvalidTaskState as exc:
            logger.warning("Skipping task %s with invalid recurrence fields: %s", row.id, exc)
            continue
        if record.is_exception():
            key = (record.recurring_parent_id, record.original_date)
            if key in seen_keys:
                logger.warning("Duplicate exception rows for %s on %s", key[0], key[1])
            seen_keys.add(key)
        records.append(record)
    return records


def _get_row(task_id):
    row = db.session.get(Task, task_id)
    if row is None:
        raise TaskNotFound(task_id)
    return row


def apply_mutations(mutations):
    """Stage mutation intents on the session, flushing after each so they apply in order."""
    for mutation in mutations:
        if isinstance(mutation, InsertTask):
            if mutation.record.is_virtual_recurrence:
                raise InvalidTaskState("Virtual occurrences are never stored")
            db.session.add(Task.from_record(mutation.record))
        elif isinstance(mutation, UpdateTask):
            row = _get_row(mutation.task_id)
            row.apply_changes(mutation.changes)
            row.to_record()
        elif isinstance(mutation, DeleteTask):
            db.session.delete(_get_row(mutation.task_id))
        elif isinstance(mutation, DeleteExceptions):
            deleted = Task.query.filter_by(recurring_parent_id=mutation.parent_id).delete(
                synchronize_session=False
            )
            logger.info("Removed %s exception rows for task %s", deleted, mutation.parent_id)
        else:
            raise TypeError(f"Unknown mutation: {mutation!r}")
        db.session.flush()


def _reconcile_once(operation, args, kwargs, finalize):
    records = load_records()
    mutations = operation(records, *args, **kwargs)
    apply_mutations(mutations)
    if finalize:
        finalize()
    db.session.commit()
    return mutations


def run_reconciliation(operation, *args, finalize=None, **kwargs):
    """
    Read the current records, compute the mutations with `operation` and write
    them in a single transaction. Nothing is committed if any step fails.
    `finalize` runs inside the same transaction just before the commit.

    Concurrent upserts of the same exception key resolve as last write wins:
    the losing insert is rolled back and the operation is recomputed against
    the row the other writer stored.
    """
    for attempt in range(1, CONFLICT_ATTEMPTS + 1):
        try:
            return _reconcile_once(operation, args, kwargs, finalize)
        except IntegrityError as exc:
            db.session.rollback()
            if attempt < CONFLICT_ATTEMPTS:
                logger.info("Reconciliation %s hit a conflicting write, retrying", operation.__name__)
                continue
            logger.error("Reconciliation %s failed: %s", operation.__name__, exc)
            raise StorageError(f"Could not save changes: {exc.__class__.__name__}") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Reconciliation %s failed: %s", operation.__name__, exc)
            raise StorageError(f"Could not save changes: {exc.__class__.__name__}") from exc
        except Exception:
            db.session.rollback()
            raise

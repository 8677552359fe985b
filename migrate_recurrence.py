"""
Create the groups/tasks tables if they do not exist and backfill the
recurrence columns plus the one-exception-per-occurrence unique index.
Usage:  python migrate_recurrence.py
"""
from sqlalchemy import inspect

from app import app, db
from models import Group, Task

RECURRENCE_COLUMNS = (
    ('all_day', 'BOOLEAN DEFAULT FALSE'),
    ('recurrence_rule', 'VARCHAR(100)'),
    ('recurring_parent_id', 'VARCHAR(32)'),
    ('original_date', 'DATE'),
    ('cancelled', 'BOOLEAN DEFAULT FALSE'),
)


def main():
    with app.app_context():
        Group.__table__.create(db.engine, checkfirst=True)
        Task.__table__.create(db.engine, checkfirst=True)
        with db.engine.begin() as conn:
            cols = {col['name'] for col in inspect(conn).get_columns('tasks')}
            for name, col_type in RECURRENCE_COLUMNS:
                if name not in cols:
                    conn.execute(db.text(f"ALTER TABLE tasks ADD COLUMN {name} {col_type}"))
                    print(f"Added tasks.{name} column")
            conn.execute(db.text("UPDATE tasks SET cancelled = FALSE WHERE cancelled IS NULL"))
            conn.execute(db.text("UPDATE tasks SET all_day = FALSE WHERE all_day IS NULL"))
            conn.execute(db.text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_tasks_occurrence_idx "
                "ON tasks (recurring_parent_id, original_date)"
            ))
            conn.execute(db.text(
                "CREATE INDEX IF NOT EXISTS ix_tasks_recurring_parent_id ON tasks (recurring_parent_id)"
            ))
        print("tasks table is ensured.")


if __name__ == '__main__':
    main()

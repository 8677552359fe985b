import uuid
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

from task_records import TaskRecord

db = SQLAlchemy()


def _new_id():
    return uuid.uuid4().hex


class Group(db.Model):
    """Coloured bucket for tasks (e.g. Work, Home)."""
    __tablename__ = 'groups'

    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(7), nullable=False, default='#3b82f6')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Task(db.Model):
    """
    Backlog/calendar task row. The same table holds recurrence masters
    (recurrence_rule set), exception rows for single occurrences
    (recurring_parent_id + original_date set) and plain one-off tasks.
    Dates and times are naive calendar values.
    """
    __tablename__ = 'tasks'
    __table_args__ = (
        db.UniqueConstraint('recurring_parent_id', 'original_date', name='uq_tasks_occurrence'),
    )

    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    title = db.Column(db.String(200), nullable=False, default='')
    description = db.Column(db.Text, nullable=True)
    points = db.Column(db.Integer, nullable=True)
    estimated_minutes = db.Column(db.Integer, nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    scheduled_date = db.Column(db.Date, nullable=True)
    scheduled_start = db.Column(db.Time, nullable=True)
    scheduled_end = db.Column(db.Time, nullable=True)
    all_day = db.Column(db.Boolean, nullable=False, default=False)
    group_id = db.Column(db.String(32), db.ForeignKey('groups.id'), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    recurrence_rule = db.Column(db.String(100), nullable=True)
    recurring_parent_id = db.Column(db.String(32), nullable=True, index=True)
    original_date = db.Column(db.Date, nullable=True)
    cancelled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    group = db.relationship('Group', backref='tasks', foreign_keys=[group_id])

    RECORD_FIELDS = (
        'id', 'title', 'description', 'points', 'estimated_minutes', 'group_id',
        'completed', 'scheduled_date', 'scheduled_start', 'scheduled_end', 'all_day',
        'position', 'recurrence_rule', 'recurring_parent_id', 'original_date', 'cancelled',
    )

    def to_record(self):
        values = {name: getattr(self, name) for name in self.RECORD_FIELDS}
        values['title'] = values['title'] or ''
        values['completed'] = bool(values['completed'])
        values['all_day'] = bool(values['all_day'])
        values['cancelled'] = bool(values['cancelled'])
        values['position'] = values['position'] or 0
        return TaskRecord(**values)

    @classmethod
    def from_record(cls, record):
        return cls(**{name: getattr(record, name) for name in cls.RECORD_FIELDS})

    def apply_changes(self, changes):
        for name, value in changes.items():
            if name == 'id' or name not in self.RECORD_FIELDS:
                raise ValueError(f"Cannot change task field: {name}")
            setattr(self, name, value)

    def to_dict(self):
        return self.to_record().to_dict()

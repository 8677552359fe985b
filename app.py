import os
from datetime import date, timedelta

from dotenv import load_dotenv
from flask import Flask, jsonify, request

load_dotenv()

from date_helpers import parse_day_value
from models import db, Group, Task
from reconciliation import (
    DeleteExceptions,
    DeleteTask,
    InsertTask,
    TaskNotFound,
    cancel_occurrence,
    copy_and_schedule,
    delete_group_tasks,
    delete_task,
    remove_recurrence,
    set_recurrence,
    toggle_occurrence,
    update_all_occurrences,
    upsert_exception,
)
from recurrence import build_rule, describe_rule, expand_for_date, expand_for_range, recurrence_options
from services import group_routes, recurrence_routes, task_routes
from task_records import InvalidTaskState
from task_store import StorageError, load_records, run_reconciliation

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///planner.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['WEEK_LENGTH_DAYS'] = 7
app.logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())

db.init_app(app)

with app.app_context():
    db.create_all()


@app.errorhandler(TaskNotFound)
def handle_task_not_found(exc):
    return jsonify({'error': str(exc)}), 404


@app.errorhandler(InvalidTaskState)
def handle_invalid_task_state(exc):
    return jsonify({'error': str(exc)}), 409


@app.errorhandler(ValueError)
def handle_bad_value(exc):
    return jsonify({'error': str(exc)}), 400


@app.errorhandler(StorageError)
def handle_storage_error(exc):
    app.logger.error(f"Storage failure: {exc}")
    return jsonify({'error': str(exc), 'retryable': True}), 503


def task_view_dict(record):
    """Record as sent to the calendar views, with the repeat label for series rows."""
    data = record.to_dict()
    if record.recurrence_rule:
        data['recurrence_label'] = describe_rule(record.recurrence_rule)
    return data


@app.route('/api/day')
def day_view():
    day_obj = parse_day_value(request.args.get('day') or date.today().isoformat())
    if not day_obj:
        return jsonify({'error': 'Invalid day'}), 400
    tasks = expand_for_date(load_records(), day_obj)
    return jsonify({
        'day': day_obj.isoformat(),
        'tasks': [task_view_dict(t) for t in tasks],
    })


@app.route('/api/week')
def week_view():
    start_raw = request.args.get('start')
    if start_raw:
        start_day = parse_day_value(start_raw)
        if not start_day:
            return jsonify({'error': 'Invalid start date'}), 400
    else:
        today = date.today()
        start_day = today - timedelta(days=today.weekday())
    end_day = start_day + timedelta(days=app.config['WEEK_LENGTH_DAYS'] - 1)

    by_day = expand_for_range(load_records(), start_day, end_day)
    return jsonify({
        'start': start_day.isoformat(),
        'end': end_day.isoformat(),
        'days': {day_key: [task_view_dict(t) for t in tasks] for day_key, tasks in by_day.items()},
    })


@app.route('/api/recurrence/options')
def recurrence_picker_options():
    day_obj = parse_day_value(request.args.get('day') or date.today().isoformat())
    if not day_obj:
        return jsonify({'error': 'Invalid day'}), 400
    return jsonify(recurrence_options(day_obj))


app.add_url_rule('/api/tasks', view_func=task_routes.tasks_collection, methods=['GET', 'POST'])
app.add_url_rule('/api/tasks/<task_id>', view_func=task_routes.task_detail, methods=['PUT', 'DELETE'])
app.add_url_rule('/api/tasks/<task_id>/toggle', view_func=task_routes.toggle_task, methods=['POST'])
app.add_url_rule('/api/tasks/<task_id>/schedule', view_func=task_routes.schedule_task, methods=['POST'])
app.add_url_rule('/api/tasks/<task_id>/deschedule', view_func=task_routes.deschedule_task, methods=['POST'])
app.add_url_rule('/api/tasks/<task_id>/copy', view_func=task_routes.copy_task, methods=['POST'])
app.add_url_rule('/api/tasks/<task_id>/recurrence', view_func=recurrence_routes.task_recurrence,
                 methods=['PUT', 'DELETE'])
app.add_url_rule('/api/tasks/<task_id>/occurrences', view_func=recurrence_routes.all_occurrences,
                 methods=['PUT'])
app.add_url_rule('/api/tasks/<task_id>/occurrences/<day>', view_func=recurrence_routes.occurrence_detail,
                 methods=['PUT', 'DELETE'])
app.add_url_rule('/api/groups', view_func=group_routes.groups_collection, methods=['GET', 'POST'])
app.add_url_rule('/api/groups/<group_id>', view_func=group_routes.group_detail, methods=['PUT', 'DELETE'])


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)

"""Backlog and calendar placement handlers for tasks."""
from date_helpers import parse_bool, parse_day_value, parse_int, parse_time_str
from services.validation_service import clean_text

EDITABLE_FIELDS = ('title', 'description', 'points', 'estimated_minutes', 'group_id')


def _parse_count(value, label):
    if value is None or value == '':
        return None
    parsed = parse_int(value)
    if parsed is None or parsed < 0:
        raise ValueError(f'Invalid {label}')
    return parsed


def _parse_clock(value, label):
    if value is None or value == '':
        return None
    parsed = parse_time_str(value)
    if parsed is None:
        raise ValueError(f'Invalid {label}')
    return parsed


def parse_placement(data):
    """Day plus either all_day or a start/end pair, as sent by schedule and copy."""
    day_obj = parse_day_value(data.get('day'))
    if not day_obj:
        raise ValueError('Invalid day')
    all_day = parse_bool(data.get('all_day'))
    start_time = None if all_day else _parse_clock(data.get('start'), 'start')
    end_time = None if all_day else _parse_clock(data.get('end'), 'end')
    if (start_time is None) != (end_time is None):
        raise ValueError('start and end are required together')
    if start_time and end_time <= start_time:
        raise ValueError('end must be after start')
    return day_obj, all_day, start_time, end_time


def parse_task_fields(data, allowed):
    """Validate the subset of task fields present in a JSON payload."""
    import app as a
    Group = a.Group
    db = a.db

    fields = {}
    if 'title' in data and 'title' in allowed:
        title = (data.get('title') or '').strip()
        if not title:
            raise ValueError('Title is required')
        fields['title'] = title
    if 'description' in data and 'description' in allowed:
        fields['description'] = clean_text(data.get('description'))
    if 'points' in data and 'points' in allowed:
        fields['points'] = _parse_count(data.get('points'), 'points')
    if 'estimated_minutes' in data and 'estimated_minutes' in allowed:
        fields['estimated_minutes'] = _parse_count(data.get('estimated_minutes'), 'estimated_minutes')
    if 'group_id' in data and 'group_id' in allowed:
        group_id = data.get('group_id') or None
        if group_id and not db.session.get(Group, group_id):
            raise ValueError('Group not found')
        fields['group_id'] = group_id
    if 'scheduled_date' in data and 'scheduled_date' in allowed:
        raw = data.get('scheduled_date')
        day_obj = parse_day_value(raw) if raw else None
        if raw and not day_obj:
            raise ValueError('Invalid scheduled_date')
        fields['scheduled_date'] = day_obj
    if 'scheduled_start' in data and 'scheduled_start' in allowed:
        fields['scheduled_start'] = _parse_clock(data.get('scheduled_start'), 'scheduled_start')
    if 'scheduled_end' in data and 'scheduled_end' in allowed:
        fields['scheduled_end'] = _parse_clock(data.get('scheduled_end'), 'scheduled_end')
    if 'all_day' in data and 'all_day' in allowed:
        fields['all_day'] = parse_bool(data.get('all_day'))
    if 'completed' in data and 'completed' in allowed:
        fields['completed'] = parse_bool(data.get('completed'))
    if 'recurrence_rule' in data and 'recurrence_rule' in allowed:
        fields['recurrence_rule'] = (data.get('recurrence_rule') or '').strip() or None

    start = fields.get('scheduled_start')
    end = fields.get('scheduled_end')
    if start and end and end <= start:
        raise ValueError('scheduled_end must be after scheduled_start')
    return fields


def mutation_payload(mutations):
    """Summarize committed mutations as the rows they saved and the ids they removed."""
    import app as a
    DeleteExceptions = a.DeleteExceptions
    DeleteTask = a.DeleteTask
    InsertTask = a.InsertTask
    Task = a.Task
    db = a.db

    saved, deleted, cleared = [], [], []
    for mutation in mutations:
        if isinstance(mutation, InsertTask):
            task_id = mutation.record.id
        elif isinstance(mutation, DeleteTask):
            deleted.append(mutation.task_id)
            continue
        elif isinstance(mutation, DeleteExceptions):
            cleared.append(mutation.parent_id)
            continue
        else:
            task_id = mutation.task_id
        row = db.session.get(Task, task_id)
        if row is not None and task_id not in [s['id'] for s in saved]:
            saved.append(row.to_dict())
    return {'saved': saved, 'deleted': deleted, 'cleared_series': cleared}


def tasks_collection():
    import app as a
    Task = a.Task
    db = a.db
    jsonify = a.jsonify
    load_records = a.load_records
    request = a.request

    if request.method == 'GET':
        return jsonify([r.to_dict() for r in load_records()])

    data = request.get_json(silent=True) or {}
    if not (data.get('title') or '').strip():
        return jsonify({'error': 'Title is required'}), 400
    fields = parse_task_fields(data, EDITABLE_FIELDS)

    current_max = db.session.query(db.func.max(Task.position)).scalar()
    task = Task(position=(current_max or 0) + 1, **fields)
    db.session.add(task)
    db.session.commit()
    a.app.logger.info(f"Created task {task.id}")
    return jsonify(task.to_dict()), 201


def task_detail(task_id):
    import app as a
    Task = a.Task
    TaskNotFound = a.TaskNotFound
    db = a.db
    jsonify = a.jsonify
    request = a.request
    run_reconciliation = a.run_reconciliation
    delete_task = a.delete_task

    if request.method == 'DELETE':
        mutations = run_reconciliation(delete_task, task_id)
        a.app.logger.info(f"Deleted task {task_id} ({len(mutations)} changes)")
        return '', 204

    task = db.session.get(Task, task_id)
    if task is None:
        raise TaskNotFound(task_id)
    if task.cancelled:
        return jsonify({'error': 'Cancelled occurrences cannot be edited'}), 409
    data = request.get_json(silent=True) or {}
    fields = parse_task_fields(data, EDITABLE_FIELDS)
    task.apply_changes(fields)
    db.session.commit()
    return jsonify(task.to_dict())


def toggle_task(task_id):
    import app as a
    jsonify = a.jsonify
    request = a.request
    run_reconciliation = a.run_reconciliation
    toggle_occurrence = a.toggle_occurrence

    data = request.get_json(silent=True) or {}
    day_raw = data.get('day')
    if day_raw and not parse_day_value(day_raw):
        return jsonify({'error': 'Invalid day'}), 400
    mutations = run_reconciliation(toggle_occurrence, task_id, day=day_raw)
    return jsonify(mutation_payload(mutations))


def schedule_task(task_id):
    """Place a task on the grid: a timed block, or an all-day / due-today item."""
    import app as a
    Task = a.Task
    TaskNotFound = a.TaskNotFound
    db = a.db
    jsonify = a.jsonify
    request = a.request

    task = db.session.get(Task, task_id)
    if task is None:
        raise TaskNotFound(task_id)
    if task.cancelled:
        return jsonify({'error': 'Cancelled occurrences cannot be scheduled'}), 409

    data = request.get_json(silent=True) or {}
    day_obj, all_day, start_time, end_time = parse_placement(data)

    task.scheduled_date = day_obj
    task.scheduled_start = start_time
    task.scheduled_end = end_time
    task.all_day = all_day
    db.session.commit()
    return jsonify(task.to_dict())


def deschedule_task(task_id):
    import app as a
    InvalidTaskState = a.InvalidTaskState
    Task = a.Task
    TaskNotFound = a.TaskNotFound
    db = a.db
    jsonify = a.jsonify

    task = db.session.get(Task, task_id)
    if task is None:
        raise TaskNotFound(task_id)
    if task.recurrence_rule:
        raise InvalidTaskState('A recurring task needs its start day; remove the recurrence first')
    if task.recurring_parent_id:
        raise InvalidTaskState('Occurrences of a recurring task stay on the calendar; cancel it instead')

    task.scheduled_date = None
    task.scheduled_start = None
    task.scheduled_end = None
    task.all_day = False
    db.session.commit()
    return jsonify(task.to_dict())


def copy_task(task_id):
    import app as a
    copy_and_schedule = a.copy_and_schedule
    jsonify = a.jsonify
    request = a.request
    run_reconciliation = a.run_reconciliation

    data = request.get_json(silent=True) or {}
    day_obj, all_day, start_time, end_time = parse_placement(data)

    mutations = run_reconciliation(
        copy_and_schedule, task_id, day_obj, start=start_time, end=end_time, all_day=all_day
    )
    payload = mutation_payload(mutations)
    return jsonify(payload['saved'][0]), 201

"""Route handlers for recurring series: the rule itself, single occurrences, and the whole series."""
from date_helpers import parse_bool, parse_day_value
from services.task_routes import EDITABLE_FIELDS, mutation_payload, parse_task_fields

OCCURRENCE_FIELDS = EDITABLE_FIELDS + ('scheduled_date', 'scheduled_start', 'scheduled_end', 'all_day', 'completed')
SERIES_FIELDS = EDITABLE_FIELDS + ('scheduled_start', 'scheduled_end', 'all_day', 'recurrence_rule')


def task_recurrence(task_id):
    """Set (PUT) or remove (DELETE) the recurrence rule of a task."""
    import app as a
    Task = a.Task
    TaskNotFound = a.TaskNotFound
    build_rule = a.build_rule
    db = a.db
    jsonify = a.jsonify
    remove_recurrence = a.remove_recurrence
    request = a.request
    run_reconciliation = a.run_reconciliation
    set_recurrence = a.set_recurrence

    if request.method == 'DELETE':
        mutations = run_reconciliation(remove_recurrence, task_id)
        a.app.logger.info(f"Removed recurrence from task {task_id}")
        return jsonify(mutation_payload(mutations))

    data = request.get_json(silent=True) or {}
    if not data.get('rule') and not data.get('frequency'):
        return jsonify({'error': 'rule or frequency is required'}), 400
    rule = (data.get('rule') or '').strip() or None
    if rule is None:
        task = db.session.get(Task, task_id)
        if task is None:
            raise TaskNotFound(task_id)
        rule = build_rule(data.get('frequency'), task.scheduled_date)

    mutations = run_reconciliation(set_recurrence, task_id, rule)
    a.app.logger.info(f"Set recurrence on task {task_id}: {rule}")
    return jsonify(mutation_payload(mutations))


def occurrence_detail(task_id, day):
    """Edit (PUT) or cancel (DELETE) the occurrence of a series on one date."""
    import app as a
    cancel_occurrence = a.cancel_occurrence
    jsonify = a.jsonify
    request = a.request
    run_reconciliation = a.run_reconciliation
    upsert_exception = a.upsert_exception

    day_obj = parse_day_value(day)
    if not day_obj:
        return jsonify({'error': 'Invalid day'}), 400

    if request.method == 'DELETE':
        mutations = run_reconciliation(cancel_occurrence, task_id, day_obj)
        a.app.logger.info(f"Cancelled occurrence of task {task_id} on {day_obj.isoformat()}")
        return jsonify(mutation_payload(mutations))

    data = request.get_json(silent=True) or {}
    if parse_bool(data.get('cancelled')):
        mutations = run_reconciliation(cancel_occurrence, task_id, day_obj)
        return jsonify(mutation_payload(mutations))
    fields = parse_task_fields(data, OCCURRENCE_FIELDS)
    if not fields:
        return jsonify({'error': 'No changes supplied'}), 400
    mutations = run_reconciliation(upsert_exception, task_id, day_obj, **fields)
    return jsonify(mutation_payload(mutations))


def all_occurrences(task_id):
    """Apply changes to the series template (every occurrence without its own override)."""
    import app as a
    jsonify = a.jsonify
    request = a.request
    run_reconciliation = a.run_reconciliation
    update_all_occurrences = a.update_all_occurrences

    data = request.get_json(silent=True) or {}
    fields = parse_task_fields(data, SERIES_FIELDS)
    if not fields:
        return jsonify({'error': 'No changes supplied'}), 400
    mutations = run_reconciliation(update_all_occurrences, task_id, **fields)
    return jsonify(mutation_payload(mutations))

"""Group (colour bucket) handlers."""
from services.validation_service import normalize_color


def groups_collection():
    import app as a
    Group = a.Group
    db = a.db
    jsonify = a.jsonify
    request = a.request

    if request.method == 'GET':
        groups = Group.query.order_by(Group.created_at.asc(), Group.name.asc()).all()
        return jsonify([g.to_dict() for g in groups])

    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Name is required'}), 400
    group = Group(name=name, color=normalize_color(data.get('color')))
    db.session.add(group)
    db.session.commit()
    return jsonify(group.to_dict()), 201


def group_detail(group_id):
    import app as a
    Group = a.Group
    db = a.db
    delete_group_tasks = a.delete_group_tasks
    jsonify = a.jsonify
    request = a.request
    run_reconciliation = a.run_reconciliation

    group = db.session.get(Group, group_id)
    if group is None:
        return jsonify({'error': 'Group not found'}), 404

    if request.method == 'DELETE':
        mutations = run_reconciliation(
            delete_group_tasks, group.id, finalize=lambda: db.session.delete(group)
        )
        a.app.logger.info(f"Deleted group {group_id} with {len(mutations)} task changes")
        return '', 204

    data = request.get_json(silent=True) or {}
    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            return jsonify({'error': 'Name is required'}), 400
        group.name = name
    if 'color' in data:
        group.color = normalize_color(data.get('color'), default=group.color)
    db.session.commit()
    return jsonify(group.to_dict())

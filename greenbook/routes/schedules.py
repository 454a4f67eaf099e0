"""
Schedule routes — CRUD over sync schedules.

Every change is mirrored into the running SyncScheduler when this process
owns one.
"""
from flask import Blueprint, current_app, request, jsonify

from greenbook.services.scheduler import (
    InvalidSchedule, list_schedules, get_schedule, create_schedule,
    update_schedule, delete_schedule, toggle_schedule,
)

bp = Blueprint('schedules', __name__, url_prefix='/api/schedules')


def _scheduler():
    return current_app.extensions.get('sync_scheduler')


def _not_found(schedule_id):
    return jsonify({'error': f'Schedule {schedule_id} not found'}), 404


@bp.route('', methods=['GET'])
def api_list_schedules():
    return jsonify(list_schedules(_scheduler()))


@bp.route('/<schedule_id>', methods=['GET'])
def api_get_schedule(schedule_id):
    schedule = get_schedule(schedule_id, _scheduler())
    if schedule is None:
        return _not_found(schedule_id)
    return jsonify(schedule)


@bp.route('', methods=['POST'])
def api_create_schedule():
    try:
        schedule = create_schedule(request.get_json(silent=True) or {}, _scheduler())
    except InvalidSchedule as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(schedule), 201


@bp.route('/<schedule_id>', methods=['PUT'])
def api_update_schedule(schedule_id):
    try:
        schedule = update_schedule(schedule_id, request.get_json(silent=True) or {}, _scheduler())
    except InvalidSchedule as e:
        return jsonify({'error': str(e)}), 400
    if schedule is None:
        return _not_found(schedule_id)
    return jsonify(schedule)


@bp.route('/<schedule_id>', methods=['DELETE'])
def api_delete_schedule(schedule_id):
    if not delete_schedule(schedule_id, _scheduler()):
        return _not_found(schedule_id)
    return jsonify({'deleted': True, 'id': schedule_id})


@bp.route('/<schedule_id>/toggle', methods=['POST'])
def api_toggle_schedule(schedule_id):
    schedule = toggle_schedule(schedule_id, _scheduler())
    if schedule is None:
        return _not_found(schedule_id)
    return jsonify(schedule)

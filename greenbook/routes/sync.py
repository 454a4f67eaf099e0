"""
Sync routes — launch, cancel and inspect sync runs.
"""
import logging

from flask import Blueprint, request, jsonify

from greenbook.services.circuit_breaker import get_all_breakers
from greenbook.services.graph import GraphNotFound
from greenbook.sync.base import InvalidSyncOptions
from greenbook.sync.manager import (
    launch_sync, sync_user, cancel_run, get_sync_status, get_run,
)

logger = logging.getLogger('routes.sync')

bp = Blueprint('sync', __name__)


@bp.route('/api/sync', methods=['POST'])
def api_launch_sync():
    """Enqueue a selective / full / incremental sync."""
    data = request.get_json(silent=True) or {}
    mode = data.get('mode', 'selective')
    try:
        run_id, job_id = launch_sync(mode, data.get('options'))
    except InvalidSyncOptions as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Failed to launch %s sync", mode, exc_info=True)
        return jsonify({'error': str(e)}), 500
    return jsonify({'run_id': run_id, 'job_id': job_id}), 202


@bp.route('/api/sync/users/<external_id>', methods=['POST'])
def api_sync_user(external_id):
    """Re-sync a single user inline."""
    try:
        results = sync_user(external_id)
    except GraphNotFound:
        return jsonify({'error': f'User {external_id} not found in directory'}), 404
    except Exception as e:
        logger.error("Failed to sync user %s", external_id, exc_info=True)
        return jsonify({'error': str(e)}), 502
    return jsonify({name: result.to_dict() for name, result in results.items()})


@bp.route('/api/sync/runs/<run_id>/cancel', methods=['POST'])
def api_cancel_run(run_id):
    if not cancel_run(run_id):
        return jsonify({'error': 'Run not found or not running'}), 409
    return jsonify({'cancelled': True, 'run_id': run_id})


@bp.route('/api/sync/status')
def api_sync_status():
    limit = request.args.get('limit', 20, type=int)
    limit = max(1, min(limit or 20, 100))
    return jsonify(get_sync_status(limit=limit))


@bp.route('/api/sync/runs/<run_id>')
def api_run_detail(run_id):
    run = get_run(run_id)
    if run is None:
        return jsonify({'error': 'Run not found'}), 404
    return jsonify(run)


@bp.route('/health')
def health():
    """Liveness plus external service breaker states."""
    services = {name: cb.get_health() for name, cb in get_all_breakers().items()}
    return jsonify({'status': 'ok', 'services': services})


@bp.route('/health/<service>/reset', methods=['POST'])
def reset_circuit(service):
    """Close a tripped breaker by hand once the service is back."""
    breaker = get_all_breakers().get(service)
    if breaker is None:
        return jsonify({'error': f'Unknown service: {service}'}), 404
    breaker.reset()
    return jsonify({'ok': True, 'service': breaker.get_health()})

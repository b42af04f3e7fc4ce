"""
Sync routes - trigger mirror passes and inspect the scheduler.
"""

from flask import Blueprint, jsonify, request, current_app

from repokeeper.scheduler import trigger_mirror_now, get_scheduler_diagnostics


bp = Blueprint('sync', __name__, url_prefix='/api/sync')


@bp.route('/', methods=['POST'])
def trigger_sync():
    """
    Trigger a mirror pass now.

    Request body (optional):
        - dry_run: Only compute paths and log (default: SYNC_DRY_RUN)

    Returns:
        JSON with the scheduler job ID
    """
    data = request.get_json(silent=True) or {}
    dry_run = data.get('dry_run')
    if dry_run is not None and not isinstance(dry_run, bool):
        return jsonify({'error': 'dry_run must be a boolean'}), 400

    try:
        job_id = trigger_mirror_now(dry_run=dry_run)
    except RuntimeError as e:
        current_app.logger.error(f"Failed to trigger mirror pass: {e}")
        return jsonify({'error': str(e)}), 503

    return jsonify({'success': True, 'job_id': job_id}), 202


@bp.route('/status', methods=['GET'])
def sync_status():
    return jsonify(get_scheduler_diagnostics())

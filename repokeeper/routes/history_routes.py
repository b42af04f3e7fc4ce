"""
Sync history routes - View results of mirror passes.
"""

from flask import Blueprint, jsonify, request

from repokeeper import db
from repokeeper.models import SyncHistory


bp = Blueprint('history', __name__, url_prefix='/api/history')

VALID_STATUSES = ['running', 'success', 'skipped', 'not_found', 'failed']


def _serialize(record, include_logs=False):
    data = {
        'id': record.id,
        'repository_id': record.repository_id,
        'repository_name': record.repository.name,
        'destination_id': record.destination_id,
        'destination_path': record.destination.path,
        'status': record.status,
        'dry_run': record.dry_run,
        'started_at': record.started_at.isoformat(),
        'completed_at': record.completed_at.isoformat() if record.completed_at else None,
        'target_path': record.target_path,
        'archive_path': record.archive_path,
        'attempts': record.attempts,
        'error_message': record.error_message
    }
    if include_logs:
        data['logs'] = record.logs
    return data


@bp.route('/', methods=['GET'])
def list_history():
    """
    Get sync history with filtering and pagination.

    Query params:
        - status: Filter by status
        - repository_id: Filter by repository
        - destination_id: Filter by destination
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with history records and metadata
    """
    status_filter = request.args.get('status')
    repository_filter = request.args.get('repository_id', type=int)
    destination_filter = request.args.get('destination_id', type=int)
    limit = min(request.args.get('limit', 50, type=int), 200)
    offset = max(request.args.get('offset', 0, type=int), 0)

    query = SyncHistory.query

    if status_filter:
        if status_filter not in VALID_STATUSES:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(SyncHistory.status == status_filter)

    if repository_filter:
        query = query.filter(SyncHistory.repository_id == repository_filter)

    if destination_filter:
        query = query.filter(SyncHistory.destination_id == destination_filter)

    total_count = query.count()

    records = query.order_by(
        SyncHistory.started_at.desc(),
        SyncHistory.id.desc()
    ).limit(limit).offset(offset).all()

    return jsonify({
        'history': [_serialize(record) for record in records],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/<int:history_id>', methods=['GET'])
def get_history(history_id):
    """Get a single history record including its log lines."""
    record = db.get_or_404(SyncHistory, history_id)
    return jsonify(_serialize(record, include_logs=True))

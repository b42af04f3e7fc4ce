"""
Destination routes - CRUD operations for local mirror destinations.
"""

from flask import Blueprint, jsonify, request, current_app

from repokeeper import db
from repokeeper.models import Destination


bp = Blueprint('destinations', __name__, url_prefix='/api/destinations')

VALID_COMPRESSION = ['', 'none', 'zip', 'zstd']


def _serialize(destination):
    return {
        'id': destination.id,
        'path': destination.path,
        'structured': destination.structured,
        'bare': destination.bare,
        'keep': destination.keep,
        'compression': destination.compression,
        'enabled': destination.enabled,
        'created_at': destination.created_at.isoformat(),
        'updated_at': destination.updated_at.isoformat()
    }


def _validate(data):
    if 'compression' in data and data['compression'] not in VALID_COMPRESSION:
        return f'Invalid compression. Valid options: {VALID_COMPRESSION}'

    if 'keep' in data:
        keep = data['keep']
        if not isinstance(keep, int) or isinstance(keep, bool) or keep < 0:
            return 'keep must be a non-negative integer'

    return None


@bp.route('/', methods=['GET'])
def list_destinations():
    destinations = Destination.query.order_by(Destination.id).all()
    return jsonify([_serialize(destination) for destination in destinations])


@bp.route('/<int:destination_id>', methods=['GET'])
def get_destination(destination_id):
    destination = db.get_or_404(Destination, destination_id)
    return jsonify(_serialize(destination))


@bp.route('/', methods=['POST'])
def create_destination():
    """
    Create a local destination.

    Request body:
        - path: Root directory (required, unique)
        - structured: Nest under hoster/owner/name (default: false)
        - bare: Bare clones with .git suffix (default: false)
        - keep: Snapshots to keep, 0 disables snapshots (default: 0)
        - compression: '', 'none', 'zip' or 'zstd' (default: '')
        - enabled: Include in mirror passes (default: true)

    Returns:
        JSON with created destination
    """
    data = request.get_json() or {}

    if not data.get('path'):
        return jsonify({'error': 'Destination path is required'}), 400

    error = _validate(data)
    if error:
        return jsonify({'error': error}), 400

    if Destination.query.filter_by(path=data['path']).first():
        return jsonify({'error': 'Destination path already exists'}), 400

    destination = Destination(
        path=data['path'],
        structured=bool(data.get('structured', False)),
        bare=bool(data.get('bare', False)),
        keep=data.get('keep', 0),
        compression=data.get('compression', ''),
        enabled=bool(data.get('enabled', True))
    )

    db.session.add(destination)
    db.session.commit()

    current_app.logger.info(f"Created destination {destination.path}")
    return jsonify(_serialize(destination)), 201


@bp.route('/<int:destination_id>', methods=['PUT'])
def update_destination(destination_id):
    destination = db.get_or_404(Destination, destination_id)
    data = request.get_json() or {}

    if 'path' in data and not data['path']:
        return jsonify({'error': 'Destination path is required'}), 400

    error = _validate(data)
    if error:
        return jsonify({'error': error}), 400

    for field in ('path', 'keep', 'compression'):
        if field in data:
            setattr(destination, field, data[field])

    for field in ('structured', 'bare', 'enabled'):
        if field in data:
            setattr(destination, field, bool(data[field]))

    db.session.commit()
    return jsonify(_serialize(destination))


@bp.route('/<int:destination_id>', methods=['DELETE'])
def delete_destination(destination_id):
    """Delete a destination and its history. Files on disk are kept."""
    destination = db.get_or_404(Destination, destination_id)

    db.session.delete(destination)
    db.session.commit()

    current_app.logger.info(f"Deleted destination {destination.path}")
    return jsonify({'success': True})

"""
Repository routes - CRUD operations for mirrored repositories.
"""

from flask import Blueprint, jsonify, request, current_app

from repokeeper import db
from repokeeper.models import Repository
from repokeeper.mirror.descriptors import InvalidPathSegment, check_path_segment
from repokeeper.utils.crypto import get_credential_cipher


bp = Blueprint('repositories', __name__, url_prefix='/api/repositories')


def _serialize(repository):
    # Secrets are never returned, only whether they are set
    return {
        'id': repository.id,
        'name': repository.name,
        'hoster': repository.hoster,
        'owner': repository.owner,
        'url': repository.url,
        'ssh_url': repository.ssh_url,
        'use_ssh': repository.use_ssh,
        'ssh_key_path': repository.ssh_key_path,
        'username': repository.username,
        'has_token': bool(repository.token_encrypted),
        'has_password': bool(repository.password_encrypted),
        'enabled': repository.enabled,
        'created_at': repository.created_at.isoformat(),
        'updated_at': repository.updated_at.isoformat()
    }


def _validate(data, repository=None):
    """Return an error message, or None when the payload is acceptable."""
    name = data.get('name', repository.name if repository else None)
    if not name:
        return 'Repository name is required'

    # name, hoster and owner become directories under the destination root
    try:
        check_path_segment(name, 'name')
        for field in ('hoster', 'owner'):
            value = data.get(field, getattr(repository, field) if repository else '')
            if value:
                check_path_segment(value, field)
    except InvalidPathSegment as e:
        return str(e)

    use_ssh = data.get('use_ssh', repository.use_ssh if repository else False)
    url = data.get('url', repository.url if repository else '')
    ssh_url = data.get('ssh_url', repository.ssh_url if repository else '')

    if use_ssh and not ssh_url:
        return 'ssh_url is required when use_ssh is set'
    if not use_ssh and not url:
        return 'url is required'

    return None


@bp.route('/', methods=['GET'])
def list_repositories():
    """
    Get list of all repositories.

    Returns:
        JSON array of repositories
    """
    repositories = Repository.query.order_by(Repository.id).all()
    return jsonify([_serialize(repository) for repository in repositories])


@bp.route('/<int:repository_id>', methods=['GET'])
def get_repository(repository_id):
    repository = db.get_or_404(Repository, repository_id)
    return jsonify(_serialize(repository))


@bp.route('/', methods=['POST'])
def create_repository():
    """
    Register a repository to mirror.

    Request body:
        - name: Repository name (required)
        - hoster, owner: Used for structured destinations (optional)
        - url: HTTPS clone URL (required unless use_ssh)
        - ssh_url: SSH clone URL (required with use_ssh)
        - use_ssh, ssh_key_path: SSH transport settings (optional)
        - token: Access token (optional, stored encrypted)
        - username, password: Basic auth (optional, password stored encrypted)
        - enabled: Include in mirror passes (default: true)

    Returns:
        JSON with created repository
    """
    data = request.get_json() or {}

    error = _validate(data)
    if error:
        return jsonify({'error': error}), 400

    existing = Repository.query.filter_by(
        hoster=data.get('hoster', ''),
        owner=data.get('owner', ''),
        name=data['name']
    ).first()
    if existing:
        return jsonify({'error': 'Repository already exists'}), 400

    cipher = get_credential_cipher(current_app)

    repository = Repository(
        name=data['name'],
        hoster=data.get('hoster', ''),
        owner=data.get('owner', ''),
        url=data.get('url', ''),
        ssh_url=data.get('ssh_url', ''),
        use_ssh=bool(data.get('use_ssh', False)),
        ssh_key_path=data.get('ssh_key_path'),
        username=data.get('username'),
        token_encrypted=cipher.encrypt(data.get('token')),
        password_encrypted=cipher.encrypt(data.get('password')),
        enabled=bool(data.get('enabled', True))
    )

    db.session.add(repository)
    db.session.commit()

    current_app.logger.info(f"Created repository {repository.name}")
    return jsonify(_serialize(repository)), 201


@bp.route('/<int:repository_id>', methods=['PUT'])
def update_repository(repository_id):
    """
    Update a repository.

    Only fields present in the body change. Sending an empty token or
    password clears it.
    """
    repository = db.get_or_404(Repository, repository_id)
    data = request.get_json() or {}

    error = _validate(data, repository)
    if error:
        return jsonify({'error': error}), 400

    for field in ('name', 'hoster', 'owner', 'url', 'ssh_url', 'ssh_key_path', 'username'):
        if field in data:
            setattr(repository, field, data[field])

    for field in ('use_ssh', 'enabled'):
        if field in data:
            setattr(repository, field, bool(data[field]))

    cipher = get_credential_cipher(current_app)
    if 'token' in data:
        repository.token_encrypted = cipher.encrypt(data['token'])
    if 'password' in data:
        repository.password_encrypted = cipher.encrypt(data['password'])

    db.session.commit()
    return jsonify(_serialize(repository))


@bp.route('/<int:repository_id>', methods=['DELETE'])
def delete_repository(repository_id):
    """Delete a repository and its history. Mirrored copies stay on disk."""
    repository = db.get_or_404(Repository, repository_id)

    db.session.delete(repository)
    db.session.commit()

    current_app.logger.info(f"Deleted repository {repository.name}")
    return jsonify({'success': True})

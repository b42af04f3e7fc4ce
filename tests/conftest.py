"""
Shared pytest fixtures for repokeeper tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Repository and destination rows
- A scripted fake git transport
- Sample working copies and real git origins
"""

import os
import shutil
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from repokeeper import create_app, db as _db
from repokeeper.models import Repository, Destination
from repokeeper.utils.crypto import CredentialCipher
from repokeeper.mirror.transport import UpdateResult


class FakeTransport:
    """
    In-memory stand-in for GitTransport.

    Each of clone_errors / update_errors is consumed one item per call: an
    exception is raised, None means the call succeeds. A successful clone
    creates the target directory with a marker file.
    """

    def __init__(self, clone_errors=None, update_errors=None, list_errors=None,
                 update_result=UpdateResult.UP_TO_DATE):
        self.clone_errors = list(clone_errors or [])
        self.update_errors = list(update_errors or [])
        self.list_errors = list(list_errors or [])
        self.update_result = update_result
        self.calls = []

    def list_remote(self, url, auth):
        self.calls.append(('list_remote', url))
        if self.list_errors:
            error = self.list_errors.pop(0)
            if error is not None:
                raise error
        return ['0123456789abcdef\tHEAD']

    def clone(self, url, path, auth, bare=False):
        self.calls.append(('clone', path, bare))
        if self.clone_errors:
            error = self.clone_errors.pop(0)
            if error is not None:
                raise error
        target = Path(path)
        target.mkdir(parents=True)
        (target / 'HEAD' if bare else target / 'README.md').write_text('ref: refs/heads/main\n')

    def update(self, path, auth, bare=False):
        self.calls.append(('update', path, bare))
        if self.update_errors:
            error = self.update_errors.pop(0)
            if error is not None:
                raise error
        return self.update_result

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture(scope='function')
def app():
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database and no scheduler.
    """
    app = create_app('testing')
    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app, db):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def cipher(app):
    return CredentialCipher(app.config['SECRET_KEY'])


@pytest.fixture(scope='function')
def https_repository(db, cipher):
    """
    Repository cloned over HTTPS with an access token.
    """
    repository = Repository(
        name='foo',
        hoster='github.com',
        owner='octo',
        url='https://github.com/octo/foo.git',
        ssh_url='git@github.com:octo/foo.git',
        token_encrypted=cipher.encrypt('ghp_secret_token')
    )
    db.session.add(repository)
    db.session.commit()
    return repository


@pytest.fixture(scope='function')
def local_destination(db, tmp_path):
    """
    Flat destination without snapshots or compression.
    """
    destination = Destination(path=str(tmp_path / 'backup'))
    db.session.add(destination)
    db.session.commit()
    return destination


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    return MagicMock()


@pytest.fixture
def working_copy(tmp_path):
    """
    Create a working copy with nested, binary and empty entries.

    Creates:
    - README.md
    - src/main.py
    - data/blob.bin
    - .git/refs/tags (empty directory)
    """
    root = tmp_path / 'wc' / 'foo'
    (root / 'src').mkdir(parents=True)
    (root / 'data').mkdir()
    (root / '.git' / 'refs' / 'tags').mkdir(parents=True)

    (root / 'README.md').write_text('# foo\n')
    (root / 'src' / 'main.py').write_text('print("hello")\n')
    (root / 'data' / 'blob.bin').write_bytes(bytes(range(256)) * 8)
    (root / '.git' / 'HEAD').write_text('ref: refs/heads/main\n')

    return root


def snapshot_tree(root):
    """
    Map of relative path -> bytes under root.

    Directories map to None and symlinks to ('symlink', target); links are
    not followed.
    """
    tree = {}
    for item in sorted(Path(root).rglob('*')):
        relative = item.relative_to(root).as_posix()
        if item.is_symlink():
            tree[relative] = ('symlink', os.readlink(item))
        elif item.is_dir():
            tree[relative] = None
        else:
            tree[relative] = item.read_bytes()
    return tree


@pytest.fixture
def git_origin(tmp_path):
    """
    A real git repository with one commit, usable as a clone URL.

    Skips when the git executable is not installed.
    """
    if shutil.which('git') is None:
        pytest.skip('git executable not available')

    import git

    origin_path = tmp_path / 'origin'
    repo = git.Repo.init(origin_path)
    actor = git.Actor('Test', 'test@example.com')

    (origin_path / 'README.md').write_text('# origin\n')
    repo.index.add(['README.md'])
    repo.index.commit('initial commit', author=actor, committer=actor)

    yield repo
    repo.close()


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient used by the SSH probe.
    """
    with patch('repokeeper.mirror.hosts.SSHClient') as mock_ssh:
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('repokeeper.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance


@pytest.fixture
def make_transport():
    """Factory for FakeTransport instances with scripted failures."""
    return FakeTransport


@pytest.fixture
def tree_snapshot():
    """Function mapping a directory to {relative path: bytes or None}."""
    return snapshot_tree

"""
Git transport for the mirror engine, built on GitPython.

Git reports failures as free text. This module is the only place that reads
that text: callers get a TransportError carrying a TransportErrorKind, and
"already up to date" comes back as an UpdateResult instead of an error.
"""

import base64
import logging
import shlex
from enum import Enum
from typing import List, Optional

import git
from git import FetchInfo
from git.exc import CommandError, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .descriptors import SSHKeyAuth, is_http_auth


logger = logging.getLogger(__name__)


class TransportErrorKind(Enum):
    NOT_FOUND = 'not_found'
    ACCESS_DENIED = 'access_denied'
    EMPTY_REMOTE = 'empty_remote'
    TRANSIENT = 'transient'


class UpdateResult(Enum):
    UPDATED = 'updated'
    UP_TO_DATE = 'up_to_date'


class TransportError(Exception):
    """Raised when a git operation fails."""

    def __init__(self, message: str, kind: TransportErrorKind = TransportErrorKind.TRANSIENT):
        super().__init__(message)
        self.kind = kind


# Checked in order; git runs with LC_ALL=C so messages are in English
_ERROR_PATTERNS = (
    ('access denied or repository not exported', TransportErrorKind.ACCESS_DENIED),
    ('repository not found', TransportErrorKind.NOT_FOUND),
    ('does not appear to be a git repository', TransportErrorKind.NOT_FOUND),
    ("' not found", TransportErrorKind.NOT_FOUND),
    ("' does not exist", TransportErrorKind.NOT_FOUND),
    ('remote repository is empty', TransportErrorKind.EMPTY_REMOTE),
)


def classify_git_error(message: str) -> TransportErrorKind:
    """
    Map a git error message to a TransportErrorKind.

    Args:
        message: stderr or exception text from git

    Returns:
        Matching kind, TRANSIENT when nothing matches
    """
    lowered = message.lower()
    for pattern, kind in _ERROR_PATTERNS:
        if pattern in lowered:
            return kind
    return TransportErrorKind.TRANSIENT


def _transport_error(error: GitCommandError) -> TransportError:
    message = (error.stderr or '').strip() or str(error)
    return TransportError(message, classify_git_error(message))


class GitTransport:
    """
    Clone, update and list remotes with the git executable.

    Credentials never end up in the clone URL or the repository config:
    SSH keys go through GIT_SSH_COMMAND and HTTP credentials through a
    per-process http.extraHeader.
    """

    def __init__(self, known_hosts_path: Optional[str] = None, timeout: Optional[int] = None):
        """
        Args:
            known_hosts_path: known_hosts file that ssh must check against
            timeout: Seconds before a remote listing is killed
        """
        self.known_hosts_path = known_hosts_path
        self.timeout = timeout

    def environment(self, auth) -> dict:
        """Build the git process environment for an AuthMethod."""
        env = {'GIT_TERMINAL_PROMPT': '0'}

        if isinstance(auth, SSHKeyAuth):
            command = ['ssh', '-i', auth.path, '-o', 'IdentitiesOnly=yes', '-o', 'BatchMode=yes']
            if self.known_hosts_path:
                command += [
                    '-o', f'UserKnownHostsFile={self.known_hosts_path}',
                    '-o', 'StrictHostKeyChecking=yes'
                ]
            env['GIT_SSH_COMMAND'] = ' '.join(shlex.quote(part) for part in command)

        elif is_http_auth(auth):
            credentials = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
            env.update({
                'GIT_CONFIG_COUNT': '1',
                'GIT_CONFIG_KEY_0': 'http.extraHeader',
                'GIT_CONFIG_VALUE_0': f'Authorization: Basic {credentials}'
            })

        return env

    def list_remote(self, url: str, auth) -> List[str]:
        """
        List remote refs, checking reachability and credentials.

        Returns:
            ref lines as printed by git ls-remote

        Raises:
            TransportError: If the remote cannot be listed or has no refs
        """
        try:
            output = git.cmd.Git().ls_remote(
                url,
                env=self.environment(auth),
                kill_after_timeout=self.timeout
            )
        except GitCommandError as e:
            raise _transport_error(e)
        except CommandError as e:
            raise TransportError(f"git could not be run: {e}")

        refs = [line for line in output.splitlines() if line.strip()]
        if not refs:
            raise TransportError("remote repository is empty", TransportErrorKind.EMPTY_REMOTE)
        return refs

    def clone(self, url: str, path: str, auth, bare: bool = False):
        """
        Clone the full history and all branches of a remote.

        Raises:
            TransportError: If the clone fails
        """
        try:
            repo = git.Repo.clone_from(url, path, env=self.environment(auth), bare=bare)
        except GitCommandError as e:
            raise _transport_error(e)
        except CommandError as e:
            raise TransportError(f"git could not be run: {e}")
        repo.close()

    def update(self, path: str, auth, bare: bool = False) -> UpdateResult:
        """
        Bring an existing local copy up to date with origin.

        Bare copies fetch every ref (+refs/*:refs/*); working copies pull.

        Returns:
            UpdateResult.UP_TO_DATE when nothing changed, UPDATED otherwise

        Raises:
            TransportError: If the copy cannot be opened or updated
        """
        try:
            repo = git.Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise TransportError(f"Cannot open repository {path}: {e!r}")

        try:
            origin = repo.remote('origin')
            with repo.git.custom_environment(**self.environment(auth)):
                if bare:
                    infos = origin.fetch('+refs/*:refs/*')
                else:
                    infos = origin.pull(ff_only=True)
        except GitCommandError as e:
            raise _transport_error(e)
        except CommandError as e:
            raise TransportError(f"git could not be run: {e}")
        except ValueError as e:
            raise TransportError(f"Cannot update repository {path}: {e}")
        finally:
            repo.close()

        if all(info.flags & FetchInfo.HEAD_UPTODATE for info in infos):
            return UpdateResult.UP_TO_DATE
        return UpdateResult.UPDATED

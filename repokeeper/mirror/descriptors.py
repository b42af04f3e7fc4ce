"""
Value types shared by the mirror engine.

RepositoryDescriptor and DestinationConfig are the two inputs of a sync;
the AuthMethod variants are what the auth selector hands to the transport.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class RepositoryDescriptor:
    """One remote repository, as produced by a listing source."""

    name: str
    url: str = ''
    ssh_url: str = ''
    hoster: str = ''
    owner: str = ''
    token: str = ''
    username: str = ''
    password: str = ''
    use_ssh: bool = False
    ssh_key_path: str = ''

    @property
    def clone_url(self) -> str:
        return self.ssh_url if self.use_ssh else self.url


@dataclass(frozen=True)
class DestinationConfig:
    """
    Local destination for mirrored repositories.

    Attributes:
        path: Root directory of the destination
        structured: Nest repositories under hoster/owner/name
        bare: Clone bare repositories with a .git suffix
        keep: Number of timestamped snapshots to keep (0 disables snapshots)
        compression: '', 'none', 'zip' or 'zstd'
    """

    path: str
    structured: bool = False
    bare: bool = False
    keep: int = 0
    compression: str = ''


@dataclass(frozen=True)
class SSHKeyAuth:
    path: str
    key: Any = None
    username: str = 'git'


@dataclass(frozen=True)
class TokenAuth:
    token: str
    # Hosts only look at the password when a token is sent over basic auth
    username: str = 'xyz'

    @property
    def password(self) -> str:
        return self.token


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str


@dataclass(frozen=True)
class NoAuth:
    pass


def is_http_auth(auth: Optional[object]) -> bool:
    """True for the variants sent as HTTP basic credentials."""
    return isinstance(auth, (TokenAuth, BasicAuth))


class InvalidPathSegment(ValueError):
    """Raised when a name cannot be used as one directory level."""
    pass


def check_path_segment(value: str, field: str = 'name'):
    """
    Make sure a repository name, hoster or owner is a single path segment.

    Raises:
        InvalidPathSegment: If the value is empty, '.' or '..', or contains
            a path separator or NUL
    """
    if not isinstance(value, str) or value in ('', '.', '..'):
        raise InvalidPathSegment(f"Invalid {field} {value!r}: not a directory name")
    for forbidden in ('/', '\\', '\x00'):
        if forbidden in value:
            raise InvalidPathSegment(f"Invalid {field} {value!r}: contains {forbidden!r}")

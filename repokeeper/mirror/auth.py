"""
Credential selection for repository transports.

Exactly one AuthMethod is chosen per sync, first match wins:
1. SSH requested: private key (default ~/.ssh/id_rsa)
2. Access token: sent as the password with a placeholder username
3. Username and password: HTTP basic auth
4. Nothing: anonymous access
"""

import os

import paramiko
from paramiko.pkey import UnknownKeyType

from .descriptors import RepositoryDescriptor, SSHKeyAuth, TokenAuth, BasicAuth, NoAuth


class AuthError(Exception):
    """Raised when credentials for a repository cannot be prepared."""
    pass


def default_ssh_key_path() -> str:
    """Path of the default private key, $HOME/.ssh/id_rsa."""
    home = os.environ.get('HOME', '')
    return os.path.join(home, '.ssh', 'id_rsa')


def load_private_key(key_path: str) -> paramiko.PKey:
    """
    Load an unencrypted private key from disk.

    Args:
        key_path: Path to the private key file

    Returns:
        paramiko key object

    Raises:
        AuthError: If the key is missing, encrypted or unparseable
    """
    try:
        return paramiko.PKey.from_path(key_path)
    except FileNotFoundError:
        raise AuthError(f"SSH key not found: {key_path}")
    except (paramiko.PasswordRequiredException, TypeError):
        # cryptography raises TypeError for encrypted keys loaded without a password
        raise AuthError(f"SSH key is passphrase protected: {key_path}")
    except (paramiko.SSHException, UnknownKeyType, ValueError, OSError) as e:
        raise AuthError(f"Failed to load SSH key {key_path}: {e}")


def select_auth(repo: RepositoryDescriptor):
    """
    Pick the authentication method for a repository.

    Args:
        repo: Repository descriptor

    Returns:
        SSHKeyAuth, TokenAuth, BasicAuth or NoAuth

    Raises:
        AuthError: If SSH is requested and the key cannot be loaded
    """
    if repo.use_ssh:
        key_path = repo.ssh_key_path or default_ssh_key_path()
        return SSHKeyAuth(path=key_path, key=load_private_key(key_path))

    if repo.token:
        return TokenAuth(token=repo.token)

    if repo.username and repo.password:
        return BasicAuth(username=repo.username, password=repo.password)

    return NoAuth()

"""
SSH host trust and connectivity probe.

Host keys are checked trust-on-first-use against an OpenSSH known_hosts file:
- known host, same key: accepted
- unknown host: key is appended and accepted
- known host, different key: rejected (or replaced when
  REJECT_CHANGED_HOST_KEYS is disabled)
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

import paramiko
from paramiko import SSHClient, MissingHostKeyPolicy
from paramiko.hostkeys import HostKeyEntry, InvalidHostKey

from .descriptors import SSHKeyAuth


logger = logging.getLogger(__name__)

DEFAULT_KNOWN_HOSTS_FILE = '~/.ssh/known_hosts'

_SCP_LIKE_URL = re.compile(r'^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?P<path>.+)$')


class HostProbeError(Exception):
    """Raised when the SSH connectivity and host trust probe fails."""
    pass


@dataclass(frozen=True)
class SSHSite:
    host: str
    port: int = 22
    user: str = 'git'


def parse_ssh_url(url: str) -> SSHSite:
    """
    Extract user, host and port from an SSH clone URL.

    Handles both ssh://user@host:port/path and scp-like user@host:path.

    Raises:
        HostProbeError: If the URL is not an SSH URL
    """
    if url.startswith('ssh://'):
        parts = urlsplit(url)
        if not parts.hostname:
            raise HostProbeError(f"No host in SSH URL: {url}")
        return SSHSite(
            host=parts.hostname,
            port=parts.port or 22,
            user=parts.username or 'git'
        )

    match = None if '://' in url else _SCP_LIKE_URL.match(url)
    if not match:
        raise HostProbeError(f"Unsupported SSH URL: {url}")

    return SSHSite(host=match.group('host'), user=match.group('user') or 'git')


def _host_matches(name: str, hostnames: List[str]) -> bool:
    for hostname in hostnames:
        if hostname.startswith('|1|'):
            if paramiko.HostKeys.hash_host(name, hostname) == hostname:
                return True
        elif hostname == name:
            return True
    return False


class HostTrustVerifier:
    """
    Trust-on-first-use verification backed by a known_hosts file.

    The file is shared with ssh, so it is never rewritten as a whole: new
    hosts are appended, and only the matching lines change when a key is
    replaced. Comments, marker lines and lines paramiko cannot read are
    left as they are.
    """

    def __init__(self, known_hosts_path: str, reject_changed: bool = True):
        """
        Args:
            known_hosts_path: OpenSSH known_hosts file (created on first write)
            reject_changed: Reject a known host that presents a different key
        """
        self.known_hosts_path = os.path.expanduser(known_hosts_path)
        self.reject_changed = reject_changed

    def _read_lines(self) -> List[str]:
        if not os.path.exists(self.known_hosts_path):
            return []
        with open(self.known_hosts_path, 'r') as f:
            return f.readlines()

    def _entries(self, lines: List[str]):
        """Yield (line index, HostKeyEntry) for every plain host key line."""
        for index, line in enumerate(lines):
            stripped = line.strip()
            # @cert-authority and @revoked lines are for ssh itself
            if not stripped or stripped.startswith(('#', '@')):
                continue
            try:
                entry = HostKeyEntry.from_line(stripped, lineno=index + 1)
            except (InvalidHostKey, paramiko.SSHException) as e:
                logger.warning(f"Skipping line {index + 1} of {self.known_hosts_path}: {e}")
                continue
            if entry is not None:
                yield index, entry

    def _write(self, lines: List[str], mode: str):
        parent = os.path.dirname(self.known_hosts_path)
        if parent:
            os.makedirs(parent, mode=0o700, exist_ok=True)
        with open(self.known_hosts_path, mode) as f:
            f.writelines(lines)

    def verify(self, host: str, key: paramiko.PKey, remote_address: Optional[str] = None):
        """
        Check a presented host key, pinning it on first contact.

        Args:
            host: Host name as known to known_hosts ("[host]:port" off port 22)
            key: Key presented by the server
            remote_address: Peer IP address, also pinned when it differs from host

        Raises:
            paramiko.BadHostKeyException: If a known host presents a changed key
                and changed keys are rejected
        """
        lines = self._read_lines()
        entries = list(self._entries(lines))
        names = [host]
        if remote_address and remote_address != host:
            names.append(remote_address)

        key_type = key.get_name()
        added = []
        replaced = False

        for name in names:
            stored = [
                (index, entry) for index, entry in entries
                if entry.key.get_name() == key_type and _host_matches(name, entry.hostnames)
            ]
            if not stored:
                logger.info(f"Adding {key_type} host key for {name} to {self.known_hosts_path}")
                added.append(HostKeyEntry([name], key).to_line())
                continue

            if any(entry.key.asbytes() == key.asbytes() for _, entry in stored):
                continue

            if self.reject_changed:
                logger.error(f"Host key for {name} does not match {self.known_hosts_path}")
                raise paramiko.BadHostKeyException(name, key, stored[0][1].key)

            logger.warning(f"Host key for {name} changed, replacing stored key")
            for index, entry in stored:
                lines[index] = HostKeyEntry(entry.hostnames, key).to_line()
            replaced = True

        if not added and not replaced:
            return

        if lines and not lines[-1].endswith('\n'):
            added.insert(0, '\n')

        if replaced:
            self._write(lines + added, 'w')
        else:
            self._write(added, 'a')


class TrustOnFirstUsePolicy(MissingHostKeyPolicy):
    """
    paramiko policy that hands every host key to a HostTrustVerifier.
    """

    def __init__(self, verifier: HostTrustVerifier):
        self.verifier = verifier

    def missing_host_key(self, client, hostname, key):
        remote_address = None
        transport = client.get_transport()
        if transport is not None:
            try:
                remote_address = transport.getpeername()[0]
            except OSError:
                remote_address = None

        try:
            self.verifier.verify(hostname, key, remote_address)
        except paramiko.BadHostKeyException:
            raise
        except Exception as e:
            raise paramiko.SSHException(f"Could not check host key of {hostname}: {e}") from e


def probe_ssh_host(ssh_url: str, auth: SSHKeyAuth, verifier: HostTrustVerifier, timeout: int = 30):
    """
    Open and close an SSH session to the repository host.

    Verifies reachability, the host key and that the key is accepted before
    any git operation runs over SSH.

    Args:
        ssh_url: SSH clone URL of the repository
        auth: Resolved SSH key credentials
        verifier: Host trust verifier
        timeout: Connection timeout in seconds

    Raises:
        HostProbeError: If the host cannot be reached, is not trusted, or
            rejects the key
    """
    site = parse_ssh_url(ssh_url)

    client = SSHClient()
    client.set_missing_host_key_policy(TrustOnFirstUsePolicy(verifier))

    try:
        client.connect(
            hostname=site.host,
            port=site.port,
            username=site.user,
            pkey=auth.key,
            timeout=timeout,
            allow_agent=False,
            look_for_keys=False
        )
    except paramiko.BadHostKeyException as e:
        raise HostProbeError(f"Host key verification failed for {site.host}: {e}")
    except paramiko.AuthenticationException as e:
        raise HostProbeError(f"SSH authentication failed for {site.user}@{site.host}: {e}")
    except paramiko.SSHException as e:
        raise HostProbeError(f"SSH connection to {site.host}:{site.port} failed: {e}")
    except OSError as e:
        raise HostProbeError(f"Failed to connect to {site.host}:{site.port}: {e}")
    finally:
        client.close()

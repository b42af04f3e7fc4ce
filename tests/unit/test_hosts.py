"""
Unit tests for SSH host trust (repokeeper/mirror/hosts.py).

Host keys are generated on the fly; no network access is needed.
"""

from unittest.mock import MagicMock

import paramiko
import pytest
from paramiko.hostkeys import HostKeyEntry

from repokeeper.mirror.descriptors import SSHKeyAuth
from repokeeper.mirror.hosts import (
    HostProbeError,
    HostTrustVerifier,
    SSHSite,
    TrustOnFirstUsePolicy,
    parse_ssh_url,
    probe_ssh_host
)


@pytest.fixture(scope='module')
def host_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope='module')
def other_host_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def known_hosts(tmp_path):
    return tmp_path / 'ssh' / 'known_hosts'


class TestParseSshUrl:
    """Test SSH URL parsing."""

    def test_scp_like_url(self):
        assert parse_ssh_url('git@github.com:octo/foo.git') == SSHSite(host='github.com', port=22, user='git')

    def test_scp_like_url_without_user(self):
        assert parse_ssh_url('example.com:foo.git') == SSHSite(host='example.com')

    def test_ssh_scheme_with_port(self):
        site = parse_ssh_url('ssh://mirror@git.example.com:2222/octo/foo.git')

        assert site == SSHSite(host='git.example.com', port=2222, user='mirror')

    def test_ssh_scheme_defaults(self):
        assert parse_ssh_url('ssh://git.example.com/foo.git') == SSHSite(host='git.example.com')

    @pytest.mark.parametrize('url', [
        'https://github.com/octo/foo.git',
        '/srv/git/foo.git',
        'ssh:///foo.git',
    ])
    def test_unsupported_urls(self, url):
        with pytest.raises(HostProbeError):
            parse_ssh_url(url)


class TestHostTrustVerifier:
    """Test trust-on-first-use verification."""

    def test_unknown_host_is_pinned(self, known_hosts, host_key):
        verifier = HostTrustVerifier(str(known_hosts))

        verifier.verify('github.com', host_key)

        assert known_hosts.exists()
        stored = paramiko.HostKeys(str(known_hosts)).lookup('github.com')
        assert stored['ssh-rsa'].asbytes() == host_key.asbytes()

    def test_remote_address_is_pinned_too(self, known_hosts, host_key):
        verifier = HostTrustVerifier(str(known_hosts))

        verifier.verify('github.com', host_key, remote_address='140.82.121.4')

        host_keys = paramiko.HostKeys(str(known_hosts))
        assert host_keys.lookup('github.com') is not None
        assert host_keys.lookup('140.82.121.4') is not None

    def test_known_host_same_key_is_accepted(self, known_hosts, host_key):
        verifier = HostTrustVerifier(str(known_hosts))
        verifier.verify('github.com', host_key)
        before = known_hosts.read_text()

        verifier.verify('github.com', host_key)

        assert known_hosts.read_text() == before

    def test_changed_key_is_rejected(self, known_hosts, host_key, other_host_key):
        verifier = HostTrustVerifier(str(known_hosts))
        verifier.verify('github.com', host_key)

        with pytest.raises(paramiko.BadHostKeyException):
            verifier.verify('github.com', other_host_key)

        # Stored key is untouched
        stored = paramiko.HostKeys(str(known_hosts)).lookup('github.com')
        assert stored['ssh-rsa'].asbytes() == host_key.asbytes()

    def test_changed_key_is_replaced_when_allowed(self, known_hosts, host_key, other_host_key):
        verifier = HostTrustVerifier(str(known_hosts), reject_changed=False)
        verifier.verify('github.com', host_key)

        verifier.verify('github.com', other_host_key)

        stored = paramiko.HostKeys(str(known_hosts)).lookup('github.com')
        assert stored['ssh-rsa'].asbytes() == other_host_key.asbytes()

    def test_existing_lines_are_kept_when_pinning(self, known_hosts, host_key, other_host_key):
        known_hosts.parent.mkdir()
        original = (
            '# pinned by ops, do not edit\n'
            '@cert-authority *.corp.example.com ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIJdD7y3aLq454yWBdwLWbieU1ebz9/cu7/QEXn9OIeZJ\n'
            + HostKeyEntry(['gitlab.com'], other_host_key).to_line()
        )
        known_hosts.write_text(original)

        HostTrustVerifier(str(known_hosts)).verify('newhost', host_key)

        content = known_hosts.read_text()
        assert content.startswith(original)
        assert content[len(original):] == HostKeyEntry(['newhost'], host_key).to_line()

    def test_missing_trailing_newline(self, known_hosts, host_key, other_host_key):
        known_hosts.parent.mkdir()
        known_hosts.write_text(HostKeyEntry(['gitlab.com'], other_host_key).to_line().rstrip('\n'))

        HostTrustVerifier(str(known_hosts)).verify('github.com', host_key)

        host_keys = paramiko.HostKeys(str(known_hosts))
        assert host_keys.lookup('gitlab.com')['ssh-rsa'].asbytes() == other_host_key.asbytes()
        assert host_keys.lookup('github.com')['ssh-rsa'].asbytes() == host_key.asbytes()

    def test_replacing_rewrites_only_matching_lines(self, known_hosts, host_key, other_host_key):
        known_hosts.parent.mkdir()
        comment = '# mirrors\n'
        gitlab_line = HostKeyEntry(['gitlab.com'], host_key).to_line()
        known_hosts.write_text(comment + gitlab_line + HostKeyEntry(['github.com'], host_key).to_line())
        verifier = HostTrustVerifier(str(known_hosts), reject_changed=False)

        verifier.verify('github.com', other_host_key)

        lines = known_hosts.read_text().splitlines(keepends=True)
        assert lines == [comment, gitlab_line, HostKeyEntry(['github.com'], other_host_key).to_line()]

    def test_hashed_entry_is_recognized(self, known_hosts, host_key, other_host_key):
        known_hosts.parent.mkdir()
        hashed = paramiko.HostKeys.hash_host('github.com')
        known_hosts.write_text(HostKeyEntry([hashed], host_key).to_line())
        before = known_hosts.read_text()
        verifier = HostTrustVerifier(str(known_hosts))

        verifier.verify('github.com', host_key)
        assert known_hosts.read_text() == before

        with pytest.raises(paramiko.BadHostKeyException):
            verifier.verify('github.com', other_host_key)


class TestTrustOnFirstUsePolicy:

    def test_policy_passes_peer_address(self, host_key):
        verifier = MagicMock()
        client = MagicMock()
        client.get_transport.return_value.getpeername.return_value = ('10.0.0.5', 22)

        TrustOnFirstUsePolicy(verifier).missing_host_key(client, 'git.example.com', host_key)

        verifier.verify.assert_called_once_with('git.example.com', host_key, '10.0.0.5')

    def test_policy_without_transport(self, host_key):
        verifier = MagicMock()
        client = MagicMock()
        client.get_transport.return_value = None

        TrustOnFirstUsePolicy(verifier).missing_host_key(client, 'git.example.com', host_key)

        verifier.verify.assert_called_once_with('git.example.com', host_key, None)

    def test_verifier_errors_become_ssh_errors(self, host_key):
        verifier = MagicMock()
        verifier.verify.side_effect = ValueError('unreadable known_hosts')
        client = MagicMock()
        client.get_transport.return_value = None

        with pytest.raises(paramiko.SSHException, match='unreadable known_hosts'):
            TrustOnFirstUsePolicy(verifier).missing_host_key(client, 'git.example.com', host_key)

    def test_bad_host_key_passes_through(self, host_key, other_host_key):
        verifier = MagicMock()
        verifier.verify.side_effect = paramiko.BadHostKeyException('git.example.com', host_key, other_host_key)
        client = MagicMock()
        client.get_transport.return_value = None

        with pytest.raises(paramiko.BadHostKeyException):
            TrustOnFirstUsePolicy(verifier).missing_host_key(client, 'git.example.com', host_key)


class TestProbeSshHost:
    """Test the SSH probe with a mocked client."""

    def test_probe_connects_and_closes(self, mock_ssh_client, known_hosts):
        auth = SSHKeyAuth(path='/keys/id_rsa', key=MagicMock())
        verifier = HostTrustVerifier(str(known_hosts))

        probe_ssh_host('ssh://git@git.example.com:2222/foo.git', auth, verifier, timeout=5)

        client = mock_ssh_client.return_value
        client.connect.assert_called_once_with(
            hostname='git.example.com',
            port=2222,
            username='git',
            pkey=auth.key,
            timeout=5,
            allow_agent=False,
            look_for_keys=False
        )
        policy = client.set_missing_host_key_policy.call_args[0][0]
        assert isinstance(policy, TrustOnFirstUsePolicy)
        assert policy.verifier is verifier
        client.close.assert_called_once()

    @pytest.mark.parametrize('error', [
        paramiko.AuthenticationException('denied'),
        paramiko.SSHException('protocol error'),
        ConnectionRefusedError('refused'),
    ])
    def test_probe_errors_become_host_probe_error(self, mock_ssh_client, known_hosts, error):
        mock_ssh_client.return_value.connect.side_effect = error
        auth = SSHKeyAuth(path='/keys/id_rsa', key=MagicMock())

        with pytest.raises(HostProbeError):
            probe_ssh_host('git@github.com:octo/foo.git', auth, HostTrustVerifier(str(known_hosts)))

        mock_ssh_client.return_value.close.assert_called_once()

    def test_probe_bad_host_key(self, mock_ssh_client, known_hosts, host_key, other_host_key):
        mock_ssh_client.return_value.connect.side_effect = paramiko.BadHostKeyException(
            'github.com', other_host_key, host_key
        )
        auth = SSHKeyAuth(path='/keys/id_rsa', key=MagicMock())

        with pytest.raises(HostProbeError, match='Host key verification failed'):
            probe_ssh_host('git@github.com:octo/foo.git', auth, HostTrustVerifier(str(known_hosts)))

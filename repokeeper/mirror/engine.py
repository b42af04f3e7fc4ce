"""
Local backup engine - mirrors one repository into one local destination.

Workflow:
1. Resolve the target path (structured, bare and snapshot naming)
2. Make sure the destination root exists
3. Select credentials
4. Clone or update with bounded retries
5. Compress the working copy (if configured)
6. Prune old snapshots (if a keep-count is configured)
"""

import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .auth import AuthError, select_auth
from .compression import (
    CompressionError,
    DEFAULT_ZSTD_LEVEL,
    compress_working_copy,
    is_compression_enabled
)
from .descriptors import (
    DestinationConfig,
    InvalidPathSegment,
    RepositoryDescriptor,
    check_path_segment
)
from .hosts import DEFAULT_KNOWN_HOSTS_FILE, HostTrustVerifier
from .retention import RetentionError, RetentionManager
from .sync import RetryDriver, RetryPolicy, SyncAttempt, SyncState
from .synclog import SyncLog
from .transport import GitTransport


@dataclass
class SyncResult:
    """Outcome of one (repository, destination) sync."""

    status: str
    target_path: str
    attempts: int = 0
    archive_path: Optional[str] = None
    message: str = ''
    logs: str = ''

    @property
    def ok(self) -> bool:
        """False only for failures of the pair; skips and missing remotes are handled."""
        return self.status != SyncState.FAILED.value


def resolve_relative_path(repo: RepositoryDescriptor, destination: DestinationConfig, timestamp: int) -> str:
    """
    Relative path of a repository inside a destination.

    Built in this order: hoster/owner/name when structured, a .git suffix
    when bare, then the snapshot timestamp when keep > 0.

    Raises:
        InvalidPathSegment: If the name, hoster or owner is not a single
            directory name
    """
    check_path_segment(repo.name, 'name')

    if destination.structured:
        for field in ('hoster', 'owner'):
            if getattr(repo, field):
                check_path_segment(getattr(repo, field), field)
        parts = [part for part in (repo.hoster, repo.owner, repo.name) if part]
        name = '/'.join(parts)
    else:
        name = repo.name

    if destination.bare:
        name += '.git'

    if destination.keep > 0:
        name = f"{name}/{timestamp}"

    return name


def resolve_target_path(repo: RepositoryDescriptor, destination: DestinationConfig, timestamp: int) -> str:
    """
    Absolute target path of a repository inside a destination.

    Raises:
        InvalidPathSegment: If the path would leave the destination root,
            including through a symlink already on disk
    """
    root = os.path.abspath(os.path.expanduser(destination.path))
    target = os.path.join(root, *resolve_relative_path(repo, destination, timestamp).split('/'))

    real_root = os.path.realpath(root)
    real_target = os.path.realpath(target)
    if real_target == real_root or os.path.commonpath([real_root, real_target]) != real_root:
        raise InvalidPathSegment(f"{target} resolves outside of {root}")

    return target


class LocalBackupEngine:
    """
    Mirrors repositories into local destinations.

    Every path is absolute, so the engine never touches the process working
    directory.
    """

    def __init__(
        self,
        transport: Optional[GitTransport] = None,
        verifier: Optional[HostTrustVerifier] = None,
        retry_policy: Optional[RetryPolicy] = None,
        zstd_level: int = DEFAULT_ZSTD_LEVEL,
        clock: Optional[Callable[[], float]] = None
    ):
        self.verifier = verifier or HostTrustVerifier(DEFAULT_KNOWN_HOSTS_FILE)
        self.transport = transport or GitTransport(known_hosts_path=self.verifier.known_hosts_path)
        self.retry_policy = retry_policy or RetryPolicy()
        self.zstd_level = zstd_level
        self.clock = clock

    @classmethod
    def from_config(cls, config) -> 'LocalBackupEngine':
        """
        Build an engine from an application config mapping.

        Args:
            config: Mapping with the SYNC_*, KNOWN_HOSTS_FILE,
                REJECT_CHANGED_HOST_KEYS and ZSTD_LEVEL keys
        """
        known_hosts = config.get('KNOWN_HOSTS_FILE') or DEFAULT_KNOWN_HOSTS_FILE
        verifier = HostTrustVerifier(
            known_hosts,
            reject_changed=config.get('REJECT_CHANGED_HOST_KEYS', True)
        )
        return cls(
            transport=GitTransport(known_hosts_path=verifier.known_hosts_path),
            verifier=verifier,
            retry_policy=RetryPolicy(
                max_attempts=config.get('SYNC_MAX_ATTEMPTS', 5),
                delay=config.get('SYNC_RETRY_DELAY', 5)
            ),
            zstd_level=config.get('ZSTD_LEVEL', DEFAULT_ZSTD_LEVEL)
        )

    def run(self, repo: RepositoryDescriptor, destination: DestinationConfig, dry_run: bool = False) -> bool:
        """
        Mirror a repository into a destination.

        Returns:
            True unless the pair failed
        """
        return self.sync(repo, destination, dry_run).ok

    def sync(self, repo: RepositoryDescriptor, destination: DestinationConfig, dry_run: bool = False) -> SyncResult:
        """
        Mirror a repository into a destination and report the details.

        Args:
            repo: Repository to mirror
            destination: Local destination
            dry_run: Compute paths and log only

        Returns:
            SyncResult with the final status and captured log lines
        """
        timestamp = int(self.clock() if self.clock else time.time())
        log = SyncLog(path=destination.path, repo=repo.name)

        try:
            target = resolve_target_path(repo, destination, timestamp)
        except InvalidPathSegment as e:
            log.error(str(e))
            return SyncResult(
                status=SyncState.FAILED.value,
                target_path='',
                message=str(e),
                logs=log.text()
            )
        log.debug(f"target {target}")

        result = SyncResult(status=SyncState.FAILED.value, target_path=target)

        if not self._prepare_destination(destination, dry_run, log):
            result.message = f"Destination {destination.path} is not usable"
            result.logs = log.text()
            return result

        try:
            auth = select_auth(repo)
        except AuthError as e:
            log.error(str(e))
            result.message = str(e)
            result.logs = log.text()
            return result

        attempt = SyncAttempt(
            repo=repo,
            target=target,
            auth=auth,
            transport=self.transport,
            log=log,
            verifier=self.verifier,
            bare=destination.bare,
            dry_run=dry_run
        )
        outcome = RetryDriver(attempt, self.retry_policy).run()

        result.status = outcome.state.value
        result.attempts = outcome.attempts
        result.message = outcome.message

        if outcome.state is SyncState.SUCCESS:
            result.archive_path = self._post_process(target, destination, dry_run, log)

        result.logs = log.text()
        return result

    def _prepare_destination(self, destination: DestinationConfig, dry_run: bool, log: SyncLog) -> bool:
        root = os.path.abspath(os.path.expanduser(destination.path))

        if not os.path.exists(root):
            if dry_run:
                log.info(f"dry run: not creating {root}")
                return True
            try:
                os.makedirs(root, mode=0o777, exist_ok=True)
            except OSError as e:
                log.error(str(e))
                return False

        if not os.path.isdir(root):
            log.error(f"{root} is not a directory")
            return False

        return True

    def _post_process(self, target: str, destination: DestinationConfig, dry_run: bool, log: SyncLog) -> Optional[str]:
        """Compress then prune. Errors here never fail the sync."""
        archive_path = None

        if is_compression_enabled(destination.compression):
            log.bind(stage='compression')
            log.info(f"compressing {target}")
            if dry_run:
                log.info("dry run: skipping compression")
            else:
                try:
                    archive_path = compress_working_copy(target, destination.compression, self.zstd_level)
                except CompressionError as e:
                    log.warning(str(e))
                    return None

        if destination.keep > 0:
            parent = os.path.dirname(target)
            if dry_run and not os.path.isdir(parent):
                return archive_path

            log.bind(stage='retention')
            manager = RetentionManager(log=log, dry_run=dry_run)
            try:
                manager.prune(parent, destination.keep, destination.compression)
            except RetentionError as e:
                log.warning(str(e))

        return archive_path

"""
Clone-or-update state machine with bounded retries.

    CHECK_LOCAL -> CLONE | UPDATE -> SUCCESS | SKIPPED | NOT_FOUND | FAILED

A failed attempt goes back to CHECK_LOCAL after a fixed delay until the
attempt ceiling is reached. How clone errors are handled is the
CLONE_ERROR_DISPOSITIONS table; update errors always discard the local
copy so the next attempt clones fresh.
"""

import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .descriptors import RepositoryDescriptor, SSHKeyAuth
from .hosts import HostTrustVerifier, HostProbeError, probe_ssh_host
from .synclog import SyncLog
from .transport import GitTransport, TransportError, TransportErrorKind, UpdateResult


class SyncState(Enum):
    CHECK_LOCAL = 'check_local'
    CLONE = 'clone'
    UPDATE = 'update'
    SUCCESS = 'success'
    SKIPPED = 'skipped'
    NOT_FOUND = 'not_found'
    FAILED = 'failed'


TERMINAL_STATES = frozenset({
    SyncState.SUCCESS,
    SyncState.SKIPPED,
    SyncState.NOT_FOUND,
    SyncState.FAILED,
})


class Disposition(Enum):
    RETRY = 'retry'
    SKIP = 'skip'
    ABANDON = 'abandon'


CLONE_ERROR_DISPOSITIONS = {
    TransportErrorKind.NOT_FOUND: Disposition.ABANDON,
    TransportErrorKind.ACCESS_DENIED: Disposition.SKIP,
    TransportErrorKind.EMPTY_REMOTE: Disposition.SKIP,
    TransportErrorKind.TRANSIENT: Disposition.RETRY,
}


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    delay: float = 5.0
    sleep: Callable[[float], None] = time.sleep


@dataclass
class SyncOutcome:
    state: SyncState
    attempts: int
    message: str = ''
    update_result: Optional[UpdateResult] = None


@dataclass
class SyncAttempt:
    """
    The operations one attempt can perform against a single target path.
    """

    repo: RepositoryDescriptor
    target: str
    auth: object
    transport: GitTransport
    log: SyncLog
    verifier: Optional[HostTrustVerifier] = None
    bare: bool = False
    dry_run: bool = False
    probe: Callable = field(default=probe_ssh_host)

    def check_local(self) -> SyncState:
        if not os.path.lexists(self.target):
            return SyncState.CLONE

        if not os.path.isdir(self.target):
            self.log.warning(f"{self.target} is a file")
            return SyncState.SKIPPED

        return SyncState.UPDATE

    def clone(self):
        """
        Raises:
            HostProbeError: If the SSH probe fails
            TransportError: If listing or cloning the remote fails
        """
        self.log.info(f"cloning {self.repo.name}")
        if self.dry_run:
            return

        url = self.repo.clone_url
        if isinstance(self.auth, SSHKeyAuth):
            self.probe(url, self.auth, self.verifier)

        self.transport.list_remote(url, self.auth)
        self.transport.clone(url, self.target, self.auth, bare=self.bare)

    def update(self) -> Optional[UpdateResult]:
        """
        Raises:
            TransportError: If the local copy cannot be opened or updated
        """
        self.log.info(f"opening {self.repo.name} locally")
        if self.dry_run:
            return None

        if self.bare:
            self.log.info(f"fetching {self.repo.name}")
        else:
            self.log.info(f"pulling {self.repo.name}")
        return self.transport.update(self.target, self.auth, bare=self.bare)

    def discard_local(self):
        shutil.rmtree(self.target, ignore_errors=True)


class RetryDriver:
    """
    Drives a SyncAttempt through the state machine under a RetryPolicy.
    """

    def __init__(self, attempt: SyncAttempt, policy: Optional[RetryPolicy] = None):
        self.attempt = attempt
        self.policy = policy or RetryPolicy()
        self.attempt_number = 1
        self.message = ''
        self.update_result = None

    @property
    def log(self) -> SyncLog:
        return self.attempt.log

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt_number >= self.policy.max_attempts

    def run(self) -> SyncOutcome:
        state = SyncState.CHECK_LOCAL
        while state not in TERMINAL_STATES:
            state = self.step(state)

        return SyncOutcome(
            state=state,
            attempts=self.attempt_number,
            message=self.message,
            update_result=self.update_result
        )

    def step(self, state: SyncState) -> SyncState:
        """Advance the state machine by one transition."""
        if state is SyncState.CHECK_LOCAL:
            next_state = self.attempt.check_local()
            if next_state is SyncState.SKIPPED:
                self.message = f"{self.attempt.target} exists and is not a directory"
            return next_state

        if state is SyncState.CLONE:
            return self._clone()

        if state is SyncState.UPDATE:
            return self._update()

        raise ValueError(f"No transition out of {state}")

    def _clone(self) -> SyncState:
        try:
            self.attempt.clone()
        except HostProbeError as e:
            self.message = str(e)
            self.log.error(self.message)
            return SyncState.FAILED
        except TransportError as e:
            return self._clone_failed(e)

        return SyncState.SUCCESS

    def _clone_failed(self, error: TransportError) -> SyncState:
        self.message = str(error)
        disposition = CLONE_ERROR_DISPOSITIONS[error.kind]

        if disposition is Disposition.ABANDON:
            self.log.warning(self.message)
            return SyncState.NOT_FOUND

        if disposition is Disposition.SKIP:
            if error.kind is TransportErrorKind.ACCESS_DENIED:
                self.log.warning(f"{self.attempt.repo.name} doesn't exist or is not exported")
            else:
                self.log.warning(self.message)
            return SyncState.SKIPPED

        if self.is_final_attempt:
            self.log.warning(self.message)
            return SyncState.FAILED

        return self._retry()

    def _update(self) -> SyncState:
        try:
            self.update_result = self.attempt.update()
        except TransportError as e:
            self.message = str(e)
            if self.is_final_attempt:
                self.log.error(self.message)
                return SyncState.FAILED

            self.log.warning(self.message)
            self.attempt.discard_local()
            return self._retry()

        if self.update_result is UpdateResult.UP_TO_DATE:
            self.log.info("already up-to-date")
        self.message = ''
        return SyncState.SUCCESS

    def _retry(self) -> SyncState:
        self.log.warning(f"retry {self.attempt_number} from {self.policy.max_attempts}")
        self.policy.sleep(self.policy.delay)
        self.attempt_number += 1
        return SyncState.CHECK_LOCAL

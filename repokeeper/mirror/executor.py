"""
Mirror pass executor - runs the engine over every configured pair.

Workflow:
1. Load enabled repositories and destinations
2. For each repository, for each destination (strictly sequential):
   a. Create SyncHistory record (status: running)
   b. Decrypt credentials and build the descriptor
   c. Run the local backup engine
   d. Update SyncHistory with status, paths, attempts and logs
"""

import logging
from datetime import datetime
from typing import List, Optional

from repokeeper import db
from repokeeper.models import Repository, Destination, SyncHistory
from repokeeper.utils.crypto import CredentialCipher, get_credential_cipher
from .descriptors import RepositoryDescriptor, DestinationConfig
from .engine import LocalBackupEngine


logger = logging.getLogger(__name__)


def repository_descriptor(repository: Repository, cipher: CredentialCipher) -> RepositoryDescriptor:
    """Build an engine descriptor from a stored repository, decrypting secrets."""
    return RepositoryDescriptor(
        name=repository.name,
        url=repository.url or '',
        ssh_url=repository.ssh_url or '',
        hoster=repository.hoster or '',
        owner=repository.owner or '',
        token=cipher.decrypt(repository.token_encrypted),
        username=repository.username or '',
        password=cipher.decrypt(repository.password_encrypted),
        use_ssh=repository.use_ssh,
        ssh_key_path=repository.ssh_key_path or ''
    )


def destination_config(destination: Destination) -> DestinationConfig:
    return DestinationConfig(
        path=destination.path,
        structured=destination.structured,
        bare=destination.bare,
        keep=destination.keep or 0,
        compression=destination.compression or ''
    )


class MirrorExecutor:
    """
    Mirrors all enabled repositories into all enabled destinations.
    """

    def __init__(self, app, engine: Optional[LocalBackupEngine] = None):
        """
        Initialize mirror executor.

        Args:
            app: Flask app (config and credential key)
            engine: Engine to use, built from app config when omitted
        """
        self.app = app
        self.engine = engine or LocalBackupEngine.from_config(app.config)
        self.cipher = get_credential_cipher(app)

    def execute(self, dry_run: Optional[bool] = None) -> List[SyncHistory]:
        """
        Run one mirror pass.

        Args:
            dry_run: Override SYNC_DRY_RUN for this pass

        Returns:
            One SyncHistory record per (repository, destination) pair
        """
        if dry_run is None:
            dry_run = self.app.config.get('SYNC_DRY_RUN', False)

        repositories = Repository.query.filter_by(enabled=True).order_by(Repository.id).all()
        destinations = Destination.query.filter_by(enabled=True).order_by(Destination.id).all()

        logger.info(
            f"Starting mirror pass: {len(repositories)} repositories, "
            f"{len(destinations)} destinations (dry_run={dry_run})"
        )

        records = []
        for repository in repositories:
            logger.info(f"starting backup for {repository.url or repository.ssh_url}")
            for destination in destinations:
                records.append(self.execute_pair(repository, destination, dry_run))

        failed = sum(1 for record in records if record.status == 'failed')
        logger.info(f"Mirror pass complete: {len(records)} syncs, {failed} failed")
        return records

    def execute_pair(self, repository: Repository, destination: Destination, dry_run: bool = False) -> SyncHistory:
        """
        Mirror one repository into one destination and record the result.

        Nothing raised here escapes: an unexpected error marks the pair as
        failed so the pass moves on to the next pair.
        """
        record = SyncHistory(
            repository_id=repository.id,
            destination_id=destination.id,
            status='running',
            dry_run=dry_run,
            started_at=datetime.utcnow()
        )
        db.session.add(record)
        db.session.commit()

        try:
            result = self.engine.sync(
                repository_descriptor(repository, self.cipher),
                destination_config(destination),
                dry_run
            )

            record.status = result.status
            record.target_path = result.target_path
            record.archive_path = result.archive_path
            record.attempts = result.attempts
            record.error_message = result.message or None
            record.logs = result.logs

        except Exception as e:
            logger.exception(f"Sync of {repository.name} into {destination.path} failed")
            record.status = 'failed'
            record.error_message = str(e)

        finally:
            record.completed_at = datetime.utcnow()
            db.session.commit()

        return record


def execute_mirror_pass(app, dry_run: Optional[bool] = None) -> List[SyncHistory]:
    """
    Run a mirror pass inside the app context.

    Args:
        app: Flask application
        dry_run: Override SYNC_DRY_RUN for this pass

    Returns:
        SyncHistory records of the pass
    """
    with app.app_context():
        return MirrorExecutor(app).execute(dry_run)

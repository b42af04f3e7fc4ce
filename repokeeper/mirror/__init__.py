"""
Mirror module for repokeeper.

This module handles the local synchronization and snapshot engine:
- Credential selection (SSH key, token, basic auth)
- SSH host trust (trust on first use)
- Clone/update with bounded retries
- Compression of finished working copies
- Snapshot retention
- Mirror passes over all configured pairs
"""

from .descriptors import RepositoryDescriptor, DestinationConfig
from .engine import LocalBackupEngine, SyncResult
from .compression import compress_working_copy, extract_archive
from .hosts import HostTrustVerifier
from .retention import RetentionManager

__all__ = [
    'RepositoryDescriptor',
    'DestinationConfig',
    'LocalBackupEngine',
    'SyncResult',
    'compress_working_copy',
    'extract_archive',
    'HostTrustVerifier',
    'RetentionManager'
]

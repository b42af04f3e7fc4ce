"""
Snapshot retention for timestamped mirrors.

Snapshots are the children of a repository's snapshot directory, named by
the Unix timestamp of the sync that produced them (plus the archive suffix
when the destination compresses). Only the newest `keep` are kept.
"""

import os
import shutil
from typing import List, Optional, Tuple

from .compression import get_archive_suffix, is_compression_enabled, strip_archive_suffix
from .synclog import SyncLog


class RetentionError(Exception):
    """Raised when the snapshot directory cannot be read."""
    pass


class RetentionManager:
    """
    Prunes a snapshot directory down to a keep-count.
    """

    def __init__(self, log: Optional[SyncLog] = None, dry_run: bool = False):
        """
        Args:
            log: Sync log to report to (a fresh one when omitted)
            dry_run: Only log what would be removed
        """
        self.log = log or SyncLog(stage='retention')
        self.dry_run = dry_run

    def list_snapshots(self, parent_directory: str, compression: str = '') -> List[Tuple[int, str]]:
        """
        List valid snapshots, newest first.

        Args:
            parent_directory: Directory holding one repository's snapshots
            compression: Compression value of the destination

        Returns:
            (timestamp, entry name) pairs sorted by timestamp, descending

        Raises:
            RetentionError: If the directory cannot be listed
        """
        try:
            entries = os.listdir(parent_directory)
        except OSError as e:
            raise RetentionError(f"Failed to list snapshots in {parent_directory}: {e}")

        compressed = is_compression_enabled(compression)
        suffix = get_archive_suffix(compression)

        snapshots = []
        for entry in entries:
            if compressed and not entry.endswith(suffix):
                continue

            stem = strip_archive_suffix(entry, compression) if compressed else entry
            if not (stem.isascii() and stem.isdigit()):
                self.log.warning(f"couldn't parse timestamp! {entry}")
                continue

            snapshots.append((int(stem, 10), entry))

        snapshots.sort(reverse=True)
        return snapshots

    def prune(self, parent_directory: str, keep: int, compression: str = '') -> List[str]:
        """
        Delete every snapshot beyond the newest `keep`.

        Entries whose names are not timestamps are left alone. A failed
        deletion is logged and pruning continues with the next entry.

        Args:
            parent_directory: Directory holding one repository's snapshots
            keep: Number of snapshots to retain (0 or less disables pruning)
            compression: Compression value of the destination

        Returns:
            Paths that were removed (or would be, in dry run)

        Raises:
            RetentionError: If the directory cannot be listed
        """
        if keep <= 0:
            return []

        snapshots = self.list_snapshots(parent_directory, compression)

        removed = []
        for _, entry in snapshots[keep:]:
            path = os.path.join(parent_directory, entry)
            self.log.info(f"removing {path}")

            if self.dry_run:
                removed.append(path)
                continue

            try:
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)
                removed.append(path)
            except OSError as e:
                self.log.warning(f"failed to remove {path}: {e}")

        return removed

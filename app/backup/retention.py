"""
Retention policy enforcement for database backups.

After every backup attempt the sweep keeps the newest ``keep_last_amount``
complete artifacts, deletes the older ones, and deletes every temporary
artifact (a .tmp left behind is always a failed or crashed run). Entries
that are not artifact names are never touched.
"""

import logging
from typing import List, Tuple

from .store import BackupStore, StorageError, is_final_name, is_temp_name


logger = logging.getLogger(__name__)


def _newest_first(names: List[str]) -> List[str]:
    # Names differ only in the digit run, so (length, name) orders them by
    # embedded timestamp; for equal-width names this is plain lexicographic order.
    return sorted(names, key=lambda name: (len(name), name), reverse=True)


class RetentionCleaner:
    """
    Prunes old and orphaned artifacts from the backups folder.
    """

    def __init__(self, store: BackupStore):
        """
        Initialize retention cleaner.

        Args:
            store: BackupStore owning the backups folder
        """
        self.store = store

    def plan(self, keep_last_amount: int) -> Tuple[List[str], List[str]]:
        """
        Work out which artifacts a sweep keeps and deletes.

        Args:
            keep_last_amount: Number of complete artifacts to keep

        Returns:
            (names to keep, names to delete)

        Raises:
            StorageError: If the backups folder cannot be listed
        """
        keep_last_amount = max(keep_last_amount, 0)
        entries = self.store.list_entries()

        failed_backups = [name for name in entries if is_temp_name(name)]
        backups = _newest_first([name for name in entries if is_final_name(name)])

        keep = backups[:keep_last_amount]
        to_delete = backups[keep_last_amount:] + failed_backups
        return keep, to_delete

    def sweep(self, keep_last_amount: int) -> int:
        """
        Delete artifacts outside the keep-window and all temporary artifacts.

        A failed deletion is logged and the sweep carries on with the rest.

        Args:
            keep_last_amount: Number of complete artifacts to keep

        Returns:
            Number of files deleted

        Raises:
            StorageError: If the backups folder cannot be listed
        """
        logger.debug("Database Backup Cleanup Started")

        _, to_delete = self.plan(keep_last_amount)

        deleted_count = 0
        for name in to_delete:
            try:
                self.store.delete(name)
                deleted_count += 1
                logger.debug(f"Deleted backup: {name}")
            except StorageError as e:
                logger.error(f"Failed to delete backup {name}: {e}")

        logger.debug(f"Database Backup Cleanup Finished, deleted {deleted_count} backups")
        return deleted_count

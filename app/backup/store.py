"""
Filesystem catalog of database backup artifacts.

Artifacts live flat in one backups folder:
- immich-db-backup-<unix ms>.sql.gz        complete
- immich-db-backup-<unix ms>.sql.gz.tmp    in progress, or orphaned by a crashed run

The rename from the .tmp name to the final name is the only publish point.
"""

import os
import re
import threading
import time
from pathlib import Path
from typing import List, Optional


BACKUP_PREFIX = 'immich-db-backup'
FINAL_SUFFIX = '.sql.gz'
TEMP_SUFFIX = '.tmp'

FINAL_PATTERN = re.compile(r'immich-db-backup-\d+\.sql\.gz')
TEMP_PATTERN = re.compile(r'immich-db-backup-\d+\.sql\.gz\.tmp')

_timestamp_lock = threading.Lock()
_last_timestamp = 0


class StorageError(Exception):
    """Raised when a backup folder operation fails."""
    pass


def _next_timestamp() -> int:
    """Wall-clock milliseconds, never lower than the previous value in this process."""
    global _last_timestamp

    with _timestamp_lock:
        now = int(time.time() * 1000)
        if now <= _last_timestamp:
            now = _last_timestamp + 1
        _last_timestamp = now
        return now


def is_final_name(filename: str) -> bool:
    return FINAL_PATTERN.fullmatch(filename) is not None


def is_temp_name(filename: str) -> bool:
    return TEMP_PATTERN.fullmatch(filename) is not None


def artifact_timestamp(filename: str) -> Optional[int]:
    """
    Extract the embedded millisecond timestamp from an artifact name.

    Returns:
        Timestamp, or None if the name is not a well-formed artifact name
    """
    if not (is_final_name(filename) or is_temp_name(filename)):
        return None
    digits = filename[len(BACKUP_PREFIX) + 1:].split('.', 1)[0]
    return int(digits)


class BackupStore:
    """
    Owns the backups folder: names, lists, writes, publishes and deletes artifacts.
    """

    def __init__(self, base_path: str):
        """
        Initialize backup store.

        Args:
            base_path: Backups folder

        Raises:
            StorageError: If the folder cannot be created
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create backups folder {self.base_path}: {e}")

    def new_temp_path(self) -> Path:
        """Path for a new in-progress artifact, named after the current time."""
        return self.base_path / f"{BACKUP_PREFIX}-{_next_timestamp()}{FINAL_SUFFIX}{TEMP_SUFFIX}"

    def open_for_write(self, temp_path: Path):
        """
        Open an in-progress artifact for writing.

        Raises:
            StorageError: If the path is not a temporary artifact or cannot be opened
        """
        if not is_temp_name(Path(temp_path).name):
            raise StorageError(f"Not a temporary artifact name: {temp_path}")

        try:
            return open(temp_path, 'wb')
        except OSError as e:
            raise StorageError(f"Failed to open {temp_path} for writing: {e}")

    def publish(self, temp_path: Path) -> Path:
        """
        Atomically rename a completed temporary artifact to its final name.

        Args:
            temp_path: Path returned by new_temp_path()

        Returns:
            Final artifact path

        Raises:
            StorageError: If the rename fails
        """
        temp_path = Path(temp_path)
        if not is_temp_name(temp_path.name):
            raise StorageError(f"Not a temporary artifact name: {temp_path}")

        final_path = temp_path.with_name(temp_path.name[:-len(TEMP_SUFFIX)])

        try:
            os.replace(temp_path, final_path)
            self._sync_directory()
        except OSError as e:
            raise StorageError(f"Failed to publish {temp_path.name}: {e}")

        return final_path

    def list_entries(self) -> List[str]:
        """
        List every entry name in the backups folder, artifacts or not.

        Raises:
            StorageError: If the folder cannot be read
        """
        try:
            return os.listdir(self.base_path)
        except OSError as e:
            raise StorageError(f"Failed to list backups folder {self.base_path}: {e}")

    def list_artifacts(self) -> List[dict]:
        """
        List complete artifacts, newest first.

        Returns:
            List of dicts with 'name', 'timestamp' and 'size' keys
        """
        artifacts = []

        for name in self.list_entries():
            if not is_final_name(name):
                continue
            try:
                size = (self.base_path / name).stat().st_size
            except FileNotFoundError:
                # Deleted by a concurrent sweep
                continue
            artifacts.append({
                'name': name,
                'timestamp': artifact_timestamp(name),
                'size': size
            })

        artifacts.sort(key=lambda a: a['timestamp'], reverse=True)
        return artifacts

    def delete(self, filename: str):
        """
        Delete one artifact by name.

        Raises:
            StorageError: If the name is not an artifact name or deletion fails
        """
        if not (is_final_name(filename) or is_temp_name(filename)):
            raise StorageError(f"Refusing to delete non-artifact entry: {filename}")

        try:
            (self.base_path / filename).unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {filename}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete {filename}: {e}")

    def _sync_directory(self):
        """Flush the rename to disk (no-op where directories cannot be opened)."""
        try:
            fd = os.open(self.base_path, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            pass
        finally:
            os.close(fd)

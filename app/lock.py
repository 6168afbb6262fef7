"""
Single-owner election for the database backup duty.

Every worker process that could run backups calls
``LockCoordinator.try_acquire('backup_database')`` once at startup. At most
one live process gets a BackupDuty; the lock is held until that process
exits (there is no release). Providers:

- AdvisoryLockProvider: PostgreSQL session advisory lock, for deployments
  sharing a PostgreSQL application database across hosts
- FileLockProvider: flock() on a file in LOCK_DIR, for single-host
  deployments on SQLite

Acquisition is fail-closed: if the provider errors, no duty is granted.
"""

import fcntl
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import text


logger = logging.getLogger(__name__)

BACKUP_DATABASE_LOCK = 'backup_database'

# Advisory lock keys; must stay stable across releases
LOCK_KEYS = {
    BACKUP_DATABASE_LOCK: 42,
}


@dataclass(frozen=True)
class BackupDuty:
    """
    Proof that this process owns a named lock.

    ``handle`` keeps the underlying lock resource (DB connection or file
    descriptor) referenced for the life of the process.
    """

    name: str
    handle: Any = field(default=None, repr=False, compare=False)


class AdvisoryLockProvider:
    """PostgreSQL pg_try_advisory_lock on a dedicated, never-returned connection."""

    def __init__(self, engine):
        self.engine = engine

    def acquire(self, name: str) -> Optional[Any]:
        key = LOCK_KEYS[name]
        connection = self.engine.connect()
        try:
            acquired = connection.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {'key': key}
            ).scalar()
        except Exception:
            connection.close()
            raise

        if not acquired:
            connection.close()
            return None

        # Commit the implicit transaction; session-level locks outlive it
        connection.commit()
        return connection


class FileLockProvider:
    """Exclusive non-blocking flock(); released by the OS when the process dies."""

    def __init__(self, lock_dir: str):
        self.lock_dir = Path(lock_dir)

    def acquire(self, name: str) -> Optional[int]:
        if name not in LOCK_KEYS:
            raise KeyError(name)

        self.lock_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_dir / f"{name}.lock", os.O_CREAT | os.O_RDWR, 0o644)

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return None
        except OSError:
            os.close(fd)
            raise

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        return fd


class LockCoordinator:
    """
    Elects the owner of a duty among cooperating worker processes.
    """

    def __init__(self, provider):
        """
        Args:
            provider: AdvisoryLockProvider or FileLockProvider
        """
        self.provider = provider

    def try_acquire(self, name: str) -> Optional[BackupDuty]:
        """
        Try once, without blocking, to take the named lock.

        Args:
            name: Lock name (a key of LOCK_KEYS)

        Returns:
            BackupDuty if this process now holds the lock, None otherwise
            (including when the lock provider is unavailable)
        """
        if name not in LOCK_KEYS:
            raise ValueError(f"Unknown lock: {name}")

        try:
            handle = self.provider.acquire(name)
        except Exception as e:
            logger.error(f"Lock provider unavailable, not acquiring '{name}': {e}")
            return None

        if handle is None:
            logger.info(f"Lock '{name}' is held by another instance")
            return None

        logger.info(f"Acquired lock '{name}' (pid {os.getpid()})")
        return BackupDuty(name=name, handle=handle)


def lock_provider_for(app, engine):
    """
    Pick the lock provider matching the application database.

    Args:
        app: Flask app (LOCK_DIR config)
        engine: SQLAlchemy engine of the application database
    """
    if engine.dialect.name == 'postgresql':
        return AdvisoryLockProvider(engine)
    return FileLockProvider(app.config['LOCK_DIR'])

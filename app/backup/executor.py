"""
Backup executor - runs one database backup job.

Workflow:
1. Run the dump-and-compress pipeline into a .tmp artifact
2. Publish the artifact (inside the pipeline, only if both stages succeed)
3. Sweep the backups folder with the current retention policy,
   whatever the outcome of steps 1-2
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .pipeline import ConnectionParams, DumpPipeline, PipelineError, PipelineResult
from .policy import RetentionPolicy
from .retention import RetentionCleaner
from .store import BackupStore, StorageError


logger = logging.getLogger(__name__)

# One backup run at a time per process
_run_lock = threading.Lock()


class JobStatus(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class BackupExecutor:
    """
    Orchestrates a database backup run followed by a retention sweep.
    """

    def __init__(self, config, load_policy: Callable[[], RetentionPolicy]):
        """
        Initialize backup executor.

        Args:
            config: Flask config mapping (BACKUP_DIR, DB_*, DUMP_COMMAND, ...)
            load_policy: Returns the current retention policy, read fresh per call
        """
        self.config = config
        self.load_policy = load_policy
        self.result: Optional[PipelineResult] = None
        self.deleted_count = 0

    def execute(self) -> JobStatus:
        """
        Run the backup job.

        Returns:
            JobStatus.SUCCESS or FAILED, or SKIPPED if a run is already in progress
        """
        if not _run_lock.acquire(blocking=False):
            logger.warning("Database Backup skipped, a previous run is still in progress")
            return JobStatus.SKIPPED

        try:
            logger.debug("Database Backup Started")
            status = self._backup()
            self._cleanup()
            return status
        finally:
            _run_lock.release()

    def _backup(self) -> JobStatus:
        try:
            store = BackupStore(self.config['BACKUP_DIR'])
            connection = ConnectionParams.from_config(self.config)
        except (StorageError, PipelineError) as e:
            logger.error(f"Database Backup Failure: {e}")
            return JobStatus.FAILED

        pipeline = DumpPipeline(
            store,
            connection,
            dump_command=self.config.get('DUMP_COMMAND'),
            compress_command=self.config.get('COMPRESS_COMMAND'),
            timeout=self.config.get('BACKUP_TIMEOUT_SECONDS')
        )
        self.result = pipeline.run()

        if not self.result.success:
            logger.error(f"Database Backup Failure: {self.result.error}")
            return JobStatus.FAILED

        logger.debug("Database Backup Success")
        return JobStatus.SUCCESS

    def _cleanup(self):
        """Retention sweep; failures here never change the backup outcome."""
        try:
            policy = self.load_policy()
            cleaner = RetentionCleaner(BackupStore(self.config['BACKUP_DIR']))
            self.deleted_count = cleaner.sweep(policy.keep_last_amount)
        except StorageError as e:
            logger.error(f"Database Backup Cleanup Failure: {e}")


def execute_backup_database(app) -> JobStatus:
    """
    Execute the database backup job inside the given app's context.

    Used as the scheduler's job function (it runs in a worker thread).
    """
    from app.settings import get_backup_policy

    with app.app_context():
        executor = BackupExecutor(app.config, get_backup_policy)
        status = executor.execute()
        logger.info(f"Database backup job finished with status: {status.value}")
        return status

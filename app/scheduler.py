"""
APScheduler configuration for the database backup job.

One cron job, ``backupDatabase``, is registered at bootstrap, and only in the
process that holds the backup duty lock. Config updates reschedule that job in
place; processes without the duty never register or run it. The duty holder
also polls the stored settings, so changes and run requests made through
any other instance reach it without a restart.
"""

import atexit
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from app.backup.executor import execute_backup_database
from app.backup.policy import RetentionPolicy, validate_policy
from app.lock import BACKUP_DATABASE_LOCK, BackupDuty, LockCoordinator, lock_provider_for


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backupDatabase'
SETTINGS_WATCH_JOB_ID = 'backupDatabase_settings'
EXTENSION_KEY = 'backup_scheduler'


def create_background_scheduler(app) -> BackgroundScheduler:
    """
    Build the APScheduler instance (not started).

    Args:
        app: Flask app instance
    """
    executors = {
        'default': ThreadPoolExecutor(max_workers=2)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Never overlap two runs of the same job
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    return BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )


class BackupScheduler:
    """
    Cron driver for the database backup job.

    States of the ``backupDatabase`` registration: unregistered -> scheduled,
    and scheduled -> scheduled on every policy change.
    """

    def __init__(
        self,
        app,
        duty: Optional[BackupDuty] = None,
        job_func: Callable = None,
        scheduler: BackgroundScheduler = None
    ):
        """
        Args:
            app: Flask app instance, passed to the job function
            duty: Token from LockCoordinator.try_acquire, None if not held
            job_func: Called with the app on each tick (default: execute_backup_database)
            scheduler: APScheduler instance (default: create_background_scheduler)
        """
        self.app = app
        self.duty = duty
        self.job_func = job_func or execute_backup_database
        self.scheduler = scheduler if scheduler is not None else create_background_scheduler(app)
        self.timezone = app.config.get('SCHEDULER_TIMEZONE', 'UTC')
        # Last policy applied to the cron registration
        self.policy: Optional[RetentionPolicy] = None

    @property
    def holds_duty(self) -> bool:
        return self.duty is not None

    @property
    def is_registered(self) -> bool:
        return self.scheduler.get_job(BACKUP_JOB_ID) is not None

    def _trigger(self, policy: RetentionPolicy) -> CronTrigger:
        return CronTrigger.from_crontab(policy.cron_expression, timezone=self.timezone)

    def on_bootstrap(self, worker_role: str, policy: RetentionPolicy) -> bool:
        """
        Register the backup cron job if this process is the backup owner.

        Args:
            worker_role: Role of this worker process
            policy: Current backup policy

        Returns:
            True if the job was registered
        """
        if worker_role != self.app.config['BACKUP_WORKER_ROLE']:
            logger.debug(f"Worker role '{worker_role}' does not run database backups")
            return False

        if not self.holds_duty:
            logger.info("Backup lock not held - database backups will not be scheduled here")
            return False

        self.scheduler.add_job(
            func=self.job_func,
            args=[self.app],
            trigger=self._trigger(policy),
            id=BACKUP_JOB_ID,
            name='Database Backup',
            replace_existing=True,
            **({} if policy.enabled else {'next_run_time': None})
        )
        self.policy = policy

        logger.info(
            f"Scheduled database backup ({policy.cron_expression}, "
            f"{'enabled' if policy.enabled else 'paused'})"
        )
        return True

    def apply_policy(self, policy: RetentionPolicy) -> bool:
        """
        Update the live cron registration in place.

        Returns:
            True if the job was rescheduled
        """
        if not self.holds_duty:
            return False

        if not self.is_registered:
            logger.warning("Database backup job is not registered, ignoring policy change")
            return False

        self.scheduler.reschedule_job(BACKUP_JOB_ID, trigger=self._trigger(policy))
        if not policy.enabled:
            self.scheduler.pause_job(BACKUP_JOB_ID)
        self.policy = policy

        logger.info(
            f"Rescheduled database backup ({policy.cron_expression}, "
            f"{'enabled' if policy.enabled else 'paused'})"
        )
        return True

    def on_config_update(self, new_policy: RetentionPolicy, old_policy: Optional[RetentionPolicy]) -> bool:
        """
        React to a stored settings change.

        The very first observation of the config (no old policy) is ignored,
        as is every update in a process without the backup duty.
        """
        if old_policy is None or not self.holds_duty:
            return False
        return self.apply_policy(new_policy)

    @staticmethod
    def on_config_validate(candidate: RetentionPolicy):
        """
        Reject a candidate policy before it is stored anywhere.

        Raises:
            InvalidPolicyError: If the cron expression or keep-count is invalid
        """
        validate_policy(candidate)

    def trigger_now(self) -> bool:
        """
        Queue a one-off backup run about one second from now.

        Returns:
            False if this process does not hold the backup duty
        """
        if not self.holds_duty:
            return False

        now = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.job_func,
            args=[self.app],
            trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
            id=f"{BACKUP_JOB_ID}_manual_{int(now.timestamp() * 1000)}",
            name='Database Backup (manual)',
            replace_existing=False
        )

        logger.info("Manually triggered database backup")
        return True

    def watch_settings(self, interval: int) -> bool:
        """
        Poll the stored settings every `interval` seconds.

        Settings changed through another instance (another gunicorn worker
        or host) reach the duty holder this way.
        """
        if not self.holds_duty:
            return False

        self.scheduler.add_job(
            func=self.sync_settings,
            trigger=IntervalTrigger(seconds=interval),
            id=SETTINGS_WATCH_JOB_ID,
            name='Database Backup Settings Watch',
            replace_existing=True
        )
        return True

    def sync_settings(self) -> bool:
        """
        Apply the stored policy if it differs from the live one, and run
        a backup if another instance requested one.

        Returns:
            True if the policy was applied or a run was queued
        """
        if not self.holds_duty:
            return False

        from app import db
        from app.settings import get_backup_policy, pop_backup_run_request

        with self.app.app_context():
            try:
                policy = get_backup_policy()
                run_requested = pop_backup_run_request()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Could not read backup settings: {e}")
                return False

        applied = False
        if policy != self.policy:
            logger.info(f"Backup settings changed by another instance: {policy.to_dict()}")
            applied = self.on_config_update(policy, self.policy)

        if run_requested:
            self.trigger_now()

        return applied or run_requested

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Backup scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Backup scheduler stopped")

    def describe(self) -> dict:
        job = self.scheduler.get_job(BACKUP_JOB_ID)
        next_run = getattr(job, 'next_run_time', None) if job else None
        # Jobs added before start() have no next_run_time until the scheduler starts, unless paused
        paused = job is not None and hasattr(job, 'next_run_time') and next_run is None

        return {
            'job_id': BACKUP_JOB_ID,
            'holds_duty': self.holds_duty,
            'registered': job is not None,
            'paused': paused,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger) if job else None,
            'running': bool(self.scheduler.running)
        }


def get_backup_scheduler(app) -> Optional[BackupScheduler]:
    return app.extensions.get(EXTENSION_KEY)


def bootstrap_backup_scheduler(app) -> BackupScheduler:
    """
    Acquire the backup lock (designated worker role only), build the
    scheduler and register the backup job.

    Args:
        app: Flask app instance

    Returns:
        The BackupScheduler, also stored in app.extensions
    """
    from app import db
    from app.settings import get_backup_policy

    worker_role = app.config['WORKER_ROLE']

    with app.app_context():
        duty = None
        if worker_role == app.config['BACKUP_WORKER_ROLE']:
            coordinator = LockCoordinator(lock_provider_for(app, db.engine))
            duty = coordinator.try_acquire(BACKUP_DATABASE_LOCK)

        backup_scheduler = BackupScheduler(app, duty)
        app.extensions[EXTENSION_KEY] = backup_scheduler

        if backup_scheduler.on_bootstrap(worker_role, get_backup_policy()):
            backup_scheduler.watch_settings(app.config.get('SETTINGS_POLL_SECONDS', 30))

    if backup_scheduler.holds_duty and app.config.get('SCHEDULER_AUTOSTART', True):
        backup_scheduler.start()
        atexit.register(backup_scheduler.shutdown)

    return backup_scheduler

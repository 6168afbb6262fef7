"""
Backup settings persistence.

Reads the current RetentionPolicy from the backup_settings row and applies
updates: validate first, persist, then hand the new policy to the running
scheduler so the cron job is rescheduled without a restart. Instances
without the backup duty only store the change; the owner picks it up on
its next settings poll (BackupScheduler.sync_settings).
"""

import logging
from datetime import datetime
from typing import Optional

from flask import current_app

from app import db
from app.backup.policy import RetentionPolicy
from app.models import BackupSettings
from app.scheduler import BackupScheduler, get_backup_scheduler


logger = logging.getLogger(__name__)


def default_policy(config) -> RetentionPolicy:
    return RetentionPolicy(
        cron_expression=config['BACKUP_CRON_EXPRESSION'],
        enabled=config['BACKUP_ENABLED'],
        keep_last_amount=config['BACKUP_KEEP_LAST_AMOUNT']
    )


def get_backup_policy() -> RetentionPolicy:
    """
    Current backup policy, read fresh from the database.

    Falls back to the configured defaults if the settings row is missing.
    """
    settings = BackupSettings.query.first()
    if settings is None:
        return default_policy(current_app.config)
    return settings.to_policy()


def update_backup_policy(data: dict) -> RetentionPolicy:
    """
    Validate, store and apply a backup policy change.

    Args:
        data: Partial policy dict (cron_expression, enabled, keep_last_amount)

    Returns:
        The new policy

    Raises:
        InvalidPolicyError: If the candidate policy is rejected (nothing is changed)
    """
    settings = BackupSettings.query.first()
    old_policy: Optional[RetentionPolicy] = settings.to_policy() if settings else None

    candidate = RetentionPolicy.from_dict(data, base=old_policy or default_policy(current_app.config))
    BackupScheduler.on_config_validate(candidate)

    if settings is None:
        settings = BackupSettings(id=1)
        db.session.add(settings)
    settings.apply_policy(candidate)
    db.session.commit()

    logger.info(f"Backup settings updated: {candidate.to_dict()}")

    scheduler = get_backup_scheduler(current_app)
    if scheduler is not None:
        scheduler.on_config_update(candidate, old_policy)

    return candidate


def request_backup_run() -> datetime:
    """
    Record a manual run request for whichever instance holds the backup duty.

    Returns:
        Time of the request (UTC)
    """
    settings = BackupSettings.query.first()
    if settings is None:
        settings = BackupSettings(id=1)
        settings.apply_policy(default_policy(current_app.config))
        db.session.add(settings)

    settings.run_requested_at = datetime.utcnow()
    db.session.commit()

    logger.info("Database backup run requested for the backup owner")
    return settings.run_requested_at


def pop_backup_run_request() -> bool:
    """
    Consume a pending manual run request.

    Returns:
        True if a request was pending (it is cleared)
    """
    settings = BackupSettings.query.first()
    if settings is None or settings.run_requested_at is None:
        return False

    settings.run_requested_at = None
    db.session.commit()
    return True

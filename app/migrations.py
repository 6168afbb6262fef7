"""
Database schema setup for dbkeeper.

Creates tables without requiring Alembic and seeds the backup settings row
from the configured defaults.
"""

import logging
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, OperationalError
from app import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Initialize database schema and default settings.

    It's designed to be called from multiple Gunicorn workers without conflicts.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        if 'backup_settings' not in existing_tables:
            logger.info("backup_settings table not found - creating database schema")
            try:
                db.create_all()
                logger.info("Database schema created successfully")
            except OperationalError as e:
                # Another worker created it first
                logger.warning(f"Schema creation raced with another worker: {e}")
                db.session.rollback()

        seed_backup_settings(app)


def seed_backup_settings(app):
    """
    Insert the default backup settings row if none exists.

    Returns:
        True if a row was inserted
    """
    from app.models import BackupSettings

    if BackupSettings.query.first() is not None:
        return False

    settings = BackupSettings(
        id=1,
        cron_expression=app.config['BACKUP_CRON_EXPRESSION'],
        enabled=app.config['BACKUP_ENABLED'],
        keep_last_amount=app.config['BACKUP_KEEP_LAST_AMOUNT']
    )
    db.session.add(settings)

    try:
        db.session.commit()
    except IntegrityError:
        # Seeded concurrently by another worker
        db.session.rollback()
        return False

    logger.info(f"Seeded default backup settings: {settings}")
    return True

import os
import shlex


def _split_command(value, default):
    """Split a command line from the environment into an argv list."""
    if not value:
        return list(default)
    return shlex.split(value)


def _optional_int(value):
    if value in (None, ''):
        return None
    return int(value)


class Config:
    """Base configuration"""

    # Application database (backup settings, advisory locks)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/dbkeeper.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Backups folder
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '/data/backups'
    LOCK_DIR = os.environ.get('LOCK_DIR') or '/data/locks'
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Database being backed up
    DB_CONNECTION_TYPE = os.environ.get('DB_CONNECTION_TYPE', 'host')  # 'url' or 'host'
    DB_URL = os.environ.get('DB_URL')
    DB_USERNAME = os.environ.get('DB_USERNAME', 'postgres')
    DB_HOSTNAME = os.environ.get('DB_HOSTNAME', 'database')
    DB_PASSWORD = os.environ.get('DB_PASSWORD', 'postgres')

    # External programs
    DUMP_COMMAND = _split_command(os.environ.get('DUMP_COMMAND'), ['pg_dumpall'])
    COMPRESS_COMMAND = _split_command(os.environ.get('COMPRESS_COMMAND'), ['gzip'])
    BACKUP_TIMEOUT_SECONDS = _optional_int(os.environ.get('BACKUP_TIMEOUT_SECONDS'))

    # Default backup policy (seeded into backup_settings on first start)
    BACKUP_CRON_EXPRESSION = os.environ.get('BACKUP_CRON_EXPRESSION', '0 02 * * *')
    BACKUP_ENABLED = os.environ.get('BACKUP_ENABLED', 'true').lower() == 'true'
    BACKUP_KEEP_LAST_AMOUNT = int(os.environ.get('BACKUP_KEEP_LAST_AMOUNT', 14))

    # Scheduler
    # WORKER_ROLE is set per gunicorn worker by docker/gunicorn_conf.py
    WORKER_ROLE = os.environ.get('WORKER_ROLE', 'scheduler')
    BACKUP_WORKER_ROLE = 'scheduler'
    SCHEDULER_TIMEZONE = 'UTC'
    SCHEDULER_AUTOSTART = True
    # How often the backup owner re-reads settings stored by other instances
    SETTINGS_POLL_SECONDS = int(os.environ.get('SETTINGS_POLL_SECONDS', 30))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "dbkeeper.db")}'
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    LOCK_DIR = os.path.join(DATA_DIR, 'locks')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration (paths are overridden by the test fixtures)"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_AUTOSTART = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}

"""
Shared pytest fixtures for dbkeeper tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Backups folder and artifact helpers
- Fake dump/compress commands (the Python interpreter standing in for
  pg_dumpall and gzip)
"""

import pytest

from app import create_app, db as _db
from app.backup.policy import RetentionPolicy
from app.backup.store import BackupStore
from tests.fakes import FAKE_DUMP, FAKE_GZIP


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite, a temporary backups folder and fake stages.
    """
    app = create_app('testing', {
        'BACKUP_DIR': str(tmp_path / 'backups'),
        'LOCK_DIR': str(tmp_path / 'locks'),
        'LOG_DIR': str(tmp_path / 'logs'),
        'WORKER_ROLE': 'scheduler',
        'DB_CONNECTION_TYPE': 'host',
        'DB_USERNAME': 'postgres',
        'DB_HOSTNAME': 'database',
        'DB_PASSWORD': 'secret',
        'DUMP_COMMAND': FAKE_DUMP,
        'COMPRESS_COMMAND': FAKE_GZIP,
    })

    yield app

    from app.scheduler import get_backup_scheduler
    scheduler = get_backup_scheduler(app)
    if scheduler is not None:
        scheduler.shutdown()


@pytest.fixture(scope='function')
def db(app):
    """
    Database with all tables and the seeded settings row.

    Each test gets a fresh database.
    """
    with app.app_context():
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / 'store'
    path.mkdir()
    return path


@pytest.fixture
def store(backup_dir):
    return BackupStore(str(backup_dir))


@pytest.fixture
def make_entries(backup_dir):
    """Create empty files with the given names in the backups folder."""
    def _make(*names):
        for name in names:
            (backup_dir / name).write_bytes(b'data')
        return backup_dir
    return _make


@pytest.fixture
def policy():
    return RetentionPolicy(cron_expression='0 02 * * *', enabled=True, keep_last_amount=14)

# Gunicorn configuration for dbkeeper
# Every worker competes for the backup lock; the lock elects the one owner

import os
import logging

logger = logging.getLogger('gunicorn.error')

DEFAULT_WORKER_ROLE = 'scheduler'


def post_fork(server, worker):
    """
    Called in the worker right after fork, before the app is loaded.

    Workers take the role from the arbiter's WORKER_ROLE environment
    variable, 'scheduler' if unset. Every 'scheduler' worker tries the
    backup lock and exactly one wins, so a respawned worker can take over
    after the owner dies. Set WORKER_ROLE=web to keep a host out of the
    election entirely.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (age starts at 1)
    """
    role = os.environ.get('WORKER_ROLE') or DEFAULT_WORKER_ROLE
    os.environ['WORKER_ROLE'] = role

    if role == DEFAULT_WORKER_ROLE:
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): scheduler role, will compete for backup lock")
    else:
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): {role} role (database backups disabled)")

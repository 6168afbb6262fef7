"""
Database backup job routes - status, manual trigger and artifact listing.
"""

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.backup.store import BackupStore, StorageError
from app.scheduler import get_backup_scheduler
from app.settings import request_backup_run


bp = Blueprint('jobs', __name__, url_prefix='/api/jobs')


@bp.route('/backup-database', methods=['GET'])
def get_backup_job():
    """
    Get the state of the database backup job in this process.

    Returns:
        JSON with job registration, next run and lock ownership
    """
    scheduler = get_backup_scheduler(current_app)

    if scheduler is None:
        return jsonify({'holds_duty': False, 'registered': False})

    return jsonify(scheduler.describe())


@bp.route('/backup-database/run', methods=['POST'])
def run_backup_now():
    """
    Queue a database backup for immediate execution.

    Only the process holding the backup lock runs backups. Any other
    instance stores the request for the owner's next settings poll.

    Returns:
        202 with 'queued' True if this process queued the run itself
    """
    scheduler = get_backup_scheduler(current_app)

    if scheduler is not None and scheduler.trigger_now():
        return jsonify({
            'message': 'Database backup has been queued for immediate execution',
            'queued': True
        }), 202

    try:
        requested_at = request_backup_run()
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({'error': f'Could not record backup request: {e}'}), 500

    return jsonify({
        'message': 'Database backup requested from the instance owning the backup duty',
        'queued': False,
        'requested_at': requested_at.isoformat()
    }), 202


@bp.route('/backup-database/artifacts', methods=['GET'])
def list_backup_artifacts():
    """
    List complete backup artifacts, newest first.

    Returns:
        JSON array of {'name', 'timestamp', 'size'}
    """
    try:
        artifacts = BackupStore(current_app.config['BACKUP_DIR']).list_artifacts()
    except StorageError as e:
        return jsonify({'error': str(e)}), 500

    return jsonify(artifacts)

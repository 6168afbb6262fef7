"""
Settings routes - database backup schedule and retention.
"""

import logging
from flask import Blueprint, jsonify, request

from app.backup.policy import InvalidPolicyError
from app.models import BackupSettings
from app.settings import get_backup_policy, update_backup_policy


bp = Blueprint('settings', __name__, url_prefix='/api/settings')
logger = logging.getLogger(__name__)


@bp.route('/backup', methods=['GET'])
def get_backup_settings():
    """
    Get database backup settings.

    Returns:
        JSON with cron_expression, enabled, keep_last_amount
    """
    policy = get_backup_policy()
    settings = BackupSettings.query.first()

    data = policy.to_dict()
    data['updated_at'] = settings.updated_at.isoformat() if settings else None
    return jsonify(data)


@bp.route('/backup', methods=['PUT'])
def update_backup_settings():
    """
    Update database backup settings.

    Request body (all optional):
        - cron_expression: 5-field crontab expression
        - enabled: bool
        - keep_last_amount: number of backups to keep

    Returns:
        JSON with the new settings, or 400 if they are rejected
    """
    data = request.get_json(silent=True)

    if not isinstance(data, dict):
        return jsonify({'error': 'JSON object body is required'}), 400

    try:
        policy = update_backup_policy(data)
    except InvalidPolicyError as e:
        logger.warning(f"Rejected backup settings update: {e}")
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'message': 'Backup settings updated successfully',
        **policy.to_dict()
    })

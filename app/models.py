from datetime import datetime
from app import db
from app.backup.policy import RetentionPolicy


class BackupSettings(db.Model):
    """Database backup schedule and retention (single row)"""
    __tablename__ = 'backup_settings'

    id = db.Column(db.Integer, primary_key=True)
    cron_expression = db.Column(db.String(100), nullable=False)
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    keep_last_amount = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    # Set by any instance, consumed by the instance holding the backup duty
    run_requested_at = db.Column(db.DateTime, nullable=True)

    def to_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            cron_expression=self.cron_expression,
            enabled=self.enabled,
            keep_last_amount=self.keep_last_amount
        )

    def apply_policy(self, policy: RetentionPolicy):
        self.cron_expression = policy.cron_expression
        self.enabled = policy.enabled
        self.keep_last_amount = policy.keep_last_amount

    def __repr__(self):
        return f'<BackupSettings cron={self.cron_expression} enabled={self.enabled} keep={self.keep_last_amount}>'

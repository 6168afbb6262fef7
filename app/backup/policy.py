"""
Backup policy value object and cron validation.
"""

from dataclasses import dataclass, replace

from apscheduler.triggers.cron import CronTrigger


DEFAULT_CRON_EXPRESSION = '0 02 * * *'
DEFAULT_KEEP_LAST_AMOUNT = 14


class InvalidPolicyError(ValueError):
    """Raised when a candidate backup policy fails validation."""
    pass


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Snapshot of the database backup settings.

    Instances are immutable; a config update replaces the whole policy.
    """

    cron_expression: str = DEFAULT_CRON_EXPRESSION
    enabled: bool = True
    keep_last_amount: int = DEFAULT_KEEP_LAST_AMOUNT

    @classmethod
    def from_dict(cls, data: dict, base: 'RetentionPolicy' = None) -> 'RetentionPolicy':
        """
        Build a policy from a JSON-style dict.

        Keys missing from ``data`` are taken from ``base`` (or the defaults).

        Raises:
            InvalidPolicyError: If a field has the wrong type
        """
        policy = base or cls()
        changes = {}

        if 'cron_expression' in data:
            if not isinstance(data['cron_expression'], str):
                raise InvalidPolicyError('cron_expression must be a string')
            changes['cron_expression'] = data['cron_expression'].strip()

        if 'enabled' in data:
            if not isinstance(data['enabled'], bool):
                raise InvalidPolicyError('enabled must be a boolean')
            changes['enabled'] = data['enabled']

        if 'keep_last_amount' in data:
            value = data['keep_last_amount']
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPolicyError('keep_last_amount must be an integer')
            changes['keep_last_amount'] = value

        return replace(policy, **changes)

    def to_dict(self) -> dict:
        return {
            'cron_expression': self.cron_expression,
            'enabled': self.enabled,
            'keep_last_amount': self.keep_last_amount
        }


def validate_cron_expression(expression: str) -> bool:
    """
    Check that a standard 5-field crontab expression is well formed.

    Args:
        expression: Crontab expression, e.g. '0 02 * * *'

    Returns:
        True if APScheduler can build a trigger from it, False otherwise
    """
    if not isinstance(expression, str) or not expression.strip():
        return False

    try:
        CronTrigger.from_crontab(expression, timezone='UTC')
    except ValueError:
        return False

    return True


def validate_policy(policy: RetentionPolicy):
    """
    Validate a candidate policy before it is accepted.

    Raises:
        InvalidPolicyError: If the cron expression or keep-count is invalid
    """
    if not validate_cron_expression(policy.cron_expression):
        raise InvalidPolicyError(f"Invalid cron expression {policy.cron_expression}")

    if policy.keep_last_amount < 0:
        raise InvalidPolicyError(
            f"keep_last_amount must be zero or greater, got {policy.keep_last_amount}"
        )

"""
Rotation Policy — per secret-type rotation intervals and due-date checks.

Pure and stateless: the store uses it to stamp ``rotationDue`` and every
report uses it to compute ``needsRotation``.
"""
from enum import Enum
from typing import Optional, Union
from datetime import datetime, timedelta, timezone


class SecretType(str, Enum):
    """Kinds of secrets the vault holds."""

    API_KEY = "api_key"
    JWT_SECRET = "jwt_secret"
    ENCRYPTION_KEY = "encryption_key"
    DATABASE = "database"
    OAUTH = "oauth"
    SSH_KEY = "ssh_key"
    TOKEN = "token"


# days between rotations, one entry per SecretType
ROTATION_INTERVALS: dict[SecretType, int] = {
    SecretType.API_KEY: 90,
    SecretType.JWT_SECRET: 180,
    SecretType.ENCRYPTION_KEY: 365,
    SecretType.DATABASE: 180,
    SecretType.OAUTH: 30,
    SecretType.SSH_KEY: 180,
    SecretType.TOKEN: 30,
}

DEFAULT_ROTATION_DAYS = 90


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def type_name(secret_type: Union[SecretType, str]) -> str:
    """Plain string form of a known or unknown secret type."""
    if isinstance(secret_type, SecretType):
        return secret_type.value
    return secret_type


def rotation_interval(secret_type: Union[SecretType, str]) -> timedelta:
    """Return the rotation interval for a secret type.

    Unknown type strings fall back to ``DEFAULT_ROTATION_DAYS``.
    """
    try:
        days = ROTATION_INTERVALS[SecretType(secret_type)]
    except ValueError:
        days = DEFAULT_ROTATION_DAYS
    return timedelta(days=days)


def calculate_next_rotation_date(
    secret_type: Union[SecretType, str],
    now: Optional[datetime] = None,
) -> datetime:
    """Return ``now + interval(secret_type)``."""
    return (now or utcnow()) + rotation_interval(secret_type)


def is_rotation_needed(rotation_due: datetime, now: Optional[datetime] = None) -> bool:
    """A secret needs rotation once its due date is reached."""
    return rotation_due <= (now or utcnow())


def days_until_rotation(rotation_due: datetime, now: Optional[datetime] = None) -> float:
    """Days left before rotation is due, floored at zero."""
    remaining = rotation_due - (now or utcnow())
    return max(0.0, remaining.total_seconds() / 86400)

"""
dbrotation/config.py — Runtime settings for the rotation function.

All settings come from environment variables so the same code runs as a
Lambda function (variables set on the function) and from the CLI.

Environment variables:
    PASSWORD_LENGTH       length of generated passwords (default: 30)
    PASSWORD_COMPLEXITY   low | medium | high (default: high)
    EXCLUDE_CHARACTERS    characters never used in passwords (default: /@"'\\)
    DB_CONNECT_TIMEOUT    seconds allowed for each database connection (default: 10)
    MAX_RETRY_COUNT       retries per step when the CLI drives a rotation (default: 3)
    AWS_REGION            Secrets Manager region (default: us-east-1)
    AUDIT_LOG_PATH        optional file that receives audit events as JSON lines
    AUDIT_LOG_GROUP       optional CloudWatch Logs group for audit events
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dbrotation.payload import COMPLEXITY_TIERS

DEFAULT_PASSWORD_LENGTH = 30
DEFAULT_PASSWORD_COMPLEXITY = "high"
DEFAULT_EXCLUDE_CHARACTERS = "/@\"'\\"
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_MAX_RETRY_COUNT = 3
DEFAULT_REGION = "us-east-1"


def _int_setting(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class RotationSettings:
    password_length: int = DEFAULT_PASSWORD_LENGTH
    password_complexity: str = DEFAULT_PASSWORD_COMPLEXITY
    exclude_characters: str = DEFAULT_EXCLUDE_CHARACTERS
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    max_retry_count: int = DEFAULT_MAX_RETRY_COUNT
    region: str = DEFAULT_REGION
    audit_log_path: Path | None = None
    audit_log_group: str | None = None

    def __post_init__(self) -> None:
        if self.password_complexity not in COMPLEXITY_TIERS:
            raise ValueError(
                f"PASSWORD_COMPLEXITY must be one of {sorted(COMPLEXITY_TIERS)}, "
                f"got {self.password_complexity!r}"
            )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "RotationSettings":
        """Build settings from ``env`` (defaults to ``os.environ``)."""
        if env is None:
            env = os.environ

        audit_path = env.get("AUDIT_LOG_PATH")
        return cls(
            password_length=_int_setting(env, "PASSWORD_LENGTH", DEFAULT_PASSWORD_LENGTH, 8),
            password_complexity=env.get("PASSWORD_COMPLEXITY", DEFAULT_PASSWORD_COMPLEXITY).lower(),
            exclude_characters=env.get("EXCLUDE_CHARACTERS", DEFAULT_EXCLUDE_CHARACTERS),
            connect_timeout=_int_setting(env, "DB_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT, 1),
            max_retry_count=_int_setting(env, "MAX_RETRY_COUNT", DEFAULT_MAX_RETRY_COUNT, 0),
            region=env.get("AWS_REGION", DEFAULT_REGION),
            audit_log_path=Path(audit_path) if audit_path else None,
            audit_log_group=env.get("AUDIT_LOG_GROUP") or None,
        )

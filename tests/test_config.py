"""Tests for RotationSettings."""

from pathlib import Path

import pytest

from dbrotation.config import RotationSettings


class TestRotationSettings:
    """Tests for loading settings from the environment."""

    def test_defaults(self) -> None:
        """Test defaults when no variable is set."""
        settings = RotationSettings.from_env({})

        assert settings.password_length == 30
        assert settings.password_complexity == "high"
        assert settings.exclude_characters == "/@\"'\\"
        assert settings.connect_timeout == 10
        assert settings.max_retry_count == 3
        assert settings.region == "us-east-1"
        assert settings.audit_log_path is None
        assert settings.audit_log_group is None

    def test_custom_values(self) -> None:
        """Test every variable is read."""
        settings = RotationSettings.from_env({
            "PASSWORD_LENGTH": "24",
            "PASSWORD_COMPLEXITY": "Medium",
            "EXCLUDE_CHARACTERS": "%",
            "DB_CONNECT_TIMEOUT": "20",
            "MAX_RETRY_COUNT": "0",
            "AWS_REGION": "eu-central-1",
            "AUDIT_LOG_PATH": "/tmp/audit.log",
            "AUDIT_LOG_GROUP": "/db/rotation-audit",
        })

        assert settings.password_length == 24
        assert settings.password_complexity == "medium"
        assert settings.exclude_characters == "%"
        assert settings.connect_timeout == 20
        assert settings.max_retry_count == 0
        assert settings.region == "eu-central-1"
        assert settings.audit_log_path == Path("/tmp/audit.log")
        assert settings.audit_log_group == "/db/rotation-audit"

    def test_reads_os_environ(self, monkeypatch) -> None:
        """Test os.environ is the default source."""
        monkeypatch.setenv("DB_CONNECT_TIMEOUT", "15")

        assert RotationSettings.from_env().connect_timeout == 15

    @pytest.mark.parametrize(
        "env",
        [
            {"PASSWORD_LENGTH": "long"},
            {"PASSWORD_LENGTH": "4"},
            {"DB_CONNECT_TIMEOUT": "0"},
            {"MAX_RETRY_COUNT": "-1"},
            {"PASSWORD_COMPLEXITY": "extreme"},
        ],
    )
    def test_invalid_values(self, env) -> None:
        """Test invalid values fail at load time."""
        with pytest.raises(ValueError):
            RotationSettings.from_env(env)

"""Tests for duration parsing and settings validation."""

from datetime import timedelta

import pytest

from ceboelha.core.durations import parse_duration, to_milliseconds
from ceboelha.core.exceptions import ConfigurationError
from ceboelha.core.settings import load_settings
from ceboelha.testing.utils import TEST_SECRET, create_test_settings


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("15m", timedelta(minutes=15)),
            ("12h", timedelta(hours=12)),
            ("7d", timedelta(days=7)),
            (" 30m ", timedelta(minutes=30)),
        ],
    )
    def test_valid_durations(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["15", "m", "15s", "1.5h", "-1d", "", "7 d"])
    def test_invalid_durations(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)

    def test_zero_is_rejected(self):
        with pytest.raises(ValueError, match="greater than zero"):
            parse_duration("0m")

    def test_timedelta_passes_through(self):
        assert parse_duration(timedelta(seconds=90)) == timedelta(seconds=90)

    def test_to_milliseconds(self):
        assert to_milliseconds(timedelta(minutes=15)) == 900_000


class TestSettings:
    """Tests for CeboelhaSettings and load_settings."""

    def test_defaults(self):
        settings = create_test_settings()
        assert settings.jwt_access_expires_in == timedelta(minutes=15)
        assert settings.jwt_refresh_expires_in == timedelta(days=7)
        assert settings.max_login_attempts == 5
        assert settings.lockout_timedelta == timedelta(minutes=15)
        assert settings.is_production is False

    def test_duration_strings_are_parsed(self):
        settings = create_test_settings(
            jwt_access_expires_in="5m", jwt_refresh_expires_in="30d"
        )
        assert settings.jwt_access_expires_in == timedelta(minutes=5)
        assert settings.jwt_refresh_expires_in == timedelta(days=30)

    def test_window_durations_become_milliseconds(self):
        settings = create_test_settings(
            auth_rate_limit_window="15m",
            lockout_duration="1h",
            global_rate_limit_window="30000",
            sensitive_rate_limit_window=timedelta(minutes=5),
        )
        assert settings.auth_rate_limit_window == 900_000
        assert settings.lockout_duration == 3_600_000
        assert settings.lockout_timedelta == timedelta(hours=1)
        assert settings.global_rate_limit_window == 30_000
        assert settings.sensitive_rate_limit_window == 300_000

    def test_bad_window_is_fatal(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(
                _env_file=None,
                aws_bucket_name="bucket",
                jwt_access_secret=TEST_SECRET,
                rate_limit_window="a minute",
            )
        assert "rate_limit_window" in exc_info.value.invalid_fields

    def test_base_path_gets_trailing_slash(self):
        assert create_test_settings(base_path="data").s3_base_path == "data/"
        assert create_test_settings(base_path="/data/").s3_base_path == "data/"
        assert create_test_settings(base_path="").s3_base_path == ""

    def test_production_flag(self):
        assert create_test_settings(environment="Production").is_production is True

    def test_short_secret_is_fatal(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(
                _env_file=None, aws_bucket_name="bucket", jwt_access_secret="too-short"
            )
        assert "jwt_access_secret" in exc_info.value.invalid_fields

    def test_bad_duration_is_fatal(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(
                _env_file=None,
                aws_bucket_name="bucket",
                jwt_access_secret=TEST_SECRET,
                jwt_access_expires_in="15 minutes",
            )
        assert "jwt_access_expires_in" in exc_info.value.invalid_fields

    def test_bcrypt_rounds_bounds(self):
        with pytest.raises(ConfigurationError):
            load_settings(
                _env_file=None,
                aws_bucket_name="bucket",
                jwt_access_secret=TEST_SECRET,
                bcrypt_salt_rounds=3,
            )

"""Testing utilities for Ceboelha."""

from datetime import datetime, timedelta, timezone

from ceboelha.core.settings import CeboelhaSettings

TEST_SECRET = "test-secret-key-for-testing-only-0123456789"


def create_test_settings(
    bucket_name: str = "test-bucket",
    base_path: str = "test/",
    secret_key: str = TEST_SECRET,
    **overrides
) -> CeboelhaSettings:
    """Create Ceboelha settings for testing.

    Uses the cheapest bcrypt cost and generous route limits, so tests that
    are not about rate limiting never hit them.

    Args:
        bucket_name: The S3 bucket name for tests
        base_path: The S3 base path for tests
        secret_key: Access token signing secret
        **overrides: Additional settings to override

    Returns:
        CeboelhaSettings instance configured for testing
    """
    values = {
        "aws_bucket_name": bucket_name,
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "aws_default_region": "us-east-1",
        "aws_url": "http://localhost:4566",
        "s3_base_path": base_path,
        "jwt_access_secret": secret_key,
        "bcrypt_salt_rounds": 4,
        "auth_rate_limit_max": 1000,
        "sensitive_rate_limit_max": 1000,
        "rate_limit_max": 1000,
        "global_rate_limit_max": 10_000,
    }
    values.update(overrides)
    return CeboelhaSettings(_env_file=None, **values)


class FrozenClock:
    """A clock that only moves when told to.

    Starts at the current wall-clock second so that tokens it stamps are also
    valid for libraries that check expiry against the real time.

    Example:
        >>> clock = FrozenClock()
        >>> clock.advance(minutes=16)
    """

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        """Move the clock forward by ``delta`` or ``timedelta(**kwargs)``."""
        self.now += delta if delta is not None else timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when

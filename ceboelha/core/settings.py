"""Settings for the Ceboelha auth core.

Settings are read from the environment (and an optional ``.env`` file) by
pydantic-settings. Everything is validated eagerly: a missing or short signing
secret, or an unparsable duration, aborts startup instead of failing on the
first request.
"""

from datetime import timedelta
from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ceboelha.core.durations import parse_duration, to_milliseconds
from ceboelha.core.exceptions import ConfigurationError

MIN_SECRET_LENGTH = 32


class CeboelhaSettings(BaseSettings):
    """Typed configuration for the auth core.

    Durations given as ``15m``/``7d`` strings are parsed once here into
    ``timedelta`` values. Window and lockout values are milliseconds and also
    accept the same duration strings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Ceboelha API"
    environment: str = "development"
    log_level: str = "INFO"

    # S3 storage
    aws_bucket_name: str
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_default_region: str = "us-east-1"
    aws_url: str | None = None
    aws_retry_attempts: int = 3
    s3_base_path: str = "ceboelha/"

    # Tokens
    jwt_access_secret: str
    jwt_access_expires_in: timedelta = timedelta(minutes=15)
    jwt_refresh_expires_in: timedelta = timedelta(days=7)
    jwt_issuer: str = "ceboelha-api"
    jwt_audience: str = "ceboelha-app"
    jwt_algorithm: str = "HS256"

    # Passwords
    bcrypt_salt_rounds: int = Field(12, ge=4, le=31)

    # Rate limiting (windows in milliseconds)
    rate_limit_window: int = Field(60_000, gt=0)
    rate_limit_max: int = Field(100, gt=0)
    auth_rate_limit_window: int = Field(900_000, gt=0)
    auth_rate_limit_max: int = Field(5, gt=0)
    sensitive_rate_limit_window: int = Field(300_000, gt=0)
    sensitive_rate_limit_max: int = Field(3, gt=0)
    global_rate_limit_window: int = Field(60_000, gt=0)
    global_rate_limit_max: int = Field(200, gt=0)
    rate_limit_sweep_interval: float = Field(60.0, gt=0)
    trust_proxy_headers: bool = False

    # Brute force protection
    max_login_attempts: int = Field(5, gt=0)
    lockout_duration: int = Field(900_000, gt=0)

    # Retention for forensic lookups
    refresh_token_retention_days: int = Field(30, ge=0)
    login_attempt_retention_days: int = Field(30, ge=1)

    @field_validator("jwt_access_expires_in", "jwt_refresh_expires_in", mode="before")
    @classmethod
    def _parse_durations(cls, value):
        return parse_duration(value)

    @field_validator(
        "rate_limit_window",
        "auth_rate_limit_window",
        "sensitive_rate_limit_window",
        "global_rate_limit_window",
        "lockout_duration",
        mode="before",
    )
    @classmethod
    def _parse_windows(cls, value):
        # Plain numbers are milliseconds; "15m" style strings are converted
        if isinstance(value, str) and not value.strip().isdigit():
            return to_milliseconds(parse_duration(value))
        if isinstance(value, timedelta):
            return to_milliseconds(value)
        return value

    @field_validator("jwt_access_secret")
    @classmethod
    def _check_secret_length(cls, value: str) -> str:
        if len(value) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"must be at least {MIN_SECRET_LENGTH} characters long"
            )
        return value

    @field_validator("s3_base_path")
    @classmethod
    def _normalize_base_path(cls, value: str) -> str:
        value = value.strip("/")
        return f"{value}/" if value else ""

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def lockout_timedelta(self) -> timedelta:
        return timedelta(milliseconds=self.lockout_duration)


def load_settings(**overrides) -> CeboelhaSettings:
    """Build and validate settings, turning validation failures into a fatal error.

    Args:
        **overrides: Explicit values that take precedence over the environment

    Returns:
        Validated settings

    Raises:
        ConfigurationError: If any value is missing or invalid
    """
    try:
        return CeboelhaSettings(**overrides)
    except ValidationError as e:
        fields = [".".join(str(loc) for loc in err["loc"]) for err in e.errors()]
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(
            f"Invalid configuration: {details}", invalid_fields=fields
        ) from e


@lru_cache
def get_settings() -> CeboelhaSettings:
    """Return process-wide settings loaded from the environment."""
    return load_settings()

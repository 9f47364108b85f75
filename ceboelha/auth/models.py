"""Authentication models for Ceboelha."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator

from ceboelha.core.clock import utcnow
from ceboelha.core.store import BaseDocument


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address."""
    return email.strip().lower()


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BANNED = "banned"


class UserStats(BaseModel):
    """Usage counters kept on the user record."""

    days_using_app: int = 0
    total_meals_logged: int = 0
    total_symptoms_logged: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    achievements_unlocked: int = 0
    foods_tested: int = 0
    triggers_identified: int = 0
    last_active: datetime = Field(default_factory=utcnow)


class User(BaseDocument):
    """User identity record.

    Security: the password hash is write-only. It is stored with the document
    but never part of :meth:`public`, which is the only representation the
    API returns.
    """

    _plural_name: ClassVar[str] = "users"
    _unique_fields: ClassVar[tuple[str, ...]] = ("email",)

    email: str
    password_hash: str
    name: str = Field(..., min_length=2, max_length=100)
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    stats: UserStats = Field(default_factory=UserStats)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return normalize_email(value)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def public(self) -> dict[str, Any]:
        """Return the outward representation of the user (no password hash)."""
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value,
            "stats": self.stats.model_dump(mode="json"),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class RefreshToken(BaseDocument):
    """Refresh credential record.

    Only the SHA-256 hash of the credential is stored; the plaintext is handed
    to the client once and never persisted.
    """

    _plural_name: ClassVar[str] = "refresh_tokens"
    _unique_fields: ClassVar[tuple[str, ...]] = ("token_hash",)
    _indexed_fields: ClassVar[tuple[str, ...]] = ("user_id",)

    user_id: uuid.UUID
    token_hash: str
    expires_at: datetime
    revoked: bool = False
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return not self.revoked and not self.is_expired(now)


class LoginLockout(BaseDocument):
    """Brute-force counter, one per normalized email."""

    _plural_name: ClassVar[str] = "login_lockouts"

    email: str
    failed_attempts: int = 0
    last_failed_at: datetime | None = None
    lock_until: datetime | None = None
    locked: bool = False


class LoginAttempt(BaseDocument):
    """Immutable audit row for a single login attempt."""

    _plural_name: ClassVar[str] = "login_attempts"

    email: str
    ip_address: str = "unknown"
    user_agent: str | None = None
    success: bool
    failure_reason: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ActivityType(str, Enum):
    USER_REGISTER = "user_register"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    PASSWORD_CHANGE = "password_change"
    ACCOUNT_DELETED = "account_deleted"
    TOKEN_THEFT_DETECTED = "token_theft_detected"
    SESSION_REVOKED = "session_revoked"


class ActivityLog(BaseDocument):
    """Immutable audit event."""

    _plural_name: ClassVar[str] = "activity_logs"

    type: ActivityType
    action: str
    user_id: uuid.UUID | None = None
    user_name: str | None = None
    user_email: str | None = None
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class DeviceInfo(BaseModel):
    """Where a request came from; attached to sessions and audit rows."""

    ip_address: str | None = None
    user_agent: str | None = None


class AccessClaims(BaseModel):
    """Claims carried by a verified access token. Never persisted."""

    sub: str
    email: str
    role: UserRole
    type: str
    iss: str
    aud: str
    iat: int
    exp: int

    @property
    def user_id(self) -> uuid.UUID:
        return uuid.UUID(self.sub)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int


class AuthResult(BaseModel):
    """Outcome of register/login: the user plus a fresh token pair."""

    user: User
    tokens: TokenPair

"""Password hashing and password/name policy."""

import logging
import re

from passlib.context import CryptContext

from ceboelha.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
BCRYPT_MAX_BYTES = 72

# Password validation patterns
PATTERNS = {
    "uppercase": re.compile(r"[A-Z]"),
    "lowercase": re.compile(r"[a-z]"),
    "digit": re.compile(r"\d"),
    "special": re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]"),
}

# Matched as case-insensitive substrings
COMMON_PASSWORDS = (
    "password",
    "12345678",
    "qwerty123",
    "admin123",
    "letmein1",
    "welcome1",
    "password1",
    "123456789",
    "qwertyui",
)

NAME_FORBIDDEN = re.compile(r"[<>{}\[\]]")


def _truncate_for_bcrypt(password: str) -> str:
    """Cut a password to bcrypt's 72-byte limit without splitting a UTF-8 character."""
    password_bytes = password.encode("utf-8")
    if len(password_bytes) <= BCRYPT_MAX_BYTES:
        return password
    return password_bytes[:BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore")


class PasswordHasher:
    """Salted, adaptive password hashing backed by bcrypt.

    Verification never raises: a malformed stored hash is a failed check.
    """

    def __init__(self, rounds: int = 12):
        """Initialize the hasher.

        Args:
            rounds: bcrypt work factor (log2 of the iteration count)
        """
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )
        # Pre-computed dummy hash so a login for an unknown email costs the
        # same as a wrong password for a known one.
        self._dummy_hash = self.pwd_context.hash("dummy_password_for_timing")

    def hash(self, password: str) -> str:
        """Hash a password.

        Args:
            password: The plain text password to hash

        Returns:
            The hashed password
        """
        return self.pwd_context.hash(_truncate_for_bcrypt(password))

    def verify(self, password: str, hashed_password: str) -> bool:
        """Verify a plain password against a hash.

        Args:
            password: The plain text password
            hashed_password: The hashed password to verify against

        Returns:
            True if the password matches, False otherwise
        """
        try:
            return self.pwd_context.verify(_truncate_for_bcrypt(password), hashed_password)
        except (ValueError, TypeError) as e:
            logger.warning(f"Password verification failed on malformed hash: {e}")
            return False

    def dummy_verify(self, password: str) -> None:
        """Spend the same time as a real verification, discarding the result."""
        self.verify(password, self._dummy_hash)


def validate_password(password: str) -> None:
    """Validate password strength.

    Args:
        password: The password to validate

    Raises:
        ValidationError: Describing every rule the password breaks
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            field="password",
        )
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_LENGTH} characters long",
            field="password",
        )

    missing = []
    if not PATTERNS["uppercase"].search(password):
        missing.append("uppercase letter")
    if not PATTERNS["lowercase"].search(password):
        missing.append("lowercase letter")
    if not PATTERNS["digit"].search(password):
        missing.append("number")
    if not PATTERNS["special"].search(password):
        missing.append("special character")

    if missing:
        raise ValidationError(
            f"Password must contain at least one {', '.join(missing)}",
            field="password",
        )

    lowered = password.lower()
    if any(common in lowered for common in COMMON_PASSWORDS):
        raise ValidationError(
            "Password is too common. Choose a more unique password",
            field="password",
        )


def validate_name(name: str) -> str:
    """Validate and trim a display name.

    Returns:
        The trimmed name

    Raises:
        ValidationError: If the name is too short, too long or has markup characters
    """
    name = name.strip()
    if not 2 <= len(name) <= 100:
        raise ValidationError("Name must be between 2 and 100 characters", field="name")
    if NAME_FORBIDDEN.search(name):
        raise ValidationError("Name contains invalid characters", field="name")
    return name

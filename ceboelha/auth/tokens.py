"""Signed access tokens."""

import uuid
from datetime import timedelta

from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from ceboelha.auth.models import AccessClaims, User
from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.exceptions import UnauthorizedError

ACCESS_TOKEN_TYPE = "access"
INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class TokenSigner:
    """Mints and verifies short-lived access tokens (JWT).

    Every verification failure, whatever its cryptographic cause, surfaces as
    the same :class:`UnauthorizedError` so callers learn nothing about why a
    token was refused.
    """

    def __init__(
        self,
        secret_key: str,
        ttl: timedelta,
        issuer: str,
        audience: str,
        algorithm: str = "HS256",
        clock: Clock = utcnow,
    ):
        """Initialize the signer.

        Args:
            secret_key: Secret key for JWT token signing
            ttl: Access token lifetime
            issuer: Value of the ``iss`` claim
            audience: Value of the ``aud`` claim
            algorithm: JWT algorithm to use
            clock: Time source for ``iat``/``exp``
        """
        self.secret_key = secret_key
        self.ttl = ttl
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm
        self.clock = clock

    @property
    def expires_in(self) -> int:
        """Access token lifetime in seconds."""
        return int(self.ttl.total_seconds())

    def mint(
        self,
        user: User,
        ttl: timedelta | None = None,
        token_type: str = ACCESS_TOKEN_TYPE,
    ) -> str:
        """Create a signed token for a user.

        Args:
            user: The token subject
            ttl: Optional custom lifetime
            token_type: Value of the ``type`` claim

        Returns:
            The encoded JWT
        """
        now = self.clock()
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "type": token_type,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + (ttl or self.ttl),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> AccessClaims:
        """Decode and validate an access token.

        Args:
            token: The JWT to verify

        Returns:
            The verified claims

        Raises:
            UnauthorizedError: If the token is invalid, expired or not an access token
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
            claims = AccessClaims.model_validate(payload)
        except (JWTError, PydanticValidationError):
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE)

        # jose checks exp against the wall clock; also honour the injected clock
        if claims.exp <= int(self.clock().timestamp()):
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE)
        if claims.type != ACCESS_TOKEN_TYPE:
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE)
        return claims

"""Authentication service for Ceboelha.

:class:`AuthService` is the only place where the password hasher, token
signer, refresh credential ledger, brute-force tracker and credential store
are composed into user-facing workflows. All collaborators are passed in;
:func:`create_auth_service` wires the default ones from settings.
"""

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from ceboelha.auth.audit import AuditLog, PostLoginHook
from ceboelha.auth.ledger import RefreshTokenLedger
from ceboelha.auth.lockout import BruteForceTracker
from ceboelha.auth.models import (
    AccessClaims,
    ActivityLog,
    ActivityType,
    AuthResult,
    DeviceInfo,
    LoginAttempt,
    LoginLockout,
    RefreshToken,
    TokenPair,
    User,
    UserRole,
    UserStatus,
    normalize_email,
)
from ceboelha.auth.passwords import PasswordHasher, validate_name, validate_password
from ceboelha.auth.tokens import TokenSigner
from ceboelha.auth.users import UserStore
from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ceboelha.core.settings import CeboelhaSettings
from ceboelha.core.store import DocumentStore

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
ATTEMPT_WARNING_THRESHOLD = 3
STATUS_MESSAGES = {
    UserStatus.BANNED: "Your account has been suspended. Please contact support.",
    UserStatus.INACTIVE: "Your account is inactive. Please contact support to reactivate it.",
}
UNKNOWN_DEVICE = "Unknown device"


def _update_streak(user: User, now: datetime) -> None:
    """Record activity on ``now``'s day in the user's stats."""
    stats = user.stats
    days_since = (now.date() - stats.last_active.date()).days
    if days_since >= 1 or stats.days_using_app == 0:
        stats.days_using_app += 1
        stats.current_streak = stats.current_streak + 1 if days_since == 1 else 1
        stats.longest_streak = max(stats.longest_streak, stats.current_streak)
    stats.last_active = now


class AuthService:
    """Authentication workflows: register, login, refresh, logout and sessions."""

    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        signer: TokenSigner,
        ledger: RefreshTokenLedger,
        tracker: BruteForceTracker,
        audit: AuditLog,
        clock: Clock = utcnow,
        post_login_hooks: Sequence[PostLoginHook] = (),
    ):
        """Initialize the auth service.

        Args:
            users: Credential store
            hasher: Password hasher
            signer: Access token signer/verifier
            ledger: Refresh credential ledger
            tracker: Brute-force tracker
            audit: Background audit writer
            clock: Time source
            post_login_hooks: Best-effort callbacks run after each successful login
        """
        self.users = users
        self.hasher = hasher
        self.signer = signer
        self.ledger = ledger
        self.tracker = tracker
        self.audit = audit
        self.clock = clock
        self.post_login_hooks = list(post_login_hooks)

    # ===== Token pairs =====

    async def create_token_pair(self, user: User, device: DeviceInfo | None = None) -> TokenPair:
        """Mint an access token and persist a new refresh credential for a user."""
        refresh_token, _ = await self.ledger.issue(user.id, device)
        return TokenPair(
            access_token=self.signer.mint(user),
            refresh_token=refresh_token,
            expires_in=self.signer.expires_in,
        )

    # ===== Registration & login =====

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        device: DeviceInfo | None = None,
        role: UserRole = UserRole.USER,
    ) -> AuthResult:
        """Create an account and sign it in.

        Args:
            email: Email address (normalized before use)
            password: Plain text password
            name: Display name
            device: Request origin
            role: Role of the new account

        Returns:
            The created user and a token pair

        Raises:
            ValidationError: If the name or password breaks policy
            ConflictError: If the email is already registered
        """
        email = normalize_email(email)
        name = validate_name(name)
        validate_password(password)

        if await self.users.email_exists(email):
            raise ConflictError("Email is already registered", field="email")

        now = self.clock()
        user = User(
            email=email,
            password_hash=self.hasher.hash(password),
            name=name,
            role=role,
            created_at=now,
            updated_at=now,
        )
        user.stats.last_active = now
        # The unique email index turns a concurrent duplicate into ConflictError
        try:
            await self.users.create(user)
        except ConflictError:
            raise ConflictError("Email is already registered", field="email")

        device = device or DeviceInfo()
        await self.tracker.log_attempt(
            email, True, ip_address=device.ip_address, user_agent=device.user_agent
        )
        self.audit.emit(ActivityType.USER_REGISTER, "Account created", user=user, device=device)
        logger.info(f"Registered user {user.id}")

        tokens = await self.create_token_pair(user, device)
        return AuthResult(user=user, tokens=tokens)

    def _failed_login_message(self, state: LoginLockout) -> str:
        remaining = self.tracker.remaining_attempts(state)
        if 0 < remaining <= ATTEMPT_WARNING_THRESHOLD:
            return f"{INVALID_CREDENTIALS}. {remaining} attempt(s) remaining."
        return INVALID_CREDENTIALS

    async def login(
        self,
        email: str,
        password: str,
        device: DeviceInfo | None = None,
    ) -> AuthResult:
        """Authenticate with email and password.

        Unknown emails and wrong passwords produce identical errors; the
        remaining-attempts hint comes from the per-email counter, which exists
        for unknown emails too.

        Raises:
            UnauthorizedError: Bad credentials or a locked email
            ForbiddenError: The account is banned or inactive
        """
        email = normalize_email(email)
        device = device or DeviceInfo()

        lock = await self.tracker.is_locked(email)
        if lock.locked:
            await self.tracker.log_attempt(
                email, False, device.ip_address, device.user_agent, reason="account_locked"
            )
            raise UnauthorizedError(
                "Account temporarily locked due to too many failed attempts. "
                f"Try again in {lock.remaining_minutes} minute(s)."
            )

        user = await self.users.get_by_email(email)
        if user is None:
            self.hasher.dummy_verify(password)
            state = await self.tracker.record_failure(email, device.ip_address)
            await self.tracker.log_attempt(
                email, False, device.ip_address, device.user_agent, reason="user_not_found"
            )
            raise UnauthorizedError(self._failed_login_message(state))

        if not user.is_active:
            await self.tracker.log_attempt(
                email, False, device.ip_address, device.user_agent, reason=f"account_{user.status.value}"
            )
            raise ForbiddenError(STATUS_MESSAGES[user.status])

        if not self.hasher.verify(password, user.password_hash):
            state = await self.tracker.record_failure(email, device.ip_address)
            await self.tracker.log_attempt(
                email, False, device.ip_address, device.user_agent, reason="invalid_password"
            )
            raise UnauthorizedError(self._failed_login_message(state))

        await self.tracker.record_success(email)
        await self.tracker.log_attempt(email, True, device.ip_address, device.user_agent)

        now = self.clock()
        user = await self.users.update(user.id, lambda u: _update_streak(u, now)) or user
        self.audit.emit(ActivityType.USER_LOGIN, "Logged in", user=user, device=device)

        tokens = await self.create_token_pair(user, device)
        for hook in self.post_login_hooks:
            self.audit.spawn(hook(user), f"post-login hook {type(hook).__name__}")
        return AuthResult(user=user, tokens=tokens)

    # ===== Refresh rotation =====

    async def refresh(self, refresh_token: str, device: DeviceInfo | None = None) -> TokenPair:
        """Rotate a refresh credential into a new token pair.

        Raises:
            UnauthorizedError: If the credential cannot be used
        """

        def on_theft(record: RefreshToken, revoked: int) -> None:
            self.audit.emit(
                ActivityType.TOKEN_THEFT_DETECTED,
                "Revoked refresh token reused; all sessions revoked",
                device=device,
                user_id=str(record.user_id),
                session_id=str(record.id),
                sessions_revoked=revoked,
            )

        return await self.ledger.rotate(
            refresh_token,
            load_user=self.users.get,
            mint_pair=self.create_token_pair,
            device=device,
            on_theft=on_theft,
        )

    # ===== Logout & sessions =====

    async def logout(
        self,
        user_id: uuid.UUID,
        refresh_token: str | None = None,
        all_devices: bool = False,
    ) -> int:
        """Revoke the caller's refresh credentials.

        Args:
            user_id: The authenticated caller
            refresh_token: A specific credential to revoke
            all_devices: Revoke every credential of the caller

        Returns:
            Number of credentials revoked
        """
        revoked = 0
        if all_devices:
            revoked = await self.ledger.revoke_all_for_user(user_id, "Logout from all devices")
        elif refresh_token:
            found = await self.ledger.find(refresh_token)
            # Only the owner may revoke a credential
            if found is not None and found[0].user_id == user_id and not found[0].revoked:
                await self.ledger.revoke(found[0].token_hash, "Logout")
                revoked = 1

        user = await self.users.get(user_id)
        self.audit.emit(
            ActivityType.USER_LOGOUT,
            "Logged out from all devices" if all_devices else "Logged out",
            user=user,
            sessions_revoked=revoked,
        )
        return revoked

    async def list_sessions(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        """List the caller's active sessions, newest first."""
        return [
            {
                "id": str(record.id),
                "device": record.user_agent or UNKNOWN_DEVICE,
                "address": record.ip_address,
                "createdAt": record.created_at.isoformat(),
                "expiresAt": record.expires_at.isoformat(),
            }
            for record in await self.ledger.list_active(user_id)
        ]

    async def revoke_session(self, user_id: uuid.UUID, session_id: str) -> None:
        """Revoke one of the caller's sessions.

        Raises:
            NotFoundError: If the session does not exist or is no longer active
            ForbiddenError: If the session belongs to someone else
        """
        try:
            record = await self.ledger.get(uuid.UUID(session_id))
        except ValueError:
            raise NotFoundError("Session")

        if record is None or not record.is_valid(self.clock()):
            raise NotFoundError("Session")
        if record.user_id != user_id:
            logger.warning(f"User {user_id} tried to revoke session {session_id} of another user")
            raise ForbiddenError("You cannot revoke this session")

        await self.ledger.revoke(record.token_hash, "Session revoked by user")
        self.audit.emit(
            ActivityType.SESSION_REVOKED,
            "Session revoked",
            user=await self.users.get(user_id),
            session_id=session_id,
        )

    # ===== Current user & account management =====

    def verify_access_token(self, token: str) -> AccessClaims:
        return self.signer.verify(token)

    async def get_current_user(self, claims: AccessClaims) -> User:
        """Load the user behind verified claims.

        Raises:
            UnauthorizedError: If the user is gone or no longer active
        """
        user = await self.users.get(claims.user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError("User not found or inactive")
        return user

    async def _check_password(self, user_id: uuid.UUID, password: str) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise NotFoundError("User")
        if not self.hasher.verify(password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")
        return user

    async def change_password(
        self,
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
    ) -> int:
        """Change a password and sign out every session.

        Returns:
            Number of sessions revoked

        Raises:
            UnauthorizedError: If the current password is wrong
            ValidationError: If the new password breaks policy or is unchanged
        """
        user = await self._check_password(user_id, current_password)
        validate_password(new_password)
        if self.hasher.verify(new_password, user.password_hash):
            raise ValidationError(
                "New password must be different from the current password",
                field="newPassword",
            )

        new_hash = self.hasher.hash(new_password)

        def set_password(u: User) -> None:
            u.password_hash = new_hash

        await self.users.update(user_id, set_password)
        revoked = await self.ledger.revoke_all_for_user(user_id, "Password changed")
        self.audit.emit(
            ActivityType.PASSWORD_CHANGE, "Password changed", user=user, sessions_revoked=revoked
        )
        return revoked

    async def delete_account(self, user_id: uuid.UUID, password: str) -> None:
        """Delete the caller's account and every refresh credential it owns.

        Raises:
            UnauthorizedError: If the password is wrong
        """
        user = await self._check_password(user_id, password)
        # Audit first so the entry still has the user's details
        self.audit.emit(ActivityType.ACCOUNT_DELETED, "Account deleted by user", user=user)

        deleted = await self.ledger.delete_all_for_user(user_id)
        await self.users.delete(user_id)
        await self.tracker.clear(user.email)
        logger.info(f"Deleted user {user_id} and {deleted} refresh token(s)")

    async def cleanup(self) -> int:
        """Purge refresh credentials past their retention window."""
        return await self.ledger.cleanup_expired()


def create_auth_service(
    settings: CeboelhaSettings,
    s3_client,
    clock: Clock = utcnow,
    post_login_hooks: Sequence[PostLoginHook] = (),
) -> AuthService:
    """Wire an :class:`AuthService` and its collaborators from settings.

    Args:
        settings: Validated settings
        s3_client: Async S3 client shared by all stores
        clock: Time source shared by all components
        post_login_hooks: Callbacks run after successful logins

    Returns:
        A ready to use AuthService
    """

    def store(model):
        return DocumentStore(
            model, s3_client, settings.aws_bucket_name, settings.s3_base_path, clock=clock
        )

    return AuthService(
        users=UserStore(store(User)),
        hasher=PasswordHasher(rounds=settings.bcrypt_salt_rounds),
        signer=TokenSigner(
            secret_key=settings.jwt_access_secret,
            ttl=settings.jwt_access_expires_in,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        ),
        ledger=RefreshTokenLedger(
            store(RefreshToken),
            ttl=settings.jwt_refresh_expires_in,
            retention=timedelta(days=settings.refresh_token_retention_days),
            clock=clock,
        ),
        tracker=BruteForceTracker(
            store(LoginLockout),
            store(LoginAttempt),
            max_attempts=settings.max_login_attempts,
            lockout_duration=settings.lockout_timedelta,
            clock=clock,
        ),
        audit=AuditLog(store(ActivityLog), clock=clock),
        clock=clock,
        post_login_hooks=post_login_hooks,
    )

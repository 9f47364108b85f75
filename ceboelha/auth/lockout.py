"""Brute-force protection for login.

Failures are counted per normalized email, never per user id, so unknown and
known emails are treated identically. Each email has a single counter
document with a deterministic id; every change to it is an atomic
read-modify-write on the store, and an elapsed lock is healed whenever it is
observed instead of by a background sweep.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import timedelta

from ceboelha.auth.models import LoginAttempt, LoginLockout, normalize_email
from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.store import DocumentStore

logger = logging.getLogger(__name__)

_LOCKOUT_NAMESPACE = uuid.UUID("6f1c8a52-3d0e-4b7a-9c55-2f4e8d1b0a93")


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    remaining_seconds: int | None = None

    @property
    def remaining_minutes(self) -> int:
        return math.ceil((self.remaining_seconds or 0) / 60)


def lockout_id(email: str) -> uuid.UUID:
    """Deterministic counter document id for an email."""
    return uuid.uuid5(_LOCKOUT_NAMESPACE, normalize_email(email))


class BruteForceTracker:
    """Counts failed logins per email and locks the email after a threshold."""

    def __init__(
        self,
        store: DocumentStore[LoginLockout],
        attempts: DocumentStore[LoginAttempt],
        max_attempts: int = 5,
        lockout_duration: timedelta = timedelta(minutes=15),
        clock: Clock = utcnow,
    ):
        """Initialize the tracker.

        Args:
            store: Store for the per-email counters
            attempts: Store for the login attempt audit trail
            max_attempts: Consecutive failures that trigger a lock
            lockout_duration: How long a lock lasts
            clock: Time source
        """
        self.store = store
        self.attempts = attempts
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self.clock = clock

    def _lock_elapsed(self, state: LoginLockout) -> bool:
        return state.lock_until is not None and state.lock_until <= self.clock()

    @staticmethod
    def _clear(state: LoginLockout) -> None:
        state.failed_attempts = 0
        state.locked = False
        state.lock_until = None

    async def record_failure(self, email: str, address: str | None = None) -> LoginLockout:
        """Count a failed login for an email.

        Args:
            email: The email that was tried
            address: Client address, for logging only

        Returns:
            The counter state after this failure
        """
        email = normalize_email(email)

        def mutate(state: LoginLockout) -> None:
            if self._lock_elapsed(state):
                self._clear(state)
            now = self.clock()
            state.failed_attempts += 1
            state.last_failed_at = now
            if state.failed_attempts >= self.max_attempts and not state.locked:
                state.locked = True
                state.lock_until = now + self.lockout_duration

        state = await self.store.update_atomic(
            lockout_id(email),
            mutate,
            default=lambda: LoginLockout(id=lockout_id(email), email=email),
        )
        if state.locked and state.failed_attempts == self.max_attempts:
            logger.warning(
                f"Login locked for {email} after {state.failed_attempts} failed attempts "
                f"(last from {address or 'unknown'})"
            )
        return state

    async def record_success(self, email: str) -> None:
        """Reset the counter and clear any lock for an email."""
        await self.store.update_atomic(lockout_id(email), self._clear)

    async def is_locked(self, email: str) -> LockStatus:
        """Report whether an email is currently locked.

        A lock whose window has passed is cleared as a side effect and
        reported as unlocked.
        """
        state = await self.store.get(lockout_id(email))
        if state is None or not state.locked:
            return LockStatus(locked=False)

        if self._lock_elapsed(state) or state.lock_until is None:
            await self.store.update_atomic(
                lockout_id(email),
                lambda s: self._clear(s) if self._lock_elapsed(s) or s.lock_until is None else None,
            )
            return LockStatus(locked=False)

        remaining = math.ceil((state.lock_until - self.clock()).total_seconds())
        return LockStatus(locked=True, remaining_seconds=max(1, remaining))

    async def get_state(self, email: str) -> LoginLockout | None:
        return await self.store.get(lockout_id(email))

    def remaining_attempts(self, state: LoginLockout) -> int:
        return max(0, self.max_attempts - state.failed_attempts)

    async def clear(self, email: str) -> bool:
        """Delete the counter for an email (account deletion)."""
        return await self.store.delete(lockout_id(email))

    async def log_attempt(
        self,
        email: str,
        success: bool,
        ip_address: str | None = None,
        user_agent: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Append a login attempt audit row. Failures are logged, never raised."""
        now = self.clock()
        attempt = LoginAttempt(
            email=normalize_email(email),
            ip_address=ip_address or "unknown",
            user_agent=user_agent,
            success=success,
            failure_reason=reason,
            timestamp=now,
            created_at=now,
            updated_at=now,
        )
        try:
            await self.attempts.create(attempt)
        except Exception:
            logger.exception(f"Failed to record login attempt for {attempt.email}")

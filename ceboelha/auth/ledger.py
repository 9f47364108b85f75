"""Refresh credential ledger.

The ledger persists only the SHA-256 hash of each refresh credential. The
plaintext (64 random bytes, hex encoded) is returned to the caller exactly
once, at issue time.

Rotation revokes the presented credential with a compare-and-swap on the
record's ETag before a new pair is minted, so of two concurrent refreshes of
the same credential exactly one can win.
"""

import hashlib
import logging
import secrets
import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta

from ceboelha.auth.models import DeviceInfo, RefreshToken, TokenPair, User
from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.exceptions import StaleDocumentError, UnauthorizedError
from ceboelha.core.store import DocumentStore

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 64
THEFT_REASON = "Possible token theft detected - revoked token reuse"


def hash_token(token: str) -> str:
    """Hash a refresh credential for storage and lookup.

    Args:
        token: The plaintext credential

    Returns:
        SHA-256 hex digest of the credential
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RefreshTokenLedger:
    """Stores, looks up and revokes refresh credentials."""

    def __init__(
        self,
        store: DocumentStore[RefreshToken],
        ttl: timedelta,
        retention: timedelta = timedelta(days=30),
        clock: Clock = utcnow,
    ):
        """Initialize the ledger.

        Args:
            store: Document store for refresh token records
            ttl: Lifetime of newly issued credentials
            retention: How long records are kept past expiry for forensic lookups
            clock: Time source
        """
        self.store = store
        self.ttl = ttl
        self.retention = retention
        self.clock = clock

    @property
    def expires_in(self) -> int:
        """Refresh credential lifetime in seconds."""
        return int(self.ttl.total_seconds())

    async def issue(
        self,
        user_id: uuid.UUID,
        device: DeviceInfo | None = None,
    ) -> tuple[str, RefreshToken]:
        """Create a new refresh credential.

        Args:
            user_id: Owner of the credential
            device: Optional device metadata to remember with the session

        Returns:
            ``(plaintext, record)``; the plaintext is never stored
        """
        device = device or DeviceInfo()
        plaintext = secrets.token_hex(REFRESH_TOKEN_BYTES)
        now = self.clock()
        record = RefreshToken(
            user_id=user_id,
            token_hash=hash_token(plaintext),
            expires_at=now + self.ttl,
            user_agent=device.user_agent,
            ip_address=device.ip_address,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(record)
        return plaintext, record

    async def find(self, plaintext: str) -> tuple[RefreshToken, str] | None:
        """Look up a credential by value.

        Validity is NOT checked here; callers must use ``record.is_valid()``.

        Returns:
            ``(record, etag)`` or None if the credential was never issued
        """
        return await self.store.find_one_with_etag("token_hash", hash_token(plaintext))

    def _mark_revoked(self, reason: str) -> Callable[[RefreshToken], None]:
        def mutate(record: RefreshToken) -> None:
            if not record.revoked:
                record.revoked = True
                record.revoked_at = self.clock()
                record.revoked_reason = reason
        return mutate

    async def revoke(self, token_hash: str, reason: str) -> bool:
        """Revoke a credential by hash. Revoking twice is a no-op success.

        Returns:
            True if the credential exists
        """
        found = await self.store.find_one("token_hash", token_hash)
        if found is None:
            return False
        await self.store.update_atomic(found.id, self._mark_revoked(reason))
        return True

    async def revoke_if_unrevoked(
        self, record: RefreshToken, etag: str, reason: str
    ) -> bool:
        """Atomically revoke a credential only if it is unchanged since it was read.

        Args:
            record: The record as read by :meth:`find`
            etag: The ETag returned alongside it
            reason: Revocation reason

        Returns:
            True if this call revoked it, False if another writer got there first
        """
        if record.revoked:
            return False
        updated = record.model_copy()
        self._mark_revoked(reason)(updated)
        try:
            await self.store.save(updated, etag=etag)
        except StaleDocumentError:
            return False
        return True

    async def revoke_all_for_user(self, user_id: uuid.UUID, reason: str) -> int:
        """Revoke every still-unrevoked credential of a user.

        Returns:
            Number of credentials revoked by this call
        """
        count = 0
        for record in await self.store.list_by("user_id", user_id):
            if record.revoked:
                continue
            updated = await self.store.update_atomic(record.id, self._mark_revoked(reason))
            if updated is not None and updated.revoked_reason == reason:
                count += 1
        return count

    async def list_active(self, user_id: uuid.UUID) -> list[RefreshToken]:
        """Return the user's valid (unrevoked, unexpired) credentials, newest first."""
        now = self.clock()
        records = await self.store.list_by("user_id", user_id)
        active = [r for r in records if r.is_valid(now)]
        return sorted(active, key=lambda r: r.created_at, reverse=True)

    async def get(self, session_id: uuid.UUID) -> RefreshToken | None:
        return await self.store.get(session_id)

    async def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        """Delete every credential of a user (account deletion cascade)."""
        count = 0
        for record in await self.store.list_by("user_id", user_id):
            if await self.store.delete(record.id):
                count += 1
        return count

    async def cleanup_expired(self) -> int:
        """Delete credentials whose expiry plus the retention window has passed.

        Safe to run repeatedly; storage lifecycle rules are the backstop.

        Returns:
            Number of records deleted
        """
        cutoff = self.clock() - self.retention
        expired = [record async for record in self.store.scan() if record.expires_at < cutoff]
        count = 0
        for record in expired:
            if await self.store.delete(record.id):
                count += 1
        if count:
            logger.info(f"Deleted {count} expired refresh tokens")
        return count

    async def rotate(
        self,
        plaintext: str,
        load_user: Callable[[uuid.UUID], Awaitable[User | None]],
        mint_pair: Callable[[User, DeviceInfo], Awaitable[TokenPair]],
        device: DeviceInfo | None = None,
        on_theft: Callable[[RefreshToken, int], None] | None = None,
    ) -> TokenPair:
        """Exchange a refresh credential for a brand-new token pair.

        The presented credential is permanently dead afterwards. Presenting a
        credential that was already revoked is treated as theft: every
        credential of the owner is revoked before the request is refused.

        Args:
            plaintext: The presented refresh credential
            load_user: Loads the owning user
            mint_pair: Issues a new access token and refresh credential
            device: Device metadata of the current request
            on_theft: Called with the reused record and the number of
                credentials revoked in response

        Returns:
            The new token pair

        Raises:
            UnauthorizedError: If the credential is unknown, revoked, expired,
                already rotated, or its owner is gone or not active
        """
        found = await self.find(plaintext)
        if found is None:
            raise UnauthorizedError("Invalid refresh token")
        record, etag = found

        if record.revoked:
            revoked = await self.revoke_all_for_user(record.user_id, THEFT_REASON)
            logger.warning(
                f"Revoked refresh token reused for user {record.user_id}; "
                f"revoked {revoked} active session(s)"
            )
            if on_theft is not None:
                on_theft(record, revoked)
            raise UnauthorizedError("Invalid refresh token")

        if record.is_expired(self.clock()):
            raise UnauthorizedError("Refresh token expired")

        user = await load_user(record.user_id)
        if user is None or not user.is_active:
            await self.revoke(record.token_hash, "User not found or inactive")
            raise UnauthorizedError("User not found or inactive")

        if not await self.revoke_if_unrevoked(record, etag, "Rotated"):
            # A concurrent refresh already rotated this credential
            raise UnauthorizedError("Invalid refresh token")

        device = DeviceInfo(
            ip_address=(device.ip_address if device else None) or record.ip_address,
            user_agent=(device.user_agent if device else None) or record.user_agent,
        )
        return await mint_pair(user, device)

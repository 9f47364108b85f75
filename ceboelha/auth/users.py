"""Credential store: user identity records."""

import uuid
from collections.abc import Callable

from ceboelha.auth.models import User, normalize_email
from ceboelha.core.store import DocumentStore


class UserStore:
    """Access to user records keyed by id and by normalized email.

    Email uniqueness is enforced by the document store's unique index, so two
    concurrent registrations for the same address cannot both succeed.
    """

    def __init__(self, store: DocumentStore[User]):
        self.store = store

    async def get(self, user_id: uuid.UUID | str) -> User | None:
        return await self.store.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        """Get a user by email (case and surrounding whitespace are ignored)."""
        return await self.store.find_one("email", normalize_email(email))

    async def email_exists(self, email: str) -> bool:
        return await self.get_by_email(email) is not None

    async def create(self, user: User) -> User:
        """Persist a new user.

        Raises:
            ConflictError: If the email is already registered
        """
        return await self.store.create(user)

    async def update(self, user_id: uuid.UUID, mutate: Callable[[User], None]) -> User | None:
        """Atomically apply ``mutate`` to a stored user.

        Returns:
            The updated user, or None if it no longer exists
        """
        return await self.store.update_atomic(user_id, mutate)

    async def delete(self, user_id: uuid.UUID) -> bool:
        return await self.store.delete(user_id)

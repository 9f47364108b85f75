"""Best-effort audit trail and post-login side effects.

Everything here runs as detached asyncio tasks after the primary outcome of a
request is decided. Failures are logged and never reach the caller.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, Protocol

from ceboelha.auth.models import ActivityLog, ActivityType, DeviceInfo, User
from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.store import DocumentStore

logger = logging.getLogger(__name__)


class PostLoginHook(Protocol):
    """Something to run after a successful login (e.g. achievement progress)."""

    async def __call__(self, user: User) -> None: ...


class AuditLog:
    """Writes activity log entries in the background."""

    def __init__(self, store: DocumentStore[ActivityLog], clock: Clock = utcnow):
        self.store = store
        self.clock = clock
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], description: str) -> asyncio.Task:
        """Run a coroutine detached from the current request.

        Args:
            coro: The work to run
            description: Used in the log message if the work fails

        Returns:
            The scheduled task
        """

        async def runner():
            try:
                await coro
            except Exception:
                logger.exception(f"Background task failed: {description}")

        task = asyncio.create_task(runner())
        # Keep a strong reference until the task is done
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def emit(
        self,
        event_type: ActivityType,
        action: str,
        user: User | None = None,
        device: DeviceInfo | None = None,
        details: str | None = None,
        **metadata: Any,
    ) -> asyncio.Task:
        """Schedule an activity log entry.

        Args:
            event_type: Event type
            action: Short human readable description
            user: The user the event is about
            device: Request origin
            details: Optional longer description
            **metadata: Extra structured data

        Returns:
            The background task writing the entry
        """
        now = self.clock()
        entry = ActivityLog(
            type=event_type,
            action=action,
            user_id=user.id if user else None,
            user_name=user.name if user else None,
            user_email=user.email if user else None,
            details=details,
            ip_address=device.ip_address if device else None,
            user_agent=device.user_agent if device else None,
            metadata=metadata,
            timestamp=now,
            created_at=now,
            updated_at=now,
        )
        return self.spawn(self.store.create(entry), f"activity log {event_type.value}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

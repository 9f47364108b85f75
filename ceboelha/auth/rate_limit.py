"""Request rate limiting.

Counters are fixed windows per ``(tier, client address, route)`` key: the
first hit opens a window, later hits increment it, and a request is allowed
while the count stays within the tier maximum. Once the window's reset time
passes the counter starts over.

The counter storage sits behind :class:`RateLimitBackend`. The bundled
:class:`InMemoryRateLimitBackend` is process-local, so with several instances
each one enforces its own limits.
"""

import asyncio
import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List

from fastapi import Request, Response

from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.exceptions import RateLimitError
from ceboelha.core.settings import CeboelhaSettings

logger = logging.getLogger(__name__)

GENERAL = "general"
AUTH = "auth"
SENSITIVE = "sensitive"
GLOBAL = "global"


@dataclass(frozen=True)
class RateLimitRule:
    """A limit tier.

    Attributes:
        window_ms: Window length in milliseconds
        max_requests: Requests allowed per window
        message: Message returned when the limit is hit
    """

    window_ms: int
    max_requests: int
    message: str = "Too many requests. Please wait a moment and try again."


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    reset_at: datetime
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


@dataclass
class RateLimitEntry:
    """Counter for a single key."""

    count: int
    reset_at: datetime


class RateLimitBackend(ABC):
    """Abstract base class for rate limit counter storage.

    Implementations must make :meth:`hit` atomic per key.
    """

    @abstractmethod
    async def hit(self, key: str, window_ms: int, max_requests: int) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is allowed.

        Args:
            key: Counter key
            window_ms: Window length in milliseconds
            max_requests: Requests allowed per window

        Returns:
            The counter state after this request
        """
        pass

    async def start(self) -> None:
        """Start background maintenance, if any."""

    async def stop(self) -> None:
        """Stop background maintenance, if any."""

    @abstractmethod
    async def reset(self, key: str | None = None) -> None:
        """Reset one counter, or all of them when ``key`` is None."""
        pass


class InMemoryRateLimitBackend(RateLimitBackend):
    """Process-local fixed window counters with a periodic sweep.

    No state survives a restart; losing abuse counters on restart is acceptable.
    """

    def __init__(self, sweep_interval: float = 60.0, clock: Clock = utcnow):
        """Initialize the backend.

        Args:
            sweep_interval: Seconds between removals of expired counters
            clock: Time source
        """
        self._storage: Dict[str, RateLimitEntry] = {}
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._sweeper: asyncio.Task | None = None

    async def hit(self, key: str, window_ms: int, max_requests: int) -> RateLimitResult:
        # No awaits here: the read-increment-write is atomic on the event loop
        now = self.clock()
        entry = self._storage.get(key)
        if entry is None or now > entry.reset_at:
            entry = RateLimitEntry(count=1, reset_at=now + timedelta(milliseconds=window_ms))
            self._storage[key] = entry
        else:
            entry.count += 1

        retry_after = max(1, math.ceil((entry.reset_at - now).total_seconds()))
        return RateLimitResult(
            allowed=entry.count <= max_requests,
            count=entry.count,
            limit=max_requests,
            reset_at=entry.reset_at,
            retry_after=retry_after,
        )

    def sweep(self) -> int:
        """Remove expired counters.

        Returns:
            Number of counters removed
        """
        now = self.clock()
        expired = [key for key, entry in self._storage.items() if now > entry.reset_at]
        for key in expired:
            del self._storage[key]
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug(f"Swept {removed} expired rate limit counters")

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self._storage.clear()

    async def reset(self, key: str | None = None) -> None:
        if key is None:
            self._storage.clear()
        else:
            self._storage.pop(key, None)

    def __len__(self) -> int:
        return len(self._storage)


def rules_from_settings(settings: CeboelhaSettings) -> Dict[str, RateLimitRule]:
    """Build the limit tiers from configuration."""
    return {
        GENERAL: RateLimitRule(
            settings.rate_limit_window,
            settings.rate_limit_max,
            "Too many requests. Please wait a moment and try again.",
        ),
        AUTH: RateLimitRule(
            settings.auth_rate_limit_window,
            settings.auth_rate_limit_max,
            "Too many authentication attempts. Please wait before trying again.",
        ),
        SENSITIVE: RateLimitRule(
            settings.sensitive_rate_limit_window,
            settings.sensitive_rate_limit_max,
            "Too many attempts. Please wait a few minutes before trying again.",
        ),
        GLOBAL: RateLimitRule(
            settings.global_rate_limit_window,
            settings.global_rate_limit_max,
            "Too many requests from this address. Please slow down.",
        ),
    }


class RateLimiter:
    """Applies limit tiers to requests using a pluggable backend."""

    def __init__(
        self,
        backend: RateLimitBackend,
        rules: Dict[str, RateLimitRule],
        trust_proxy_headers: bool = False,
    ):
        """Initialize the rate limiter.

        Args:
            backend: Counter storage
            rules: Limit tiers by name
            trust_proxy_headers: If True, take the client address from
                X-Forwarded-For / X-Real-IP. Only enable behind a trusted proxy.
        """
        self.backend = backend
        self.rules = rules
        self.trust_proxy_headers = trust_proxy_headers

    async def start(self) -> None:
        await self.backend.start()

    async def stop(self) -> None:
        await self.backend.stop()

    def client_address(self, request: Request) -> str:
        """Resolve the client address of a request."""
        if self.trust_proxy_headers:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                # Take the leftmost (original client) IP
                return forwarded.split(",")[0].strip()
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()
        return request.client.host if request.client else "unknown"

    async def check(self, tier: str, address: str, route: str) -> RateLimitResult:
        """Count a request against a tier.

        Args:
            tier: Tier name
            address: Client address
            route: Route path the counter is scoped to

        Returns:
            The counter state

        Raises:
            RateLimitError: If the tier limit is exceeded
        """
        rule = self.rules[tier]
        result = await self.backend.hit(
            f"{tier}:{address}:{route}", rule.window_ms, rule.max_requests
        )
        if not result.allowed:
            logger.warning(f"Rate limit '{tier}' exceeded by {address} on {route}")
            raise RateLimitError(
                rule.message,
                retry_after=result.retry_after,
                headers=rate_limit_headers(result),
            )
        return result


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at.timestamp())),
    }


def rate_limit(tier: str = GENERAL):
    """Dependency factory for rate limiting FastAPI endpoints.

    Args:
        tier: The tier to apply

    Returns:
        Dependency function for FastAPI

    Example:
        @router.post("/login", dependencies=[Depends(rate_limit(AUTH))])
        async def login(...):
            ...
    """

    async def check_limit(request: Request, response: Response) -> RateLimitResult:
        limiter: RateLimiter = request.app.state.rate_limiter
        result = await limiter.check(
            tier, limiter.client_address(request), request.url.path
        )
        response.headers.update(rate_limit_headers(result))
        return result

    return check_limit


class RateLimitMiddleware:
    """ASGI middleware applying the global per-address limit to every request."""

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        tier: str = GLOBAL,
        exclude_paths: List[str] | None = None,
    ):
        """Initialize the middleware.

        Args:
            app: The ASGI application
            limiter: The RateLimiter instance
            tier: Tier applied to all requests
            exclude_paths: Paths to exclude from rate limiting
        """
        self.app = app
        self.limiter = limiter
        self.tier = tier
        self.exclude_paths = set(exclude_paths or ["/health"])

    async def __call__(self, scope, receive, send):
        """ASGI middleware interface."""
        if scope["type"] != "http" or scope["path"] in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        address = self.limiter.client_address(request)

        try:
            # All routes share one counter per address
            await self.limiter.check(self.tier, address, "*")
        except RateLimitError as e:
            response_body = json.dumps({
                "success": False,
                "error": type(e).__name__,
                "code": e.code,
                "message": e.message,
            }).encode()

            await send({
                "type": "http.response.start",
                "status": e.status_code,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"retry-after", str(e.retry_after or 60).encode()),
                ] + [
                    (name.lower().encode(), value.encode())
                    for name, value in e.headers.items()
                ],
            })
            await send({
                "type": "http.response.body",
                "body": response_body,
            })
            return

        await self.app(scope, receive, send)

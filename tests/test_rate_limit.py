"""Tests for the rate limiter."""

import asyncio

import pytest
from starlette.requests import Request

from ceboelha.auth.rate_limit import (
    AUTH,
    GENERAL,
    GLOBAL,
    SENSITIVE,
    InMemoryRateLimitBackend,
    RateLimiter,
    RateLimitRule,
    rate_limit_headers,
    rules_from_settings,
)
from ceboelha.core.exceptions import RateLimitError


def make_request(host: str = "127.0.0.1", headers: dict | None = None) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/auth/login",
        "headers": [
            (name.lower().encode(), value.encode()) for name, value in (headers or {}).items()
        ],
        "client": (host, 5000),
    })


@pytest.fixture
def backend(clock):
    return InMemoryRateLimitBackend(sweep_interval=60, clock=clock)


@pytest.fixture
def limiter(backend):
    return RateLimiter(
        backend,
        {AUTH: RateLimitRule(window_ms=60_000, max_requests=2, message="Slow down")},
    )


class TestInMemoryRateLimitBackend:
    """Tests for InMemoryRateLimitBackend."""

    @pytest.mark.asyncio
    async def test_allows_within_limit(self, backend):
        first = await backend.hit("k", 60_000, 2)
        second = await backend.hit("k", 60_000, 2)

        assert first.allowed and second.allowed
        assert first.remaining == 1
        assert second.remaining == 0

    @pytest.mark.asyncio
    async def test_blocks_over_limit(self, backend, clock):
        for _ in range(2):
            await backend.hit("k", 60_000, 2)
        clock.advance(seconds=20)

        result = await backend.hit("k", 60_000, 2)
        assert result.allowed is False
        assert result.count == 3
        assert result.retry_after == 40

    @pytest.mark.asyncio
    async def test_window_resets(self, backend, clock):
        for _ in range(3):
            await backend.hit("k", 60_000, 2)
        clock.advance(seconds=61)

        result = await backend.hit("k", 60_000, 2)
        assert result.allowed is True
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_counters(self, backend, clock):
        await backend.hit("old", 1_000, 5)
        await backend.hit("new", 60_000, 5)
        clock.advance(seconds=2)

        assert backend.sweep() == 1
        assert len(backend) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, backend):
        await backend.start()
        sweeper = backend._sweeper
        assert sweeper is not None and not sweeper.done()
        await backend.hit("k", 60_000, 5)

        await backend.stop()
        assert sweeper.cancelled()
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_sweep_loop_runs(self, clock):
        backend = InMemoryRateLimitBackend(sweep_interval=0.01, clock=clock)
        await backend.hit("k", 1_000, 5)
        clock.advance(seconds=2)

        await backend.start()
        await asyncio.sleep(0.05)
        await backend.stop()

        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_reset(self, backend):
        await backend.hit("a", 60_000, 5)
        await backend.hit("b", 60_000, 5)

        await backend.reset("a")
        assert len(backend) == 1
        await backend.reset()
        assert len(backend) == 0


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.mark.asyncio
    async def test_raises_when_exceeded(self, limiter):
        await limiter.check(AUTH, "1.1.1.1", "/auth/login")
        await limiter.check(AUTH, "1.1.1.1", "/auth/login")

        with pytest.raises(RateLimitError) as exc_info:
            await limiter.check(AUTH, "1.1.1.1", "/auth/login")
        assert exc_info.value.message == "Slow down"
        assert exc_info.value.retry_after == 60
        assert exc_info.value.headers["X-RateLimit-Limit"] == "2"
        assert exc_info.value.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_counters_are_per_address_and_route(self, limiter):
        for _ in range(2):
            await limiter.check(AUTH, "1.1.1.1", "/auth/login")

        await limiter.check(AUTH, "2.2.2.2", "/auth/login")
        await limiter.check(AUTH, "1.1.1.1", "/auth/register")

    def test_client_address_ignores_proxy_headers_by_default(self, limiter):
        request = make_request(headers={"X-Forwarded-For": "9.9.9.9"})
        assert limiter.client_address(request) == "127.0.0.1"

    def test_client_address_from_trusted_proxy(self, backend):
        limiter = RateLimiter(backend, {}, trust_proxy_headers=True)

        forwarded = make_request(headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"})
        real_ip = make_request(headers={"X-Real-IP": "8.8.8.8"})
        assert limiter.client_address(forwarded) == "9.9.9.9"
        assert limiter.client_address(real_ip) == "8.8.8.8"
        assert limiter.client_address(make_request()) == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_rate_limit_headers(self, limiter):
        result = await limiter.check(AUTH, "1.1.1.1", "/auth/login")
        headers = rate_limit_headers(result)

        assert headers["X-RateLimit-Limit"] == "2"
        assert headers["X-RateLimit-Remaining"] == "1"
        assert headers["X-RateLimit-Reset"] == str(int(result.reset_at.timestamp()))

    def test_rules_from_settings(self, settings):
        rules = rules_from_settings(settings)

        assert set(rules) == {GENERAL, AUTH, SENSITIVE, GLOBAL}
        assert rules[AUTH].window_ms == settings.auth_rate_limit_window
        assert rules[SENSITIVE].max_requests == settings.sensitive_rate_limit_max

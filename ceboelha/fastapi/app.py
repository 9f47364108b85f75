"""FastAPI application factory for Ceboelha."""

import logging
from collections.abc import Sequence
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request

from ceboelha import __version__
from ceboelha.auth.audit import PostLoginHook
from ceboelha.auth.rate_limit import (
    GLOBAL,
    InMemoryRateLimitBackend,
    RateLimitBackend,
    RateLimiter,
    RateLimitMiddleware,
    rules_from_settings,
)
from ceboelha.auth.service import create_auth_service
from ceboelha.core.client import S3ClientManager
from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.log import configure_logging
from ceboelha.core.settings import CeboelhaSettings, load_settings
from ceboelha.fastapi.error_handlers import register_error_handlers
from ceboelha.fastapi.routes import router as auth_router

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "0",
}
HSTS_HEADER = "max-age=31536000; includeSubDomains"


def create_app(
    settings: CeboelhaSettings | None = None,
    s3_client=None,
    clock: Clock = utcnow,
    rate_limit_backend: RateLimitBackend | None = None,
    post_login_hooks: Sequence[PostLoginHook] = (),
) -> FastAPI:
    """Create the Ceboelha API.

    Args:
        settings: Validated settings; loaded from the environment when omitted
        s3_client: Async S3 client to use instead of opening one from settings
        clock: Time source shared by all components
        rate_limit_backend: Counter storage; in-memory when omitted
        post_login_hooks: Callbacks run after successful logins

    Returns:
        The configured FastAPI application

    Raises:
        ConfigurationError: If settings are loaded here and are invalid
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    limiter = RateLimiter(
        rate_limit_backend
        or InMemoryRateLimitBackend(settings.rate_limit_sweep_interval, clock=clock),
        rules_from_settings(settings),
        trust_proxy_headers=settings.trust_proxy_headers,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with AsyncExitStack() as stack:
            client = s3_client
            if client is None:
                manager = S3ClientManager(settings)
                client = await stack.enter_async_context(manager.get_async_client())

            service = create_auth_service(
                settings, client, clock=clock, post_login_hooks=post_login_hooks
            )
            app.state.auth_service = service

            await limiter.start()
            logger.info(f"{settings.app_name} started ({settings.environment})")
            try:
                yield
            finally:
                await limiter.stop()
                await service.audit.drain()
                logger.info(f"{settings.app_name} stopped")

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiter = limiter

    # Added first so security headers also wrap global 429 replies
    app.add_middleware(RateLimitMiddleware, limiter=limiter, tier=GLOBAL)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = HSTS_HEADER
        return response

    register_error_handlers(app)
    app.include_router(auth_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app

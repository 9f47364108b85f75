"""FastAPI dependencies for Ceboelha routes."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ceboelha.auth.models import AccessClaims, DeviceInfo, User
from ceboelha.auth.service import AuthService
from ceboelha.core.exceptions import UnauthorizedError
from ceboelha.core.settings import CeboelhaSettings
from ceboelha.fastapi.cookies import ACCESS_COOKIE

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> CeboelhaSettings:
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_device_info(request: Request) -> DeviceInfo:
    """Client address and user agent of the current request."""
    limiter = request.app.state.rate_limiter
    return DeviceInfo(
        ip_address=limiter.client_address(request),
        user_agent=request.headers.get("User-Agent"),
    )


async def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AuthService = Depends(get_auth_service),
) -> AccessClaims:
    """Verify the access token from the Authorization header, or the cookie as fallback.

    Raises:
        UnauthorizedError: If no token is present or it does not verify
    """
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise UnauthorizedError("Authentication required")
    return service.verify_access_token(token)


async def get_current_user(
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> User:
    """Load the authenticated, still active user."""
    return await service.get_current_user(claims)

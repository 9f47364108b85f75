"""Auth routes.

Every success response uses the ``{"success": true, "data": ..., "message": ...}``
envelope. Routes return plain dicts so that cookies and rate-limit headers set
on the injected ``Response`` are merged into the reply.
"""

from fastapi import APIRouter, Body, Depends, Request, Response

from ceboelha.auth.models import AccessClaims, DeviceInfo, User
from ceboelha.auth.rate_limit import AUTH, GENERAL, SENSITIVE, rate_limit
from ceboelha.auth.service import AuthService
from ceboelha.core.settings import CeboelhaSettings
from ceboelha.fastapi.cookies import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from ceboelha.fastapi.dependencies import (
    get_app_settings,
    get_auth_service,
    get_current_claims,
    get_current_user,
    get_device_info,
)
from ceboelha.fastapi.schemas import (
    ChangePasswordBody,
    DeleteAccountBody,
    LoginBody,
    LogoutBody,
    RefreshBody,
    RegisterBody,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def envelope(data=None, message: str | None = None) -> dict:
    return {"success": True, "data": data, "message": message}


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit(AUTH))])
async def register(
    body: RegisterBody,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
    settings: CeboelhaSettings = Depends(get_app_settings),
):
    """Create an account and sign it in."""
    result = await service.register(body.email, body.password, body.name, device)
    set_auth_cookies(
        response, settings, result.tokens.access_token, result.tokens.refresh_token
    )
    return envelope(
        {
            "user": result.user.public(),
            "accessToken": result.tokens.access_token,
            "refreshToken": result.tokens.refresh_token,
            "expiresIn": result.tokens.expires_in,
        },
        "Account created successfully",
    )


@router.post("/login", dependencies=[Depends(rate_limit(AUTH))])
async def login(
    body: LoginBody,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
    settings: CeboelhaSettings = Depends(get_app_settings),
):
    """Sign in with email and password."""
    result = await service.login(body.email, body.password, device)
    set_auth_cookies(
        response, settings, result.tokens.access_token, result.tokens.refresh_token
    )
    return envelope(
        {
            "user": result.user.public(),
            "accessToken": result.tokens.access_token,
            "refreshToken": result.tokens.refresh_token,
            "expiresIn": result.tokens.expires_in,
        },
        "Login successful",
    )


@router.post("/refresh", dependencies=[Depends(rate_limit(AUTH))])
async def refresh(
    body: RefreshBody,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
    settings: CeboelhaSettings = Depends(get_app_settings),
):
    """Exchange a refresh credential for a new token pair."""
    tokens = await service.refresh(body.refresh_token, device)
    set_auth_cookies(response, settings, tokens.access_token, tokens.refresh_token)
    return envelope(
        {
            "accessToken": tokens.access_token,
            "refreshToken": tokens.refresh_token,
            "expiresIn": tokens.expires_in,
        },
        "Tokens refreshed",
    )


@router.post("/logout", dependencies=[Depends(rate_limit(GENERAL))])
async def logout(
    request: Request,
    response: Response,
    body: LogoutBody | None = Body(None),
    claims: AccessClaims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
    settings: CeboelhaSettings = Depends(get_app_settings),
):
    """Revoke the current refresh credential, or all of them."""
    body = body or LogoutBody()
    refresh_token = body.refresh_token or request.cookies.get(REFRESH_COOKIE)
    revoked = await service.logout(claims.user_id, refresh_token, body.all_devices)
    clear_auth_cookies(response, settings)
    message = "Logged out from all devices" if body.all_devices else "Logged out successfully"
    return envelope({"sessionsRevoked": revoked}, message)


@router.get("/me", dependencies=[Depends(rate_limit(GENERAL))])
async def me(user: User = Depends(get_current_user)):
    """Return the authenticated user."""
    return envelope({"user": user.public()})


@router.get("/sessions", dependencies=[Depends(rate_limit(GENERAL))])
async def list_sessions(
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """List the caller's active sessions."""
    return envelope(await service.list_sessions(user.id))


@router.delete("/sessions/{session_id}", dependencies=[Depends(rate_limit(SENSITIVE))])
async def revoke_session(
    session_id: str,
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke one of the caller's sessions."""
    await service.revoke_session(user.id, session_id)
    return envelope(message="Session revoked")


@router.post("/change-password", dependencies=[Depends(rate_limit(SENSITIVE))])
async def change_password(
    body: ChangePasswordBody,
    response: Response,
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
    settings: CeboelhaSettings = Depends(get_app_settings),
):
    """Change the caller's password and sign out every session."""
    revoked = await service.change_password(
        user.id, body.current_password, body.new_password
    )
    clear_auth_cookies(response, settings)
    return envelope(
        {"sessionsRevoked": revoked},
        "Password changed. Please sign in again.",
    )


@router.delete("/account", dependencies=[Depends(rate_limit(SENSITIVE))])
async def delete_account(
    body: DeleteAccountBody,
    response: Response,
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
    settings: CeboelhaSettings = Depends(get_app_settings),
):
    """Delete the caller's account."""
    await service.delete_account(user.id, body.password)
    clear_auth_cookies(response, settings)
    return envelope(message="Account deleted")

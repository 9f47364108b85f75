"""Auth cookies carrying the access token and refresh credential."""

from fastapi import Response

from ceboelha.core.settings import CeboelhaSettings

ACCESS_COOKIE = "ceboelha_access_token"
REFRESH_COOKIE = "ceboelha_refresh_token"


def _cookie_options(settings: CeboelhaSettings) -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict" if settings.is_production else "lax",
        "path": "/",
    }


def set_auth_cookies(
    response: Response,
    settings: CeboelhaSettings,
    access_token: str,
    refresh_token: str,
) -> None:
    """Set both auth cookies, each expiring with its token."""
    options = _cookie_options(settings)
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=int(settings.jwt_access_expires_in.total_seconds()),
        **options,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=int(settings.jwt_refresh_expires_in.total_seconds()),
        **options,
    )


def clear_auth_cookies(response: Response, settings: CeboelhaSettings) -> None:
    """Expire both auth cookies immediately."""
    options = _cookie_options(settings)
    response.set_cookie(ACCESS_COOKIE, "", max_age=0, **options)
    response.set_cookie(REFRESH_COOKIE, "", max_age=0, **options)

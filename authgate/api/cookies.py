from __future__ import annotations

from starlette.responses import Response

from authgate.config import get_settings

REFRESH_COOKIE = "refresh_token"


def set_refresh_cookie(response: Response, refresh_token: str, *, max_age: int) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        httponly=True,
        secure=get_settings().cookie_secure,
        samesite="strict",
        max_age=max_age,
        path="/",
    )


def clear_refresh_cookie(response: Response) -> None:
    # attributes must match the ones used when setting, or browsers keep the cookie
    response.delete_cookie(
        REFRESH_COOKIE,
        path="/",
        httponly=True,
        secure=get_settings().cookie_secure,
        samesite="strict",
    )

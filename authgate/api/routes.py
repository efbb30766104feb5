from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Response

from authgate.api.cookies import REFRESH_COOKIE, clear_refresh_cookie, set_refresh_cookie
from authgate.api.schemas import Envelope, ParamsBody
from authgate.service.auth import TokenGrant
from authgate.service.gate import Reject
from authgate.service.runtime import get_runtime

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _params(body: Optional[ParamsBody]) -> Dict[str, Any]:
    return body.params if body is not None else {}


async def require_access(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Gate protected routes on a valid access token; yields its claims."""
    result = get_runtime().auth.authenticate(authorization)
    if isinstance(result, Reject):
        raise result.error
    return result.claims


def _grant_response(response: Response, grant: TokenGrant) -> Envelope:
    runtime = get_runtime()
    set_refresh_cookie(
        response, grant.refresh_token, max_age=runtime.codec.refresh_ttl_seconds
    )
    return Envelope.ok("Token generated successfully", grant.to_data())


@router.post("/userRegister", response_model=Envelope, status_code=201)
async def user_register(body: Optional[ParamsBody] = None):
    """Create a user account. Duplicate emails are rejected with 400."""
    runtime = get_runtime()
    user = await runtime.auth.register(_params(body))
    return Envelope.ok("User registered successfully", [user.summary()], status=201)


@router.post("/userLogin", response_model=Envelope)
async def user_login(response: Response, body: Optional[ParamsBody] = None):
    runtime = get_runtime()
    grant = await runtime.auth.login(_params(body))
    return _grant_response(response, grant)


@router.post("/refreshToken", response_model=Envelope)
async def refresh_token(
    response: Response,
    refresh_token: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    """Rotate the access and refresh tokens using the refresh cookie.

    The previous refresh token stops working as soon as this succeeds.
    """
    runtime = get_runtime()
    grant = await runtime.auth.refresh(refresh_token)
    return _grant_response(response, grant)


@router.post("/showProfile", response_model=Envelope)
async def show_profile(
    body: Optional[ParamsBody] = None,
    claims: Dict[str, Any] = Depends(require_access),
):
    runtime = get_runtime()
    user = await runtime.auth.show_profile(_params(body))
    return Envelope.ok("User profile fetched successfully", [user.profile()])


@router.post("/logout", response_model=Envelope)
async def logout(response: Response, claims: Dict[str, Any] = Depends(require_access)):
    runtime = get_runtime()
    clear_refresh_cookie(response)
    await runtime.auth.logout(claims.get("id"))
    return Envelope.ok("Logged out successfully", [])

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from authgate.logging import get_logger
from authgate.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    NoSessionStoredError,
    RefreshExpiredError,
    TokenMismatchError,
    UserNotFoundError,
)
from authgate.service.gate import GateResult, check_access
from authgate.service.passwords import CredentialHasher
from authgate.service.sessions import SessionStore
from authgate.service.tokens import TokenCodec, TokenExpired, TokenError
from authgate.service.validation import (
    LoginParams,
    ProfileParams,
    RegisterParams,
    validate_params,
)
from authgate.storage.errors import ConstraintViolation
from authgate.storage.models import User

logger = get_logger(__name__)


class RecordStore(Protocol):
    def verify_connection(self) -> None: ...

    def insert(self, user: User) -> User: ...

    def find_matching(self, flt: Mapping[str, Any]) -> List[User]: ...

    def update_matching(self, flt: Mapping[str, Any], patch: Mapping[str, Any]) -> int: ...

    def find_by_id(self, user_id: str) -> Optional[User]: ...

    def update_by_id(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]: ...


@dataclass
class TokenGrant:
    """Tokens minted by a login or refresh, plus who they were minted for."""

    access_token: str
    refresh_token: str
    user: User

    def to_data(self) -> List[Dict[str, Any]]:
        summary = self.user.summary()
        return [{"token": self.access_token, **summary}]


def _token_claims(user: User) -> Dict[str, Any]:
    return {"id": user.id, "email": user.email, "role": user.role.value}


class AuthService:
    """Register, login, refresh rotation, profile and logout flows."""

    def __init__(
        self,
        store: RecordStore,
        sessions: SessionStore,
        codec: TokenCodec,
        hasher: CredentialHasher,
    ) -> None:
        self.store: RecordStore = store
        self.sessions = sessions
        self.codec = codec
        self.hasher = hasher
        self.logger = logger

    async def register(
        self, params: Optional[Mapping[str, Any]], *, created_by: Optional[str] = None
    ) -> User:
        data = validate_params(RegisterParams, params)
        if self.store.find_matching({"email": data.email}):
            self.logger.info("register_duplicate_email", email=data.email)
            raise ConflictError("User already exists")
        user = User(
            id=str(uuid.uuid4()),
            name=data.name,
            email=data.email,
            password=self.hasher.hash(data.password),
            phone_number=data.phone_number,
            role=data.role,
            address=data.address,
            created_by=created_by,
            modified_by=created_by,
        )
        try:
            created = self.store.insert(user)
        except ConstraintViolation as exc:
            field = exc.detail.get("field")
            self.logger.info("register_constraint_violation", field=field)
            if field == "phone_number":
                raise ConflictError("Phone number already in use", detail={"field": field}) from exc
            raise ConflictError("User already exists", detail={"field": field}) from exc
        self.logger.info("user_registered", user_id=created.id, role=created.role.value)
        return created

    async def login(self, params: Optional[Mapping[str, Any]]) -> TokenGrant:
        data = validate_params(LoginParams, params)
        matches = self.store.find_matching({"email": data.email})
        if not matches:
            self.logger.info("login_failed", reason="user_not_found")
            raise UserNotFoundError("User not found")
        user = matches[0]
        if not self.hasher.verify(data.password, user.password):
            self.logger.warning("login_failed", reason="invalid_password", user_id=user.id)
            raise InvalidCredentialsError("Invalid password")
        if not user.is_active:
            self.logger.warning("login_failed", reason="inactive", user_id=user.id)
            raise ForbiddenError("User account is inactive")
        if self.hasher.needs_rehash(user.password):
            self.store.update_by_id(user.id, {"password": self.hasher.hash(data.password)})
        grant = await self._issue(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return grant

    async def refresh(self, refresh_token: Optional[str]) -> TokenGrant:
        """Rotate both tokens for the holder of a live refresh token.

        The presented token must verify and also be byte-identical to the one
        stored for its user; anything else is rejected and, for expiry, the
        stored session is dropped.
        """
        if not refresh_token:
            raise AuthenticationError("No refresh token provided, please login again")
        try:
            claims = self.codec.verify_refresh_token(refresh_token)
        except TokenExpired as exc:
            user_id = exc.claims.get("id")
            if user_id:
                await self.sessions.delete(str(user_id))
            self.logger.info("refresh_token_expired", user_id=user_id)
            raise RefreshExpiredError("Refresh token expired. Please login again.") from exc
        except TokenError as exc:
            self.logger.warning("refresh_token_invalid", reason=type(exc).__name__)
            raise InvalidRefreshTokenError("Invalid refresh token") from exc

        user_id = str(claims.get("id") or "")
        if not user_id:
            raise InvalidRefreshTokenError("Invalid refresh token")
        stored = await self.sessions.get(user_id)
        if stored is None:
            self.logger.info("refresh_no_session", user_id=user_id)
            raise NoSessionStoredError("No refresh token stored")
        if stored != refresh_token:
            self.logger.warning("refresh_token_mismatch", user_id=user_id)
            raise TokenMismatchError("Refresh token mismatch")

        user = self.store.find_by_id(user_id)
        if user is None:
            await self.sessions.delete(user_id)
            raise UserNotFoundError("User not found")
        if not user.is_active:
            await self.sessions.delete(user_id)
            raise ForbiddenError("User account is inactive")
        grant = await self._issue(user)
        self.logger.info("refresh_token_rotated", user_id=user_id)
        return grant

    async def show_profile(self, params: Optional[Mapping[str, Any]]) -> User:
        data = validate_params(ProfileParams, params)
        user = self.store.find_by_id(data.user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def logout(self, user_id: Optional[str]) -> None:
        """Drop the caller's session; cache failures never fail the logout."""
        if not user_id:
            return
        try:
            await self.sessions.delete(user_id)
        except Exception as exc:
            self.logger.warning(
                "logout_cache_cleanup_failed",
                user_id=user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        self.logger.info("logout_succeeded", user_id=user_id)

    def authenticate(self, authorization: Optional[str]) -> GateResult:
        return check_access(self.codec, authorization)

    async def _issue(self, user: User) -> TokenGrant:
        claims = _token_claims(user)
        access_token = self.codec.issue_access_token(claims)
        refresh_token = self.codec.issue_refresh_token(claims)
        # overwriting the entry invalidates any earlier refresh token
        await self.sessions.put(user.id, refresh_token, self.codec.refresh_ttl_seconds)
        return TokenGrant(access_token=access_token, refresh_token=refresh_token, user=user)

"""Unit tests for the auth orchestrator.

Covers registration, login, refresh-token rotation and its rejection paths,
profile lookup, and best-effort logout.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from authgate.service.auth import AuthService
from authgate.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    HashingFailure,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    NoSessionStoredError,
    RefreshExpiredError,
    ServerError,
    TokenMismatchError,
    UserNotFoundError,
)
from authgate.service.gate import Continue
from authgate.service.passwords import CredentialHasher
from authgate.service.sessions import SessionStore
from authgate.service.tokens import TokenCodec
from authgate.storage.memory import MemoryStore
from authgate.storage.models import Role


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenCache:
    async def get(self, key):
        raise RedisConnectionError("down")

    async def set(self, key, value, *, ex=None):
        raise RedisConnectionError("down")

    async def delete(self, key):
        raise RedisConnectionError("down")


class FailingHasher(CredentialHasher):
    def hash(self, plain: str) -> str:
        raise HashingFailure("Failed to hash password")


REFRESH_TTL = 7 * 24 * 3600

ALICE = {
    "name": "Alice",
    "email": "alice@example.com",
    "password": "abcdef",
    "role": "user",
    "phoneNumber": 1234567890,
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def sessions():
    return SessionStore(None)


@pytest.fixture
def codec(clock):
    return TokenCodec(
        access_secret="access-secret",
        refresh_secret="refresh-secret",
        access_ttl_seconds=15 * 60,
        refresh_ttl_seconds=REFRESH_TTL,
        clock=clock,
    )


@pytest.fixture
def auth_service(memory_store, sessions, codec):
    return AuthService(memory_store, sessions, codec, CredentialHasher())


class TestRegister:
    async def test_register_creates_user_with_hashed_password(self, auth_service, memory_store):
        user = await auth_service.register(dict(ALICE))

        stored = memory_store.find_by_id(user.id)
        assert stored.name == "Alice"
        assert stored.password != "abcdef"
        assert stored.password.startswith("$argon2id$")
        assert stored.role == Role.USER

    async def test_empty_params_rejected(self, auth_service):
        for params in (None, {}):
            with pytest.raises(BadRequestError) as excinfo:
                await auth_service.register(params)
            assert excinfo.value.message == "params are required"

    async def test_duplicate_email_is_conflict_without_write(self, auth_service, memory_store):
        await auth_service.register(dict(ALICE))
        with pytest.raises(ConflictError) as excinfo:
            await auth_service.register({**ALICE, "email": "ALICE@example.com", "phoneNumber": 1234567899})
        assert excinfo.value.status_code == 400
        assert excinfo.value.message == "User already exists"
        assert len(memory_store.find_matching({})) == 1

    async def test_duplicate_phone_is_conflict(self, auth_service):
        await auth_service.register(dict(ALICE))
        with pytest.raises(ConflictError):
            await auth_service.register({**ALICE, "email": "bob@example.com"})

    async def test_legacy_role_spelling_accepted(self, auth_service):
        user = await auth_service.register({**ALICE, "role": "Developer"})
        assert user.role == Role.DEVELOPER

    @pytest.mark.parametrize(
        "override, message",
        [
            ({"email": "not-an-email"}, '"email" must be a valid email'),
            ({"password": "abc"}, '"password" length must be at least 6 characters long'),
            ({"role": "superuser"}, '"role" must be one of [user, admin, developer]'),
            ({"phoneNumber": 12345}, '"phoneNumber" must be greater than or equal to 1000000000'),
            ({"address": "x" * 201}, '"address" length must be less than or equal to 200 characters long'),
        ],
    )
    async def test_field_validation_messages(self, auth_service, override, message):
        with pytest.raises(BadRequestError) as excinfo:
            await auth_service.register({**ALICE, **override})
        assert excinfo.value.message == message

    async def test_missing_field_message(self, auth_service):
        params = dict(ALICE)
        params.pop("phoneNumber")
        with pytest.raises(BadRequestError) as excinfo:
            await auth_service.register(params)
        assert excinfo.value.message == '"phoneNumber" is required'

    async def test_hashing_failure_propagates_as_500(self, memory_store, sessions, codec):
        service = AuthService(memory_store, sessions, codec, FailingHasher())
        with pytest.raises(HashingFailure) as excinfo:
            await service.register(dict(ALICE))
        assert excinfo.value.status_code == 500
        assert memory_store.find_matching({}) == []


class TestLogin:
    async def test_login_stores_session_matching_refresh_token(self, auth_service, sessions):
        user = await auth_service.register(dict(ALICE))
        grant = await auth_service.login({"email": "Alice@Example.com", "password": "abcdef"})

        assert grant.access_token
        assert await sessions.get(user.id) == grant.refresh_token
        data = grant.to_data()
        assert data == [
            {
                "token": grant.access_token,
                "userId": user.id,
                "userName": "Alice",
                "email": "alice@example.com",
                "role": "user",
            }
        ]

    async def test_unknown_email_is_not_found(self, auth_service):
        with pytest.raises(UserNotFoundError) as excinfo:
            await auth_service.login({"email": "ghost@example.com", "password": "abcdef"})
        assert excinfo.value.status_code == 404

    async def test_wrong_password_is_401(self, auth_service, sessions):
        user = await auth_service.register(dict(ALICE))
        with pytest.raises(InvalidCredentialsError) as excinfo:
            await auth_service.login({"email": ALICE["email"], "password": "wrong!!"})
        assert excinfo.value.status_code == 401
        assert excinfo.value.message == "Invalid password"
        assert await sessions.get(user.id) is None

    async def test_inactive_user_is_forbidden(self, auth_service, memory_store):
        user = await auth_service.register(dict(ALICE))
        memory_store.update_by_id(user.id, {"is_active": False})
        with pytest.raises(ForbiddenError):
            await auth_service.login({"email": ALICE["email"], "password": "abcdef"})

    async def test_login_with_unreachable_cache_is_500(self, memory_store, codec):
        service = AuthService(memory_store, SessionStore(BrokenCache()), codec, CredentialHasher())
        await service.register(dict(ALICE))
        with pytest.raises(ServerError):
            await service.login({"email": ALICE["email"], "password": "abcdef"})


class TestRefresh:
    async def _login(self, auth_service):
        user = await auth_service.register(dict(ALICE))
        grant = await auth_service.login({"email": ALICE["email"], "password": "abcdef"})
        return user, grant

    async def test_missing_token_is_401(self, auth_service):
        with pytest.raises(AuthenticationError) as excinfo:
            await auth_service.refresh(None)
        assert excinfo.value.status_code == 401
        assert excinfo.value.message.startswith("No refresh token provided")

    async def test_rotation_invalidates_previous_token(self, auth_service, sessions):
        user, first = await self._login(auth_service)

        second = await auth_service.refresh(first.refresh_token)
        assert second.refresh_token != first.refresh_token
        assert await sessions.get(user.id) == second.refresh_token

        with pytest.raises(TokenMismatchError) as excinfo:
            await auth_service.refresh(first.refresh_token)
        assert excinfo.value.status_code == 403
        assert excinfo.value.message == "Refresh token mismatch"

        third = await auth_service.refresh(second.refresh_token)
        assert third.user.id == user.id

    async def test_expired_token_clears_session(self, auth_service, sessions, clock):
        user, grant = await self._login(auth_service)
        clock.now += REFRESH_TTL + 1

        with pytest.raises(RefreshExpiredError) as excinfo:
            await auth_service.refresh(grant.refresh_token)
        assert excinfo.value.status_code == 403
        assert excinfo.value.clears_refresh_cookie
        assert await sessions.get(user.id) is None

        with pytest.raises(RefreshExpiredError):
            await auth_service.refresh(grant.refresh_token)

    async def test_forged_token_does_not_touch_session(self, auth_service, sessions):
        user, grant = await self._login(auth_service)
        header, payload, _ = grant.refresh_token.split(".")

        with pytest.raises(InvalidRefreshTokenError) as excinfo:
            await auth_service.refresh(f"{header}.{payload}.forged")
        assert excinfo.value.message == "Invalid refresh token"
        assert await sessions.get(user.id) == grant.refresh_token

    async def test_no_stored_session_is_403(self, auth_service, sessions):
        user, grant = await self._login(auth_service)
        await sessions.delete(user.id)
        with pytest.raises(NoSessionStoredError) as excinfo:
            await auth_service.refresh(grant.refresh_token)
        assert excinfo.value.message == "No refresh token stored"

    async def test_deleted_user_drops_session(self, auth_service, memory_store, sessions):
        user, grant = await self._login(auth_service)
        memory_store.users.pop(user.id)
        with pytest.raises(UserNotFoundError):
            await auth_service.refresh(grant.refresh_token)
        assert await sessions.get(user.id) is None


class TestProfileAndLogout:
    async def test_show_profile_hides_password(self, auth_service):
        user = await auth_service.register(dict(ALICE))
        found = await auth_service.show_profile({"userId": user.id})
        profile = found.profile()
        assert profile["userId"] == user.id
        assert profile["phoneNumber"] == 1234567890
        assert "password" not in profile

    async def test_show_profile_unknown_user(self, auth_service):
        with pytest.raises(UserNotFoundError):
            await auth_service.show_profile({"userId": "missing"})

    async def test_show_profile_requires_params(self, auth_service):
        with pytest.raises(BadRequestError):
            await auth_service.show_profile({})

    async def test_logout_deletes_session_and_is_idempotent(self, auth_service, sessions):
        user = await auth_service.register(dict(ALICE))
        await auth_service.login({"email": ALICE["email"], "password": "abcdef"})

        await auth_service.logout(user.id)
        await auth_service.logout(user.id)
        assert await sessions.get(user.id) is None

    async def test_logout_swallows_cache_failure(self, memory_store, codec):
        service = AuthService(memory_store, SessionStore(BrokenCache()), codec, CredentialHasher())
        await service.logout("some-user")

    def test_authenticate_returns_continue_for_access_token(self, auth_service, codec):
        token = codec.issue_access_token({"id": "u1", "email": "a@x.com", "role": "user"})
        result = auth_service.authenticate(f"Bearer {token}")
        assert isinstance(result, Continue)
        assert result.claims["id"] == "u1"

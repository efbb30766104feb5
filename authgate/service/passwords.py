from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import HashingError, InvalidHash, VerificationError

from authgate.logging import get_logger
from authgate.service.errors import HashingFailure

logger = get_logger(__name__)


class CredentialHasher:
    """argon2id password hashing."""

    algo = "argon2id"

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, plain: str) -> str:
        try:
            return self._pwd_hasher.hash(plain)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingFailure("Failed to hash password") from exc

    def verify(self, plain: str, digest: str) -> bool:
        """Return True when ``plain`` matches ``digest``; never raises on mismatch."""
        try:
            return self._pwd_hasher.verify(digest, plain)
        except (InvalidHash, VerificationError):
            return False

    def needs_rehash(self, digest: str) -> bool:
        try:
            return self._pwd_hasher.check_needs_rehash(digest)
        except InvalidHash:
            return False

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

from authgate.config import Settings
from authgate.logging import get_logger
from authgate.service.errors import AuthenticationError, SigningError

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenMalformed(TokenError):
    pass


class TokenSignatureMismatch(TokenError):
    pass


class TokenExpired(TokenError):
    """Signature checked out but ``exp`` has passed.

    ``claims`` holds the verified payload so callers can still act on the
    identity it names.
    """

    def __init__(self, claims: Dict[str, Any]) -> None:
        super().__init__("token expired")
        self.claims = claims


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(secret: str, signing_input: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


def peek_claims(token: str) -> Optional[Dict[str, Any]]:
    """Decode the payload without checking signature or expiry."""
    try:
        _, payload_b64, _ = token.split(".")
        payload = json.loads(_decode_segment(payload_b64))
    except (ValueError, TypeError, RecursionError):
        return None
    return payload if isinstance(payload, dict) else None


class TokenCodec:
    """HS256 JWTs for two token classes with independent secrets and lifetimes."""

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl_seconds, REFRESH: refresh_ttl_seconds}
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "TokenCodec":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            leeway_seconds=settings.jwt_leeway_seconds,
            **kwargs,
        )

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._ttls[REFRESH]

    @property
    def access_ttl_seconds(self) -> int:
        return self._ttls[ACCESS]

    def issue_access_token(self, claims: Mapping[str, Any]) -> str:
        return self._issue(ACCESS, claims)

    def issue_refresh_token(self, claims: Mapping[str, Any]) -> str:
        return self._issue(REFRESH, claims)

    def verify_access_token(self, token: Optional[str]) -> Dict[str, Any]:
        """Return the claims of a live access token or raise ``AuthenticationError``."""
        if not token:
            raise AuthenticationError("Unauthorized")
        try:
            return self._verify(ACCESS, token)
        except TokenError as exc:
            logger.info("access_token_rejected", reason=type(exc).__name__)
            raise AuthenticationError("Unauthorized") from exc

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        """Return refresh claims.

        Raises ``TokenExpired``, ``TokenMalformed`` or ``TokenSignatureMismatch``
        so callers can tell expiry apart from forgery.
        """
        return self._verify(REFRESH, token)

    def peek_claims(self, token: str) -> Optional[Dict[str, Any]]:
        return peek_claims(token)

    def _issue(self, token_type: str, claims: Mapping[str, Any]) -> str:
        now = int(self._clock())
        payload = {
            **claims,
            "iat": now,
            "exp": now + self._ttls[token_type],
            "jti": str(uuid.uuid4()),
            "token_type": token_type,
        }
        header = {"alg": "HS256", "typ": "JWT"}
        try:
            header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
            payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
            signing_input = f"{header_enc}.{payload_enc}"
            signature = _sign(self._secrets[token_type], signing_input)
        except (TypeError, ValueError) as exc:
            logger.error("token_signing_failed", token_type=token_type, error=str(exc))
            raise SigningError("Failed to generate token") from exc
        return f"{signing_input}.{signature}"

    def _verify(self, token_type: str, token: str) -> Dict[str, Any]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (ValueError, AttributeError) as exc:
            raise TokenMalformed("token must have three segments") from exc

        # Only HS256 is accepted; anything else is an algorithm confusion attempt
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError, RecursionError) as exc:
            raise TokenMalformed("undecodable header") from exc
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=alg)
            raise TokenMalformed("unsupported algorithm")

        expected_sig = _sign(self._secrets[token_type], f"{header_b64}.{payload_b64}")
        try:
            matched = hmac.compare_digest(expected_sig, sig_b64)
        except TypeError:
            # non-ASCII signature segment
            matched = False
        if not matched:
            raise TokenSignatureMismatch("signature mismatch")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError, RecursionError) as exc:
            raise TokenMalformed("undecodable payload") from exc
        if not isinstance(payload, dict) or payload.get("token_type") != token_type:
            raise TokenMalformed("wrong token type")
        try:
            exp = float(payload["exp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenMalformed("missing exp") from exc
        if self._clock() >= exp + self.leeway_seconds:
            raise TokenExpired(payload)
        return payload


__all__ = [
    "TokenCodec",
    "TokenError",
    "TokenExpired",
    "TokenMalformed",
    "TokenSignatureMismatch",
    "peek_claims",
]

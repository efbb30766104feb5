from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from authgate.service.errors import AuthenticationError, ServiceError
from authgate.service.tokens import TokenCodec


@dataclass(frozen=True)
class Continue:
    claims: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Reject:
    error: ServiceError


GateResult = Union[Continue, Reject]


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from ``Bearer <jwt>`` or accept a bare token."""
    if not authorization:
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        value = rest.strip()
    return value or None


def check_access(codec: TokenCodec, authorization: Optional[str]) -> GateResult:
    try:
        claims = codec.verify_access_token(bearer_token(authorization))
    except AuthenticationError as exc:
        return Reject(exc)
    if not claims.get("id"):
        return Reject(AuthenticationError("Unauthorized"))
    return Continue(claims)


__all__ = ["Continue", "Reject", "GateResult", "bearer_token", "check_access"]

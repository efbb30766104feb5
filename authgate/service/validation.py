from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from authgate.service.errors import BadRequestError
from authgate.storage.models import Role

PHONE_MIN = 1_000_000_000
PHONE_MAX = 9_999_999_999

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_ZERO_WIDTH = "\u200b\u200c\u200d\ufeff"

ParamsModel = TypeVar("ParamsModel", bound=BaseModel)


def normalize_unicode(value: str) -> str:
    """Strip zero-width characters and apply NFKC."""
    cleaned = "".join(c for c in value if c not in _ZERO_WIDTH)
    return unicodedata.normalize("NFKC", cleaned)


def normalize_email(value: str) -> str:
    return normalize_unicode(value.strip().lower())


def _validate_email(value: str) -> str:
    normalized = normalize_email(value)
    local, sep, domain = normalized.partition("@")
    if len(normalized) > 254 or not sep or not local or not domain or len(local) > 64:
        raise ValueError('"email" must be a valid email')
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError('"email" must be a valid email')
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError('"email" must be a valid email')
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError('"email" must be a valid email')
    return normalized


class RegisterParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    email: str
    password: str
    role: Role
    phone_number: int = Field(..., alias="phoneNumber")
    address: str = ""

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = normalize_unicode(value).strip()
        if not value:
            raise ValueError('"name" is not allowed to be empty')
        if len(value) > 50:
            raise ValueError('"name" length must be less than or equal to 50 characters long')
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError('"password" length must be at least 6 characters long')
        return value

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> Role:
        try:
            return Role.parse(value)
        except ValueError as exc:
            allowed = ", ".join(role.value for role in Role)
            raise ValueError(f'"role" must be one of [{allowed}]') from exc

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, value: int) -> int:
        if value < PHONE_MIN:
            raise ValueError(f'"phoneNumber" must be greater than or equal to {PHONE_MIN}')
        if value > PHONE_MAX:
            raise ValueError(f'"phoneNumber" must be less than or equal to {PHONE_MAX}')
        return value

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        if len(value) > 200:
            raise ValueError('"address" length must be less than or equal to 200 characters long')
        return value


class LoginParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_email(value)


class ProfileParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(..., alias="userId", min_length=1)


_TYPE_MESSAGES = {
    "string_type": "must be a string",
    "int_type": "must be a number",
    "int_parsing": "must be a number",
    "int_from_float": "must be an integer",
    "string_too_short": "is not allowed to be empty",
}


def first_error_message(exc: ValidationError) -> str:
    """Render the first pydantic error the way API clients already expect."""
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or "params"
    if error["type"] == "missing":
        return f'"{field}" is required'
    if error["type"] == "value_error":
        ctx_error = (error.get("ctx") or {}).get("error")
        if ctx_error is not None:
            return str(ctx_error)
    suffix = _TYPE_MESSAGES.get(error["type"], error.get("msg", "is invalid"))
    return f'"{field}" {suffix}'


def validate_params(model: Type[ParamsModel], params: Optional[Mapping[str, Any]]) -> ParamsModel:
    """Reject empty params, then validate them against ``model``.

    Raises ``BadRequestError`` with a single human-readable message.
    """
    if not params:
        raise BadRequestError("params are required")
    if not isinstance(params, Mapping):
        raise BadRequestError("params must be an object")
    try:
        return model.model_validate(dict(params))
    except ValidationError as exc:
        raise BadRequestError(first_error_message(exc), detail={"errors": _safe_errors(exc)}) from exc


def _safe_errors(exc: ValidationError) -> list[Dict[str, Any]]:
    # input values may carry passwords
    return [
        {"loc": list(err.get("loc", ())), "type": err.get("type")}
        for err in exc.errors()
    ]


__all__ = [
    "RegisterParams",
    "LoginParams",
    "ProfileParams",
    "first_error_message",
    "normalize_email",
    "validate_params",
]

from __future__ import annotations

import os
import re
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from authgate.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ACCESS_SECRET = "default_access_secret"
DEFAULT_REFRESH_SECRET = "default_refresh_secret"

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def parse_duration(value: str | int) -> int:
    """Convert an expiry such as ``"15m"`` or ``"7d"`` into seconds.

    Bare numbers are read as seconds.
    """
    if isinstance(value, bool):
        raise ValueError("duration must be a string or integer")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError("duration must be positive")
        return value
    match = _DURATION_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"invalid duration '{value}'; expected forms like 30s, 15m, 12h, 7d")
    amount, unit = match.groups()
    seconds = int(amount) * _DURATION_UNITS[unit.lower()]
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


class AppEnv(str, Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth service."""

    app_env: AppEnv = env_field(AppEnv.DEVELOPMENT, "APP_ENV")
    host: str = env_field("0.0.0.0", "HOST")
    port: int = env_field(5000, "PORT")
    cors_origin: list[str] = env_field(
        [], "CORS_ORIGIN", description="Comma separated list of allowed origins"
    )

    # Token codec: two independent secret/expiry pairs
    jwt_access_secret: str = env_field(DEFAULT_ACCESS_SECRET, "JWT_ACCESS_SECRET")
    jwt_access_expiry: str = env_field("15m", "JWT_ACCESS_EXPIRY")
    jwt_refresh_secret: str = env_field(DEFAULT_REFRESH_SECRET, "JWT_REFRESH_SECRET")
    jwt_refresh_expiry: str = env_field("7d", "JWT_REFRESH_EXPIRY")
    jwt_leeway_seconds: int = env_field(
        0, "JWT_LEEWAY_SECONDS", description="Allowed clock skew when checking expiry"
    )

    cookie_secure: bool = env_field(
        True, "COOKIE_SECURE", description="Send the refresh cookie over HTTPS only"
    )

    database_url: str = env_field(
        "postgresql://localhost:5432/authgate", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(True, "USE_MEMORY_STORE")
    shared_fs_root: str = env_field(
        "", "SHARED_FS_ROOT", description="Directory for memory store snapshots; empty disables persistence"
    )

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Use the synchronous Redis client and allow the in-process cache fallback",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_origin", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("jwt_access_expiry", "jwt_refresh_expiry")
    @classmethod
    def _validate_expiry(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("jwt_leeway_seconds")
    @classmethod
    def _validate_leeway(cls, value: int) -> int:
        if value < 0:
            raise ValueError("JWT_LEEWAY_SECONDS must not be negative")
        return value

    @model_validator(mode="after")
    def _check_secrets(self) -> "Settings":
        defaults_in_use = [
            name
            for name, value, default in (
                ("JWT_ACCESS_SECRET", self.jwt_access_secret, DEFAULT_ACCESS_SECRET),
                ("JWT_REFRESH_SECRET", self.jwt_refresh_secret, DEFAULT_REFRESH_SECRET),
            )
            if value == default
        ]
        if self.app_env == AppEnv.PRODUCTION:
            if defaults_in_use:
                raise ValueError(
                    f"{', '.join(defaults_in_use)} must be overridden in production"
                )
            if self.jwt_access_secret == self.jwt_refresh_secret:
                raise ValueError("access and refresh secrets must differ in production")
        elif defaults_in_use:
            logger.warning("jwt_default_secrets_in_use", settings=defaults_in_use)
        return self

    @property
    def access_token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_access_expiry)

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_refresh_expiry)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None

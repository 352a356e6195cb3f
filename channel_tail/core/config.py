"""Environment-driven settings resolved once at startup and read-only afterwards."""

import re
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from channel_tail.core.errors import ConfigError

_DEFAULT_CONSTRAINED_CLIENT_PATTERN = r"(Mobile|curl)"


class Settings(BaseSettings):
    """Service settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "Channel Tail"
    VERSION: str = "0.1.0"
    ENV: Literal["production", "development", "test"]
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int
    SUBSCRIBE_CHANNEL: str
    REDIS_HOST: str = "127.0.0.1"
    REDIS_PORT: int = 6379
    REDIS_CONNECT_TIMEOUT_S: float = Field(default=5.0, gt=0)
    HISTORY_CAPACITY: int = Field(default=10, ge=1)
    CONSTRAINED_CLIENT_PATTERN: str = _DEFAULT_CONSTRAINED_CLIENT_PATTERN
    ANNOUNCE_SUBSCRIPTION: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("*", mode="before")
    @classmethod
    def _reject_empty(cls, value: Any) -> Any:
        """Treat an empty string the same as a broken value rather than a default."""

        if isinstance(value, str) and not value.strip():
            raise ValueError("empty config")
        return value

    @field_validator("CONSTRAINED_CLIENT_PATTERN")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid pattern: {exc}") from exc
        return value


def load_settings(**overrides: Any) -> Settings:
    """Build settings, converting validation failures into a ConfigError naming the key."""

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        error = exc.errors()[0]
        location = error.get("loc") or ("?",)
        key = str(location[0])
        if error.get("type") == "missing":
            reason = "missing"
        elif "empty config" in str(error.get("msg", "")):
            reason = "empty"
        else:
            reason = "invalid"
        raise ConfigError(key, reason) from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return load_settings()

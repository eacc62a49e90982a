"""
Runtime configuration for UniConnect Hub.

Loads DATABASE_URL and the remaining settings from the environment, falling
back to the .env file located in the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Final, Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root
BASE_DIR = Path(__file__).resolve().parents[1]

# Absolute path to .env
ENV_PATH = BASE_DIR / ".env"

# Load .env defaults without overriding environment variables provided by the platform
load_dotenv(dotenv_path=ENV_PATH, override=False)

MIB: Final[int] = 1024 * 1024

_PLACEHOLDER_VALUES: Final[set[str]] = {
    "changeme",
    "change-me",
    "placeholder",
    "example",
    "sample",
    "your-key-here",
}


class MissingSecretError(RuntimeError):
    """Raised when a required secret is unset or still holds a placeholder."""


def is_placeholder(value: str | None) -> bool:
    if not value:
        return True
    normalized = value.strip().lower()
    return not normalized or normalized in _PLACEHOLDER_VALUES


class Settings(BaseSettings):
    # Required field, read from .env
    database_url: str = Field(..., alias="DATABASE_URL")

    app_name: str = Field(default="UniConnect Hub", alias="APP_NAME")
    api_version: str = Field(default="0.1.0", alias="API_VERSION")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    # Identity
    jwt_secret_key: str | None = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expires_minutes: int = Field(default=1440, alias="JWT_EXPIRES_MINUTES")
    min_password_length: int = Field(default=6, alias="MIN_PASSWORD_LENGTH")

    # Object storage
    storage_backend: Literal["local", "spaces"] = Field(default="local", alias="STORAGE_BACKEND")
    media_root: Path = Field(default=Path("media"), alias="MEDIA_ROOT")
    media_public_base_url: str = Field(default="http://localhost:8000/media", alias="MEDIA_PUBLIC_BASE_URL")
    spaces_key: str | None = Field(default=None, alias="DO_SPACES_KEY")
    spaces_secret: str | None = Field(default=None, alias="DO_SPACES_SECRET")
    spaces_region: str | None = Field(default=None, alias="DO_SPACES_REGION")
    spaces_bucket: str | None = Field(default=None, alias="DO_SPACES_NAME")
    spaces_endpoint: str | None = Field(default=None, alias="DO_SPACES_ENDPOINT")

    # Upload limits
    max_post_media_bytes: int = Field(default=10 * MIB, alias="MAX_POST_MEDIA_BYTES")
    max_story_media_bytes: int = Field(default=10 * MIB, alias="MAX_STORY_MEDIA_BYTES")
    max_avatar_bytes: int = Field(default=5 * MIB, alias="MAX_AVATAR_BYTES")

    # View-models
    realtime_strategy: Literal["full", "incremental"] = Field(default="full", alias="REALTIME_STRATEGY")
    notification_buffer_size: int = Field(default=50, alias="NOTIFICATION_BUFFER_SIZE")
    audit_log_limit: int = Field(default=50, alias="AUDIT_LOG_LIMIT")
    story_ttl_hours: int = Field(default=24, alias="STORY_TTL_HOURS")
    verification_fee_kshs: int = Field(default=500, alias="VERIFICATION_FEE_KSHS")

    # AI chat
    ai_chat_url: str = Field(default="http://localhost:8000/functions/v1/ai-chat", alias="AI_CHAT_URL")
    ai_chat_public_key: str | None = Field(default=None, alias="AI_CHAT_PUBLIC_KEY")
    ai_gateway_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        alias="AI_GATEWAY_URL",
    )
    ai_gateway_api_key: str | None = Field(default=None, alias="AI_GATEWAY_API_KEY")
    ai_model: str = Field(default="google/gemini-flash-1.5", alias="AI_MODEL")
    ai_timeout: float = Field(default=60.0, alias="AI_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def require_jwt_secret(self) -> str:
        """Return the JWT signing secret or raise :class:`MissingSecretError`."""

        if is_placeholder(self.jwt_secret_key):
            raise MissingSecretError("JWT_SECRET_KEY is required and must not use placeholder defaults")
        return (self.jwt_secret_key or "").strip()

    @property
    def allowed_origins(self) -> list[str]:
        origins = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
        return origins or ["*"]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["MIB", "MissingSecretError", "Settings", "get_settings", "is_placeholder"]

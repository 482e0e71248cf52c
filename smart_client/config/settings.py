"""
Client settings using pydantic-settings.

Environment variables are prefixed with SMART_CLIENT_.
"""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from smart_client.constants import (
    DEFAULT_RANDOM_TOKEN_LENGTH,
    PKCE_VERIFIER_MAX_LENGTH,
    PKCE_VERIFIER_MIN_LENGTH,
)

load_dotenv()


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("pkce_verifier_length")
    @classmethod
    def validate_verifier_length(cls, value: int) -> int:
        """Keep verifiers inside the RFC 7636 bounds."""
        if not PKCE_VERIFIER_MIN_LENGTH <= value <= PKCE_VERIFIER_MAX_LENGTH:
            raise ValueError(
                f"pkce_verifier_length must be {PKCE_VERIFIER_MIN_LENGTH}-"
                f"{PKCE_VERIFIER_MAX_LENGTH}, got {value}"
            )
        return value

    @field_validator("state_length")
    @classmethod
    def validate_state_length(cls, value: int) -> int:
        """State tokens never drop below the default length."""
        if value < DEFAULT_RANDOM_TOKEN_LENGTH:
            raise ValueError(f"state_length must be at least {DEFAULT_RANDOM_TOKEN_LENGTH}, got {value}")
        return value

    @field_validator("default_language")
    @classmethod
    def validate_language(cls, value: str | None) -> str | None:
        """Language codes are sent only as two-letter values."""
        if value and len(value) != 2:
            raise ValueError("default_language must be exactly two characters")
        return value or None

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Transport
    request_timeout: int = 30

    # Authorization request defaults
    default_scope: str = "user/*.*"
    default_language: str | None = None
    state_length: int = DEFAULT_RANDOM_TOKEN_LENGTH
    pkce_verifier_length: int = DEFAULT_RANDOM_TOKEN_LENGTH

    # Tokens
    token_expiry_margin_seconds: int = 10

    # Session storage
    session_ttl: int | None = None  # None keeps sessions until cleared
    redis_url: str | None = None  # e.g., redis://localhost:6379 or rediss://... for TLS
    require_redis_tls: bool = False

    # Encryption settings
    master_key: str | None = None  # Master key for encrypting sessions at rest
    pbkdf2_iterations: int = 100_000

    # Loopback presenter
    callback_timeout_seconds: int = 300


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Drop the cached settings so the environment is read again."""
    get_settings.cache_clear()

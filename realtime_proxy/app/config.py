"""
Configuration module for the Realtime Proxy.

This module uses Pydantic Settings to load and validate environment variables
for the upstream realtime service, the credential injected on every upstream
connection, and the listening socket.

Environment variables are loaded from .env file or system environment, once,
at process start. The resulting Settings value is frozen and handed to the
application factory; session code never reads the environment itself.
"""

from functools import lru_cache
from typing import Dict, List
from urllib.parse import urlencode

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The credential is the only required value; everything else falls back
    to defaults matching the OpenAI Realtime API.
    """

    # =========================================================================
    # Upstream Credential
    # =========================================================================

    OPENAI_API_KEY: SecretStr = Field(
        ...,
        description="API key sent upstream as 'Authorization: Bearer <key>'",
    )

    # =========================================================================
    # Upstream Service Configuration
    # =========================================================================

    UPSTREAM_URL: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Base WebSocket URL of the upstream realtime service",
    )

    REALTIME_MODEL: str = Field(
        default="gpt-4o-realtime-preview-2024-12-17",
        description="Model id appended to the upstream URL as ?model=",
        min_length=1,
    )

    OPENAI_BETA: str = Field(
        default="realtime=v1",
        description="Protocol version sent in the OpenAI-Beta header",
        min_length=1,
    )

    UPSTREAM_OPEN_TIMEOUT: float = Field(
        default=10.0,
        description="Seconds allowed for the upstream opening handshake",
        gt=0,
    )

    MAX_MESSAGE_BYTES: int = Field(
        default=16 * 1024 * 1024,
        description="Largest frame accepted on either leg",
        ge=1024,
    )

    # =========================================================================
    # Proxy Server Configuration
    # =========================================================================

    PROXY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the proxy server",
    )

    PROXY_PORT: int = Field(
        default=8080,
        # Cloud hosts (Render, Heroku, ...) inject PORT
        validation_alias=AliasChoices("PORT", "PROXY_PORT"),
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def upstream_url(self) -> str:
        """
        Full upstream endpoint including the model query parameter.

        Returns:
            URL such as wss://api.openai.com/v1/realtime?model=gpt-4o-...
        """
        separator = "&" if "?" in self.UPSTREAM_URL else "?"
        return f"{self.UPSTREAM_URL}{separator}{urlencode({'model': self.REALTIME_MODEL})}"

    @property
    def upstream_headers(self) -> Dict[str, str]:
        """
        Headers attached to every upstream connection request.

        Returns:
            Authorization and protocol-version headers.
        """
        return {
            "Authorization": f"Bearer {self.OPENAI_API_KEY.get_secret_value()}",
            "OpenAI-Beta": self.OPENAI_BETA,
        }

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OPENAI_API_KEY")
    @classmethod
    def validate_api_key(cls, v: SecretStr) -> SecretStr:
        """
        Reject blank credentials; an empty OPENAI_API_KEY counts as missing.

        Raises:
            ValueError: If the key is empty or whitespace only
        """
        if not v.get_secret_value().strip():
            raise ValueError("OPENAI_API_KEY must not be empty")
        return v

    @field_validator("UPSTREAM_URL")
    @classmethod
    def validate_upstream_url(cls, v: str) -> str:
        """
        Validate that the upstream URL is a WebSocket URL.

        Raises:
            ValueError: If the scheme is not ws:// or wss://
        """
        v = v.strip()
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(
                f"UPSTREAM_URL must start with ws:// or wss://, got: {v}"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the logging level name."""
        v = v.strip().upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {list(LOG_LEVELS)}, got: {v}")
        return v


# =============================================================================
# Settings Loading
# =============================================================================

@lru_cache()
def load_settings() -> Settings:
    """
    Load the process-wide Settings instance.

    Cached so the environment is read exactly once per process.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If OPENAI_API_KEY is missing or a value is invalid.
    """
    return Settings()


def describe_settings_error(error) -> List[str]:
    """
    Turn a pydantic ValidationError into readable lines naming each variable.

    Args:
        error: ValidationError raised while building Settings

    Returns:
        One line per failing variable.
    """
    lines = []
    for item in error.errors():
        variable = ".".join(str(part) for part in item.get("loc", ())) or "settings"
        if item.get("type") == "missing":
            lines.append(f"{variable} not found in environment variables")
        else:
            lines.append(f"{variable}: {item.get('msg')}")
    return lines

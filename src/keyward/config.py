# Settings for the keyward authorization server.
# Created: 2026-10-19
#
# Loaded once from KEYWARD_* environment variables (or a .env file) and treated
# as read-only for the life of the process.

from __future__ import annotations

import string
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from keyward.errors import ConfigurationError, KeyFormatError

ENCRYPTION_KEY_HEX_LENGTH = 64


class Settings(BaseSettings):
    """Process configuration. Secrets are never echoed back by any endpoint."""

    model_config = SettingsConfigDict(
        env_prefix="KEYWARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    home: str = ""
    database_path: str = ""

    issuer: str = "http://localhost:8888"
    encryption_key: str = Field("", repr=False)
    jwt_secret: str = Field("", repr=False)
    registration_secret: str = Field("", repr=False)

    scope: str = "workflowy"
    upstream_validation_url: str = "https://workflowy.com/api/v1/targets"
    upstream_timeout: float = 10.0

    access_token_ttl: int = 3600
    refresh_token_ttl: int = 30 * 24 * 3600
    code_ttl: int = 600

    cors_allowed_origins: list[str] = ["*"]
    web_host: str = "127.0.0.1"
    web_port: int = 8888
    rate_limit_enabled: bool = True

    @classmethod
    def load(cls) -> Settings:
        return cls()

    @property
    def issuer_url(self) -> str:
        return self.issuer.rstrip("/")

    def resolved_database_path(self) -> Path:
        if self.database_path:
            return Path(self.database_path)
        return get_config_dir(self) / "keyward.db"

    def check_secrets(self) -> None:
        """Fail fast on missing or malformed key material.

        Raises ConfigurationError (or its KeyFormatError subclass).
        """
        if not self.encryption_key:
            raise ConfigurationError("KEYWARD_ENCRYPTION_KEY is required")
        if len(self.encryption_key) != ENCRYPTION_KEY_HEX_LENGTH or any(
            c not in string.hexdigits for c in self.encryption_key
        ):
            raise KeyFormatError(
                "KEYWARD_ENCRYPTION_KEY must be a 64-character hex string (32 bytes)"
            )
        if not self.jwt_secret:
            raise ConfigurationError("KEYWARD_JWT_SECRET is required")


def get_config_dir(settings: Settings | None = None) -> Path:
    """Return (and create) the keyward home directory."""
    settings = settings or get_settings()
    path = Path(settings.home).expanduser() if settings.home else Path.home() / ".keyward"
    path.mkdir(parents=True, exist_ok=True)
    return path


# Singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings() -> None:
    """Reset singleton (for testing)."""
    global _settings
    _settings = None

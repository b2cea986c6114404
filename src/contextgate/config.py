"""Configuration management for contextgate.

Settings come from ``~/.contextgate/config.json`` overlaid with
``CONTEXTGATE_*`` environment variables.  The HMAC signing secret lives in its
own owner-only file and is generated on first use.
"""

import json
import logging
import os
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _chmod_safe(path: Path, mode: int) -> None:
    """Set file permissions, ignoring errors on Windows."""
    try:
        path.chmod(mode)
    except OSError:
        pass


def get_config_dir() -> Path:
    """Get the config directory, creating if needed."""
    override = os.environ.get("CONTEXTGATE_HOME")
    config_dir = Path(override) if override else Path.home() / ".contextgate"
    config_dir.mkdir(parents=True, exist_ok=True)
    _chmod_safe(config_dir, 0o700)
    return config_dir


def get_config_path() -> Path:
    """Get the config file path."""
    return get_config_dir() / "config.json"


def get_secret_path() -> Path:
    """Get the signing secret file path."""
    return get_config_dir() / "signing_secret"


class Settings(BaseSettings):
    """contextgate settings with env and file support."""

    model_config = SettingsConfigDict(
        env_prefix="CONTEXTGATE_", env_file=".env", extra="ignore"
    )

    # Credential signing
    signing_secret: str | None = Field(
        default=None, description="HMAC key for codes and tokens (generated if unset)"
    )

    # Protocol lifetimes
    code_ttl_seconds: int = Field(default=300, description="Authorization code lifetime")
    access_token_ttl_seconds: int = Field(default=3600, description="Access token lifetime")
    permission_ttl_days: int = Field(default=30, description="Default grant lifetime")
    session_token_ttl_hours: int = Field(default=24, description="User session lifetime")

    # Per (client, user, endpoint) limits
    rate_limit_per_minute: int = Field(default=60)
    rate_limit_per_hour: int = Field(default=1000)
    rate_limit_per_day: int = Field(default=10000)

    # External collaborators
    login_url: str = Field(default="/auth/login", description="Login page for end users")
    consent_url: str = Field(
        default="/dashboard/cli-consent", description="Consent page for end users"
    )

    # API server
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8890)
    api_cors_allowed_origins: list[str] = Field(default_factory=list)

    def save(self) -> None:
        """Write non-secret settings to config.json."""
        data = self.model_dump(exclude={"signing_secret"})
        config_path = get_config_path()
        config_path.write_text(json.dumps(data, indent=2))
        _chmod_safe(config_path, 0o600)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from config file, letting env vars take precedence."""
        config_path = get_config_path()
        data: dict = {}
        if config_path.exists():
            try:
                data = json.loads(config_path.read_text())
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Ignoring unreadable config %s: %s", config_path, exc)

        # Env vars win over the file
        for name in cls.model_fields:
            if f"CONTEXTGATE_{name.upper()}" in os.environ:
                data.pop(name, None)

        if data:
            try:
                return cls(**data)
            except ValueError as exc:
                logger.warning("Invalid config %s, using defaults: %s", config_path, exc)
        return cls()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.load()


def get_signing_secret(settings: Settings | None = None) -> str:
    """Return the HMAC signing secret, generating and persisting one if needed."""
    settings = settings or get_settings()
    if settings.signing_secret:
        return settings.signing_secret

    secret_path = get_secret_path()
    if secret_path.exists():
        secret = secret_path.read_text().strip()
        if secret:
            return secret

    secret = secrets.token_urlsafe(48)
    secret_path.write_text(secret)
    _chmod_safe(secret_path, 0o600)
    logger.info("Generated new signing secret at %s", secret_path)
    return secret

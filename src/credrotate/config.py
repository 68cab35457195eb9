"""Configuration module for credrotate settings.

Endpoint credentials are read from the environment (CREDROTATE_*) or a .env
file, never from CLI arguments. Tokens are SecretStr so they stay out of
reprs and logs.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CREDROTATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directory service: REST endpoint, or a YAML inventory for listing only
    directory_url: Optional[str] = None
    directory_token: Optional[SecretStr] = None
    directory_inventory_path: Optional[str] = None

    # Platform managed-account API
    platform_url: Optional[str] = None
    platform_token: Optional[SecretStr] = None

    request_timeout_seconds: float = 30.0
    # Host/platform clock difference tolerated when verifying set-new changes
    verification_skew_seconds: float = Field(default=300.0, ge=0)

    # Secret policy
    min_secret_length: int = Field(default=8, ge=1)
    generated_secret_length: int = Field(default=24, ge=8)

    # Propagation: argv templates, "{service}" is substituted per service
    propagation_services: list[str] = Field(default_factory=lambda: ["SPTimerV4"])
    propagation_stop_command: list[str] = Field(
        default_factory=lambda: ["systemctl", "stop", "{service}"]
    )
    propagation_start_command: list[str] = Field(
        default_factory=lambda: ["systemctl", "start", "{service}"]
    )
    propagation_timeout_seconds: float = 300.0

    max_concurrency: int = Field(default=1, ge=1)


def get_settings() -> Settings:
    """Build settings from the current environment.

    Raises:
        ConfigurationError: a CREDROTATE_* value failed validation
    """
    # pydantic ValidationError and pydantic-settings SettingsError (bad JSON) are both ValueErrors
    try:
        return Settings()
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e

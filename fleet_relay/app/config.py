"""
Configuration module for the Fleet Relay host adapter.

This module uses Pydantic Settings to load and validate the environment
variables the host adapter needs: the instance settings it hands to the relay
(JSON data plus decrypted secrets), HTTP client timeouts, logging and CORS.

Environment variables are loaded from .env file or system environment.
Instance configuration itself is never read at module scope; it is parsed per
instance by ``plugin.FleetRelayApp.create``.
"""

import json
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import InstanceSettings
from .resolver import DEFAULT_TOKEN_KEY, FLEET_TOKEN_KEY


class Settings(BaseSettings):
    """
    Host adapter settings loaded from environment variables.
    """

    # =========================================================================
    # Instance Settings (handed to the relay instance)
    # =========================================================================

    FLEET_RELAY_JSON_DATA: str = Field(
        default="{}",
        description='Instance JSON data, e.g. {"fleetBaseURL": "https://.../collector.v1.CollectorService"}',
    )

    FLEET_AUTH_TOKEN: Optional[SecretStr] = Field(
        None,
        description="Pre-encoded Basic credential for the configured Fleet endpoint",
    )

    DEFAULT_FLEET_AUTH_TOKEN: Optional[SecretStr] = Field(
        None,
        description="Pre-encoded Basic credential for the 'default' endpoint profile",
    )

    FLEET_RELAY_INSTANCE_KEY: str = Field(
        default="default",
        description="Key under which the host caches the relay instance",
        min_length=1,
    )

    # =========================================================================
    # Resource Dispatch
    # =========================================================================

    RESOURCE_PREFIX: str = Field(
        default="/resources",
        description="Mount point of the resource routes",
    )

    DISCONNECT_POLL_SECONDS: float = Field(
        default=0.1,
        description="How often a running dispatch checks for caller disconnect",
        gt=0,
        le=5,
    )

    # =========================================================================
    # Upstream HTTP Client
    # =========================================================================

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Total timeout for a single Fleet API call",
        gt=0,
    )

    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Connect timeout for a single Fleet API call",
        gt=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    RELAY_HOST: str = Field(default="0.0.0.0", description="Host to bind the relay server")

    RELAY_PORT: int = Field(
        default=8080,
        description="Port to bind the relay server",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    def decrypted_secrets(self) -> Dict[str, str]:
        """Secrets as the host would hand them over, unset ones omitted."""
        secrets = {}
        if self.FLEET_AUTH_TOKEN is not None:
            secrets[FLEET_TOKEN_KEY] = self.FLEET_AUTH_TOKEN.get_secret_value()
        if self.DEFAULT_FLEET_AUTH_TOKEN is not None:
            secrets[DEFAULT_TOKEN_KEY] = self.DEFAULT_FLEET_AUTH_TOKEN.get_secret_value()
        return secrets

    def instance_settings(self) -> InstanceSettings:
        return InstanceSettings(
            json_data=self.FLEET_RELAY_JSON_DATA.encode("utf-8"),
            decrypted_secure_json_data=self.decrypted_secrets(),
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("RESOURCE_PREFIX")
    @classmethod
    def validate_resource_prefix(cls, v: str) -> str:
        """
        Normalise the prefix to a leading slash and no trailing slash.

        Raises:
            ValueError: If the prefix is the bare root
        """
        v = "/" + v.strip().strip("/")
        if v == "/":
            raise ValueError("RESOURCE_PREFIX must not be the root path")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        v = v.upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v

    @field_validator("FLEET_RELAY_JSON_DATA")
    @classmethod
    def validate_json_data(cls, v: str) -> str:
        """
        Reject instance JSON that is not an object.

        Field-level checks are left to the instance so the host reports them
        as a failed instance creation.
        """
        try:
            parsed = json.loads(v)
        except ValueError as e:
            raise ValueError(f"FLEET_RELAY_JSON_DATA is not valid JSON: {e}")

        if not isinstance(parsed, dict):
            raise ValueError("FLEET_RELAY_JSON_DATA must be a JSON object")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so the environment is read once per process.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()

"""
Configuration module for the OpenID Connect bridge.

This module uses Pydantic Settings to load and validate environment variables
for provider discovery, session management, outbound HTTP behaviour and
logging.

Per-provider settings (client credentials, allow-lists, provisioning flags)
live in the provider properties file referenced by OPENID_PROPERTIES_FILE
and are read by ``openid_bridge.providers``.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # =========================================================================
    # Provider Configuration
    # =========================================================================

    OPENID_PROPERTIES_FILE: str = Field(
        default="openid-provider.properties",
        description="Path to the provider properties file (enabled=..., openid.<id>.<key>=...)",
    )

    SITE_URL: str = Field(
        default="http://localhost:8080",
        description="Public base URL, used to build default redirect URIs",
    )

    ADMIN_USERNAME: str = Field(
        default="admin",
        description="Local account recorded as the acting admin for eager user creation",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_JWT_SECRET: str = Field(
        default="change-me-in-production-change-me-in-production",
        description="Secret key for signing session JWTs",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384, or HS512)",
    )

    SESSION_JWT_EXPIRY_MINUTES: int = Field(
        default=60,
        description="Session JWT expiry time in minutes",
        ge=5,
        le=1440,  # Max 24 hours
    )

    JWT_ISSUER: str = Field(
        default="openid-bridge",
        description="Issuer claim written into session JWTs",
    )

    SESSION_COOKIE_SECRET: str = Field(
        default="change-me-cookie-secret-change-me-cookie",
        description="Secret for the signed cookie holding OAuth state during login",
        min_length=32,
    )

    # =========================================================================
    # Outbound HTTP
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every call to a provider (token, UserInfo, JWKS)",
        gt=0,
        le=120,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=300,  # Min 5 minutes
        le=86400,  # Max 24 hours
    )

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

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
    def properties_path(self) -> Path:
        return Path(self.OPENID_PROPERTIES_FILE).expanduser()

    @property
    def default_redirect_uri(self) -> str:
        """Callback URL used when a provider does not set one."""
        return f"{self.SITE_URL.rstrip('/')}/auth/callback"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported LOG_LEVEL: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so that settings are loaded only once during the application
    lifecycle. Tests clear it with ``get_settings.cache_clear()``.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup; errors are logged but do not stop the
    service so that a misconfigured provider can still be inspected.
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    if not settings.properties_path.is_file():
        errors.append(f"Provider properties file not found: {settings.properties_path}")

    if settings.SESSION_JWT_SECRET.startswith("change-me"):
        warnings.append("SESSION_JWT_SECRET is using the development default")

    if settings.SESSION_COOKIE_SECRET.startswith("change-me"):
        warnings.append("SESSION_COOKIE_SECRET is using the development default")

    if not settings.SITE_URL.startswith("https://"):
        warnings.append("SITE_URL is not https; session cookies will not be marked secure")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "properties_file": str(settings.properties_path),
        "http_timeout_seconds": settings.HTTP_TIMEOUT_SECONDS,
    }

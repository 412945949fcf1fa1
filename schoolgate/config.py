"""
Configuration for SchoolGate.

Uses pydantic-settings for environment variable loading. Every setting
can be overridden with a ``SCHOOLGATE_`` prefixed variable, e.g.
``SCHOOLGATE_SUPABASE_URL``.

Invariants:
    - All settings have sensible defaults for local development
    - The anon key is a SecretStr and is never logged
    - There is deliberately no default tenant setting
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """SchoolGate configuration loaded from environment."""

    # Hosted backend
    identity_backend: Literal["gotrue", "memory"] = Field(
        default="gotrue", description="Identity provider implementation"
    )
    supabase_url: str = Field(default="", description="Backend base URL")
    anon_key: SecretStr = Field(default=SecretStr(""), description="Public API key")
    request_timeout: float = Field(default=10.0, description="HTTP timeout seconds")

    # Tenant isolation
    tenant_column: str = Field(default="school_id", description="Tenant column on every business table")
    tenant_keys: list[str] = Field(
        default=["school_id", "schoolId"],
        description="Ordered metadata keys probed for the tenant ID",
    )

    # Session refresh
    auto_refresh: bool = Field(default=True, description="Refresh access tokens before expiry")
    refresh_margin_seconds: int = Field(default=60, description="Refresh this many seconds before expiry")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    model_config = {"env_prefix": "SCHOOLGATE_"}

    def validate_backend(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.identity_backend == "gotrue":
            if not self.supabase_url:
                raise ValueError("SCHOOLGATE_SUPABASE_URL is required when identity_backend=gotrue")
            if not self.anon_key.get_secret_value():
                raise ValueError("SCHOOLGATE_ANON_KEY is required when identity_backend=gotrue")
        if not self.tenant_keys:
            raise ValueError("SCHOOLGATE_TENANT_KEYS must name at least one key")
        if self.refresh_margin_seconds < 0:
            raise ValueError("SCHOOLGATE_REFRESH_MARGIN_SECONDS must not be negative")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "SchoolGate configuration loaded",
            extra={
                "identity_backend": self.identity_backend,
                "supabase_url": self.supabase_url or None,
                "anon_key_set": bool(self.anon_key.get_secret_value()),
                "tenant_column": self.tenant_column,
                "tenant_keys": list(self.tenant_keys),
                "auto_refresh": self.auto_refresh,
                "log_level": self.log_level,
            },
        )

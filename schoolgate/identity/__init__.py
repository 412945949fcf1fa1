"""
Identity provider abstraction for SchoolGate.

This module provides a pluggable identity backend interface supporting:
- GoTrue-compatible HTTP auth API (hosted backend)
- In-memory (for testing)

Credential verification always happens inside the provider; the session
core only consumes the {session, user, error} shapes it returns.

Invariants:
    - Identity-change events are delivered asynchronously
    - Providers never invent a tenant; they only carry the attribute bag

How to change safely:
    - New backends must implement the IdentityProvider protocol
    - Emit INITIAL_SESSION on listener registration like the existing ones
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    AuthChangeCallback,
    AuthListeners,
    AuthResponse,
    AuthSubscription,
    IdentityProvider,
)
from .gotrue import GoTrueIdentityProvider
from .memory import InMemoryIdentityProvider

if TYPE_CHECKING:
    from ..config import Settings


def create_identity_provider(settings: "Settings") -> IdentityProvider:
    """Factory function to create an identity provider from configuration.

    Args:
        settings: Loaded settings

    Returns:
        Appropriate IdentityProvider implementation

    Raises:
        ValueError: If the backend is not supported
    """
    if settings.identity_backend == "gotrue":
        return GoTrueIdentityProvider(
            settings.supabase_url,
            settings.anon_key.get_secret_value(),
            timeout=settings.request_timeout,
            auto_refresh=settings.auto_refresh,
            refresh_margin=settings.refresh_margin_seconds,
        )
    elif settings.identity_backend == "memory":
        return InMemoryIdentityProvider()
    else:
        raise ValueError(f"Unsupported identity backend: {settings.identity_backend}")


__all__ = [
    # Protocol and types
    "IdentityProvider",
    "AuthResponse",
    "AuthSubscription",
    "AuthListeners",
    "AuthChangeCallback",
    # Factory
    "create_identity_provider",
    # Implementations
    "GoTrueIdentityProvider",
    "InMemoryIdentityProvider",
]

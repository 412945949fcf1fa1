"""
Core data types for the session layer.

This module defines:
- Principal: the authenticated identity returned by the identity provider
- ProviderSession: token bundle plus principal, owned by the provider
- AuthEvent: tagged identity-change notifications
- AuthResult: normalized outcome of an interactive auth operation
- SessionState / SessionSnapshot: the resolved view held by the store

Invariants:
    - Principal and SessionSnapshot are immutable
    - SessionSnapshot.ready is computed, never stored
    - A snapshot never carries a tenant without a principal
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Principal:
    """An authenticated identity.

    Attributes:
        id: Provider-assigned unique user ID
        email: Login email (may be None for phone/OAuth users)
        metadata: Attribute bag set at sign-up or via update_user
    """

    id: str
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Principal:
        """Build from a provider user object.

        Accepts both the wire shape (``user_metadata``) and the local
        shape (``metadata``).
        """
        metadata = data.get("user_metadata")
        if metadata is None:
            metadata = data.get("metadata")
        return cls(
            id=str(data["id"]),
            email=data.get("email"),
            metadata=dict(metadata or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the provider wire shape."""
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ProviderSession:
    """A session issued by the identity provider.

    Attributes:
        access_token: Bearer token for data API calls
        refresh_token: Token used to obtain a new access token
        user: The principal the session belongs to
        expires_at: Expiry as Unix epoch seconds, if known
    """

    access_token: str
    refresh_token: str
    user: Principal
    expires_at: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderSession:
        """Build from a token endpoint response."""
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            user=Principal.from_dict(data["user"]),
            expires_at=int(expires_at) if expires_at is not None else None,
        )

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return f"ProviderSession(user={self.user.id!r}, expires_at={self.expires_at!r})"


class AuthEvent(Enum):
    """Identity-change events pushed by the provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


@dataclass(frozen=True)
class AuthResult:
    """Result of an interactive auth operation.

    Failures are expected outcomes here, so they are returned rather
    than raised.

    Attributes:
        success: Whether the operation succeeded
        error: Human-readable error message if it failed
    """

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> AuthResult:
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> AuthResult:
        return cls(success=False, error=error)


class SessionState(Enum):
    """Observable session states."""

    UNRESOLVED = "unresolved"
    EMPTY = "empty"
    READY = "ready"
    AUTHENTICATED_WITHOUT_TENANT = "authenticated_without_tenant"


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the current session.

    Attributes:
        principal: Signed-in principal, or None
        tenant: School ID derived from the principal, or None
        resolved: Whether the first identity resolution has happened
    """

    principal: Principal | None = None
    tenant: int | None = None
    resolved: bool = False

    def __post_init__(self) -> None:
        if self.tenant is not None and self.principal is None:
            raise ValueError("A tenant cannot be set without a principal")
        if not self.resolved and self.principal is not None:
            raise ValueError("An unresolved snapshot cannot carry a principal")

    @classmethod
    def unresolved(cls) -> SessionSnapshot:
        return cls()

    @classmethod
    def empty(cls) -> SessionSnapshot:
        return cls(resolved=True)

    @property
    def ready(self) -> bool:
        """Both principal and tenant are present."""
        return self.principal is not None and self.tenant is not None

    @property
    def state(self) -> SessionState:
        if not self.resolved:
            return SessionState.UNRESOLVED
        if self.principal is None:
            return SessionState.EMPTY
        if self.tenant is None:
            return SessionState.AUTHENTICATED_WITHOUT_TENANT
        return SessionState.READY

"""
Error types for SchoolGate.

This module defines all exception types raised by the session core:
- SchoolGateError: Base exception
- TenantUnavailableError: No tenant resolved for the current session
- NotAuthenticatedError: Operation requires a signed-in principal
- CredentialError: Identity provider rejected the credentials
- TransportError: Network failure talking to the backend
- ProviderError: Any other identity provider failure
- SessionWriterError: Second writer tried to bind to the session store
- SubscriptionError: Realtime subscription failures
- QueryError: Data API rejected a request

Invariants:
    - All errors inherit from SchoolGateError
    - Errors include context for debugging
    - Error messages never contain tokens or passwords
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SchoolGateError(Exception):
    """Base exception for all SchoolGate errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SCHOOLGATE_ERROR"
        self.details = details or {}


class TenantUnavailableError(SchoolGateError):
    """No tenant identifier is available for the current session.

    Raised when:
    - Nobody is signed in
    - The signed-in principal has no school assigned
    - A scoped helper is handed a None tenant

    Recovery happens at the application level (re-authenticate or
    provision the account); callers must never substitute a default.
    """

    def __init__(
        self,
        message: str = "No school_id available: user must be assigned to a school to access this data",
        principal_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NO_TENANT",
            details={"principal_id": principal_id},
        )
        self.principal_id = principal_id


class NotAuthenticatedError(SchoolGateError):
    """Operation requires an authenticated principal."""

    def __init__(self, message: str = "No authenticated user") -> None:
        super().__init__(message, code="NOT_AUTHENTICATED")


class CredentialError(SchoolGateError):
    """Identity provider rejected the supplied credentials.

    Raised when:
    - Email/password pair is wrong
    - Account already exists on sign-up
    - Refresh token is revoked or expired
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="CREDENTIAL_ERROR",
            details={"status": status},
        )
        self.status = status


class TransportError(SchoolGateError):
    """Failed to reach the backend.

    Raised when:
    - Backend is unreachable
    - Request times out
    - Connection drops mid-request
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSPORT_ERROR",
            details={"url": url},
        )
        self.url = url


class ProviderError(SchoolGateError):
    """Identity provider returned an unexpected failure."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="PROVIDER_ERROR",
            details={"status": status},
        )
        self.status = status


class SessionWriterError(SchoolGateError):
    """A second writer attempted to bind to a session store."""

    def __init__(self, message: str = "Session store already has a writer") -> None:
        super().__init__(message, code="SESSION_WRITER")


class SubscriptionError(SchoolGateError):
    """Realtime subscription failure.

    Raised when:
    - The manager has been shut down
    - The transport refuses the channel
    """

    def __init__(
        self,
        message: str,
        topic: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SUBSCRIPTION_ERROR",
            details={"topic": topic},
        )
        self.topic = topic


class QueryError(SchoolGateError):
    """Data API rejected a request.

    Attributes:
        table: Table the request targeted
        status: HTTP status returned by the data API
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="QUERY_ERROR",
            details={"table": table, "status": status},
        )
        self.table = table
        self.status = status

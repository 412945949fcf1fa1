"""
SchoolGate - tenant-scoped session core for school management apps.

This package resolves a signed-in user to exactly one school and makes
every data access go through that school:
- AuthController owns sign-in/sign-up/sign-out and identity events
- SessionStore holds the resolved {principal, tenant, ready} snapshot
- TenantGuard is the one place data access reads the school ID from
- scope_read/scope_insert pin queries and payloads to the school
- SubscriptionManager ties realtime topics to view lifetimes

Example:
    >>> from schoolgate import SchoolGate, Settings
    >>>
    >>> async with SchoolGate(Settings()) as gate:
    ...     result = await gate.auth.sign_in("head@school.test", "secret")
    ...     if not result.success:
    ...         print(result.error)

Invariants:
    - A missing school ID is never replaced by a default
    - Session state is replaced wholesale, never patched
    - Sign-out purges every cached tenant-scoped result

Version: 1.0.0
"""

__version__ = "1.0.0"

from .app import SchoolGate
from .auth import AuthController
from .cache import QueryCache
from .client import TenantScopedClient
from .config import Settings
from .errors import (
    CredentialError,
    NotAuthenticatedError,
    ProviderError,
    QueryError,
    SchoolGateError,
    SessionWriterError,
    SubscriptionError,
    TenantUnavailableError,
    TransportError,
)
from .guard import TenantGuard
from .models import (
    AuthEvent,
    AuthResult,
    Principal,
    ProviderSession,
    SessionSnapshot,
    SessionState,
)
from .scoped import TENANT_COLUMN, scope_insert, scope_insert_many, scope_read, scope_update
from .store import SessionStore, SessionWriter
from .tenant import DEFAULT_TENANT_KEYS, extract_tenant

__all__ = [
    # Version
    "__version__",
    # Container
    "SchoolGate",
    "Settings",
    # Session core
    "AuthController",
    "SessionStore",
    "SessionWriter",
    "TenantGuard",
    "extract_tenant",
    "DEFAULT_TENANT_KEYS",
    # Scoped access
    "TENANT_COLUMN",
    "scope_read",
    "scope_insert",
    "scope_insert_many",
    "scope_update",
    "TenantScopedClient",
    "QueryCache",
    # Models
    "Principal",
    "ProviderSession",
    "AuthEvent",
    "AuthResult",
    "SessionSnapshot",
    "SessionState",
    # Errors
    "SchoolGateError",
    "TenantUnavailableError",
    "NotAuthenticatedError",
    "CredentialError",
    "TransportError",
    "ProviderError",
    "SessionWriterError",
    "SubscriptionError",
    "QueryError",
]

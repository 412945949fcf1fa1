"""
Auth controller: owns the session lifecycle.

The AuthController is the only writer of the SessionStore. It resolves
the principal pushed by the identity provider to a tenant, replaces the
store's snapshot wholesale on every change, and purges tenant-scoped
cached query results whenever the identity behind them goes away.

Interactive operations (sign in, sign up, sign out, profile update)
return an AuthResult instead of raising, so a view can render an inline
error rather than crash.

Invariants:
    - Every identity change fully recomputes {principal, tenant}
    - A stale in-flight resolution never overwrites a newer one
    - A principal without a tenant stays tenant-less; no default is applied
    - The query cache is cleared whenever the principal or tenant changes

How to change safely:
    - Keep all store writes inside _apply()
    - Do not update the store from sign_in()/sign_up(); the provider's
      SIGNED_IN event does that
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Sequence

from .cache import QueryCache
from .errors import SchoolGateError
from .identity.base import AuthResponse, AuthSubscription, IdentityProvider
from .models import AuthEvent, AuthResult, Principal, ProviderSession, SessionState
from .store import SessionStore
from .tenant import DEFAULT_TENANT_KEYS, extract_tenant

logger = logging.getLogger(__name__)


class AuthController:
    """Session lifecycle owner.

    Example:
        >>> controller = AuthController(provider, store, cache)
        >>> await controller.initialize()
        >>> result = await controller.sign_in("head@school.test", "secret")
        >>> if not result.success:
        ...     show_error(result.error)
    """

    def __init__(
        self,
        provider: IdentityProvider,
        store: SessionStore,
        cache: QueryCache | None = None,
        *,
        tenant_keys: Sequence[str] = DEFAULT_TENANT_KEYS,
    ) -> None:
        """Initialize the controller.

        Args:
            provider: Identity provider to delegate to
            store: Session store this controller will own
            cache: Query cache purged on identity changes
            tenant_keys: Ordered metadata keys probed for the tenant

        Raises:
            SessionWriterError: If the store already has a writer
        """
        self._provider = provider
        self._store = store
        self._writer = store.bind_writer()
        self._cache = cache
        self._tenant_keys = tuple(tenant_keys)
        self._subscription: AuthSubscription | None = None
        self._initialized = False
        self._version = 0
        self._in_flight = 0

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def busy(self) -> bool:
        """Whether an interactive operation is in flight."""
        return self._in_flight > 0

    async def initialize(self) -> AuthResult:
        """Resolve the persisted session and start listening for changes.

        Runs once per controller; later calls are no-ops.

        Returns:
            AuthResult; a failure still leaves the store resolved as Empty
        """
        if self._initialized:
            logger.debug("AuthController already initialized")
            return AuthResult.ok()
        self._initialized = True

        version = self._version
        result = AuthResult.ok()
        try:
            response = await self._provider.get_session()
        except Exception as e:
            result = self._failure("initialize", e)
            response = AuthResponse()
        else:
            if response.error is not None:
                result = self._failure("initialize", response.error)

        if version == self._version:
            self._apply(response.session.user if response.session else None)
        else:
            logger.debug("Initial session superseded by identity event")

        self._subscription = self._provider.on_auth_state_change(self.on_identity_change)
        return result

    async def on_identity_change(self, event: AuthEvent, session: ProviderSession | None) -> None:
        """Handle an identity-change event pushed by the provider.

        The session is always recomputed from scratch and the store
        replaced, never patched.

        Args:
            event: Event tag
            session: Session after the change, or None
        """
        self._version += 1
        logger.info(
            "Identity change",
            extra={
                "auth_event": event.value,
                "principal_id": session.user.id if session else None,
            },
        )

        if event is AuthEvent.SIGNED_OUT or session is None:
            self._apply(None)
        else:
            self._apply(session.user)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        The store is updated by the SIGNED_IN event that follows, so the
        session may not be ready immediately after this returns.

        Returns:
            AuthResult with a normalized error on failure
        """
        async with _InFlight(self):
            try:
                response = await self._provider.sign_in_with_password(email, password)
            except Exception as e:
                return self._failure("sign_in", e)

        return self._result("sign_in", response)

    async def sign_up(
        self,
        email: str,
        password: str,
        attributes: Dict[str, Any] | None = None,
    ) -> AuthResult:
        """Register a new principal.

        Args:
            email: Login email
            password: Password
            attributes: Attribute bag for the new principal, passed through
                unmodified (provisioning sets the school key)

        Returns:
            AuthResult with a normalized error on failure
        """
        async with _InFlight(self):
            try:
                response = await self._provider.sign_up(email, password, attributes)
            except Exception as e:
                return self._failure("sign_up", e)

        return self._result("sign_up", response)

    async def sign_out(self) -> AuthResult:
        """End the session, clear the store and purge cached results.

        Signing out is a no-op only when the provider holds no session.
        The store alone is not enough: it lags a sign-in whose SIGNED_IN
        event is still queued.
        """
        async with _InFlight(self):
            try:
                if self._store.state is SessionState.EMPTY:
                    current = await self._provider.get_session()
                    if current.session is None:
                        logger.debug("sign_out without a provider session ignored")
                        return AuthResult.ok()
                response = await self._provider.sign_out()
            except Exception as e:
                return self._failure("sign_out", e)

        if response.error is not None:
            return self._failure("sign_out", response.error)

        self._version += 1
        self._apply(None)
        if self._cache is not None:
            # Purge even if the store was already tenant-less
            self._cache.clear()
        return AuthResult.ok()

    async def update_profile(self, attributes: Dict[str, Any]) -> AuthResult:
        """Merge attributes into the current principal's attribute bag.

        Returns:
            AuthResult; fails with "No authenticated user" when signed out
        """
        if self._store.principal is None:
            return AuthResult.failed("No authenticated user")

        async with _InFlight(self):
            try:
                response = await self._provider.update_user(attributes)
            except Exception as e:
                return self._failure("update_profile", e)

        return self._result("update_profile", response, require_user=False)

    async def refresh_session(self) -> AuthResult:
        """Ask the provider for fresh tokens.

        A rejected refresh token signs the user out via the provider's
        SIGNED_OUT event.
        """
        try:
            response = await self._provider.refresh_session()
        except Exception as e:
            return self._failure("refresh_session", e)
        return self._result("refresh_session", response, require_user=False)

    def close(self) -> None:
        """Stop listening for identity changes."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _apply(self, principal: Principal | None) -> None:
        previous = self._store.snapshot
        tenant = extract_tenant(principal, self._tenant_keys)

        if principal is not None and tenant is None:
            logger.warning("Principal has no school assigned", extra={"principal_id": principal.id})

        snapshot = self._writer.replace(principal, tenant)

        previous_id = previous.principal.id if previous.principal else None
        current_id = principal.id if principal else None
        identity_changed = previous_id != current_id or previous.tenant != snapshot.tenant
        if self._cache is not None and previous.resolved and identity_changed:
            self._cache.clear()

    def _result(self, operation: str, response: AuthResponse, *, require_user: bool = True) -> AuthResult:
        if response.error is not None:
            return self._failure(operation, response.error)
        if require_user and response.user is None and response.session is None:
            return AuthResult.failed("No user returned from identity provider")
        logger.info(f"{operation} succeeded")
        return AuthResult.ok()

    def _failure(self, operation: str, error: Exception) -> AuthResult:
        if isinstance(error, SchoolGateError):
            logger.warning(
                f"{operation} failed",
                extra={"code": error.code, "error": error.message},
            )
            return AuthResult.failed(error.message)

        logger.exception(f"{operation} failed with unexpected error")
        return AuthResult.failed(str(error) or "An unknown error occurred")


class _InFlight:
    """Counts in-flight interactive operations on a controller."""

    def __init__(self, controller: AuthController) -> None:
        self._controller = controller

    async def __aenter__(self) -> None:
        self._controller._in_flight += 1

    async def __aexit__(self, *args: Any) -> None:
        self._controller._in_flight -= 1

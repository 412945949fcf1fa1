"""
Base protocol and types for identity provider backends.

This module defines the IdentityProvider protocol that the AuthController
depends on, the AuthResponse shape every operation returns, and the
listener registry providers use to push identity-change events.

Invariants:
    - Operations report expected failures in AuthResponse.error
    - Transport failures raise TransportError
    - Identity-change listeners are invoked asynchronously, never inline
      with the call that caused the change

How to change safely:
    - Protocol changes require updating all implementations
    - Keep AuthResponse backward compatible; add optional fields only
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Protocol,
    Set,
    Union,
    runtime_checkable,
)

from ..errors import SchoolGateError
from ..models import AuthEvent, Principal, ProviderSession

logger = logging.getLogger(__name__)

AuthChangeCallback = Callable[
    [AuthEvent, Optional[ProviderSession]],
    Union[Awaitable[None], None],
]


@dataclass
class AuthResponse:
    """Outcome of an identity provider call.

    Attributes:
        session: Session issued or current, if any
        user: Principal affected by the call, if any
        error: Failure reported by the provider, if any
    """

    session: ProviderSession | None = None
    user: Principal | None = None
    error: SchoolGateError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthSubscription:
    """Handle returned by on_auth_state_change()."""

    def __init__(self, listeners: AuthListeners, callback: AuthChangeCallback) -> None:
        self._listeners = listeners
        self.callback = callback

    def unsubscribe(self) -> None:
        self._listeners.remove(self.callback)


class AuthListeners:
    """Registry of identity-change listeners.

    emit() schedules each listener as its own task on the running loop,
    modelling a provider that pushes events from its own connection.
    """

    def __init__(self) -> None:
        self._callbacks: list[AuthChangeCallback] = []
        self._pending: Set[asyncio.Task] = set()

    def add(self, callback: AuthChangeCallback) -> AuthSubscription:
        self._callbacks.append(callback)
        return AuthSubscription(self, callback)

    def remove(self, callback: AuthChangeCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def __len__(self) -> int:
        return len(self._callbacks)

    def emit(self, event: AuthEvent, session: ProviderSession | None) -> None:
        """Schedule delivery of an event to every listener.

        Args:
            event: The identity-change event
            session: The session after the change, or None
        """
        logger.debug(
            "Dispatching auth event",
            extra={"auth_event": event.value, "listeners": len(self._callbacks)},
        )
        loop = asyncio.get_running_loop()
        for callback in list(self._callbacks):
            task = loop.create_task(self._deliver(callback, event, session))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def notify(self, callback: AuthChangeCallback, event: AuthEvent, session: ProviderSession | None) -> None:
        """Schedule delivery of an event to a single listener."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._deliver(callback, event, session))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(
        self,
        callback: AuthChangeCallback,
        event: AuthEvent,
        session: ProviderSession | None,
    ) -> None:
        try:
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Auth state listener failed", extra={"auth_event": event.value})


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol for identity provider backends.

    Mirrors the auth surface of a hosted backend-as-a-service. The
    session core depends only on the {session, user, error} shapes.

    Example:
        >>> provider = InMemoryIdentityProvider()
        >>> provider.on_auth_state_change(handler)
        >>> response = await provider.sign_in_with_password("a@b.c", "pw")
        >>> response.ok
        True
    """

    @abstractmethod
    async def get_session(self) -> AuthResponse:
        """Return the currently persisted session, if any."""
        ...

    @abstractmethod
    def on_auth_state_change(self, callback: AuthChangeCallback) -> AuthSubscription:
        """Register a long-lived identity-change listener.

        The listener receives INITIAL_SESSION shortly after registration,
        then one event per change.
        """
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        """Authenticate with email and password.

        Raises:
            TransportError: If the provider is unreachable
        """
        ...

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthResponse:
        """Register a new principal whose attribute bag is ``data``.

        Raises:
            TransportError: If the provider is unreachable
        """
        ...

    @abstractmethod
    async def sign_out(self) -> AuthResponse:
        """End the current session.

        Raises:
            TransportError: If the provider is unreachable
        """
        ...

    @abstractmethod
    async def update_user(self, data: Dict[str, Any]) -> AuthResponse:
        """Merge ``data`` into the current principal's attribute bag.

        Raises:
            TransportError: If the provider is unreachable
        """
        ...

    @abstractmethod
    async def refresh_session(self) -> AuthResponse:
        """Exchange the refresh token for a new session.

        Raises:
            TransportError: If the provider is unreachable
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections and background tasks."""
        ...

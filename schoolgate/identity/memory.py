"""
In-memory identity provider for testing.

This module provides a simple in-memory identity backend for:
- Unit and integration tests
- Local development without a hosted backend

Invariants:
    - All data is lost on process exit
    - Emits the same events, in the same order, as the HTTP provider
    - Passwords are compared in plain text; never use outside tests

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the IdentityProvider protocol
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import CredentialError, NotAuthenticatedError, SchoolGateError
from ..models import AuthEvent, Principal, ProviderSession
from .base import AuthChangeCallback, AuthListeners, AuthResponse, AuthSubscription

logger = logging.getLogger(__name__)


@dataclass
class _Account:
    principal: Principal
    password: str


class InMemoryIdentityProvider:
    """In-memory implementation of IdentityProvider.

    Attributes:
        session_ttl: Lifetime of issued access tokens in seconds
        auto_confirm: Whether sign_up signs the new user in immediately

    Example:
        >>> provider = InMemoryIdentityProvider()
        >>> provider.add_user("head@school.test", "pw", {"school_id": 7})
        >>> response = await provider.sign_in_with_password("head@school.test", "pw")
        >>> response.session.user.metadata["school_id"]
        7
    """

    def __init__(self, session_ttl: int = 3600, auto_confirm: bool = True) -> None:
        self.session_ttl = session_ttl
        self.auto_confirm = auto_confirm
        self._accounts: Dict[str, _Account] = {}
        self._session: ProviderSession | None = None
        self._listeners = AuthListeners()
        self._failure: Exception | None = None
        self.calls: list[str] = []

    async def get_session(self) -> AuthResponse:
        self._record("get_session")
        return AuthResponse(
            session=self._session,
            user=self._session.user if self._session else None,
        )

    def on_auth_state_change(self, callback: AuthChangeCallback) -> AuthSubscription:
        subscription = self._listeners.add(callback)
        self._listeners.notify(callback, AuthEvent.INITIAL_SESSION, self._session)
        return subscription

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        self._record("sign_in_with_password")
        account = self._accounts.get(email.lower())
        if account is None or account.password != password:
            return AuthResponse(error=CredentialError("Invalid login credentials", status=400))

        session = self._issue(account.principal)
        self._listeners.emit(AuthEvent.SIGNED_IN, session)
        return AuthResponse(session=session, user=session.user)

    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthResponse:
        self._record("sign_up")
        key = email.lower()
        if key in self._accounts:
            return AuthResponse(error=CredentialError("User already registered", status=422))

        principal = Principal(id=str(uuid.uuid4()), email=email, metadata=dict(data or {}))
        self._accounts[key] = _Account(principal=principal, password=password)
        logger.debug("Registered in-memory user", extra={"principal_id": principal.id})

        if not self.auto_confirm:
            return AuthResponse(user=principal)

        session = self._issue(principal)
        self._listeners.emit(AuthEvent.SIGNED_IN, session)
        return AuthResponse(session=session, user=principal)

    async def sign_out(self) -> AuthResponse:
        self._record("sign_out")
        self._session = None
        self._listeners.emit(AuthEvent.SIGNED_OUT, None)
        return AuthResponse()

    async def update_user(self, data: Dict[str, Any]) -> AuthResponse:
        self._record("update_user")
        if self._session is None:
            return AuthResponse(error=NotAuthenticatedError())

        current = self._session.user
        merged = {**current.metadata, **data}
        principal = Principal(id=current.id, email=current.email, metadata=merged)
        self._replace_account(principal)

        self._session = ProviderSession(
            access_token=self._session.access_token,
            refresh_token=self._session.refresh_token,
            user=principal,
            expires_at=self._session.expires_at,
        )
        self._listeners.emit(AuthEvent.USER_UPDATED, self._session)
        return AuthResponse(session=self._session, user=principal)

    async def refresh_session(self) -> AuthResponse:
        self._record("refresh_session")
        if self._session is None:
            return AuthResponse(error=CredentialError("Refresh token not found", status=400))

        # Reload from the account so admin-side metadata changes are picked up
        principal = self._account_for(self._session.user.id).principal
        session = self._issue(principal)
        self._listeners.emit(AuthEvent.TOKEN_REFRESHED, session)
        return AuthResponse(session=session, user=principal)

    async def close(self) -> None:
        await self._listeners.drain()

    # Testing helpers

    def add_user(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Principal:
        """Register an account without signing in (testing helper)."""
        principal = Principal(
            id=user_id or str(uuid.uuid4()),
            email=email,
            metadata=dict(metadata or {}),
        )
        self._accounts[email.lower()] = _Account(principal=principal, password=password)
        return principal

    def set_metadata(self, email: str, metadata: Dict[str, Any]) -> Principal:
        """Replace a user's attribute bag out-of-band (testing helper).

        Simulates an admin provisioning step; the change is visible to the
        client after the next refresh or sign-in.
        """
        account = self._accounts[email.lower()]
        principal = Principal(id=account.principal.id, email=email, metadata=dict(metadata))
        account.principal = principal
        return principal

    def inject_failure(self, exception: Exception) -> None:
        """Make the next provider call raise ``exception`` (testing helper)."""
        self._failure = exception

    def push(self, event: AuthEvent, session: ProviderSession | None) -> None:
        """Push an arbitrary event to listeners (testing helper)."""
        self._session = session
        self._listeners.emit(event, session)

    async def drain(self) -> None:
        """Wait for all pending listener deliveries (testing helper)."""
        await self._listeners.drain()

    @property
    def current_session(self) -> ProviderSession | None:
        return self._session

    @property
    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure

    def _issue(self, principal: Principal) -> ProviderSession:
        self._session = ProviderSession(
            access_token=uuid.uuid4().hex,
            refresh_token=uuid.uuid4().hex,
            user=principal,
            expires_at=int(time.time()) + self.session_ttl,
        )
        return self._session

    def _account_for(self, user_id: str) -> _Account:
        for account in self._accounts.values():
            if account.principal.id == user_id:
                return account
        raise SchoolGateError(f"Unknown user {user_id}", code="NOT_FOUND")

    def _replace_account(self, principal: Principal) -> None:
        self._account_for(principal.id).principal = principal

"""
GoTrue-compatible identity provider over HTTP.

Talks to the auth REST API of a hosted backend-as-a-service:
- POST /auth/v1/token?grant_type=password
- POST /auth/v1/token?grant_type=refresh_token
- POST /auth/v1/signup
- POST /auth/v1/logout
- GET/PUT /auth/v1/user

Sessions are kept in memory for the life of the provider. When
auto_refresh is enabled a background task refreshes the access token
shortly before it expires and emits TOKEN_REFRESHED.

Invariants:
    - httpx failures surface as TransportError, never as raw httpx errors
    - 4xx credential failures are returned in AuthResponse.error
    - Tokens and passwords are never logged
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..errors import (
    CredentialError,
    NotAuthenticatedError,
    ProviderError,
    SchoolGateError,
    TransportError,
)
from ..models import AuthEvent, Principal, ProviderSession
from .base import AuthChangeCallback, AuthListeners, AuthResponse, AuthSubscription

logger = logging.getLogger(__name__)

AUTH_PATH = "/auth/v1"

# Status codes GoTrue uses for bad credentials, duplicate users and bad grants
_CREDENTIAL_STATUSES = frozenset({400, 401, 403, 422})


def _error_message(response: httpx.Response) -> str:
    """Pull the most specific message out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


class GoTrueIdentityProvider:
    """HTTP implementation of IdentityProvider.

    Attributes:
        url: Base URL of the backend (without /auth/v1)
        auto_refresh: Whether to refresh tokens in the background
        refresh_margin: Seconds before expiry at which to refresh

    Example:
        >>> provider = GoTrueIdentityProvider("https://abc.supabase.co", anon_key)
        >>> response = await provider.sign_in_with_password("a@b.c", "pw")
        >>> if not response.ok:
        ...     print(response.error.message)
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        auto_refresh: bool = True,
        refresh_margin: int = 60,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the provider.

        Args:
            url: Base URL of the backend
            anon_key: Public API key sent as the ``apikey`` header
            timeout: Request timeout in seconds
            auto_refresh: Refresh tokens in the background
            refresh_margin: Seconds before expiry at which to refresh
            http_client: Optional pre-built client (tests inject a mock transport)
        """
        self.url = url.rstrip("/")
        self.auto_refresh = auto_refresh
        self.refresh_margin = refresh_margin
        self._anon_key = anon_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._session: ProviderSession | None = None
        self._listeners = AuthListeners()
        self._refresh_task: asyncio.Task | None = None

    @property
    def access_token(self) -> str | None:
        """Current access token, for the data API."""
        return self._session.access_token if self._session else None

    async def get_session(self) -> AuthResponse:
        if self._session is None:
            return AuthResponse()

        if self._expired(self._session):
            logger.debug("Persisted session expired, refreshing")
            return await self.refresh_session()

        return AuthResponse(session=self._session, user=self._session.user)

    def on_auth_state_change(self, callback: AuthChangeCallback) -> AuthSubscription:
        subscription = self._listeners.add(callback)
        self._listeners.notify(callback, AuthEvent.INITIAL_SESSION, self._session)
        return subscription

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        try:
            body = await self._request(
                "POST",
                "/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except CredentialError as e:
            return AuthResponse(error=e)

        session = ProviderSession.from_dict(body)
        self._set_session(session)
        logger.info("Signed in", extra={"principal_id": session.user.id})
        self._listeners.emit(AuthEvent.SIGNED_IN, session)
        return AuthResponse(session=session, user=session.user)

    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthResponse:
        try:
            body = await self._request(
                "POST",
                "/signup",
                json={"email": email, "password": password, "data": data or {}},
            )
        except CredentialError as e:
            return AuthResponse(error=e)

        # Without email confirmation the endpoint returns a full session
        if "access_token" in body:
            session = ProviderSession.from_dict(body)
            self._set_session(session)
            self._listeners.emit(AuthEvent.SIGNED_IN, session)
            return AuthResponse(session=session, user=session.user)

        user = Principal.from_dict(body.get("user", body))
        logger.info("Sign-up pending confirmation", extra={"principal_id": user.id})
        return AuthResponse(user=user)

    async def sign_out(self) -> AuthResponse:
        session = self._session
        if session is not None:
            try:
                await self._request("POST", "/logout", token=session.access_token)
            except CredentialError:
                # Token already revoked server-side; the local session is dead either way
                logger.debug("Logout with revoked token")

        self._set_session(None)
        self._listeners.emit(AuthEvent.SIGNED_OUT, None)
        return AuthResponse()

    async def update_user(self, data: Dict[str, Any]) -> AuthResponse:
        session = self._session
        if session is None:
            return AuthResponse(error=NotAuthenticatedError())

        try:
            body = await self._request(
                "PUT",
                "/user",
                json={"data": data},
                token=session.access_token,
            )
        except CredentialError as e:
            return AuthResponse(error=e)

        user = Principal.from_dict(body)
        updated = ProviderSession(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            user=user,
            expires_at=session.expires_at,
        )
        self._session = updated
        self._listeners.emit(AuthEvent.USER_UPDATED, updated)
        return AuthResponse(session=updated, user=user)

    async def refresh_session(self) -> AuthResponse:
        session = self._session
        if session is None or not session.refresh_token:
            return AuthResponse(error=CredentialError("Refresh token not found"))

        try:
            body = await self._request(
                "POST",
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
        except CredentialError as e:
            logger.warning("Refresh token rejected, signing out", extra={"status": e.status})
            self._set_session(None)
            self._listeners.emit(AuthEvent.SIGNED_OUT, None)
            return AuthResponse(error=e)

        refreshed = ProviderSession.from_dict(body)
        self._set_session(refreshed)
        self._listeners.emit(AuthEvent.TOKEN_REFRESHED, refreshed)
        return AuthResponse(session=refreshed, user=refreshed.user)

    async def close(self) -> None:
        self._cancel_refresh()
        await self._listeners.drain()
        if self._owns_client:
            await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a request to the auth API.

        Returns:
            Decoded JSON body ({} for empty responses)

        Raises:
            CredentialError: For credential-class 4xx responses
            ProviderError: For any other error response
            TransportError: If the request could not be completed
        """
        url = f"{self.url}{AUTH_PATH}{path}"
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token or self._anon_key}",
        }

        try:
            response = await self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Auth request failed", extra={"path": path, "error": type(e).__name__})
            raise TransportError(f"Auth request failed: {e}", url=url) from e

        if response.status_code in _CREDENTIAL_STATUSES:
            raise CredentialError(_error_message(response), status=response.status_code)
        if response.is_error:
            raise ProviderError(_error_message(response), status=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Auth API returned invalid JSON", status=response.status_code) from e

    def _expired(self, session: ProviderSession) -> bool:
        if session.expires_at is None:
            return False
        return session.expires_at <= time.time()

    def _set_session(self, session: ProviderSession | None) -> None:
        self._session = session
        self._cancel_refresh()
        if session is not None and self.auto_refresh and session.expires_at is not None:
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_later(session))

    def _cancel_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            # Never cancel ourselves from inside the refresh loop
            if self._refresh_task is not asyncio.current_task():
                self._refresh_task.cancel()
        self._refresh_task = None

    async def _refresh_later(self, session: ProviderSession) -> None:
        if session.expires_at is None:
            return
        delay = max(0.0, session.expires_at - self.refresh_margin - time.time())
        await asyncio.sleep(delay)

        if self._session is not session:
            return
        try:
            await self.refresh_session()
        except SchoolGateError as e:
            # Leave the session in place; get_session() retries once it expires
            logger.warning("Background token refresh failed", extra={"error": e.message})

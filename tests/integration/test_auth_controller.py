"""
Integration tests for the auth controller with the in-memory provider.

Tests cover:
- Session resolution on startup
- Sign in, sign up, sign out and profile updates
- Tenant resolution from principal attributes
- Error normalization
- Cache purge on identity change
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from schoolgate.auth import AuthController
from schoolgate.cache import QueryCache
from schoolgate.errors import ProviderError, TenantUnavailableError, TransportError
from schoolgate.guard import TenantGuard
from schoolgate.identity import AuthResponse, InMemoryIdentityProvider
from schoolgate.models import AuthEvent, SessionState
from schoolgate.store import SessionStore


class GatedProvider(InMemoryIdentityProvider):
    """Provider whose get_session() blocks until released."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def get_session(self):
        response = await super().get_session()
        await self.gate.wait()
        return response


@pytest.fixture
def provider():
    provider = InMemoryIdentityProvider()
    provider.add_user("u1@school.test", "pw1", {"school_id": "7"}, user_id="u1")
    provider.add_user("u2@school.test", "pw2", {}, user_id="u2")
    provider.add_user("u3@school.test", "pw3", {"schoolId": 8}, user_id="u3")
    return provider


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def controller(provider, store, cache):
    return AuthController(provider, store, cache)


class TestInitialize:
    """Tests for AuthController.initialize."""

    @pytest.mark.asyncio
    async def test_no_persisted_session(self, controller, store):
        result = await controller.initialize()

        assert result.success
        assert store.state == SessionState.EMPTY

    @pytest.mark.asyncio
    async def test_persisted_session(self, provider, controller, store):
        """A session that survived from before startup resolves to Ready."""
        await provider.sign_in_with_password("u1@school.test", "pw1")

        await controller.initialize()

        assert store.state == SessionState.READY
        assert store.tenant == 7

    @pytest.mark.asyncio
    async def test_runs_once(self, provider, controller):
        await controller.initialize()
        await controller.initialize()

        assert provider.calls.count("get_session") == 1
        assert provider.listener_count == 1

    @pytest.mark.asyncio
    async def test_provider_failure_resolves_empty(self, provider, controller, store):
        """A failing provider still ends the Unresolved phase."""
        provider.inject_failure(TransportError("connection refused"))

        result = await controller.initialize()

        assert not result.success
        assert result.error == "connection refused"
        assert store.state == SessionState.EMPTY

    @pytest.mark.asyncio
    async def test_stale_resolution_discarded(self, store, cache):
        """A sign-out that lands during startup wins over the older lookup."""
        provider = GatedProvider()
        provider.add_user("u1@school.test", "pw1", {"school_id": 7}, user_id="u1")
        await provider.sign_in_with_password("u1@school.test", "pw1")
        controller = AuthController(provider, store, cache)

        task = asyncio.create_task(controller.initialize())
        await asyncio.sleep(0)
        provider.push(AuthEvent.SIGNED_OUT, None)
        await controller.on_identity_change(AuthEvent.SIGNED_OUT, None)
        provider.gate.set()
        await task
        await provider.drain()

        assert store.state == SessionState.EMPTY


class TestSignIn:
    """Tests for sign-in and tenant resolution."""

    @pytest.mark.asyncio
    async def test_sign_in_with_school(self, provider, controller, store):
        """u1 with school_id "7" becomes Ready with tenant 7."""
        await controller.initialize()

        result = await controller.sign_in("u1@school.test", "pw1")
        await provider.drain()

        assert result.success
        assert store.state == SessionState.READY
        assert store.principal.id == "u1"
        assert store.tenant == 7
        assert TenantGuard(store).require_tenant() == 7

    @pytest.mark.asyncio
    async def test_sign_in_without_school(self, provider, controller, store):
        """u2 without a school is authenticated but never ready."""
        await controller.initialize()

        await controller.sign_in("u2@school.test", "pw2")
        await provider.drain()

        assert store.state == SessionState.AUTHENTICATED_WITHOUT_TENANT
        assert store.tenant is None
        with pytest.raises(TenantUnavailableError):
            TenantGuard(store).require_tenant()

    @pytest.mark.asyncio
    async def test_camel_case_key(self, provider, controller, store):
        await controller.initialize()

        await controller.sign_in("u3@school.test", "pw3")
        await provider.drain()

        assert store.tenant == 8

    @pytest.mark.asyncio
    async def test_bad_password(self, provider, controller, store):
        await controller.initialize()

        result = await controller.sign_in("u1@school.test", "wrong")
        await provider.drain()

        assert not result.success
        assert result.error == "Invalid login credentials"
        assert store.state == SessionState.EMPTY

    @pytest.mark.asyncio
    async def test_transport_error_normalized(self, provider, controller):
        await controller.initialize()
        provider.inject_failure(TransportError("Auth request failed: timed out"))

        result = await controller.sign_in("u1@school.test", "pw1")

        assert not result.success
        assert result.error == "Auth request failed: timed out"
        assert not controller.busy

    @pytest.mark.asyncio
    async def test_unknown_error_message(self, provider, controller):
        await controller.initialize()
        provider.inject_failure(RuntimeError())

        result = await controller.sign_in("u1@school.test", "pw1")

        assert result.error == "An unknown error occurred"

    @pytest.mark.asyncio
    async def test_error_response_normalized(self, store, cache):
        provider = MagicMock()
        provider.sign_in_with_password = AsyncMock(
            return_value=AuthResponse(error=ProviderError("Service unavailable", status=503))
        )
        controller = AuthController(provider, store, cache)

        result = await controller.sign_in("u1@school.test", "pw1")

        assert not result.success
        assert result.error == "Service unavailable"

    @pytest.mark.asyncio
    async def test_empty_response_is_failure(self, store, cache):
        """A provider answering with neither user nor session is an error."""
        provider = MagicMock()
        provider.sign_in_with_password = AsyncMock(return_value=AuthResponse())
        controller = AuthController(provider, store, cache)

        result = await controller.sign_in("u1@school.test", "pw1")

        assert result.error == "No user returned from identity provider"
        provider.sign_in_with_password.assert_awaited_once_with("u1@school.test", "pw1")

    @pytest.mark.asyncio
    async def test_switching_user_purges_cache(self, provider, controller, store, cache):
        """Results cached for one school are gone once another user signs in."""
        await controller.initialize()
        await controller.sign_in("u1@school.test", "pw1")
        await provider.drain()
        cache.set(("students", 7), ["row"])

        await controller.sign_in("u3@school.test", "pw3")
        await provider.drain()

        assert store.tenant == 8
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_token_refresh_keeps_cache(self, provider, controller, cache):
        await controller.initialize()
        await controller.sign_in("u1@school.test", "pw1")
        await provider.drain()
        cache.set(("students", 7), ["row"])

        result = await controller.refresh_session()
        await provider.drain()

        assert result.success
        assert cache.get(("students", 7)) == ["row"]


class TestSignUp:
    """Tests for sign-up."""

    @pytest.mark.asyncio
    async def test_attributes_passed_through(self, provider, controller, store):
        """The attribute bag reaches the provider unmodified."""
        await controller.initialize()
        attributes = {"school_id": "9", "role": "teacher", "full_name": "Nadia"}

        result = await controller.sign_up("new@school.test", "pw", attributes)
        await provider.drain()

        assert result.success
        assert store.principal.metadata == attributes
        assert store.tenant == 9

    @pytest.mark.asyncio
    async def test_duplicate_user(self, controller):
        await controller.initialize()

        result = await controller.sign_up("u1@school.test", "pw")

        assert not result.success
        assert result.error == "User already registered"

    @pytest.mark.asyncio
    async def test_pending_confirmation(self, store, cache):
        provider = InMemoryIdentityProvider(auto_confirm=False)
        controller = AuthController(provider, store, cache)
        await controller.initialize()

        result = await controller.sign_up("new@school.test", "pw", {"school_id": 1})
        await provider.drain()

        assert result.success
        assert store.state == SessionState.EMPTY


class TestSignOut:
    """Tests for sign-out."""

    @pytest.mark.asyncio
    async def test_sign_out_clears_session_and_cache(self, provider, controller, store, cache):
        await controller.initialize()
        await controller.sign_in("u1@school.test", "pw1")
        await provider.drain()
        cache.set(("students", 7), ["row"])

        result = await controller.sign_out()
        await provider.drain()

        assert result.success
        assert store.state == SessionState.EMPTY
        assert store.principal is None
        assert store.tenant is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_sign_out_twice_is_noop(self, provider, controller):
        await controller.initialize()
        await controller.sign_in("u1@school.test", "pw1")
        await provider.drain()

        await controller.sign_out()
        await provider.drain()
        result = await controller.sign_out()

        assert result.success
        assert provider.calls.count("sign_out") == 1

    @pytest.mark.asyncio
    async def test_sign_out_before_sign_in_event_lands(self, provider, controller, store, cache):
        """Signing out right after signing in ends signed out."""
        await controller.initialize()
        await provider.drain()

        await controller.sign_in("u1@school.test", "pw1")
        result = await controller.sign_out()
        await provider.drain()

        assert result.success
        assert "sign_out" in provider.calls
        assert store.state == SessionState.EMPTY
        assert store.tenant is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_sign_out_never_signed_in(self, provider, controller):
        await controller.initialize()

        result = await controller.sign_out()

        assert result.success
        assert "sign_out" not in provider.calls

    @pytest.mark.asyncio
    async def test_sign_out_without_tenant_clears_cache(self, provider, controller, cache):
        await controller.initialize()
        await controller.sign_in("u2@school.test", "pw2")
        await provider.drain()
        cache.set(("profile", "u2"), {"name": "x"})

        await controller.sign_out()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_sign_out_failure_keeps_session(self, provider, controller, store):
        await controller.initialize()
        await controller.sign_in("u1@school.test", "pw1")
        await provider.drain()
        provider.inject_failure(TransportError("offline"))

        result = await controller.sign_out()

        assert not result.success
        assert store.state == SessionState.READY


class TestUpdateProfile:
    """Tests for update_profile."""

    @pytest.mark.asyncio
    async def test_requires_principal(self, provider, controller):
        await controller.initialize()

        result = await controller.update_profile({"full_name": "x"})

        assert not result.success
        assert result.error == "No authenticated user"
        assert "update_user" not in provider.calls

    @pytest.mark.asyncio
    async def test_assigning_school_makes_ready(self, provider, controller, store):
        """A tenant-less principal becomes Ready once a school is set."""
        await controller.initialize()
        await controller.sign_in("u2@school.test", "pw2")
        await provider.drain()

        result = await controller.update_profile({"school_id": 4})
        await provider.drain()

        assert result.success
        assert store.state == SessionState.READY
        assert store.tenant == 4

    @pytest.mark.asyncio
    async def test_refresh_picks_up_provisioning(self, provider, controller, store):
        await controller.initialize()
        await controller.sign_in("u2@school.test", "pw2")
        await provider.drain()

        provider.set_metadata("u2@school.test", {"school_id": 5})
        await controller.refresh_session()
        await provider.drain()

        assert store.tenant == 5


class TestClose:
    """Tests for AuthController.close."""

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, provider, controller):
        await controller.initialize()
        await provider.drain()

        controller.close()

        assert provider.listener_count == 0

"""
Integration tests for the SchoolGate container.

Tests cover:
- Startup and shutdown
- End-to-end session scenarios across store, guard, data access and realtime
- Construction from settings
"""

import logging

import httpx
import pytest

from schoolgate.app import SchoolGate
from schoolgate.config import Settings
from schoolgate.errors import TenantUnavailableError
from schoolgate.identity import GoTrueIdentityProvider, InMemoryIdentityProvider
from schoolgate.models import SessionState
from schoolgate.realtime import InMemoryRealtimeTransport
from schoolgate.rest import RestClient


class RecordingApi:
    def __init__(self):
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(200, json=[])


@pytest.fixture
def api():
    return RecordingApi()


@pytest.fixture
def provider():
    provider = InMemoryIdentityProvider()
    provider.add_user("u1@school.test", "pw1", {"school_id": "7"}, user_id="u1")
    provider.add_user("u2@school.test", "pw2", {}, user_id="u2")
    provider.add_user("u3@school.test", "pw3", {"school_id": 8}, user_id="u3")
    return provider


@pytest.fixture
def transport():
    return InMemoryRealtimeTransport()


@pytest.fixture
def gate(api, provider, transport):
    rest = RestClient(
        "https://school.example.co",
        "anon-key",
        token_source=lambda: provider.access_token,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
    )
    return SchoolGate(Settings(identity_backend="memory"), provider=provider, transport=transport, rest=rest)


async def sign_in(gate, provider, email, password):
    result = await gate.auth.sign_in(email, password)
    await provider.drain()
    return result


class TestLifecycle:
    """Tests for start and close."""

    @pytest.mark.asyncio
    async def test_start_resolves_session(self, gate):
        assert gate.store.state == SessionState.UNRESOLVED

        result = await gate.start()

        assert result.success
        assert gate.store.state == SessionState.EMPTY

    @pytest.mark.asyncio
    async def test_start_twice(self, gate, provider):
        await gate.start()
        await gate.start()

        assert provider.calls.count("get_session") == 1

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, gate, provider, transport):
        await gate.start()
        await sign_in(gate, provider, "u1@school.test", "pw1")
        await gate.realtime.open("messages:42", lambda e: None)

        await gate.close()

        assert transport.channel_count == 0
        assert provider.listener_count == 0

    @pytest.mark.asyncio
    async def test_context_manager(self, provider, transport):
        async with SchoolGate(
            Settings(identity_backend="memory"), provider=provider, transport=transport
        ) as gate:
            assert gate.store.state == SessionState.EMPTY
        assert provider.listener_count == 0


class TestScenarios:
    """End-to-end session scenarios."""

    @pytest.mark.asyncio
    async def test_ready_user_reads_own_school(self, gate, provider, api):
        """Data requests carry the school filter and the user's token."""
        await gate.start()
        await sign_in(gate, provider, "u1@school.test", "pw1")

        await gate.tables.select("students").execute()

        request = api.requests[-1]
        assert request.url.params["school_id"] == "eq.7"
        assert request.headers["authorization"] == f"Bearer {provider.access_token}"

    @pytest.mark.asyncio
    async def test_user_without_school_is_blocked(self, gate, provider, api):
        """No school means no reads, no writes and no subscriptions."""
        await gate.start()
        await sign_in(gate, provider, "u2@school.test", "pw2")

        assert gate.store.state == SessionState.AUTHENTICATED_WITHOUT_TENANT
        with pytest.raises(TenantUnavailableError):
            gate.tables.select("students")
        with pytest.raises(TenantUnavailableError):
            await gate.realtime.open("messages:42", lambda e: None)
        with pytest.raises(TenantUnavailableError):
            await gate.conversations.list_conversations()
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_sign_out_tears_down(self, gate, provider):
        await gate.start()
        await sign_in(gate, provider, "u1@school.test", "pw1")
        handle = await gate.realtime.open("messages:42", lambda e: None)
        gate.cache.set(("students", 7), ["row"])

        await gate.auth.sign_out()
        await provider.drain()

        assert gate.store.state == SessionState.EMPTY
        assert handle.closed
        assert len(gate.realtime) == 0
        assert len(gate.cache) == 0
        with pytest.raises(TenantUnavailableError):
            gate.guard.require_tenant()

    @pytest.mark.asyncio
    async def test_switching_school(self, gate, provider, api, transport):
        """Another user signing in drops the previous school's state."""
        await gate.start()
        await sign_in(gate, provider, "u1@school.test", "pw1")
        handle = await gate.realtime.open("messages:42", lambda e: None)
        gate.cache.set(("students", 7), ["row"])

        await sign_in(gate, provider, "u3@school.test", "pw3")
        await gate.tables.select("students").execute()

        assert gate.store.tenant == 8
        assert handle.closed
        assert len(gate.cache) == 0
        assert api.requests[-1].url.params["school_id"] == "eq.8"
        await gate.close()
        assert transport.channel_count == 0


class TestConstruction:
    """Tests for building the container from settings."""

    def test_default_transport_is_logged(self, provider, caplog):
        with caplog.at_level(logging.WARNING, logger="schoolgate.app"):
            gate = SchoolGate(Settings(identity_backend="memory"), provider=provider)

        assert isinstance(gate.transport, InMemoryRealtimeTransport)
        assert any("in-memory transport" in r.getMessage() for r in caplog.records)

    def test_injected_transport_not_logged(self, provider, transport, caplog):
        with caplog.at_level(logging.WARNING, logger="schoolgate.app"):
            gate = SchoolGate(Settings(identity_backend="memory"), provider=provider, transport=transport)

        assert gate.transport is transport
        assert not any("in-memory transport" in r.getMessage() for r in caplog.records)

    def test_gotrue_requires_url(self):
        with pytest.raises(ValueError):
            SchoolGate(Settings(identity_backend="gotrue", supabase_url=""))

    @pytest.mark.asyncio
    async def test_builds_gotrue_provider(self):
        settings = Settings(
            identity_backend="gotrue",
            supabase_url="https://school.example.co",
            anon_key="anon-key",
            auto_refresh=False,
        )
        gate = SchoolGate(settings)

        assert isinstance(gate.provider, GoTrueIdentityProvider)
        assert gate.provider.url == "https://school.example.co"
        assert gate.rest.url == "https://school.example.co"
        await gate.close()

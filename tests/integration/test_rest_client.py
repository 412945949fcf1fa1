"""
Integration tests for the data API client and tenant-scoped access.

Tests cover:
- Query parameter and header construction
- Error mapping to QueryError and TransportError
- Tenant filter and tenant override on every scoped call
"""

import json

import httpx
import pytest

from schoolgate.client import TenantScopedClient
from schoolgate.errors import QueryError, TenantUnavailableError, TransportError
from schoolgate.guard import TenantGuard
from schoolgate.models import Principal
from schoolgate.rest import RestClient
from schoolgate.store import SessionStore

BASE_URL = "https://school.example.co"


class DataApi:
    """Records requests and replies with a fixed response."""

    def __init__(self, status=200, body=None):
        self.status = status
        self.body = [] if body is None else body
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.status == 204:
            return httpx.Response(204)
        return httpx.Response(self.status, json=self.body)

    @property
    def last(self):
        return self.requests[-1]


def make_rest(api, token=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return RestClient(BASE_URL, "anon-key", token_source=lambda: token, http_client=http)


class TestRestClient:
    """Tests for RestClient and TableQuery."""

    @pytest.mark.asyncio
    async def test_select_params(self):
        api = DataApi(body=[{"id": 1}])
        rest = make_rest(api)

        rows = await (
            rest.table("students")
            .select("id,name")
            .eq("class_id", 3)
            .in_("status", ["active", "new"])
            .order("name")
            .limit(10)
            .execute()
        )

        assert rows == [{"id": 1}]
        request = api.last
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/students"
        assert request.url.params["select"] == "id,name"
        assert request.url.params["class_id"] == "eq.3"
        assert request.url.params["status"] == "in.(active,new)"
        assert request.url.params["order"] == "name.asc"
        assert request.url.params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_anon_key_when_signed_out(self):
        api = DataApi()
        rest = make_rest(api)

        await rest.table("students").select().execute()

        assert api.last.headers["apikey"] == "anon-key"
        assert api.last.headers["authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_user_token_when_signed_in(self):
        api = DataApi()
        rest = make_rest(api, token="user-token")

        await rest.table("students").select().execute()

        assert api.last.headers["authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_boolean_and_null_values(self):
        api = DataApi()
        rest = make_rest(api)

        await rest.table("conversations").select().eq("is_active", True).eq("title", None).execute()

        assert api.last.url.params["is_active"] == "eq.true"
        assert api.last.url.params["title"] == "eq.null"

    @pytest.mark.asyncio
    async def test_insert_body(self):
        api = DataApi(status=201, body=[{"id": 5, "name": "Rahim"}])
        rest = make_rest(api)

        row = await rest.table("students").insert({"name": "Rahim"}).single().execute()

        assert row == {"id": 5, "name": "Rahim"}
        assert api.last.method == "POST"
        assert api.last.headers["prefer"] == "return=representation"
        assert json.loads(api.last.content) == {"name": "Rahim"}

    @pytest.mark.asyncio
    async def test_single_requires_one_row(self):
        api = DataApi(body=[])
        rest = make_rest(api)

        with pytest.raises(QueryError):
            await rest.table("students").select().eq("id", 1).single().execute()

    @pytest.mark.asyncio
    async def test_empty_response(self):
        api = DataApi(status=204)
        rest = make_rest(api)

        assert await rest.table("students").delete().eq("id", 1).execute() == []
        assert "select" not in api.last.url.params

    @pytest.mark.asyncio
    async def test_api_error(self):
        api = DataApi(status=403, body={"message": "new row violates row-level security policy"})
        rest = make_rest(api)

        with pytest.raises(QueryError) as exc_info:
            await rest.table("students").insert({"name": "x"}).execute()

        assert exc_info.value.status == 403
        assert exc_info.value.table == "students"
        assert "row-level security" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_api_error_with_list_body(self):
        api = DataApi(status=400, body=["unexpected"])
        rest = make_rest(api)

        with pytest.raises(QueryError):
            await rest.table("students").select().execute()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def fail(request):
            raise httpx.ReadTimeout("timed out", request=request)

        rest = make_rest(fail)

        with pytest.raises(TransportError):
            await rest.table("students").select().execute()


class TestTenantScopedClient:
    """Tests for TenantScopedClient."""

    @pytest.fixture
    def store(self):
        return SessionStore()

    @pytest.fixture
    def writer(self, store):
        return store.bind_writer()

    @pytest.fixture
    def api(self):
        return DataApi(body=[{"id": 1, "school_id": 7}])

    @pytest.fixture
    def scoped(self, api, store):
        return TenantScopedClient(make_rest(api), TenantGuard(store))

    @pytest.mark.asyncio
    async def test_select_is_filtered(self, scoped, writer, api):
        writer.replace(Principal(id="u1"), 7)

        await scoped.select("students").eq("class_id", 3).execute()

        assert api.last.url.params["school_id"] == "eq.7"
        assert api.last.url.params["class_id"] == "eq.3"

    @pytest.mark.asyncio
    async def test_insert_overrides_tenant(self, scoped, writer, api):
        """A caller cannot write into another school."""
        writer.replace(Principal(id="u1"), 7)

        await scoped.insert("students", {"name": "x", "school_id": 999}).execute()

        assert json.loads(api.last.content) == {"name": "x", "school_id": 7}

    @pytest.mark.asyncio
    async def test_insert_many(self, scoped, writer, api):
        writer.replace(Principal(id="u1"), 7)

        await scoped.insert_many("attendance", [{"student_id": 1}, {"student_id": 2, "school_id": 3}]).execute()

        body = json.loads(api.last.content)
        assert [row["school_id"] for row in body] == [7, 7]

    @pytest.mark.asyncio
    async def test_update_strips_tenant_and_filters(self, scoped, writer, api):
        writer.replace(Principal(id="u1"), 7)

        await scoped.update("students", {"name": "y", "school_id": 999}).eq("id", 1).execute()

        assert api.last.method == "PATCH"
        assert json.loads(api.last.content) == {"name": "y"}
        assert api.last.url.params["school_id"] == "eq.7"
        assert api.last.url.params["id"] == "eq.1"

    @pytest.mark.asyncio
    async def test_delete_filters(self, scoped, writer, api):
        writer.replace(Principal(id="u1"), 7)

        await scoped.delete("students").eq("id", 1).execute()

        assert api.last.method == "DELETE"
        assert api.last.url.params["school_id"] == "eq.7"

    def test_no_tenant_fails_closed(self, scoped, writer, api):
        """Without a tenant nothing is built and nothing is sent."""
        writer.replace(Principal(id="u2"), None)

        with pytest.raises(TenantUnavailableError):
            scoped.select("students")
        with pytest.raises(TenantUnavailableError):
            scoped.insert("students", {"name": "x"})
        with pytest.raises(TenantUnavailableError):
            scoped.update("students", {"name": "x"})
        with pytest.raises(TenantUnavailableError):
            scoped.delete("students")

        assert api.requests == []

    def test_unresolved_fails_closed(self, scoped):
        with pytest.raises(TenantUnavailableError):
            scoped.select("students")

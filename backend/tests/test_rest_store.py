"""Unit tests for the PostgREST row store client."""

import json

import httpx
import pytest

from sogood.db import RagStore
from sogood.errors import ConfigurationError, StoreError


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def store_for(settings, recorder) -> RagStore:
    return RagStore(settings, transport=httpx.MockTransport(recorder))


class TestRagStore:
    """Test RagStore requests."""

    @pytest.mark.asyncio
    async def test_select_builds_query(self, settings):
        recorder = Recorder(httpx.Response(200, json=[{"id": "r1", "company": "https://acme.com"}]))
        store = store_for(settings, recorder)

        rows = await store.select(
            {"type": "eq.results", "or": "(company.eq.a,company.eq.b)"},
            columns="id,company",
            order="created_at.asc",
        )
        await store.disconnect()

        assert [r.id for r in rows] == ["r1"]
        request = recorder.requests[0]
        assert request.url.path == "/rest/v1/sogood_rag"
        assert request.url.params["select"] == "id,company"
        assert request.url.params["type"] == "eq.results"
        assert request.url.params["or"] == "(company.eq.a,company.eq.b)"
        assert request.url.params["order"] == "created_at.asc"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_service_role_key_preferred(self, settings):
        settings.supabase_service_role_key = "service-key"
        recorder = Recorder(httpx.Response(200, json=[]))
        await store_for(settings, recorder).get_row("x")
        assert recorder.requests[0].headers["apikey"] == "service-key"
        assert recorder.requests[0].url.params["limit"] == "1"

    @pytest.mark.asyncio
    async def test_get_row_missing(self, settings):
        store = store_for(settings, Recorder(httpx.Response(200, json=[])))
        assert await store.get_row("nope") is None

    @pytest.mark.asyncio
    async def test_upsert(self, settings):
        recorder = Recorder(httpx.Response(201, json=[{"id": "c1", "title": "Acme"}]))
        saved = await store_for(settings, recorder).upsert({"id": "c1", "title": "Acme"})

        assert saved.title == "Acme"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.params["on_conflict"] == "id"
        assert request.headers["prefer"] == "resolution=merge-duplicates,return=representation"
        assert json.loads(request.content) == {"id": "c1", "title": "Acme"}

    @pytest.mark.asyncio
    async def test_delete_no_content(self, settings):
        recorder = Recorder(httpx.Response(204))
        await store_for(settings, recorder).delete({"id": "eq.c1"})
        assert recorder.requests[0].method == "DELETE"
        assert recorder.requests[0].url.params["id"] == "eq.c1"

    @pytest.mark.asyncio
    async def test_error_response(self, settings):
        store = store_for(settings, Recorder(httpx.Response(401, text="JWT expired")))
        with pytest.raises(StoreError) as exc:
            await store.select({"id": "eq.c1"})
        assert exc.value.status == 401
        assert "Supabase REST error 401" in exc.value.message
        assert "JWT expired" in exc.value.message

    @pytest.mark.asyncio
    async def test_network_error_is_store_error(self, settings):
        """Transport failures surface as StoreError."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = RagStore(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(StoreError) as exc:
            await store.select({"id": "eq.c1"})
        assert "connection refused" in exc.value.message

    @pytest.mark.asyncio
    async def test_malformed_success_body_is_store_error(self, settings):
        """A 2xx answer that is not JSON surfaces as StoreError."""
        store = store_for(settings, Recorder(httpx.Response(200, content=b"<html>\xc3\x28")))
        with pytest.raises(StoreError) as exc:
            await store.select({"id": "eq.c1"})
        assert exc.value.status == 200
        assert exc.value.message.startswith("Malformed Supabase REST response")

    @pytest.mark.asyncio
    async def test_unconfigured(self, settings):
        settings.supabase_url = ""
        with pytest.raises(ConfigurationError):
            await store_for(settings, Recorder()).select({})

    @pytest.mark.asyncio
    async def test_health(self, settings):
        recorder = Recorder(httpx.Response(200, text="ok"))
        ok, status, _ = await store_for(settings, recorder).health()
        assert ok and status == 200
        assert recorder.requests[0].url.path == "/auth/v1/health"

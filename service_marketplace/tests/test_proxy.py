"""
Unit tests for the reverse proxy cache kernel.
"""

import time
import pytest
from pathlib import Path
from fastapi import FastAPI, Request, Response
from fastapi.testclient import TestClient

from service_marketplace.app.api.responses import ResponseBuilder
from service_marketplace.app.cache.proxy import (
    CacheKernel, HttpResponse, RequestType, ResponseStore, format_cache_control, http_date, parse_cache_control,
)
from service_marketplace.app.domain.models import HTTPCacheEntry, ResourceType


TRACE = "x-symfony-cache"


class FakeClock:
    """Controllable time source."""

    def __init__(self):
        self.now = float(int(time.time()))

    def __call__(self) -> float:
        return self.now


class ProxiedApp:
    """Application with one cached collection route behind the kernel."""

    def __init__(self, store_dir, debug=True, credentials_expired=None, request_type=None):
        self.clock = FakeClock()
        self.calls = 0
        self.entry = HTTPCacheEntry(
            partner_uuid="partner",
            route_name="list_items",
            request_uri="/api/v1/items",
            type=ResourceType.COLLECTION,
            class_short_name="Phone",
            ttl_expiration=60
        )
        self.store = ResponseStore(str(store_dir))
        self.kernel = CacheKernel(
            self.store, debug=debug, path_prefix="/api/v1", clock=self.clock, credentials_expired=credentials_expired
        )
        builder = ResponseBuilder()

        app = FastAPI()

        @app.get("/api/v1/items")
        async def items(request: Request):
            self.calls += 1
            return builder.create_cached_json(request, {"calls": self.calls}, self.entry)

        @app.post("/api/v1/items")
        async def create_item():
            return Response(status_code=201, headers={"Location": "/api/v1/items/1"})

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        if request_type is None:
            app.middleware("http")(self.kernel)
        else:
            @app.middleware("http")
            async def typed(request: Request, call_next):
                return await self.kernel.handle(request, call_next, request_type)

        self.client = TestClient(app)


class TestCacheKernel:
    """Test cases for CacheKernel."""

    @pytest.fixture
    def proxied(self, tmp_path):
        return ProxiedApp(tmp_path)

    def test_miss_then_fresh(self, proxied):
        """Test a stored response is served without reaching the application."""
        first = proxied.client.get("/api/v1/items")
        assert first.status_code == 200
        assert first.json() == {"calls": 1}
        assert first.headers[TRACE] == "GET /api/v1/items: miss, store"

        second = proxied.client.get("/api/v1/items")
        assert second.json() == {"calls": 1}
        assert second.headers[TRACE] == "GET /api/v1/items: fresh"
        assert proxied.calls == 1

    def test_body_file_never_disclosed(self, proxied):
        proxied.client.get("/api/v1/items")
        response = proxied.client.get("/api/v1/items")

        assert "x-body-file" not in response.headers

    def test_stale_valid_response_is_refreshed(self, proxied):
        """Test a revalidated stale response gets a new lifetime and is stored again."""
        proxied.client.get("/api/v1/items")
        proxied.clock.now += 61

        response = proxied.client.get("/api/v1/items")

        assert response.status_code == 200
        assert response.json() == {"calls": 1}
        assert response.headers[TRACE] == "GET /api/v1/items: stale, valid, refreshed"
        assert response.headers["age"] == "0"
        cache_control = parse_cache_control(response.headers["cache-control"])
        assert cache_control["max-age"] == "60"
        assert "proxy-revalidate" in cache_control
        assert response.headers["etag"] == f'"{proxied.entry.etag_token}"'

        again = proxied.client.get("/api/v1/items")
        assert again.headers[TRACE] == "GET /api/v1/items: fresh"

    def test_stale_invalid_response_is_replaced(self, proxied):
        """Test a rotated validator makes the kernel store the new content."""
        proxied.client.get("/api/v1/items")
        proxied.entry.touch()
        proxied.clock.now += 61

        response = proxied.client.get("/api/v1/items")

        assert response.json() == {"calls": 2}
        assert response.headers[TRACE] == "GET /api/v1/items: stale, invalid, store"
        assert response.headers["etag"] == f'"{proxied.entry.etag_token}"'

    def test_unsafe_method_purges(self, proxied):
        """Test writes forget the stored response of their URI."""
        proxied.client.get("/api/v1/items")

        created = proxied.client.post("/api/v1/items")
        assert created.status_code == 201
        assert created.headers[TRACE] == "POST /api/v1/items: invalidate"

        response = proxied.client.get("/api/v1/items")
        assert response.headers[TRACE] == "GET /api/v1/items: miss, store"
        assert proxied.calls == 2

    def test_not_modified_answered_with_stored_content(self, proxied):
        """Test an application 304 is replaced by the stored response of the same version."""
        proxied.client.get("/api/v1/items")

        response = proxied.client.get(
            "/api/v1/items",
            headers={"Cache-Control": "no-cache", "If-None-Match": f'"{proxied.entry.etag_token}"'}
        )

        assert response.status_code == 200
        assert response.json() == {"calls": 1}
        assert response.headers[TRACE] == "GET /api/v1/items: reload, not-modified"
        assert "x-body-file" not in response.headers

    def test_not_modified_without_stored_content(self, proxied):
        """Test a 304 passes through when nothing is stored."""
        response = proxied.client.get(
            "/api/v1/items",
            headers={"If-None-Match": f'"{proxied.entry.etag_token}"'}
        )

        assert response.status_code == 304
        assert response.headers[TRACE] == "GET /api/v1/items: miss"

    def test_paths_outside_prefix_bypass_kernel(self, proxied):
        response = proxied.client.get("/health")

        assert response.status_code == 200
        assert TRACE not in response.headers

    def test_trace_header_only_in_debug(self, tmp_path):
        proxied = ProxiedApp(tmp_path, debug=False)

        response = proxied.client.get("/api/v1/items")

        assert TRACE not in response.headers

    def test_sub_requests_bypass_kernel(self, tmp_path):
        """Test sub-requests are neither traced nor stored."""
        proxied = ProxiedApp(tmp_path, request_type=RequestType.SUB)

        first = proxied.client.get("/api/v1/items")
        second = proxied.client.get("/api/v1/items")

        assert TRACE not in first.headers
        assert second.json() == {"calls": 2}
        assert not list((tmp_path / "md").iterdir())

    def test_expired_credentials_reach_application(self, tmp_path):
        """Test fresh responses are not replayed for an expired bearer token."""
        proxied = ProxiedApp(
            tmp_path, credentials_expired=lambda authorization, now: authorization == "Bearer expired"
        )
        headers = {"Authorization": "Bearer expired"}

        first = proxied.client.get("/api/v1/items", headers=headers)
        assert first.headers[TRACE] == "GET /api/v1/items: miss, store"

        second = proxied.client.get("/api/v1/items", headers=headers)
        assert second.headers[TRACE] == "GET /api/v1/items: pass"
        assert proxied.calls == 2

        proxied.client.get("/api/v1/items", headers={"Authorization": "Bearer valid"})
        fresh = proxied.client.get("/api/v1/items", headers={"Authorization": "Bearer valid"})
        assert fresh.headers[TRACE] == "GET /api/v1/items: fresh"
        assert proxied.calls == 3


class TestResponseStore:
    """Test cases for ResponseStore."""

    @staticmethod
    def body_files(root):
        return [path for path in (root / "en").rglob("*") if path.is_file()]

    @pytest.mark.asyncio
    async def test_variants_follow_vary_headers(self, tmp_path):
        """Test responses are stored per Vary header values."""
        store = ResponseStore(str(tmp_path))
        response = HttpResponse(200, {"vary": "Authorization", "cache-control": "max-age=60"}, b"alice")

        await store.write("/api/v1/phones", {"authorization": "Bearer alice"}, response)

        assert (await store.lookup("/api/v1/phones", {"authorization": "Bearer alice"})).body == b"alice"
        assert await store.lookup("/api/v1/phones", {"authorization": "Bearer bob"}) is None

    @pytest.mark.asyncio
    async def test_purge(self, tmp_path):
        store = ResponseStore(str(tmp_path))
        await store.write("/api/v1/phones", {}, HttpResponse(200, {"cache-control": "max-age=60"}, b"body"))

        assert await store.purge("/api/v1/phones")
        assert await store.lookup("/api/v1/phones", {}) is None
        assert not await store.purge("/api/v1/phones")

    @pytest.mark.asyncio
    async def test_purge_removes_body_files(self, tmp_path):
        """Test purging a URI deletes the bodies of all its variants."""
        store = ResponseStore(str(tmp_path))
        headers = {"vary": "Authorization", "cache-control": "max-age=60"}
        await store.write("/api/v1/phones", {"authorization": "Bearer alice"}, HttpResponse(200, headers, b"alice"))
        await store.write("/api/v1/phones", {"authorization": "Bearer bob"}, HttpResponse(200, headers, b"bob"))
        await store.write("/api/v1/clients", {}, HttpResponse(200, {"cache-control": "max-age=60"}, b"clients"))
        assert len(self.body_files(tmp_path)) == 3

        await store.purge("/api/v1/phones")

        assert [path.read_bytes() for path in self.body_files(tmp_path)] == [b"clients"]

    @pytest.mark.asyncio
    async def test_replaced_variant_body_removed(self, tmp_path):
        store = ResponseStore(str(tmp_path))
        await store.write("/api/v1/phones", {}, HttpResponse(200, {"cache-control": "max-age=60"}, b"old"))

        path = await store.write("/api/v1/phones", {}, HttpResponse(200, {"cache-control": "max-age=60"}, b"new"))

        assert self.body_files(tmp_path) == [Path(path)]
        assert (await store.lookup("/api/v1/phones", {})).body == b"new"

    @pytest.mark.asyncio
    async def test_same_body_on_other_uri_survives_purge(self, tmp_path):
        """Test body files are not shared between URIs."""
        store = ResponseStore(str(tmp_path))
        response = HttpResponse(200, {"cache-control": "max-age=60"}, b"[]")
        await store.write("/api/v1/phones", {}, response)
        await store.write("/api/v1/clients", {}, response)

        await store.purge("/api/v1/phones")

        assert (await store.lookup("/api/v1/clients", {})).body == b"[]"


class TestHttpResponse:
    """Test cases for HttpResponse freshness helpers."""

    def test_s_maxage_wins(self):
        response = HttpResponse(200, {"cache-control": "public, max-age=10, s-maxage=60"})
        assert response.max_age() == 60

    def test_freshness(self):
        now = time.time()
        response = HttpResponse(200, {"cache-control": "max-age=60", "date": http_date(now - 30)})

        assert response.is_fresh(now)
        assert not response.is_fresh(now + 31)

    def test_cache_control_round_trip(self):
        directives = parse_cache_control('public, max-age=60, no-cache="set-cookie"')

        assert directives == {"public": None, "max-age": "60", "no-cache": "set-cookie"}
        assert format_cache_control({"public": None, "max-age": "60"}) == "public, max-age=60"

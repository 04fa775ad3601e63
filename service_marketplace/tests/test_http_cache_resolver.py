"""
Unit tests for HTTP cache metadata resolution and cache headers.
"""

import asyncio
import pytest
from unittest.mock import MagicMock

from service_marketplace.app.api.responses import CACHE_VARY, ResponseBuilder
from service_marketplace.app.cache.http_cache import CachedRoute, HTTPCacheResolver
from service_marketplace.app.cache.tagged_cache import InMemoryTagAwareCache
from service_marketplace.app.domain.events import EventDispatcher
from service_marketplace.app.domain.models import HTTPCacheEntry, Partner, ResourceType
from service_marketplace.app.persistence.memory import InMemoryPersistence
from service_marketplace.app.repositories import HTTPCacheRepository


LIST_PHONES = CachedRoute("list_phones", ResourceType.COLLECTION, "Phone")
SHOW_PHONE = CachedRoute("show_phone", ResourceType.ENTITY, "Phone")


class TestHTTPCacheResolver:
    """Test cases for HTTPCacheResolver."""

    @pytest.fixture
    def repository(self):
        return HTTPCacheRepository(InMemoryPersistence(), EventDispatcher(), InMemoryTagAwareCache())

    @pytest.fixture
    def resolver(self, repository):
        return HTTPCacheResolver(repository, default_ttl=600)

    @pytest.fixture
    def partner(self):
        return Partner(type="Magasin", username="Shop", email="shop@example.com", password="hash")

    @pytest.mark.asyncio
    async def test_creates_entry(self, resolver, repository, partner):
        """Test first request creates a persisted entry."""
        entry = await resolver.resolve(partner, "/api/v1/phones?page=1&per_page=5", LIST_PHONES)

        assert entry.partner_uuid == partner.uuid
        assert entry.route_name == "list_phones"
        assert entry.is_collection
        assert entry.resource_uuid is None
        assert entry.ttl_expiration == 600
        assert len(entry.etag_token) == 32
        assert await repository.find_one_by_uuid(entry.uuid) is not None

    @pytest.mark.asyncio
    async def test_reuses_entry(self, resolver, partner):
        """Test the same URI resolves to the same entry and validator."""
        first = await resolver.resolve(partner, "/api/v1/phones/abc", SHOW_PHONE, "abc")
        second = await resolver.resolve(partner, "/api/v1/phones/abc", SHOW_PHONE, "abc")

        assert second.uuid == first.uuid
        assert second.etag_token == first.etag_token
        assert second.resource_uuid == "abc"

    @pytest.mark.asyncio
    async def test_entries_are_per_partner(self, resolver, partner):
        other = Partner(type="Magasin", username="Other", email="other@example.com", password="hash")

        first = await resolver.resolve(partner, "/api/v1/phones", LIST_PHONES)
        second = await resolver.resolve(other, "/api/v1/phones", LIST_PHONES)

        assert first.uuid != second.uuid

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_share_entry(self, resolver, repository, partner):
        """Test racing first requests end up with a single entry."""
        entries = await asyncio.gather(*[
            resolver.resolve(partner, "/api/v1/phones", LIST_PHONES) for _ in range(5)
        ])

        assert len({entry.uuid for entry in entries}) == 1
        assert await repository.count_by() == 1


class TestResponseBuilder:
    """Test cases for ResponseBuilder cache headers."""

    @pytest.fixture
    def builder(self):
        return ResponseBuilder()

    @pytest.fixture
    def entry(self):
        return HTTPCacheEntry(
            partner_uuid="partner",
            route_name="list_phones",
            request_uri="/api/v1/phones",
            type=ResourceType.COLLECTION,
            class_short_name="Phone",
            ttl_expiration=3600
        )

    def make_request(self, headers=None):
        request = MagicMock()
        request.headers = {name.lower(): value for name, value in (headers or {}).items()}
        return request

    def test_http_cache_headers(self, builder, entry):
        headers = builder.http_cache_headers(entry)

        assert headers["ETag"] == f'"{entry.etag_token}"'
        assert headers["Cache-Control"] == "public, max-age=3600, s-maxage=3600, proxy-revalidate"
        assert headers["X-App-Cache-Ttl"] == "3600"
        assert headers["X-App-Cache-Id"] == entry.uuid
        assert headers["Vary"] == CACHE_VARY
        assert headers["Last-Modified"].endswith("GMT")

    def test_cached_json_ok(self, builder, entry):
        response = builder.create_cached_json(self.make_request(), {"total": 0}, entry)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/hal+json"
        assert response.headers["etag"] == f'"{entry.etag_token}"'

    def test_cached_json_not_modified(self, builder, entry):
        """Test a matching validator yields an empty 304."""
        request = self.make_request({"If-None-Match": f'"{entry.etag_token}"'})

        response = builder.create_cached_json(request, {"total": 0}, entry)

        assert response.status_code == 304
        assert response.body == b""
        assert response.headers["etag"] == f'"{entry.etag_token}"'

    def test_rotated_validator_is_modified(self, builder, entry):
        """Test a touched entry no longer matches the client's validator."""
        request = self.make_request({"If-None-Match": f'"{entry.etag_token}"'})
        entry.touch()

        assert not builder.is_not_modified(request, entry)

"""
Unit tests for collection filters and paginated representations.
"""

import pytest
from decimal import Decimal

from shared.errors import BadRequestError
from service_marketplace.app.api.pagination import FilterRequestHandler
from service_marketplace.app.api.representation import RepresentationBuilder
from service_marketplace.app.domain import schemas
from service_marketplace.app.domain.models import Offer, Partner, Phone
from service_marketplace.app.repositories import Pagination, ResultWindow


class TestFilterRequestHandler:
    """Test cases for FilterRequestHandler."""

    @pytest.fixture
    def handler(self):
        return FilterRequestHandler()

    def test_no_parameters(self, handler):
        handler.check_query_parameters({}, is_collection=False)
        assert handler.filter_pagination_data({}) is None
        assert not handler.is_full_list_requested({})

    def test_parameters_on_entity_route(self, handler):
        with pytest.raises(BadRequestError) as exc_info:
            handler.check_query_parameters({"page": "1"}, is_collection=False)
        assert exc_info.value.message == (
            "Misused filter(s) without collection: unexpected request query parameter(s)"
        )

    def test_unknown_parameters(self, handler):
        with pytest.raises(BadRequestError) as exc_info:
            handler.check_query_parameters({"sort": "asc", "brand": "x", "page": "1"}, is_collection=True)
        assert exc_info.value.message == "Invalid request: unknown (brand, sort) query parameter(s)"

    def test_pagination(self, handler):
        pagination = handler.filter_pagination_data({"page": "2", "per_page": "10"})

        assert pagination == Pagination(page=2, per_page=10)
        assert pagination.offset == 10

    @pytest.mark.parametrize("params,message", [
        ({"page": "1"}, "Pagination limit (per_page) parameter failure: undefined per_page parameter"),
        ({"per_page": "5"}, "Pagination number (page) parameter failure: undefined page parameter"),
        ({"page": "", "per_page": "5"}, "Pagination number (page) parameter failure: undefined value"),
        ({"page": "0", "per_page": "5"}, "Pagination number (page) parameter failure: expected value >= 1"),
        ({"page": "1", "per_page": "-3"}, "Pagination limit (per_page) parameter failure: expected value >= 1"),
        ({"page": "abc", "per_page": "5"}, "Pagination number (page) parameter failure: expected value >= 1"),
    ])
    def test_pagination_failures(self, handler, params, message):
        with pytest.raises(BadRequestError) as exc_info:
            handler.filter_pagination_data(params)
        assert exc_info.value.message == message

    def test_full_list_flags(self, handler):
        assert handler.is_full_list_requested({"catalog": ""})
        assert handler.is_full_list_requested({"full_list": ""})
        with pytest.raises(BadRequestError):
            handler.is_full_list_requested({"full_list": "yes"})


def make_phones(count):
    return [
        Phone(
            type="Premium", brand="Brand", model=f"Model {index}", color="Noir",
            description="Description", price=Decimal("999.90")
        )
        for index in range(count)
    ]


class TestRepresentationBuilder:
    """Test cases for RepresentationBuilder."""

    @pytest.fixture
    def builder(self):
        return RepresentationBuilder("/api/v1")

    def serialize(self, builder):
        return lambda phone: builder.resource(phone, schemas.PhoneListView)

    def test_second_page(self, builder):
        """Test page 2 of 15 items by 10."""
        phones = make_phones(15)
        window = ResultWindow(items=phones[10:], total=15, pagination=Pagination(2, 10))

        data = builder.create_paginated_collection(
            "/api/v1/phones", {"page": "2", "per_page": "10", "catalog": ""}, window, "phones",
            self.serialize(builder)
        )

        assert data["page"] == 2
        assert data["per_page"] == 10
        assert data["pages"] == 2
        assert data["total"] == 15
        assert len(data["_embedded"]["phones"]) == 5
        links = data["_links"]
        assert links["self"]["href"] == "/api/v1/phones?catalog=&page=2&per_page=10"
        assert links["first"]["href"] == "/api/v1/phones?catalog=&page=1&per_page=10"
        assert links["previous"]["href"] == "/api/v1/phones?catalog=&page=1&per_page=10"
        assert "next" not in links

    def test_page_out_of_range(self, builder):
        window = ResultWindow(items=[], total=15, pagination=Pagination(3, 10))

        with pytest.raises(BadRequestError) as exc_info:
            builder.create_paginated_collection(
                "/api/v1/phones", {"page": "3", "per_page": "10"}, window, "phones", self.serialize(builder)
            )
        assert exc_info.value.message == (
            "Pagination number (page) parameter failure: out of range (expected value between 1 and 2)"
        )

    def test_per_page_out_of_range(self, builder):
        window = ResultWindow(items=make_phones(3), total=3, pagination=Pagination(1, 5))

        with pytest.raises(BadRequestError) as exc_info:
            builder.create_paginated_collection(
                "/api/v1/phones", {"page": "1", "per_page": "5"}, window, "phones", self.serialize(builder)
            )
        assert "limit (per_page)" in exc_info.value.message

    def test_full_collection(self, builder):
        window = ResultWindow(items=make_phones(3), total=3)

        data = builder.create_paginated_collection("/api/v1/phones", {}, window, "phones", self.serialize(builder))

        assert (data["page"], data["per_page"], data["pages"], data["total"]) == (1, 3, 1, 3)
        assert data["_links"]["self"]["href"] == "/api/v1/phones"
        assert "next" not in data["_links"]

    def test_empty_collection(self, builder):
        window = ResultWindow(items=[], total=0, pagination=Pagination(1, 10))

        data = builder.create_paginated_collection(
            "/api/v1/clients", {"page": "1", "per_page": "10"}, window, "clients", self.serialize(builder)
        )

        assert data["pages"] == 0
        assert data["_embedded"]["clients"] == []

    def test_resource_links(self, builder):
        phone = make_phones(1)[0]

        data = builder.resource(phone, schemas.PhoneDetailView)

        assert data["_links"]["self"]["href"] == f"/api/v1/phones/{phone.uuid}"
        assert data["price"] == "999.90"
        assert "creation_date" in data

    def test_offer(self, builder):
        partner = Partner(type="Magasin", username="Shop", email="shop@example.com", password="hash")
        phone = make_phones(1)[0]
        offer = Offer(partner_uuid=partner.uuid, phone_uuid=phone.uuid)

        data = builder.offer(offer, partner, phone)

        assert data["partner"]["email"] == "shop@example.com"
        assert "password" not in data["partner"]
        assert data["_links"]["self"]["href"] == f"/api/v1/admin/offers/{offer.uuid}"
        assert data["_links"]["phone"]["href"] == f"/api/v1/phones/{phone.uuid}"

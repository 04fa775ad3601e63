"""
HAL representations of resources and paginated collections.
"""

import math
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from shared.errors import BadRequestError
from ..domain import schemas
from ..domain.models import Client, Entity, Offer, Partner, Phone
from ..repositories import ResultWindow
from .pagination import PAGE, PER_PAGE, PAGINATION_LABELS


class RepresentationBuilder:
    """Build resource and collection bodies with their links."""

    def __init__(self, api_path_prefix: str = ""):
        self.prefix = api_path_prefix

    # Resource links

    def resource_href(self, entity: Entity) -> str:
        if isinstance(entity, Partner):
            return f"{self.prefix}/partners/{entity.uuid}"
        if isinstance(entity, Phone):
            return f"{self.prefix}/phones/{entity.uuid}"
        if isinstance(entity, Client):
            return f"{self.prefix}/clients/{entity.uuid}"
        if isinstance(entity, Offer):
            return f"{self.prefix}/admin/offers/{entity.uuid}"
        raise ValueError(f"No resource link for {type(entity).__name__}")

    def resource(self, entity: Entity, view: type, source: Optional[Any] = None) -> Dict[str, Any]:
        """Serialize ``entity`` through ``view`` and add its self link."""
        data = schemas.dump(view, source if source is not None else entity.to_row())
        data["_links"] = {"self": {"href": self.resource_href(entity)}}
        return data

    def offer(self, offer: Offer, partner: Partner, phone: Phone, detailed: bool = False) -> Dict[str, Any]:
        source = {
            "uuid": offer.uuid,
            "creation_date": offer.creation_date,
            "partner": partner.to_row(),
            "phone": phone.to_row(),
        }
        view = schemas.OfferDetailView if detailed else schemas.OfferListView
        data = self.resource(offer, view, source)
        data["_links"]["partner"] = {"href": self.resource_href(partner)}
        data["_links"]["phone"] = {"href": self.resource_href(phone)}
        return data

    # Collections

    def create_paginated_collection(
        self,
        route_path: str,
        query_params: Dict[str, str],
        window: ResultWindow,
        items_label: str,
        serialize: Callable[[Any], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Collection body for one window; fails when the window is out of range."""
        total = window.total
        if window.pagination is not None:
            page, per_page = window.pagination.page, window.pagination.per_page
            pages = math.ceil(total / per_page) if total else 0
            if total:
                self._check_range(PAGE, page, pages)
                self._check_range(PER_PAGE, per_page, total)
        else:
            page, per_page = 1, total
            pages = 1 if total else 0

        flags = {name: value for name, value in query_params.items() if name not in (PAGE, PER_PAGE)}

        def link(target_page: int) -> Dict[str, str]:
            params = dict(flags)
            if window.pagination is not None:
                params.update({PAGE: str(target_page), PER_PAGE: str(per_page)})
            query = urlencode(params)
            return {"href": f"{route_path}?{query}" if query else route_path}

        links = {
            "self": link(page),
            "first": link(1),
            "last": link(max(pages, 1)),
        }
        if window.pagination is not None:
            if page < pages:
                links["next"] = link(page + 1)
            if page > 1:
                links["previous"] = link(page - 1)

        items: List[Dict[str, Any]] = [serialize(item) for item in window]
        return {
            "page": page,
            "per_page": per_page,
            "pages": pages,
            "total": total,
            "_links": links,
            "_embedded": {items_label: items},
        }

    def _check_range(self, name: str, value: int, maximum: int) -> None:
        if not 1 <= value <= maximum:
            raise BadRequestError(
                f"Pagination {PAGINATION_LABELS[name]} ({name}) parameter failure: "
                f"out of range (expected value between 1 and {maximum})"
            )

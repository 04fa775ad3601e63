"""
Query string filters of collection routes.
"""

from typing import Mapping, Optional

from shared.errors import BadRequestError
from ..repositories import Pagination


PAGE = "page"
PER_PAGE = "per_page"
FULL_LIST = "full_list"
CATALOG = "catalog"
ALLOWED_FILTERS = (PAGE, PER_PAGE, FULL_LIST, CATALOG)

PAGINATION_LABELS = {PAGE: "number", PER_PAGE: "limit"}


class FilterRequestHandler:
    """Validate collection filters and turn them into a pagination window."""

    def check_query_parameters(self, query_params: Mapping[str, str], is_collection: bool) -> None:
        """Reject unknown parameters, and any parameter on a non collection route."""
        if not query_params:
            return
        if not is_collection:
            raise BadRequestError(
                "Misused filter(s) without collection: unexpected request query parameter(s)"
            )
        unknown = [name for name in query_params.keys() if name not in ALLOWED_FILTERS]
        if unknown:
            raise BadRequestError(
                f"Invalid request: unknown ({', '.join(sorted(set(unknown)))}) query parameter(s)"
            )

    def filter_pagination_data(self, query_params: Mapping[str, str]) -> Optional[Pagination]:
        """Pagination window requested, or None for the whole collection.

        ``page`` and ``per_page`` must be given together.
        """
        has_page = PAGE in query_params
        has_per_page = PER_PAGE in query_params
        if not has_page and not has_per_page:
            return None
        if has_page != has_per_page:
            missing = PER_PAGE if has_page else PAGE
            raise BadRequestError(
                f"Pagination {PAGINATION_LABELS[missing]} ({missing}) parameter failure: "
                f"undefined {missing} parameter"
            )
        return Pagination(
            page=self._positive_integer(query_params, PAGE),
            per_page=self._positive_integer(query_params, PER_PAGE)
        )

    def is_full_list_requested(self, query_params: Mapping[str, str]) -> bool:
        """Whether one of the ``full_list``/``catalog`` flags is set."""
        requested = False
        for flag in (FULL_LIST, CATALOG):
            if flag in query_params:
                if query_params[flag] != "":
                    raise BadRequestError(
                        f"No value expected for '{FULL_LIST}' or '{CATALOG}' query parameter"
                    )
                requested = True
        return requested

    def _positive_integer(self, query_params: Mapping[str, str], name: str) -> int:
        value = query_params[name].strip()
        label = PAGINATION_LABELS[name]
        if value == "":
            raise BadRequestError(f"Pagination {label} ({name}) parameter failure: undefined value")
        if not value.isdigit() or int(value) < 1:
            raise BadRequestError(
                f"Pagination {label} ({name}) parameter failure: expected value >= 1"
            )
        return int(value)

"""
HTTP responses of the API routes, including cache validation headers.
"""

from datetime import datetime
from email.utils import formatdate, parsedate_to_datetime
from typing import Any, Dict, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from ..domain.models import HTTPCacheEntry


HAL_JSON = "application/hal+json"
CACHE_VARY = "Authorization, X-App-Cache"


class ResponseBuilder:
    """Build JSON responses; cached routes get validators from their cache entry."""

    def create_json(
        self,
        data: Any,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        media_type: str = HAL_JSON
    ) -> Response:
        return JSONResponse(content=data, status_code=status_code, headers=headers, media_type=media_type)

    def create_message(self, status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> Response:
        """Short ``{code, message}`` body, used for creations."""
        return self.create_json({"code": status_code, "message": message}, status_code, headers, "application/json")

    @staticmethod
    def etag(entry: HTTPCacheEntry) -> str:
        return f'"{entry.etag_token}"'

    def http_cache_headers(self, entry: HTTPCacheEntry) -> Dict[str, str]:
        """Validator, lifetime and custom headers the reverse proxy relies on."""
        ttl = entry.ttl_expiration
        return {
            "ETag": self.etag(entry),
            "Last-Modified": formatdate(entry.update_date.timestamp(), usegmt=True),
            "Cache-Control": f"public, max-age={ttl}, s-maxage={ttl}, proxy-revalidate",
            "X-App-Cache-Ttl": str(ttl),
            "X-App-Cache-Id": entry.uuid,
            "Vary": CACHE_VARY,
        }

    def is_not_modified(self, request: Request, entry: HTTPCacheEntry) -> bool:
        """Whether the client's validators designate the current version."""
        if_none_match = request.headers.get("if-none-match")
        if if_none_match:
            etag = self.etag(entry)
            candidates = [value.strip() for value in if_none_match.split(",")]
            return "*" in candidates or etag in candidates or f"W/{etag}" in candidates

        if_modified_since = request.headers.get("if-modified-since")
        if if_modified_since:
            try:
                since: datetime = parsedate_to_datetime(if_modified_since)
            except (TypeError, ValueError):
                return False
            return int(entry.update_date.timestamp()) <= int(since.timestamp())
        return False

    def create_cached_json(self, request: Request, data: Any, entry: HTTPCacheEntry) -> Response:
        """200 with ``data`` and cache headers, or an empty 304 when the client is up to date."""
        headers = self.http_cache_headers(entry)
        if self.is_not_modified(request, entry):
            return Response(status_code=304, headers=headers)
        return self.create_json(data, 200, headers)

"""
Reverse proxy HTTP cache running in front of the API routes.

The kernel stores successful GET responses in a file based store and serves
them while fresh. Two rules are layered on top of plain RFC freshness
handling:

- a stored response whose freshness expired but which the application
  revalidated is refreshed: its lifetime is reset from the application TTL
  header, ``proxy-revalidate`` is enforced and it is stored again;
- a 304 produced by the application is answered with the stored body when
  the stored response carries the same validator, so clients always get
  content.

Stored bodies live in files addressed by URI and content whose path travels with the
response in ``X-Body-File`` until the kernel strips it.
"""

import asyncio
import hashlib
import json
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from email.utils import formatdate, parsedate_to_datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set
from urllib.parse import urlsplit

from fastapi import Request, Response

from shared.logging import get_logger
from shared.metrics import MetricsCollector


BODY_FILE_HEADER = "x-body-file"
APP_CACHE_TTL_HEADER = "x-app-cache-ttl"
VALIDATOR_HEADERS = ("etag", "last-modified", "cache-control", "expires", APP_CACHE_TTL_HEADER)
SAFE_METHODS = ("GET", "HEAD", "OPTIONS", "TRACE")


def parse_cache_control(value: Optional[str]) -> Dict[str, Optional[str]]:
    directives: Dict[str, Optional[str]] = {}
    for part in (value or "").split(","):
        part = part.strip()
        if not part:
            continue
        name, _, argument = part.partition("=")
        directives[name.strip().lower()] = argument.strip().strip('"') or None
    return directives


def format_cache_control(directives: Dict[str, Optional[str]]) -> str:
    return ", ".join(name if value is None else f"{name}={value}" for name, value in directives.items())


def http_date(timestamp: float) -> str:
    return formatdate(timestamp, usegmt=True)


@dataclass
class HttpResponse:
    """Fully buffered response handled by the kernel (lower-case header names)."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @classmethod
    async def from_response(cls, response: Response) -> "HttpResponse":
        if hasattr(response, "body_iterator"):
            chunks = []
            async for chunk in response.body_iterator:
                chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
            body = b"".join(chunks)
        else:
            body = response.body
        headers = {name.lower(): value for name, value in response.headers.items()}
        return cls(response.status_code, headers, body)

    def to_response(self) -> Response:
        headers = {name: value for name, value in self.headers.items() if name != "content-length"}
        return Response(content=self.body, status_code=self.status_code, headers=headers)

    def copy(self) -> "HttpResponse":
        return HttpResponse(self.status_code, dict(self.headers), self.body)

    @property
    def cache_control(self) -> Dict[str, Optional[str]]:
        return parse_cache_control(self.headers.get("cache-control"))

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get("etag")

    def max_age(self) -> Optional[int]:
        """Shared cache lifetime: s-maxage, then max-age."""
        directives = self.cache_control
        for name in ("s-maxage", "max-age"):
            if directives.get(name) is not None:
                try:
                    return int(directives[name])
                except ValueError:
                    return None
        return None

    def date(self) -> Optional[float]:
        value = self.headers.get("date")
        if not value:
            return None
        try:
            return parsedate_to_datetime(value).timestamp()
        except (TypeError, ValueError):
            return None

    def age(self, now: float) -> int:
        date = self.date()
        computed = max(0, int(now - date)) if date is not None else 0
        try:
            return max(computed, int(self.headers.get("age", "0")))
        except ValueError:
            return computed

    def is_fresh(self, now: float) -> bool:
        ttl = self.max_age()
        return ttl is not None and self.age(now) < ttl


class ResponseStore:
    """File store of responses keyed by request URI, one variant per Vary value set.

    Disk access runs in worker threads so the event loop never blocks on it.
    Body files are addressed by URI and content and are removed along with the
    last variant referencing them.
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.logger = get_logger("marketplace.cache.store")
        self._lock = threading.Lock()
        (self.root / "md").mkdir(parents=True, exist_ok=True)
        (self.root / "en").mkdir(parents=True, exist_ok=True)

    def _metadata_path(self, uri: str) -> Path:
        return self.root / "md" / hashlib.sha256(uri.encode("utf-8")).hexdigest()

    def _body_path(self, digest: str) -> Path:
        return self.root / "en" / digest[:2] / digest[2:]

    @staticmethod
    def _digest(uri: str, body: bytes) -> str:
        return hashlib.sha256(uri.encode("utf-8") + b"\n" + body).hexdigest()

    def _read_variants(self, uri: str) -> List[dict]:
        path = self._metadata_path(uri)
        if not path.exists():
            return []
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self.logger.warning("Unreadable cache metadata", uri=uri, error=str(e))
            return []

    def _write_atomic(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, tmp_path = tempfile.mkstemp(dir=path.parent)
        try:
            with os.fdopen(descriptor, "wb") as tmp:
                tmp.write(content)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _unlink_bodies(self, digests: Set[str]) -> None:
        for digest in digests:
            self._body_path(digest).unlink(missing_ok=True)

    @staticmethod
    def _vary_names(headers: Dict[str, str]) -> List[str]:
        return [name.strip().lower() for name in headers.get("vary", "").split(",") if name.strip()]

    @staticmethod
    def _matches(variant: dict, request_headers: Dict[str, str]) -> bool:
        return all(request_headers.get(name) == value for name, value in variant["vary"].items())

    def _lookup(self, uri: str, request_headers: Dict[str, str]) -> Optional[HttpResponse]:
        with self._lock:
            for variant in self._read_variants(uri):
                if not self._matches(variant, request_headers):
                    continue
                body_path = self._body_path(variant["digest"])
                if not body_path.exists():
                    return None
                headers = dict(variant["headers"])
                headers[BODY_FILE_HEADER] = str(body_path)
                return HttpResponse(variant["status"], headers, body_path.read_bytes())
        return None

    def _write(self, uri: str, request_headers: Dict[str, str], response: HttpResponse) -> str:
        digest = self._digest(uri, response.body)
        body_path = self._body_path(digest)
        headers = {
            name: value for name, value in response.headers.items()
            if name not in (BODY_FILE_HEADER, "age", "content-length")
        }
        variant = {
            "vary": {name: request_headers.get(name) for name in self._vary_names(headers)},
            "status": response.status_code,
            "headers": headers,
            "digest": digest,
        }

        with self._lock:
            if not body_path.exists():
                self._write_atomic(body_path, response.body)
            previous = self._read_variants(uri)
            variants = [existing for existing in previous if existing["vary"] != variant["vary"]]
            variants.insert(0, variant)
            self._write_atomic(self._metadata_path(uri), json.dumps(variants).encode("utf-8"))
            self._unlink_bodies(
                {existing["digest"] for existing in previous} - {kept["digest"] for kept in variants}
            )
        return str(body_path)

    def _purge(self, uri: str) -> bool:
        path = self._metadata_path(uri)
        with self._lock:
            variants = self._read_variants(uri)
            if not path.exists():
                return False
            path.unlink()
            self._unlink_bodies({variant["digest"] for variant in variants})
        self.logger.debug("Cached response purged", uri=uri)
        return True

    async def lookup(self, uri: str, request_headers: Dict[str, str]) -> Optional[HttpResponse]:
        """Stored response of ``uri`` matching the request, body path in ``X-Body-File``."""
        return await asyncio.to_thread(self._lookup, uri, request_headers)

    async def write(self, uri: str, request_headers: Dict[str, str], response: HttpResponse) -> str:
        """Store ``response`` for ``uri``; returns the body file path."""
        return await asyncio.to_thread(self._write, uri, request_headers, response)

    async def read_body(self, response: HttpResponse) -> bytes:
        """Body of a stored response, read from its body file."""
        return await asyncio.to_thread(Path(response.headers[BODY_FILE_HEADER]).read_bytes)

    async def purge(self, uri: str) -> bool:
        """Forget every stored variant of ``uri`` and its body files."""
        return await asyncio.to_thread(self._purge, uri)


class RequestType(str, Enum):
    """Kind of request reaching the kernel; only master requests are cached."""
    MASTER = "master"
    SUB = "sub"


class CacheState(str, Enum):
    """Trace entries of one request through the kernel."""
    PASS = "pass"
    INVALIDATE = "invalidate"
    RELOAD = "reload"
    MISS = "miss"
    FRESH = "fresh"
    STALE = "stale"
    VALID = "valid"
    INVALID = "invalid"
    STORE = "store"
    REFRESHED = "refreshed"
    NOT_MODIFIED = "not-modified"


@dataclass
class ProxyExchange:
    """Request being served by the kernel and the states it went through."""

    method: str
    uri: str
    headers: Dict[str, str]
    traces: List[CacheState] = field(default_factory=list)

    @classmethod
    def from_request(cls, request: Request) -> "ProxyExchange":
        uri = request.url.path
        if request.url.query:
            uri = f"{uri}?{request.url.query}"
        headers = {name.lower(): value for name, value in request.headers.items()}
        return cls(request.method, uri, headers)

    def trace(self, state: CacheState) -> None:
        self.traces.append(state)

    def trace_header(self) -> str:
        return f"{self.method} {self.uri}: {', '.join(state.value for state in self.traces)}"


CallNext = Callable[[Request], Awaitable[Response]]


class CacheKernel:
    """HTTP cache kernel used as an application middleware."""

    def __init__(
        self,
        store: ResponseStore,
        debug: bool = False,
        trace_header: str = "X-Symfony-Cache",
        path_prefix: str = "",
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
        credentials_expired: Optional[Callable[[Optional[str], float], bool]] = None
    ):
        self.store = store
        self.debug = debug
        self.trace_header = trace_header
        self.path_prefix = path_prefix
        self.metrics = metrics
        self.clock = clock
        self.credentials_expired = credentials_expired
        self.logger = get_logger("marketplace.cache.kernel")

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)
        return await self.handle(request, call_next)

    async def handle(
        self,
        request: Request,
        call_next: CallNext,
        request_type: RequestType = RequestType.MASTER
    ) -> Response:
        if request_type is not RequestType.MASTER:
            return await call_next(request)

        exchange = ProxyExchange.from_request(request)
        response = await self._handle_exchange(exchange, request, call_next)

        if response.status_code == 200 and not self.is_fresh_enough(response):
            response = await self.refresh_valid_cached_response_after_expiration(exchange, response)
        if response.status_code == 304:
            response = await self.forward_not_modified_cached_response(exchange, response)

        # Never disclose store paths
        response.headers.pop(BODY_FILE_HEADER, None)
        if self.debug:
            response.headers[self.trace_header.lower()] = exchange.trace_header()

        self._record(exchange)
        self.logger.debug(
            "HTTP cache handled request",
            method=exchange.method,
            uri=exchange.uri,
            states=[state.value for state in exchange.traces],
            status_code=response.status_code
        )
        return response.to_response()

    def is_fresh_enough(self, response: HttpResponse) -> bool:
        """Responses without shared lifetime have nothing to refresh."""
        if response.max_age() is None:
            return True
        return response.is_fresh(self.clock())

    async def refresh_valid_cached_response_after_expiration(
        self,
        exchange: ProxyExchange,
        response: HttpResponse
    ) -> HttpResponse:
        """Reset the lifetime of a revalidated stale response and store it again."""
        refreshed = response.copy()
        if not refreshed.body and BODY_FILE_HEADER in refreshed.headers:
            refreshed.body = await self.store.read_body(refreshed)

        directives = refreshed.cache_control
        ttl = refreshed.headers.get(APP_CACHE_TTL_HEADER)
        if ttl:
            directives["max-age"] = ttl
            if "s-maxage" in directives:
                directives["s-maxage"] = ttl
        directives["proxy-revalidate"] = None
        refreshed.headers["cache-control"] = format_cache_control(directives)
        refreshed.headers["date"] = http_date(self.clock())
        refreshed.headers["age"] = "0"

        await self.store.write(exchange.uri, exchange.headers, refreshed)
        exchange.trace(CacheState.REFRESHED)
        return refreshed

    async def forward_not_modified_cached_response(
        self,
        exchange: ProxyExchange,
        response: HttpResponse
    ) -> HttpResponse:
        """Answer an application 304 with the stored content of the same version."""
        cached = await self.store.lookup(exchange.uri, exchange.headers)
        if cached is None:
            return response
        if response.etag and cached.etag and response.etag != cached.etag:
            # The client holds a version the store does not have
            return response

        substituted = HttpResponse(200, dict(cached.headers), await self.store.read_body(cached))
        for name in VALIDATOR_HEADERS:
            if name in response.headers:
                substituted.headers[name] = response.headers[name]
        substituted.headers["age"] = str(cached.age(self.clock()))
        exchange.trace(CacheState.NOT_MODIFIED)
        return substituted

    async def _handle_exchange(self, exchange: ProxyExchange, request: Request, call_next: CallNext) -> HttpResponse:
        if exchange.method not in SAFE_METHODS:
            return await self._invalidate(exchange, request, call_next)
        if exchange.method != "GET":
            exchange.trace(CacheState.PASS)
            return await self._forward(request, call_next)
        if "no-cache" in parse_cache_control(exchange.headers.get("cache-control")) \
                or exchange.headers.get("pragma") == "no-cache":
            exchange.trace(CacheState.RELOAD)
            return await self._fetch(exchange, request, call_next)
        return await self._lookup(exchange, request, call_next)

    async def _invalidate(self, exchange: ProxyExchange, request: Request, call_next: CallNext) -> HttpResponse:
        response = await self._forward(request, call_next)
        if 200 <= response.status_code < 400:
            await self.store.purge(exchange.uri)
            location = response.headers.get("location")
            if location:
                parts = urlsplit(location)
                await self.store.purge(parts.path + (f"?{parts.query}" if parts.query else ""))
            exchange.trace(CacheState.INVALIDATE)
        else:
            exchange.trace(CacheState.PASS)
        return response

    async def _lookup(self, exchange: ProxyExchange, request: Request, call_next: CallNext) -> HttpResponse:
        entry = await self.store.lookup(exchange.uri, exchange.headers)
        if entry is None:
            exchange.trace(CacheState.MISS)
            return await self._fetch(exchange, request, call_next)

        now = self.clock()
        if not entry.is_fresh(now):
            exchange.trace(CacheState.STALE)
            return await self._validate(exchange, entry, request, call_next)

        if self.credentials_expired and self.credentials_expired(exchange.headers.get("authorization"), now):
            # Let the application reject the expired token
            exchange.trace(CacheState.PASS)
            return await self._forward(request, call_next)

        exchange.trace(CacheState.FRESH)
        entry.headers["age"] = str(entry.age(now))
        return entry

    async def _validate(
        self,
        exchange: ProxyExchange,
        entry: HttpResponse,
        request: Request,
        call_next: CallNext
    ) -> HttpResponse:
        """Ask the application whether the stored version is still current."""
        headers = {
            name: value for name, value in exchange.headers.items()
            if name not in ("if-none-match", "if-modified-since")
        }
        if entry.etag:
            headers["if-none-match"] = entry.etag
        response = await self._forward(request, call_next, headers)

        if response.status_code == 304:
            exchange.trace(CacheState.VALID)
            restored = entry.copy()
            for name in VALIDATOR_HEADERS:
                if name in response.headers:
                    restored.headers[name] = response.headers[name]
            return restored

        exchange.trace(CacheState.INVALID)
        await self._store_if_cacheable(exchange, response)
        return response

    async def _fetch(self, exchange: ProxyExchange, request: Request, call_next: CallNext) -> HttpResponse:
        response = await self._forward(request, call_next)
        await self._store_if_cacheable(exchange, response)
        return response

    async def _forward(
        self,
        request: Request,
        call_next: CallNext,
        headers: Optional[Dict[str, str]] = None
    ) -> HttpResponse:
        if headers is not None:
            request.scope["headers"] = [
                (name.encode("latin-1"), value.encode("latin-1")) for name, value in headers.items()
            ]
        response = await HttpResponse.from_response(await call_next(request))
        if "date" not in response.headers:
            response.headers["date"] = http_date(self.clock())
        return response

    async def _store_if_cacheable(self, exchange: ProxyExchange, response: HttpResponse) -> None:
        if self._is_cacheable(exchange, response):
            await self.store.write(exchange.uri, exchange.headers, response)
            exchange.trace(CacheState.STORE)

    @staticmethod
    def _is_cacheable(exchange: ProxyExchange, response: HttpResponse) -> bool:
        if response.status_code != 200:
            return False
        directives = response.cache_control
        if "no-store" in directives or "private" in directives:
            return False
        if "authorization" in exchange.headers and "public" not in directives and "s-maxage" not in directives:
            return False
        max_age = response.max_age()
        return max_age is not None and max_age > 0

    def _record(self, exchange: ProxyExchange) -> None:
        if self.metrics:
            for state in exchange.traces:
                self.metrics.record_http_cache_event(state.value)

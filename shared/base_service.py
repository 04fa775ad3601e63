"""
Base service class for the phones marketplace API services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Dict, Any
import time
import os

from shared.config import get_config
from shared.logging import configure_logging, get_logger, request_context
from shared.metrics import get_metrics_collector
from shared.errors import (
    MarketplaceException, ErrorResponse, NOT_FOUND_MESSAGE, TECHNICAL_ERROR_MESSAGE
)
from prometheus_client import CONTENT_TYPE_LATEST


PROBLEM_JSON = "application/problem+json"


def route_template(request: Request) -> str:
    """Matched route path (`/phones/{uuid}`), keeping uuids out of metric labels."""
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, **config_overrides: Any):
        self.service_name = service_name
        self.port = port
        self.config = get_config(service_name, port, **config_overrides)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        # Configure logging
        configure_logging(service_name, self.config.log_level)

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Phones marketplace - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.is_debug else None,
            redoc_url="/redoc" if self.config.is_debug else None,
        )

    def _setup_middleware(self):
        """Set up CORS and the request log/metrics middleware."""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["ETag", "Location", "X-Request-ID"],
        )

        @self.app.middleware("http")
        async def log_request(request: Request, call_next):
            started = time.perf_counter()
            with request_context(request.headers.get("X-Request-ID")) as request_id:
                response = await call_next(request)
                duration = time.perf_counter() - started
                endpoint = route_template(request)

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration=duration
                )
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )

            response.headers["X-Request-ID"] = request_id
            return response

    def _error_response(self, status_code: int, error: ErrorResponse) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=error.model_dump(),
            media_type=PROBLEM_JSON
        )

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Report uptime and the state of storage and cache backends."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e), exc_info=True)
                dependencies = {"error": str(e)}

            healthy = all(state == "ok" for state in dependencies.values())
            status = "ok" if healthy else "degraded"
            self.metrics.record_health_check(status)
            return JSONResponse(
                status_code=200 if healthy else 503,
                content={
                    "service": self.service_name,
                    "status": status,
                    "env": self.config.env,
                    "uptime_seconds": round(self._get_uptime(), 3),
                    "dependencies": dependencies,
                    "version": "1.0.0",
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=self.metrics.render(),
                media_type=CONTENT_TYPE_LATEST
            )

        # Error handlers
        @self.app.exception_handler(MarketplaceException)
        async def marketplace_exception_handler(request: Request, exc: MarketplaceException):
            """Handle MarketplaceException."""
            self.logger.warning(
                "Request rejected",
                code=exc.code,
                status_code=exc.status_code,
                message=exc.message,
                details=exc.details,
                path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return self._error_response(exc.status_code, exc.to_response())

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            """Handle routing level HTTP errors (unknown path, method not allowed)."""
            if exc.status_code == 404:
                error = MarketplaceException("NOT_FOUND", NOT_FOUND_MESSAGE, status_code=404)
            elif exc.status_code >= 500:
                error = MarketplaceException("INTERNAL_ERROR", TECHNICAL_ERROR_MESSAGE, status_code=exc.status_code)
            else:
                error = MarketplaceException("HTTP_ERROR", str(exc.detail), status_code=exc.status_code)
            return self._error_response(exc.status_code, error.to_response())

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Handle request parsing errors raised by FastAPI."""
            errors = {
                "_".join(str(part) for part in error["loc"] if part != "body"): error["msg"]
                for error in exc.errors()
            }
            error = MarketplaceException(
                "VALIDATION_ERROR",
                "Invalid request: please check the submitted data.",
                {"errors": errors}
            )
            return self._error_response(400, error.to_response())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error(
                "Unhandled exception",
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
                exc_info=True
            )
            self.metrics.record_error(type(exc).__name__)
            error = MarketplaceException("INTERNAL_ERROR", TECHNICAL_ERROR_MESSAGE, status_code=500)
            return self._error_response(500, error.to_response())

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )

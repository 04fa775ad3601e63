"""
Shared configuration management for the phones marketplace API.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MARKETPLACE_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Storage
    storage_backend: str = Field(default="memory", description="memory or postgres")
    postgres_dsn: str = Field(default="postgres://localhost:5432/marketplace")

    # Tagged cache
    cache_backend: str = Field(default="memory", description="memory or redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    default_cache_ttl: int = Field(default=3600, ge=1)
    cache_stampede_beta: float = Field(default=1.0, ge=0.0)

    # Reverse proxy cache
    http_cache_enabled: bool = Field(default=True)
    http_cache_dir: str = Field(default="var/cache/http")
    http_cache_trace_header: str = Field(default="X-Symfony-Cache")

    # Routing
    api_path_prefix: str = Field(default="/api/v1")

    # Security
    jwt_secret: str = Field(default="change-me")
    jwt_algorithm: str = Field(default="HS256")
    jwt_token_ttl: int = Field(default=3600, ge=1)
    refresh_token_ttl: int = Field(default=2592000, ge=1)
    password_hash_iterations: int = Field(default=100000, ge=1)

    # Demo data
    load_fixtures: bool = Field(default=False)
    fixtures_seed: int = Field(default=42)

    @property
    def is_debug(self) -> bool:
        """Whether development helpers (docs, proxy trace header) are exposed."""
        return self.env in ("local", "dev")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)

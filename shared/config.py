"""
Shared configuration management for the Profile Access Layer.
"""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerCacheConfig(BaseModel):
    """Cache policy for the batched profile fetch."""

    # Seconds a computed batch result is served from cache.
    expires_in: int = Field(default=3600, ge=1)
    # Seconds a fresh computation may take before it is abandoned.
    generate_timeout: float = Field(default=5.0, gt=0)
    # Seconds an expired entry is kept around as a stale-on-error fallback.
    stale_ttl: int = Field(default=0, ge=0)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROFILE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Upstream services
    oauth_url: str = "http://localhost:9010"
    identity_service_url: str = "http://localhost:9020"
    http_timeout: float = 10.0

    # Batch cache
    server_cache: ServerCacheConfig = Field(default_factory=ServerCacheConfig)
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"

    # Emit an ETag even when every profile field is null
    etag_empty_profile: bool = False

    # Observability
    metrics_port: Optional[int] = None


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

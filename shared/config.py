"""
Shared configuration management for the Stats API gate.
"""

from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STATSGATE_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/stats")

    # Collaborator backends: "memory" for local runs and tests
    directory_backend: str = Field(default="memory")
    rate_limit_backend: str = Field(default="memory")

    # Rate limiting
    rate_limit_window_seconds: int = Field(default=3600)
    rate_limit_sweep_interval: int = Field(default=1024)

    # Access policy
    stats_api_feature: str = Field(default="stats_api")
    super_admin_user_ids: Annotated[List[str], NoDecode] = Field(default_factory=list)
    api_key_secret: str = Field(default="")

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4317")

    @field_validator("super_admin_user_ids", mode="before")
    @classmethod
    def _split_user_ids(cls, value: Any) -> Any:
        """Accept a comma separated list such as ``7,8`` from the environment."""
        if isinstance(value, (str, int)):
            return [part.strip() for part in str(value).split(",") if part.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(part) for part in value]
        return value


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

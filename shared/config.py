"""
Shared configuration management for the Access Identity services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend discovery
    backend_base_url: str = Field(default="http://localhost:7000")
    backend_internal_base_url: Optional[str] = Field(default=None)

    # Identity verification
    identity_plugin_id: str = Field(default="auth")
    identity_audience: str = Field(default="backstage")
    jwks_fetch_timeout: float = Field(default=10.0, gt=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)

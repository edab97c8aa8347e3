"""
Shared configuration management for the PBX dashboard gateway.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PBX_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Relay and appliance
    relay_url: str = Field(default="http://localhost:3000")
    pbx_host: str = Field(default="")
    user_agent: str = Field(default="PbxDashboardGateway/1.0")
    request_timeout_seconds: float = Field(default=30.0)

    # Session state
    token_store_key: str = Field(default="yeastar_accessToken")
    cache_ttl_seconds: float = Field(default=60.0)


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

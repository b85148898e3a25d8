"""
Shared configuration management for the Chain RPC Gateway.
"""

import os
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Window names understood by the rate limit engine, shortest first.
KNOWN_RATE_WINDOWS = ("10min", "day", "month")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("GATEWAY_ENV", "env"))
    log_level: str = Field(default="info", validation_alias=AliasChoices("GATEWAY_LOG_LEVEL", "log_level"))


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("GATEWAY_HOST", "host"))
    health_path: str = "/health"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


class GatewayConfig(ServiceConfig):
    """Configuration for the RPC gateway service."""

    health_path: str = "/api/health"
    api_prefix: str = "/api/"
    admin_prefix: str = "/api/admin/"

    # Security
    admin_secret: str = Field(
        validation_alias=AliasChoices("GATEWAY_ADMIN_SECRET", "ADMIN_SECRET", "admin_secret"),
        min_length=1,
    )

    # Key storage
    data_dir: str = Field(default="./data", validation_alias=AliasChoices("GATEWAY_DATA_DIR", "DATA_DIR", "data_dir"))
    api_keys_file: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_API_KEYS_FILE", "api_keys_file"),
    )

    # Upstream node
    rpc_url: str = Field(
        default="http://localhost:8545",
        validation_alias=AliasChoices("GATEWAY_RPC_URL", "ERIGON_RPC_URL", "rpc_url"),
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices("GATEWAY_RPC_TIMEOUT_SECONDS", "rpc_timeout_seconds"),
    )

    # Rate limiting
    rate_limit_windows: str = Field(
        default=",".join(KNOWN_RATE_WINDOWS),
        validation_alias=AliasChoices("GATEWAY_RATE_LIMIT_WINDOWS", "rate_limit_windows"),
    )
    rate_limit_per_10min: int = Field(
        default=100,
        ge=0,
        validation_alias=AliasChoices("API_RATE_LIMIT_PER_10MIN", "rate_limit_per_10min"),
    )
    rate_limit_per_day: int = Field(
        default=10000,
        ge=0,
        validation_alias=AliasChoices("API_RATE_LIMIT_PER_DAY", "rate_limit_per_day"),
    )
    rate_limit_per_month: int = Field(
        default=300000,
        ge=0,
        validation_alias=AliasChoices("API_RATE_LIMIT_PER_MONTH", "rate_limit_per_month"),
    )

    @field_validator("rate_limit_windows")
    @classmethod
    def _check_windows(cls, value: str) -> str:
        names = [name.strip() for name in value.split(",") if name.strip()]
        if not names:
            raise ValueError("at least one rate limit window must be enabled")
        unknown = [name for name in names if name not in KNOWN_RATE_WINDOWS]
        if unknown:
            raise ValueError(f"unknown rate limit windows: {', '.join(unknown)}")
        return ",".join(names)

    @property
    def window_names(self) -> List[str]:
        """Enabled rate limit windows in configuration order."""
        return self.rate_limit_windows.split(",")

    @property
    def default_limits(self) -> dict:
        """Process-wide default limit per window name."""
        return {
            "10min": self.rate_limit_per_10min,
            "day": self.rate_limit_per_day,
            "month": self.rate_limit_per_month,
        }

    @property
    def api_keys_path(self) -> str:
        """Location of the durable API key file."""
        if self.api_keys_file:
            return self.api_keys_file
        return os.path.join(self.data_dir, "api-keys.json")


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)


def get_gateway_config(port: int = 8000, **overrides) -> GatewayConfig:
    """Get configuration for the gateway, reading the environment."""
    port = int(os.getenv("GATEWAY_PORT", port))
    return GatewayConfig(service_name="gateway", port=port, **overrides)

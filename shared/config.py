"""
Configuration.

Settings are read from ``ABILITIES_*`` environment variables (or a
``.env`` file), e.g. ``ABILITIES_TENANT=acme`` or
``ABILITIES_ENTITY_TABLES='{"user": "users", "account": "accounts"}'``.
"""

from typing import Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Settings shared by the service and the CLI."""

    model_config = SettingsConfigDict(
        env_prefix="ABILITIES_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    env: str = Field(default="local")
    log_level: str = Field(default="info")

    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/abilities")

    cache_backend: Literal["redis", "array"] = Field(default="redis")
    storage_backend: Literal["postgres", "memory"] = Field(default="postgres")

    # Base cache tag; a tenant is appended as "-<tenant>"
    cache_tag: str = Field(default="abilities", min_length=1)
    # Prepended to every Redis key, e.g. "myapp:"
    cache_prefix: str = Field(default="")

    tenant: Optional[str] = Field(default=None)
    # Share abilities and roles across tenants, scoping only grants and assignments
    only_scope_relations: bool = Field(default=False)

    # Entity type -> table holding its rows
    entity_tables: Dict[str, str] = Field(default_factory=lambda: {"user": "users"})

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"unknown log level '{value}'")
        return value

    @field_validator("tenant")
    @classmethod
    def _blank_tenant_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class ServiceConfig(BaseConfig):
    """Settings of one running service."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Load settings for a service; keyword overrides win over the environment."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)

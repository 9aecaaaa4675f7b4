"""
Shared configuration management for the Chat Relay service.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_origins: str = Field(default="*")

    # Identity provider (Firebase ID tokens)
    firebase_project_id: str = Field(
        default="",
        validation_alias=AliasChoices("CHAT_FIREBASE_PROJECT_ID", "FIREBASE_PROJECT_ID"),
    )
    firebase_jwks_url: str = Field(
        default="https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    )
    jwks_refresh_interval: int = Field(default=300)
    auth_http_timeout: float = Field(default=5.0)

    # Rate limiting
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("CHAT_REDIS_URL", "REDIS_URL"),
    )
    redis_timeout_seconds: float = Field(default=2.0)
    rate_limit_requests: int = Field(default=5)
    rate_limit_window_seconds: int = Field(default=60)
    rate_limit_prefix: str = Field(default="chat_rate_limit")
    rate_limit_fail_open: bool = Field(default=False)

    # Upstream generation service
    generation_api_url: str = Field(
        default="https://api.dify.ai/v1/chat-messages",
        validation_alias=AliasChoices("CHAT_GENERATION_API_URL", "DIFY_API_URL"),
    )
    generation_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("CHAT_GENERATION_API_KEY", "DIFY_API_KEY"),
    )
    generation_timeout_seconds: float = Field(default=30.0)
    generation_circuit_failure_threshold: int = Field(default=5)
    generation_circuit_recovery_timeout: float = Field(default=30.0)

    # Exchange persistence (Firestore)
    firestore_project_id: Optional[str] = Field(default=None)
    firebase_client_email: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CHAT_FIREBASE_CLIENT_EMAIL", "FIREBASE_CLIENT_EMAIL"),
    )
    firebase_private_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CHAT_FIREBASE_PRIVATE_KEY", "FIREBASE_PRIVATE_KEY"),
    )
    chat_collection: str = Field(default="chats")
    firestore_timeout_seconds: float = Field(default=10.0)


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

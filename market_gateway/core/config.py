"""
Application configuration models and helpers.

Centralizes settings management so the HTTP surface, the OAuth delegation
provider and the upstream API clients share one configuration surface.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class UpstreamSettings(BaseSettings):
    """Credentials and defaults for talking to the marketplace."""

    model_config = _ENV_CONFIG

    client_id: str = Field(..., validation_alias="MARKETPLACE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="MARKETPLACE_CLIENT_SECRET")
    api_key: Optional[str] = Field(
        None,
        validation_alias="MARKETPLACE_API_KEY",
        description="Optional static key sent as X-API-KEY on partner calls.",
    )
    default_market: str = Field("pl", validation_alias="MARKETPLACE_DEFAULT_MARKET")
    user_agent: str = Field(
        "Market-Gateway/1.0", validation_alias="MARKETPLACE_USER_AGENT"
    )
    http_timeout: float = Field(10.0, validation_alias="MARKETPLACE_HTTP_TIMEOUT")


class ServerSettings(BaseSettings):
    """Where the gateway is reachable from the outside."""

    model_config = _ENV_CONFIG

    public_url: AnyHttpUrl = Field(..., validation_alias="GATEWAY_PUBLIC_URL")
    host: str = Field("0.0.0.0", validation_alias="GATEWAY_HOST")
    port: int = Field(3001, validation_alias="GATEWAY_PORT")

    @property
    def base_url(self) -> str:
        return str(self.public_url).rstrip("/")

    @property
    def callback_url(self) -> str:
        """Redirect URI registered with the upstream identity provider."""
        return f"{self.base_url}/oauth/callback"


class RateLimitSettings(BaseSettings):
    """Token bucket sizing shared by every market partition."""

    model_config = _ENV_CONFIG

    capacity: int = Field(4000, validation_alias="RATE_LIMIT_CAPACITY", gt=0)
    window_ms: int = Field(300_000, validation_alias="RATE_LIMIT_WINDOW_MS", gt=0)


class RetrySettings(BaseSettings):
    """Retry policy for upstream data API calls."""

    model_config = _ENV_CONFIG

    attempts: int = Field(3, validation_alias="UPSTREAM_RETRY_ATTEMPTS", ge=1)
    backoff_seconds: float = Field(
        0.5, validation_alias="UPSTREAM_RETRY_BACKOFF_SECONDS", ge=0
    )


class OAuthSettings(BaseSettings):
    """OAuth delegation flow configuration."""

    model_config = _ENV_CONFIG

    session_ttl_seconds: int = Field(600, validation_alias="OAUTH_SESSION_TTL")
    default_scopes: str = Field("read write v2", validation_alias="OAUTH_DEFAULT_SCOPES")
    client_secret_ttl_days: int = Field(
        30, validation_alias="OAUTH_CLIENT_SECRET_TTL_DAYS"
    )
    default_token_lifetime: int = Field(
        3600,
        validation_alias="OAUTH_DEFAULT_TOKEN_LIFETIME",
        description="Lifetime assumed when the upstream omits expires_in.",
    )
    scopes_supported: str = Field(
        "read write v2",
        validation_alias="OAUTH_SCOPES_SUPPORTED",
        description="Scopes advertised in the authorization server metadata.",
    )

    @field_validator("default_scopes", "scopes_supported")
    @classmethod
    def _normalize_scopes(cls, value: str) -> str:
        """Accept comma or space separated scope lists."""
        return " ".join(scope for scope in value.replace(",", " ").split() if scope)

    @property
    def supported_scope_list(self) -> list[str]:
        return self.scopes_supported.split()


class StorageSettings(BaseSettings):
    """Location of the SQLite credential database."""

    model_config = _ENV_CONFIG

    db_path: str = Field("data/gateway.db", validation_alias="GATEWAY_DB_PATH")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _ENV_CONFIG

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description="Secret used to derive the key encrypting stored refresh tokens.",
    )


class AppSettings(BaseSettings):
    """Root settings object for the gateway."""

    model_config = _ENV_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "OAuthSettings",
    "RateLimitSettings",
    "RetrySettings",
    "SecuritySettings",
    "ServerSettings",
    "StorageSettings",
    "UpstreamSettings",
    "get_settings",
]

"""
Process-wide collaborators, built once at startup and passed explicitly.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from market_gateway.clients import (
    CredentialStore,
    MarketplaceClient,
    MarketplaceOAuthClient,
    PartnerClient,
    RateLimiterPool,
)
from market_gateway.core.config import AppSettings
from market_gateway.core.markets import get_market_config
from market_gateway.services import OAuthDelegationProvider, TokenCipher
from market_gateway.utils.http import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Shared handles: HTTP client, limiter registry, storage and OAuth provider."""

    settings: AppSettings
    http_client: httpx.AsyncClient
    rate_limiters: RateLimiterPool
    retry_config: RetryConfig
    store: CredentialStore
    upstream_oauth: MarketplaceOAuthClient
    oauth_provider: OAuthDelegationProvider
    marketplace: MarketplaceClient

    def partner_client(self, access_token: str) -> PartnerClient:
        """Partner API client acting with a verified delegated token."""
        upstream = self.settings.upstream
        return PartnerClient(
            access_token,
            self.http_client,
            self.rate_limiters,
            api_key=upstream.api_key,
            retry_config=self.retry_config,
            user_agent=upstream.user_agent,
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_context(
    settings: AppSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.time,
) -> AppContext:
    """Wire every component from ``settings``."""
    upstream = settings.upstream
    http = http_client or httpx.AsyncClient(timeout=upstream.http_timeout)

    secret = settings.security.token_encryption_secret or upstream.client_secret
    store = CredentialStore(
        settings.storage.db_path, cipher=TokenCipher(secret=secret), clock=clock
    )

    rate_limiters = RateLimiterPool(
        settings.rate_limit.capacity, settings.rate_limit.window_ms
    )
    retry_config = RetryConfig(
        attempts=settings.retry.attempts,
        backoff_seconds=settings.retry.backoff_seconds,
    )

    upstream_oauth = MarketplaceOAuthClient(
        http,
        get_market_config(upstream.default_market),
        client_id=upstream.client_id,
        client_secret=upstream.client_secret,
        redirect_uri=settings.server.callback_url,
    )
    provider = OAuthDelegationProvider(store, upstream_oauth, settings.oauth, clock=clock)

    marketplace = MarketplaceClient(
        http,
        rate_limiters,
        retry_config=retry_config,
        user_agent=upstream.user_agent,
    )

    logger.info(
        "Gateway context ready (default market %s, db %s)",
        upstream.default_market,
        settings.storage.db_path,
    )
    return AppContext(
        settings=settings,
        http_client=http,
        rate_limiters=rate_limiters,
        retry_config=retry_config,
        store=store,
        upstream_oauth=upstream_oauth,
        oauth_provider=provider,
        marketplace=marketplace,
    )


__all__ = ["AppContext", "build_context"]
